"""Ingestion error hierarchy.

Every error can carry the correlation id of the request that raised it so a
failure seen by a caller can be traced through publish, dispatch and store.
"""


class IngestionError(Exception):
    """Base exception for all ingestion failures."""

    def __init__(self, message: str, correlation_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id

    def __str__(self) -> str:
        if self.correlation_id:
            return f"{self.message} (correlation_id={self.correlation_id})"
        return self.message


class ValidationError(IngestionError):
    """Malformed input or schema failure. Never retried."""

    def __init__(
        self,
        message: str,
        correlation_id: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(message, correlation_id)
        self.errors = list(errors or [])


class TransientError(IngestionError):
    """Network or 5xx failure that survived the adapter's retries."""


class PermanentError(IngestionError):
    """Handler kept failing until the delivery budget ran out."""


class CapacityError(IngestionError):
    """Upload too large. Rejected before any broker interaction."""
