"""What adapters need from the broker: a publish coroutine and nothing else."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Publisher(Protocol):
    """Anything adapters can publish record batches to (the Broker in production)."""

    async def publish(
        self,
        topic: str,
        body: list[dict[str, Any]],
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Enqueue a batch and return the message id."""
