"""Message models for the broker."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from ingestor.errors import PermanentError

__all__ = ["BrokerStats", "DeadLetterEntry", "Message", "Record", "new_message_id", "utc_now"]

Record = dict[str, Any]


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for message metadata and stored records."""
    return datetime.now(timezone.utc).isoformat()


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


@dataclass
class Message:
    """Batch of records in flight. attempts is only touched by the delivery path."""

    id: str
    topic: str
    body: list[Record]
    metadata: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    error: str | None = None

    @property
    def source(self) -> str | None:
        return self.metadata.get("source")

    @property
    def correlation_id(self) -> str | None:
        return self.metadata.get("correlation_id")


@dataclass(frozen=True)
class DeadLetterEntry:
    """Message that exhausted its delivery budget. Kept for inspection only."""

    message: Message
    error: str
    topic: str
    dead_lettered_at: str

    def as_error(self) -> PermanentError:
        return PermanentError(
            f"message {self.message.id} on {self.topic!r} failed "
            f"{self.message.attempts} attempts: {self.error}",
            correlation_id=self.message.correlation_id,
        )


class BrokerStats(BaseModel):
    """Read-only snapshot of broker state."""

    queues: dict[str, int] = Field(default_factory=dict)
    dead_letter_count: int = 0
