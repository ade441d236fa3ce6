"""External queue adapter: one object or a list of objects becomes one batch.

Delivery envelopes (Pub/Sub, SQS, HTTP) are unwrapped by process_queue_event.
"""

import base64
import binascii
import json
import logging
from typing import Any

from pydantic import BaseModel

from ingestor.adapters.contract import Publisher
from ingestor.broker.topics import Sources, Topics
from ingestor.errors import ValidationError
from ingestor.idempotency import find_duplicates
from ingestor.logging_config import with_correlation

logger = logging.getLogger(__name__)


class QueueIngestionResult(BaseModel):
    count: int


def normalize_queue_message(message: Any, correlation_id: str | None = None) -> list[Any]:
    if isinstance(message, list):
        return list(message)
    if isinstance(message, dict):
        return [message]
    raise ValidationError("Invalid queue message format", correlation_id)


def _decode_json(text: Any, what: str, correlation_id: str | None) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {what} payload: {e}", correlation_id) from e


def unwrap_queue_event(event: Any, correlation_id: str | None = None) -> Any:
    """Extract the message from a delivery envelope, or return event unchanged.

    Recognized shapes, checked in order:
      - Pub/Sub push: {"data": "<base64 JSON>"}
      - SQS: {"Records": [{"body": "<JSON>"}, ...]}; all record bodies are
        decoded and flattened into one list
      - HTTP: {"body": "<JSON>"} or {"body": <object or array>}
    """
    if not isinstance(event, dict):
        return event
    data = event.get("data")
    if isinstance(data, str) and data:
        try:
            decoded = base64.b64decode(data, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid Pub/Sub payload: {e}", correlation_id) from e
        return _decode_json(decoded, "Pub/Sub", correlation_id)
    records = event.get("Records")
    if isinstance(records, list):
        messages: list[Any] = []
        for record in records:
            if not isinstance(record, dict) or "body" not in record:
                raise ValidationError("SQS record without a body", correlation_id)
            body = _decode_json(record["body"], "SQS", correlation_id)
            messages.extend(normalize_queue_message(body, correlation_id))
        return messages
    body = event.get("body")
    if isinstance(body, str) and body:
        return _decode_json(body, "HTTP", correlation_id)
    if isinstance(body, (dict, list)):
        return body
    return event


async def process_queue_message(
    broker: Publisher,
    message: Any,
    correlation_id: str,
    *,
    topic: str = Topics.INGESTION,
) -> QueueIngestionResult:
    """Publish an external queue payload under source 'external-queue'."""
    log = with_correlation(logger, correlation_id)
    log.info("Processing queue message")
    try:
        records = normalize_queue_message(message, correlation_id)
    except ValidationError:
        log.error("Invalid queue message format: %s", type(message).__name__)
        raise

    if isinstance(message, list):
        log.info("Message contains array of %d records", len(records))
    duplicates = find_duplicates([r for r in records if isinstance(r, dict)])
    if duplicates:
        log.warning("Queue message repeats %d ids; the store keeps the first", len(duplicates))

    await broker.publish(
        topic,
        records,
        {"source": Sources.EXTERNAL_QUEUE, "correlation_id": correlation_id},
    )
    log.info("Published %d records to internal queue", len(records))
    return QueueIngestionResult(count=len(records))


async def process_queue_event(
    broker: Publisher,
    event: Any,
    correlation_id: str,
    *,
    topic: str = Topics.INGESTION,
) -> QueueIngestionResult:
    """Unwrap a Pub/Sub, SQS or HTTP envelope, then publish like process_queue_message."""
    try:
        message = unwrap_queue_event(event, correlation_id)
    except ValidationError as e:
        with_correlation(logger, correlation_id).error("Queue event rejected: %s", e.message)
        raise
    return await process_queue_message(broker, message, correlation_id, topic=topic)
