"""Dispatcher: the single consumer of the ingestion topic, routing batches to the store."""

import logging
import uuid
from typing import Callable

from ingestor.broker import Broker, Message, Sources, Topics
from ingestor.logging_config import with_correlation
from ingestor.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_ROUTES: dict[str, str] = {
    Sources.API: Sources.API,
    Sources.CSV: Sources.CSV,
    Sources.EXTERNAL_QUEUE: Sources.EXTERNAL_QUEUE,
}


class Dispatcher:
    """Subscribes to the ingestion topic and stores each batch under its source tag."""

    def __init__(
        self,
        broker: Broker,
        store: RecordStore,
        topic: str = Topics.INGESTION,
        routes: dict[str, str] | None = None,
    ) -> None:
        self._broker = broker
        self._store = store
        self._topic = topic
        self._routes = dict(DEFAULT_ROUTES if routes is None else routes)
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def topic(self) -> str:
        return self._topic

    def start(self) -> None:
        """Subscribe to the ingestion topic. Pending messages are replayed by the broker."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._broker.subscribe(
            self._topic, self.handle, subscriber_id="dispatcher"
        )
        logger.info("Dispatcher consuming %s", self._topic)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def resolve_source(self, source: str | None) -> str:
        """Store tag for a declared source; unrecognized or missing → 'unknown'."""
        if source is None:
            return Sources.UNKNOWN
        return self._routes.get(source, Sources.UNKNOWN)

    async def handle(self, message: Message) -> None:
        """Store one message body. Re-raises on failure so the broker retries it."""
        correlation_id = message.correlation_id or str(uuid.uuid4())
        log = with_correlation(logger, correlation_id)
        declared = message.source
        source = self.resolve_source(declared)
        if source == Sources.UNKNOWN:
            log.warning("Unknown source: %r, storing as %s", declared, Sources.UNKNOWN)

        log.info("Processing %d records from %s", len(message.body), declared)
        try:
            result = self._store.store(message.body, source)
        except Exception as e:
            log.error("Error processing message %s: %s", message.id, e)
            raise
        log.info("Stored %d new records from %s (message %s)", result.count, source, message.id)
