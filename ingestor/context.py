"""IngestionContext: the one object holding broker, store and dispatcher for a process."""

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from ingestor.adapters.api import ApiClient
from ingestor.broker import Broker, BrokerStats
from ingestor.dispatcher import Dispatcher
from ingestor.settings import get_default_settings, get_setting
from ingestor.store import RecordStore, StoreStats

logger = logging.getLogger(__name__)


class SystemStats(BaseModel):
    """Observability surface: store and broker snapshots."""

    datastore: StoreStats
    queues: BrokerStats


@dataclass
class IngestionContext:
    """Built once at process start and passed to adapters; no module-level instances."""

    broker: Broker
    store: RecordStore
    dispatcher: Dispatcher
    settings: dict[str, Any] = field(default_factory=get_default_settings)

    @property
    def topic(self) -> str:
        return self.dispatcher.topic

    async def start(self) -> None:
        """Create the ingestion topic and start consuming it."""
        self.broker.create_topic(self.topic)
        self.dispatcher.start()
        logger.info("Ingestion context started")

    async def stop(self) -> None:
        self.dispatcher.stop()
        await self.broker.stop()
        logger.info("Ingestion context stopped")

    def get_stats(self) -> SystemStats:
        return SystemStats(
            datastore=self.store.get_stats(),
            queues=self.broker.get_stats(),
        )

    def api_client(self, base_url: str) -> ApiClient:
        """ApiClient configured from the api.* settings."""
        return ApiClient(
            base_url,
            timeout=get_setting(self.settings, "api.timeout", 5.0),
            max_retries=get_setting(self.settings, "api.max_retries", 3),
            retry_delay=get_setting(self.settings, "api.retry_delay", 1.0),
        )


def build_broker(settings: dict[str, Any]) -> Broker:
    cfg = settings.get("broker", {})
    return Broker(
        max_attempts=cfg.get("max_attempts", 3),
        retry_delay=cfg.get("retry_delay", 0.5),
        retry_backoff=cfg.get("retry_backoff", 2.0),
        max_retry_delay=cfg.get("max_retry_delay", 30.0),
        redeliver=cfg.get("redeliver", True),
        handler_timeout=cfg.get("handler_timeout"),
    )


def build_context(settings: dict[str, Any] | None = None) -> IngestionContext:
    """Wire broker, store and dispatcher from settings (defaults when None)."""
    settings = settings if settings is not None else get_default_settings()
    broker = build_broker(settings)
    store = RecordStore()
    dispatcher = Dispatcher(
        broker,
        store,
        topic=get_setting(settings, "ingestion.topic", "ingestion"),
        routes=get_setting(settings, "dispatcher.routes"),
    )
    return IngestionContext(broker=broker, store=store, dispatcher=dispatcher, settings=settings)
