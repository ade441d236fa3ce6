"""Tests for Dispatcher: routing by source tag, unknown fallback, retry on store failure."""

from unittest.mock import MagicMock

import pytest

from ingestor.broker import Broker, Message
from ingestor.dispatcher import Dispatcher
from ingestor.store import RecordStore, StoreResult


@pytest.fixture
async def broker() -> Broker:
    b = Broker(retry_delay=0.0)
    yield b
    await b.stop()


@pytest.fixture
def store() -> RecordStore:
    return RecordStore()


@pytest.fixture
def dispatcher(broker: Broker, store: RecordStore) -> Dispatcher:
    return Dispatcher(broker, store)


class TestDispatcherRouting:
    """Source tag → store partition."""

    @pytest.mark.asyncio
    async def test_known_sources_stored_under_their_tag(
        self, broker: Broker, store: RecordStore, dispatcher: Dispatcher
    ) -> None:
        dispatcher.start()
        await broker.publish("ingestion", [{"id": 1}], {"source": "api", "correlation_id": "c1"})
        await broker.publish("ingestion", [{"id": 1}], {"source": "csv", "correlation_id": "c2"})
        await broker.publish(
            "ingestion", [{"id": 1}], {"source": "external-queue", "correlation_id": "c3"}
        )
        await broker.join(timeout=2)

        stats = store.get_stats()
        assert stats.total_records == 3
        assert stats.source_breakdown == {"api": 1, "csv": 1, "external-queue": 1}
        assert broker.get_stats().queues["ingestion"] == 0

    @pytest.mark.asyncio
    async def test_unknown_source_falls_back(
        self,
        broker: Broker,
        store: RecordStore,
        dispatcher: Dispatcher,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        dispatcher.start()
        await broker.publish("ingestion", [{"id": 1}], {"source": "ftp"})
        await broker.publish("ingestion", [{"id": 2}], {})
        await broker.join(timeout=2)

        assert store.get_stats().source_breakdown == {"unknown": 2}
        assert "unknown source" in caplog.text.lower()

    @pytest.mark.asyncio
    async def test_pending_messages_replayed_on_start(
        self, broker: Broker, store: RecordStore, dispatcher: Dispatcher
    ) -> None:
        await broker.publish("ingestion", [{"id": 1}, {"id": 2}], {"source": "api"})
        dispatcher.start()
        await broker.join(timeout=2)
        assert store.get_stats().total_records == 2

    @pytest.mark.asyncio
    async def test_redelivered_batch_is_stored_once(
        self, broker: Broker, store: RecordStore, dispatcher: Dispatcher
    ) -> None:
        dispatcher.start()
        batch = [{"id": 1}, {"id": 2}]
        await broker.publish("ingestion", batch, {"source": "api"})
        await broker.publish("ingestion", batch, {"source": "api"})
        await broker.join(timeout=2)
        assert store.get_stats().total_records == 2

    def test_custom_routes(self, broker: Broker, store: RecordStore) -> None:
        d = Dispatcher(broker, store, routes={"external-queue": "queue"})
        assert d.resolve_source("external-queue") == "queue"
        assert d.resolve_source("api") == "unknown"
        assert d.resolve_source(None) == "unknown"

    @pytest.mark.asyncio
    async def test_start_twice_subscribes_once(self, broker: Broker) -> None:
        store = MagicMock(spec=RecordStore)
        store.store.return_value = StoreResult(count=1)
        d = Dispatcher(broker, store)
        d.start()
        d.start()

        await broker.publish("ingestion", [{"id": 1}], {"source": "api"})
        await broker.join(timeout=2)
        assert store.store.call_count == 1


class TestDispatcherFailures:
    """Store errors surface to the broker's retry path."""

    @pytest.mark.asyncio
    async def test_handle_reraises_store_errors(self, broker: Broker) -> None:
        failing_store = MagicMock(spec=RecordStore)
        failing_store.store.side_effect = RuntimeError("disk on fire")
        d = Dispatcher(broker, failing_store)
        message = Message(
            id="msg_x",
            topic="ingestion",
            body=[{"id": 1}],
            metadata={"source": "api", "correlation_id": "c-1"},
        )
        with pytest.raises(RuntimeError, match="disk on fire"):
            await d.handle(message)

    @pytest.mark.asyncio
    async def test_store_failure_retries_then_dead_letters(self, broker: Broker) -> None:
        failing_store = MagicMock(spec=RecordStore)
        failing_store.store.side_effect = RuntimeError("unavailable")
        d = Dispatcher(broker, failing_store)
        d.start()

        await broker.publish("ingestion", [{"id": 1}], {"source": "api"})
        await broker.join(timeout=2)

        assert failing_store.store.call_count == 3
        stats = broker.get_stats()
        assert stats.dead_letter_count == 1
        assert stats.queues["ingestion"] == 0

    @pytest.mark.asyncio
    async def test_store_recovers_after_transient_failure(self, broker: Broker) -> None:
        store = MagicMock(spec=RecordStore)
        store.store.side_effect = [RuntimeError("blip"), StoreResult(count=1)]
        d = Dispatcher(broker, store)
        d.start()

        await broker.publish("ingestion", [{"id": 1}], {"source": "csv"})
        await broker.join(timeout=2)

        assert store.store.call_count == 2
        store.store.assert_called_with([{"id": 1}], "csv")
        assert broker.get_stats().dead_letter_count == 0

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(
        self, broker: Broker, store: RecordStore, dispatcher: Dispatcher
    ) -> None:
        dispatcher.start()
        dispatcher.stop()
        await broker.publish("ingestion", [{"id": 1}], {"source": "api"})
        await broker.join(timeout=2)
        assert store.get_stats().total_records == 0
        assert broker.get_stats().queues["ingestion"] == 1
