"""End-to-end tests through IngestionContext: adapters → broker → dispatcher → store."""

import logging

import pytest

from ingestor.adapters import (
    Publisher,
    numeric_id_validator,
    process_api_data,
    process_csv_file,
    process_queue_message,
)
from ingestor.context import IngestionContext, build_context
from ingestor.errors import CapacityError
from ingestor.settings import get_default_settings


@pytest.fixture
async def ctx() -> IngestionContext:
    settings = get_default_settings()
    settings["broker"]["retry_delay"] = 0.0
    context = build_context(settings)
    await context.start()
    yield context
    await context.stop()


class TestIngestionContextStats:
    """Observability surface."""

    @pytest.mark.asyncio
    async def test_initial_stats(self, ctx: IngestionContext) -> None:
        stats = ctx.get_stats()
        assert stats.datastore.total_records == 0
        assert stats.queues.queues == {"ingestion": 0}
        assert stats.queues.dead_letter_count == 0

    @pytest.mark.asyncio
    async def test_stats_serialize(self, ctx: IngestionContext) -> None:
        dumped = ctx.get_stats().model_dump()
        assert set(dumped) == {"datastore", "queues"}
        assert set(dumped["datastore"]) == {"total_records", "unique_ids", "source_breakdown"}

    @pytest.mark.asyncio
    async def test_broker_satisfies_publisher_contract(self, ctx: IngestionContext) -> None:
        assert isinstance(ctx.broker, Publisher)

    def test_build_context_uses_settings(self) -> None:
        settings = get_default_settings()
        settings["ingestion"]["topic"] = "records"
        settings["broker"]["max_attempts"] = 5
        context = build_context(settings)
        assert context.topic == "records"
        assert context.broker.max_attempts == 5


class TestEndToEnd:
    """All three sources land in the store, once."""

    @pytest.mark.asyncio
    async def test_csv_end_to_end(self, ctx: IngestionContext) -> None:
        data = b"id,name,value\n1,Item 1,10\n2,Item 2,20\nX,Bad Item,invalid"
        result = await process_csv_file(
            ctx.broker, data, "test.csv", "corr-csv", validator=numeric_id_validator
        )
        await ctx.broker.join(timeout=2)

        assert result.valid_count == 2
        stats = ctx.get_stats()
        assert stats.datastore.total_records == 2
        assert stats.datastore.source_breakdown == {"csv": 2}
        assert stats.queues.queues["ingestion"] == 0

    @pytest.mark.asyncio
    async def test_oversized_csv_never_reaches_broker(self, ctx: IngestionContext) -> None:
        with pytest.raises(CapacityError):
            await process_csv_file(ctx.broker, bytes(10 * 1024 * 1024 + 1), "big.csv", "c-big")
        assert ctx.broker.pending("ingestion") == []
        assert ctx.get_stats().datastore.total_records == 0

    @pytest.mark.asyncio
    async def test_all_sources(self, ctx: IngestionContext, httpx_mock) -> None:
        httpx_mock.add_response(
            url="http://api.test/items?page=1&limit=100",
            json=[{"id": 1, "name": "a"}, {"id": 2, "name": "b"}],
        )
        client = ctx.api_client("http://api.test")
        await process_api_data(ctx.broker, "http://api.test", "/items", "corr-api", client=client)
        await process_csv_file(ctx.broker, b"id,name\n1,a\n3,c", "f.csv", "corr-csv")
        await process_queue_message(ctx.broker, [{"id": 1}, {"id": 1}], "corr-q")
        # At-least-once: the same queue payload arriving again changes nothing
        await process_queue_message(ctx.broker, [{"id": 1}], "corr-q2")
        await ctx.broker.join(timeout=2)

        stats = ctx.get_stats()
        assert stats.datastore.source_breakdown == {"api": 2, "csv": 2, "external-queue": 1}
        assert stats.datastore.total_records == 5

    @pytest.mark.asyncio
    async def test_correlation_id_threads_to_dispatcher_logs(
        self, ctx: IngestionContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger="ingestor")
        await process_queue_message(ctx.broker, {"id": 9}, "trace-me")
        await ctx.broker.join(timeout=2)

        dispatcher_records = [r for r in caplog.records if r.name == "ingestor.dispatcher"]
        assert dispatcher_records
        assert all(getattr(r, "correlation_id", None) == "trace-me" for r in dispatcher_records)

    @pytest.mark.asyncio
    async def test_unknown_source_is_stored_and_counted(self, ctx: IngestionContext) -> None:
        await ctx.broker.publish("ingestion", [{"id": 1}], {"correlation_id": "c-x"})
        await ctx.broker.join(timeout=2)
        assert ctx.get_stats().datastore.source_breakdown == {"unknown": 1}
