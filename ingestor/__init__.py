"""Multi-source ingestion: adapters publish record batches, a broker delivers them, an idempotent store keeps them."""

from ingestor.context import IngestionContext, SystemStats, build_context

__all__ = ["IngestionContext", "SystemStats", "build_context"]
