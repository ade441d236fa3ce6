"""Idempotent record store keyed by (source, record id)."""

from ingestor.store.record_store import RecordStore, StoreResult, StoreStats

__all__ = ["RecordStore", "StoreResult", "StoreStats"]
