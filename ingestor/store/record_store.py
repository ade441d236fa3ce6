"""In-memory record store with idempotent writes per (source, id)."""

import logging
import threading
from collections import Counter
from typing import Any, Iterable

from pydantic import BaseModel, Field

from ingestor.broker.models import utc_now

logger = logging.getLogger(__name__)


class StoreResult(BaseModel):
    """Outcome of one store() call."""

    count: int


class StoreStats(BaseModel):
    """Aggregate store statistics."""

    total_records: int = 0
    unique_ids: int = 0
    source_breakdown: dict[str, int] = Field(default_factory=dict)


def record_identity(record: Any) -> Any | None:
    """Return the record's id, or None when it has no usable identity."""
    if not isinstance(record, dict):
        return None
    record_id = record.get("id")
    if record_id is None or record_id == "":
        return None
    return record_id


def composite_key(source: str, record_id: Any) -> str:
    return f"{source}:{record_id}"


class RecordStore:
    """Append-only store. Re-ingesting a seen source:id is a no-op, never an overwrite."""

    def __init__(self) -> None:
        self._records: list[dict[str, Any]] = []
        self._seen: set[str] = set()
        self._sources: Counter[str] = Counter()
        # Guards the seen-set check-and-insert together with the append
        self._lock = threading.Lock()

    def store(self, records: Iterable[Any], source: str) -> StoreResult:
        """Persist new records under source. Returns how many were newly stored.

        Records without an id are dropped with a warning; duplicates are
        dropped silently (debug). Never raises for bad or duplicate input.
        """
        stored = 0
        with self._lock:
            for record in records:
                record_id = record_identity(record)
                if record_id is None:
                    logger.warning("Record missing id from %s, dropped: %r", source, record)
                    continue
                key = composite_key(source, record_id)
                if key in self._seen:
                    logger.debug("Skipping duplicate record %s", key)
                    continue
                self._seen.add(key)
                self._records.append({**record, "_source": source, "_ingested_at": utc_now()})
                self._sources[source] += 1
                stored += 1
            total = len(self._records)
        logger.info("Stored %d records from %s (total %d)", stored, source, total)
        return StoreResult(count=stored)

    def get_stats(self) -> StoreStats:
        with self._lock:
            return StoreStats(
                total_records=len(self._records),
                unique_ids=len(self._seen),
                source_breakdown=dict(self._sources),
            )

    def all_records(self) -> list[dict[str, Any]]:
        """Copies of every stored entry, in ingestion order."""
        with self._lock:
            return [dict(r) for r in self._records]

    def clear(self) -> None:
        """Reset all state. Test isolation only."""
        with self._lock:
            self._records.clear()
            self._seen.clear()
            self._sources.clear()
        logger.info("Record store cleared")
