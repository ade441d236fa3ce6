"""Idempotency keys and intra-batch duplicate detection."""

import hashlib
import json
from typing import Any


def idempotency_key(record: dict[str, Any]) -> str:
    """The record's id as a string, or an md5 of its canonical JSON when it has none."""
    record_id = record.get("id")
    if record_id is not None and record_id != "":
        return str(record_id)
    canonical = json.dumps(record, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def find_duplicates(records: list[dict[str, Any]]) -> list[tuple[dict[str, Any], str]]:
    """Return (record, key) for every record whose key already appeared earlier in the batch."""
    seen: set[str] = set()
    duplicates: list[tuple[dict[str, Any], str]] = []
    for record in records:
        key = idempotency_key(record)
        if key in seen:
            duplicates.append((record, key))
        else:
            seen.add(key)
    return duplicates
