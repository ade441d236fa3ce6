"""CSV adapter: size limit, parse with numeric coercion, per-row validation, publish."""

import csv
import io
import logging
import re
from typing import Any

from pydantic import BaseModel

from ingestor.adapters.contract import Publisher
from ingestor.adapters.validation import RowValidator, validate_csv_row
from ingestor.broker.topics import Sources, Topics
from ingestor.errors import CapacityError, IngestionError, ValidationError
from ingestor.idempotency import find_duplicates
from ingestor.logging_config import with_correlation

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 10 * 1024 * 1024

_PROGRESS_EVERY = 1000
_INVALID_SAMPLE = 3


class CsvIngestionResult(BaseModel):
    valid_count: int
    invalid_count: int
    total_count: int


_INT_TEXT = re.compile(r"[+-]?[0-9]+")
_FLOAT_TEXT = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def coerce_value(value: Any) -> Any:
    """'10' → 10, '2.5' → 2.5; anything else (blank included) unchanged.

    Only plain ASCII decimal text is numeric: '1_000' and non-ASCII digits stay strings.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if _INT_TEXT.fullmatch(text):
        return int(text)
    if not _FLOAT_TEXT.fullmatch(text):
        return value
    number = float(text)
    # '1e999' overflows to inf, which is not numeric data
    if number in (float("inf"), float("-inf")):
        return value
    return number


def parse_csv_bytes(data: bytes, correlation_id: str | None = None) -> list[dict[str, Any]]:
    """Parse a header-first CSV into dict rows with per-cell numeric coercion."""
    log = with_correlation(logger, correlation_id)
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        log.error("Error parsing CSV: %s", e)
        raise ValidationError(f"CSV is not valid UTF-8: {e}", correlation_id) from e

    rows: list[dict[str, Any]] = []
    try:
        reader = csv.DictReader(io.StringIO(text, newline=""))
        for row in reader:
            # Extra cells beyond the header land under the None key
            rows.append(
                {k: coerce_value(v) for k, v in row.items() if k is not None}
            )
            if len(rows) % _PROGRESS_EVERY == 0:
                log.debug("Parsed %d CSV rows", len(rows))
    except csv.Error as e:
        log.error("Error parsing CSV: %s", e)
        raise ValidationError(f"Malformed CSV: {e}", correlation_id) from e
    log.info("Finished parsing CSV, %d rows processed", len(rows))
    return rows


async def process_csv_file(
    broker: Publisher,
    data: bytes,
    file_name: str,
    correlation_id: str,
    *,
    validator: RowValidator = validate_csv_row,
    max_bytes: int = MAX_FILE_BYTES,
    topic: str = Topics.INGESTION,
) -> CsvIngestionResult:
    """Validate a CSV upload row by row and publish the valid rows as one batch.

    Oversized input raises CapacityError before parsing, so the broker is never
    touched. Invalid rows are filtered; if none remain, ValidationError.
    """
    log = with_correlation(logger, correlation_id)
    log.info("Processing CSV file: %s", file_name)
    try:
        if len(data) > max_bytes:
            size_mb = len(data) / (1024 * 1024)
            limit_mb = max_bytes / (1024 * 1024)
            log.error("File size exceeds limit: %.2fMB > %.2fMB", size_mb, limit_mb)
            raise CapacityError(
                f"File size exceeds the limit of {limit_mb:g}MB", correlation_id
            )

        rows = parse_csv_bytes(data, correlation_id)
        valid: list[dict[str, Any]] = []
        invalid: list[tuple[dict[str, Any], list[str]]] = []
        for row in rows:
            result = validator(row)
            if result.valid:
                valid.append(row)
            else:
                invalid.append((row, result.errors))

        if invalid:
            log.warning(
                "Found %d invalid records in CSV (of %d), sample: %s",
                len(invalid),
                len(rows),
                invalid[:_INVALID_SAMPLE],
            )
        if not valid:
            log.error("No valid records found in CSV file")
            raise ValidationError(
                "No valid records found in CSV file",
                correlation_id,
                errors=[err for _, errs in invalid for err in errs],
            )

        duplicates = find_duplicates(valid)
        if duplicates:
            log.warning(
                "CSV %s repeats %d ids within the file; the store keeps the first",
                file_name,
                len(duplicates),
            )

        await broker.publish(
            topic,
            valid,
            {
                "source": Sources.CSV,
                "file_name": file_name,
                "correlation_id": correlation_id,
            },
        )
    except IngestionError as e:
        log.error("CSV processing failed for %s: %s", file_name, e.message)
        raise

    log.info("Published %d records to queue for processing", len(valid))
    return CsvIngestionResult(
        valid_count=len(valid),
        invalid_count=len(invalid),
        total_count=len(rows),
    )
