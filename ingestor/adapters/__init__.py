"""Source adapters: normalize input into a record batch and publish it on the ingestion topic."""

from ingestor.adapters.api import ApiClient, ApiIngestionResult, process_api_data
from ingestor.adapters.contract import Publisher
from ingestor.adapters.csv_file import CsvIngestionResult, parse_csv_bytes, process_csv_file
from ingestor.adapters.queue import (
    QueueIngestionResult,
    process_queue_event,
    process_queue_message,
    unwrap_queue_event,
)
from ingestor.adapters.validation import (
    ValidationResult,
    numeric_id_validator,
    validate_api_data,
    validate_csv_row,
)

__all__ = [
    "ApiClient",
    "ApiIngestionResult",
    "CsvIngestionResult",
    "Publisher",
    "QueueIngestionResult",
    "ValidationResult",
    "numeric_id_validator",
    "parse_csv_bytes",
    "process_api_data",
    "process_csv_file",
    "process_queue_event",
    "process_queue_message",
    "unwrap_queue_event",
    "validate_api_data",
    "validate_csv_row",
]
