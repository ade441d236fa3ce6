"""Well-known broker topics and the source tags published on them."""


class Topics:
    """Topics with a guaranteed consumer."""

    # All adapters publish here; the Dispatcher is the single consumer
    INGESTION = "ingestion"


class Sources:
    """Source tags carried in message metadata."""

    API = "api"
    CSV = "csv"
    EXTERNAL_QUEUE = "external-queue"

    # Fallback tag for messages with an absent or unrecognized source
    UNKNOWN = "unknown"


# Metadata contract for messages on Topics.INGESTION (documentation only)
INGESTION_METADATA = {
    "source": "str",
    "correlation_id": "str",
    "timestamp": "str (set by broker)",
    "file_name": "str | None (csv only)",
}
