"""API adapter: paginated fetch with retry, batch validation, publish."""

import asyncio
import logging
from typing import Any

import httpx
from pydantic import BaseModel

from ingestor.adapters.contract import Publisher
from ingestor.adapters.validation import validate_api_data
from ingestor.broker.topics import Sources, Topics
from ingestor.errors import IngestionError, TransientError, ValidationError
from ingestor.logging_config import with_correlation

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class ApiIngestionResult(BaseModel):
    count: int


def is_retryable(exc: Exception) -> bool:
    """Network errors, timeouts and 5xx responses are worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        return 500 <= exc.response.status_code < 600
    return isinstance(exc, httpx.TransportError)


class ApiClient:
    """HTTP client for paginated JSON list endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._client = client

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        return self._retry_delay * (2**attempt)

    async def fetch_with_retry(
        self,
        url: str,
        correlation_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET url and return decoded JSON. Up to max_retries extra attempts on retryable errors."""
        log = with_correlation(logger, correlation_id)
        total = self._max_retries + 1
        attempt = 0
        while True:
            log.debug("Fetching %s, attempt %d/%d", url, attempt + 1, total)
            try:
                return await self._get_json(url, params)
            except (httpx.HTTPError, ValueError) as e:
                if attempt < self._max_retries and is_retryable(e):
                    delay = self.backoff_delay(attempt)
                    log.warning(
                        "Retryable error fetching %s (attempt %d/%d), retrying in %.2fs: %s",
                        url,
                        attempt + 1,
                        total,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                log.error("Failed to fetch %s after %d attempts: %s", url, attempt + 1, e)
                if is_retryable(e):
                    raise TransientError(
                        f"Failed to fetch {url} after {attempt + 1} attempts: {e}",
                        correlation_id,
                    ) from e
                raise IngestionError(f"Failed to fetch {url}: {e}", correlation_id) from e

    async def _get_json(self, url: str, params: dict[str, Any] | None) -> Any:
        if self._client is not None:
            resp = await self._client.get(url, params=params, timeout=self._timeout)
            resp.raise_for_status()
            return resp.json()
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()

    async def fetch_all_pages(
        self,
        endpoint: str,
        page_param: str = "page",
        size_param: str = "limit",
        page_size: int = 100,
        correlation_id: str | None = None,
    ) -> list[Any]:
        """Walk pages from 1 until an empty, short or non-list page."""
        log = with_correlation(logger, correlation_id)
        url = f"{self._base_url}{endpoint}"
        log.info("Starting paginated fetch from %s", url)
        all_data: list[Any] = []
        page = 1
        while True:
            data = await self.fetch_with_retry(
                url, correlation_id, params={page_param: page, size_param: page_size}
            )
            if not isinstance(data, list) or not data:
                break
            all_data.extend(data)
            log.debug("Fetched page %d, got %d records", page, len(data))
            if len(data) < page_size:
                break
            page += 1
        log.info("Completed paginated fetch, retrieved %d records in total", len(all_data))
        return all_data


async def process_api_data(
    broker: Publisher,
    api_url: str,
    endpoint: str,
    correlation_id: str,
    *,
    client: ApiClient | None = None,
    topic: str = Topics.INGESTION,
    page_param: str = "page",
    size_param: str = "limit",
    page_size: int = 100,
) -> ApiIngestionResult:
    """Fetch every page, validate the whole batch, publish it under source 'api'."""
    log = with_correlation(logger, correlation_id)
    api_client = client or ApiClient(api_url)
    log.info("Starting API ingestion from %s%s", api_url, endpoint)
    try:
        data = await api_client.fetch_all_pages(
            endpoint, page_param, size_param, page_size, correlation_id
        )
        validation = validate_api_data(data)
        if not validation.valid:
            log.error("API data validation failed: %s", "; ".join(validation.errors))
            raise ValidationError(
                f"API data validation failed: {', '.join(validation.errors)}",
                correlation_id,
                errors=validation.errors,
            )
        await broker.publish(
            topic, data, {"source": Sources.API, "correlation_id": correlation_id}
        )
    except IngestionError as e:
        log.error("API ingestion failed: %s", e.message)
        raise
    log.info("Published %d records to queue for processing", len(data))
    return ApiIngestionResult(count=len(data))
