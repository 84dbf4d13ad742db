"""HTTP client for the TuningSearch API.

Each logical call runs under the retry engine. Every attempt gets its own
deadline, is timed into the performance monitor, and has its failure mapped
onto the error taxonomy before the engine decides whether to try again.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar
from urllib.parse import urlsplit

import httpx

from tuningsearch_mcp.exceptions import (
    ApiKeyError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    TuningSearchError,
    ValidationError,
    create_error_from_response,
)
from tuningsearch_mcp.monitoring.metrics import track_api_request
from tuningsearch_mcp.monitoring.performance import PerformanceMonitor
from tuningsearch_mcp.search.base import (
    CrawlArgs,
    CrawlResponse,
    NewsArgs,
    NewsResponse,
    SearchArgs,
    SearchResponse,
)
from tuningsearch_mcp.search.reliability import RetryConfig, RetryEngine

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.tuningsearch.com/v1"
DEFAULT_TIMEOUT_MS = 30000
USER_AGENT = "TuningSearch-MCP-Server/1.0.0"
MALFORMED_RESPONSE_STATUS = 502

T = TypeVar("T")


def clean_params(params: Mapping[str, Any]) -> dict[str, Any]:
    """Drop None values and render booleans the way the API expects."""
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value
    return cleaned


def is_http_url(url: str) -> bool:
    """Check that ``url`` is an absolute http(s) URL with a host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class TuningSearchClient:
    """Async client for the search, news and crawl endpoints.

    Args:
        api_key: TuningSearch API key. Required.
        base_url: API base URL.
        timeout_ms: Deadline of a single attempt in milliseconds.
        retry_config: Retry policy for every call.
        retry_engine: Engine executing the policy.
        monitor: Performance monitor receiving one sample per attempt.
        http_client: Pre-built httpx client, mainly for tests. The caller
            keeps ownership of a client passed in.

    Raises:
        ApiKeyError: If ``api_key`` is empty.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
        retry_config: RetryConfig | None = None,
        retry_engine: RetryEngine | None = None,
        monitor: PerformanceMonitor | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ApiKeyError("TuningSearch API key is required")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms
        self.retry_config = retry_config or RetryConfig()
        self._retry = retry_engine or RetryEngine(self.retry_config)
        self._monitor = monitor
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_ms / 1000)

    def _get_headers(self) -> dict[str, str]:
        """Get HTTP headers for API requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def build_url(self, endpoint: str, params: Mapping[str, Any] | None = None) -> str:
        """Build the full request URL, dropping None parameters."""
        url = httpx.URL(f"{self.base_url}/{endpoint.lstrip('/')}")
        if params:
            url = url.copy_merge_params(clean_params(params))
        return str(url)

    # =========================================================================
    # Attempts
    # =========================================================================

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        """Decode a response body or raise the matching taxonomy error."""
        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            raise create_error_from_response(
                response.status_code,
                body if isinstance(body, dict) else None,
                response.headers,
                response.reason_phrase,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ServerError(
                "Invalid JSON response from TuningSearch API",
                status_code=MALFORMED_RESPONSE_STATUS,
            ) from e
        if not isinstance(data, dict):
            raise ServerError(
                "Unexpected response body from TuningSearch API",
                status_code=MALFORMED_RESPONSE_STATUS,
            )
        return data

    async def _attempt(
        self,
        operation: str,
        endpoint: str,
        params: Mapping[str, Any],
        parser: Callable[[dict[str, Any]], T],
    ) -> T:
        """Run one HTTP round-trip under its own deadline."""
        stop = self._monitor.start_operation(f"api.{operation}") if self._monitor else None
        success = False
        try:
            async with track_api_request(operation):
                try:
                    async with asyncio.timeout(self.timeout_ms / 1000):
                        response = await self._http.get(
                            self.build_url(endpoint),
                            params=clean_params(params),
                            headers=self._get_headers(),
                        )
                except (TimeoutError, httpx.TimeoutException) as e:
                    raise RequestTimeoutError(
                        f"Request timed out after {self.timeout_ms:g}ms"
                    ) from e
                except httpx.HTTPError as e:
                    raise NetworkError(f"Network error: {e}", cause=e) from e

                data = self._decode(response)
                try:
                    result = parser(data)
                except (KeyError, TypeError, ValueError) as e:
                    raise ServerError(
                        f"Malformed {operation} response from TuningSearch API: {e}",
                        status_code=MALFORMED_RESPONSE_STATUS,
                    ) from e
            success = True
            return result
        finally:
            if stop is not None:
                stop(success)

    async def _request(
        self,
        operation: str,
        endpoint: str,
        params: Mapping[str, Any],
        parser: Callable[[dict[str, Any]], T],
    ) -> T:
        """Run a logical call: attempts under the retry policy."""
        logger.debug(f"TuningSearch {operation} request: {self.build_url(endpoint, params)}")

        async def attempt() -> T:
            return await self._attempt(operation, endpoint, params, parser)

        return await self._retry.execute(
            attempt,
            self.retry_config,
            operation_name=f"tuningsearch.{operation}",
        )

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _validate_query(q: str | None, page: int | None) -> list[str]:
        problems = []
        if not q or not q.strip():
            problems.append("q: search query is required")
        if page is not None and page < 1:
            problems.append("page: must be a positive integer")
        return problems

    # =========================================================================
    # Public API
    # =========================================================================

    async def search(self, args: SearchArgs) -> SearchResponse:
        """Perform a web search.

        Args:
            args: Search arguments.

        Returns:
            Parsed SearchResponse.

        Raises:
            ValidationError: If the arguments are invalid.
            TuningSearchError: The last error once retries are exhausted.
        """
        problems = self._validate_query(args.q, args.page)
        if args.safe is not None and args.safe not in (0, 1, 2):
            problems.append("safe: must be 0, 1 or 2")
        if problems:
            raise ValidationError("Invalid search parameters", problems)
        return await self._request("search", "search", args.to_params(), SearchResponse.from_dict)

    async def search_news(self, args: NewsArgs) -> NewsResponse:
        """Perform a news search.

        Raises:
            ValidationError: If the arguments are invalid.
            TuningSearchError: The last error once retries are exhausted.
        """
        problems = self._validate_query(args.q, args.page)
        if problems:
            raise ValidationError("Invalid news search parameters", problems)
        return await self._request("news", "news", args.to_params(), NewsResponse.from_dict)

    async def crawl(self, args: CrawlArgs) -> CrawlResponse:
        """Crawl a single web page.

        Raises:
            ValidationError: If the URL is not an http(s) URL.
            TuningSearchError: The last error once retries are exhausted.
        """
        if not args.url or not is_http_url(args.url):
            raise ValidationError("Invalid crawl parameters", ["url: must be a valid http(s) URL"])
        return await self._request("crawl", "crawl", args.to_params(), CrawlResponse.from_dict)

    async def test_connection(self) -> bool:
        """Check that the API answers with a small search."""
        try:
            await self.search(SearchArgs(q="test"))
        except TuningSearchError as e:
            logger.warning(f"TuningSearch connection test failed: {e.code.value}: {e.message}")
            return False
        return True

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "TuningSearchClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        """Return string representation."""
        return f"TuningSearchClient(base_url={self.base_url!r}, timeout_ms={self.timeout_ms!r})"
