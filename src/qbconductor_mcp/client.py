"""Conductor API client with response caching and cursor pagination.

This module provides the ConductorClient class, the only component that
issues network calls. Each instance is bound to one end-user, whose ID is
sent as a routing header and partitions the shared response cache.
"""

import logging
from typing import Any

import httpx

from qbconductor_mcp.cache import Cache
from qbconductor_mcp.config import Settings
from qbconductor_mcp.exceptions import ConductorError, ErrorKind, translate_error
from qbconductor_mcp.models import Page
from qbconductor_mcp.retry import retry_with_backoff

logger = logging.getLogger(__name__)

END_USER_HEADER = "Conductor-End-User-Id"


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any]:
    """Drop unset values and render booleans the way the API expects."""
    cleaned: dict[str, Any] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value
    return cleaned


class ConductorClient:
    """Async HTTP client for the Conductor API.

    This client handles:
    - Bearer authentication and end-user routing headers
    - Caching of GET responses per end-user
    - Invalidation of the end-user's cached reads after any mutation
    - Draining cursor-paginated list endpoints
    - Translating failures into ConductorError
    """

    RETRY_BASE_DELAY = 1.0  # seconds

    def __init__(
        self,
        settings: Settings,
        cache: Cache,
        end_user_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Runtime settings (credentials, base URL, timeout).
            cache: Shared response cache.
            end_user_id: End-user to act on; defaults to the configured one.
            transport: Optional httpx transport (used by tests).
        """
        self.settings = settings
        self.cache = cache
        self._end_user_id = end_user_id or settings.default_end_user_id
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._closed = False

    def get_end_user_id(self) -> str:
        """Get the end-user this client acts on."""
        return self._end_user_id

    def set_end_user_id(self, end_user_id: str) -> None:
        """Rebind the client to another end-user.

        Must not be called while requests from this instance are in flight.
        """
        self._end_user_id = end_user_id
        if self._http_client is not None:
            self._http_client.headers[END_USER_HEADER] = end_user_id

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Returns:
            Configured AsyncClient instance.

        Raises:
            RuntimeError: If the client was closed.
        """
        if self._closed:
            raise RuntimeError("ConductorClient is closed")
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.settings.api_base_url.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {self.settings.secret_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    END_USER_HEADER: self._end_user_id,
                },
                timeout=self.settings.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client. The instance cannot be used afterwards."""
        self._closed = True
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "ConductorClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request and raise a translated error on failure.

        Args:
            method: HTTP method.
            endpoint: Path relative to the API base URL.
            **kwargs: Extra arguments for httpx (params, json).

        Raises:
            ConductorError: On any transport or HTTP error.
        """
        client = self._get_client()
        logger.debug(
            f"API Request: {method} {endpoint} "
            f"(end_user_id={self._end_user_id}, params={kwargs.get('params')})"
        )

        try:
            response = await client.request(method, endpoint, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            logger.error(
                f"API Error: {status} {method} {endpoint} "
                f"(end_user_id={self._end_user_id}): {e}"
            )
            translate_error(e)

        logger.debug(f"API Response: {response.status_code} {method} {endpoint}")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ConductorError(
                ErrorKind.GENERIC,
                "Upstream returned a response that is not valid JSON",
                status_code=response.status_code,
            ) from e

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        use_cache: bool = True,
    ) -> Any:
        """GET an endpoint, serving from the cache when possible.

        List endpoints answer ``{data, hasMore, nextCursor}``; item endpoints
        answer a single record. The parsed body is returned either way and
        only successful responses are cached.

        Args:
            endpoint: Path relative to the API base URL.
            params: Query parameters; None values are dropped.
            use_cache: Read from and write to the cache.

        Returns:
            Parsed JSON body.

        Raises:
            ConductorError: On API errors.
        """
        query = _clean_params(params)
        cache_key = self.cache.generate_key(endpoint, query, self._end_user_id)

        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        async def fetch() -> Any:
            response = await self._request("GET", endpoint, params=query)
            return self._json(response)

        if self.settings.max_retries > 0:
            result = await retry_with_backoff(
                fetch,
                max_retries=self.settings.max_retries,
                base_delay=self.RETRY_BASE_DELAY,
            )
        else:
            result = await fetch()

        if use_cache and result is not None:
            self.cache.set(cache_key, result)

        return result

    async def get_page(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        use_cache: bool = True,
    ) -> Page:
        """GET a list endpoint and parse it into a Page."""
        body = await self.get(endpoint, params, use_cache)
        if not isinstance(body, dict):
            raise ConductorError(
                ErrorKind.GENERIC,
                f"Unexpected list response from {endpoint}",
                details=body,
            )
        return Page.from_dict(body)

    async def post(
        self,
        endpoint: str,
        data: dict[str, Any] | None = None,
        invalidate_cache: bool = True,
    ) -> Any:
        """POST a JSON body. Used for creates and for updates to item paths.

        Args:
            endpoint: Path relative to the API base URL.
            data: Request body.
            invalidate_cache: Drop this end-user's cached reads on success.

        Returns:
            Parsed JSON body.

        Raises:
            ConductorError: On API errors.
        """
        response = await self._request("POST", endpoint, json=data or {})

        if invalidate_cache:
            self.cache.invalidate_end_user(self._end_user_id)

        return self._json(response)

    async def delete(
        self,
        endpoint: str,
        invalidate_cache: bool = True,
    ) -> None:
        """DELETE a resource.

        Raises:
            ConductorError: NOT_FOUND if the resource does not exist, or
                any other translated API error.
        """
        try:
            await self._request("DELETE", endpoint)
        except ConductorError as e:
            if e.kind is ErrorKind.NOT_FOUND:
                raise ConductorError(
                    ErrorKind.NOT_FOUND,
                    "Resource not found",
                    status_code=e.status_code,
                    code=e.code,
                    details=e.details,
                ) from e
            raise

        if invalidate_cache:
            self.cache.invalidate_end_user(self._end_user_id)

    async def get_all_pages(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        use_cache: bool = True,
        max_pages: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch all records from a list endpoint by following cursors.

        Stops when the upstream reports no more data, when it reports more
        data without a cursor (logged as an anomaly), or after ``max_pages``
        pages if a cap is given.

        Args:
            endpoint: List endpoint path.
            params: Query parameters for every page.
            use_cache: Use the cache for each page.
            max_pages: Optional upper bound on pages fetched.

        Returns:
            Records from all pages, in upstream order.
        """
        all_results: list[dict[str, Any]] = []
        cursor: str | None = None
        pages = 0

        while True:
            request_params = dict(params or {})
            if cursor:
                request_params["cursor"] = cursor

            page = await self.get_page(endpoint, request_params, use_cache)
            all_results.extend(page.data)
            pages += 1

            if not page.has_more:
                break

            if not page.next_cursor:
                logger.warning(
                    f"API indicates more data available for {endpoint} but no cursor provided"
                )
                break

            if max_pages is not None and pages >= max_pages:
                logger.warning(f"Stopped paginating {endpoint} after {pages} pages")
                break

            cursor = page.next_cursor

        logger.info(f"Retrieved {len(all_results)} total records from {endpoint}")
        return all_results
