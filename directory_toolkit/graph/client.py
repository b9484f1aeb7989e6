"""
Async Graph API client with pagination, throttling, retry, and change-guard enforcement.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
    BATCH_SIZE,
    MAX_CONCURRENT_REQUESTS,
)
from ..safety.guardian import ChangeGuardian, SafetyViolation

logger = logging.getLogger("directory_toolkit.graph")

RETRYABLE_STATUS = (429, 503, 504)


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        self.message = message
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")


def directory_object_ref(object_id: str) -> dict:
    """Body for the $ref endpoints that link one directory object to another."""
    return {"@odata.id": f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}/directoryObjects/{object_id}"}


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Guardian-validated requests (writes gated by apply mode)
      - Automatic pagination with @odata.nextLink
      - Exponential backoff on 429/503/504
      - Concurrent request semaphore
      - Streaming generators for large result sets
    """

    def __init__(
        self,
        access_token: str,
        guardian: ChangeGuardian,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_pages: int = MAX_PAGES_PER_ENDPOINT,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self.max_pages = max_pages
        self.initial_backoff = initial_backoff
        self._transport = transport
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REQUESTS)
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=MAX_CONCURRENT_REQUESTS * 2,
                max_keepalive_connections=MAX_CONCURRENT_REQUESTS,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "ConsistencyLevel": "eventual",  # Required for $count, $search, ne
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        """Build full Graph URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        endpoint = endpoint.lstrip("/")
        return f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}/{endpoint}"

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Execute a single GET request with retry/throttle handling."""
        url = self._build_url(endpoint)
        self.guardian.validate_request("GET", url)

        async with self._semaphore:
            return await self._execute_with_retry("GET", url, params=params)

    async def post(self, endpoint: str, json_body: dict) -> dict:
        """Execute a guarded POST. Non-success responses raise GraphAPIError."""
        url = self._build_url(endpoint)
        self.guardian.validate_request("POST", url, json_body)

        async with self._semaphore:
            return await self._execute_with_retry("POST", url, json_body=json_body, strict=True)

    async def put(self, endpoint: str, json_body: dict) -> dict:
        """Execute a guarded PUT. Non-success responses raise GraphAPIError."""
        url = self._build_url(endpoint)
        self.guardian.validate_request("PUT", url, json_body)

        async with self._semaphore:
            return await self._execute_with_retry("PUT", url, json_body=json_body, strict=True)

    async def get_all_pages(self, endpoint: str, params: Optional[dict] = None) -> list[dict]:
        """
        Fetch all pages of a paginated endpoint into a list.
        Use get_all_pages_stream() for very large datasets.
        """
        items = []
        async for item in self.get_all_pages_stream(endpoint, params):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> AsyncGenerator[dict, None]:
        """Stream all pages of a paginated endpoint as an async generator."""
        params = dict(params or {})
        params.setdefault("$top", str(DEFAULT_PAGE_SIZE))

        url = self._build_url(endpoint)
        pages = 0

        while url and pages < self.max_pages:
            self.guardian.validate_request("GET", url)

            async with self._semaphore:
                data = await self._execute_with_retry("GET", url, params=params)

            if data.get("_forbidden"):
                raise GraphAPIError(
                    403,
                    data.get("_error_message", "Forbidden — missing API permission"),
                    url,
                )

            for item in data.get("value", []):
                yield item

            # nextLink carries every query parameter
            url = data.get("@odata.nextLink")
            params = None
            pages += 1

        if url and pages >= self.max_pages:
            logger.warning(
                f"Pagination safety cap reached ({self.max_pages} pages) "
                f"for endpoint: {endpoint}"
            )

    async def batch_get(self, endpoints: list[str]) -> list[dict]:
        """
        Execute multiple GET requests as a Graph $batch.
        Splits into chunks of BATCH_SIZE (max 20). Results keep input order.
        Throttled sub-requests (429/503/504) are re-sent with the same
        backoff as single requests.
        """
        batch_url = f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}/$batch"
        results: list[dict] = [{} for _ in endpoints]
        pending = list(range(len(endpoints)))
        backoff = self.initial_backoff

        for attempt in range(MAX_RETRIES + 1):
            throttled: list[int] = []
            wait_time = backoff

            for i in range(0, len(pending), BATCH_SIZE):
                chunk = pending[i:i + BATCH_SIZE]
                batch_body = {
                    "requests": [
                        {
                            "id": str(pos),
                            "method": "GET",
                            "url": endpoints[pos] if endpoints[pos].startswith("/") else f"/{endpoints[pos]}",
                        }
                        for pos in chunk
                    ]
                }
                self.guardian.validate_request("POST", batch_url, batch_body)

                async with self._semaphore:
                    data = await self._execute_with_retry(
                        "POST", batch_url, json_body=batch_body
                    )

                by_id = {resp.get("id"): resp for resp in data.get("responses", [])}
                for pos in chunk:
                    resp = by_id.get(str(pos), {})
                    status = resp.get("status")
                    if status == 200:
                        results[pos] = resp.get("body") or {}
                        continue
                    if status in RETRYABLE_STATUS and attempt < MAX_RETRIES:
                        throttled.append(pos)
                        wait_time = max(wait_time, _retry_after(resp.get("headers") or {}, backoff))
                        continue
                    msg = (resp.get("body") or {}).get("error", {}).get("message", "Unknown")
                    if status in (403, 404):
                        logger.debug(f"Batch sub-request {pos} returned {status}: {msg}")
                    else:
                        logger.warning(f"Batch sub-request {pos} failed: {status} — {msg}")
                    results[pos] = {"_error": True, "status": status, "_error_message": msg}

            if not throttled:
                break
            self._throttle_count += 1
            logger.warning(
                f"{len(throttled)} batch sub-requests throttled. "
                f"Retry {attempt + 1}/{MAX_RETRIES} in {wait_time:.1f}s"
            )
            await asyncio.sleep(wait_time)
            backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
            pending = throttled

        return results

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        strict: bool = False,
    ) -> dict:
        """
        Execute request with exponential backoff on throttling.
        With strict=True every non-2xx response raises GraphAPIError.
        """
        backoff = self.initial_backoff

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body
                )
                self._request_count += 1

                if response.status_code in (200, 201):
                    if not response.content or not response.content.strip():
                        return {"value": []}
                    try:
                        return response.json()
                    except ValueError:
                        logger.debug(f"{response.status_code} response with non-JSON body from {url}")
                        return {"value": []}

                if response.status_code == 204:
                    return {}

                if response.status_code in RETRYABLE_STATUS and attempt < MAX_RETRIES:
                    self._throttle_count += 1
                    wait_time = max(_retry_after(response.headers, backoff), backoff)
                    logger.warning(
                        f"Throttled ({response.status_code}) on {url}. "
                        f"Retry {attempt + 1}/{MAX_RETRIES} in {wait_time:.1f}s"
                    )
                    await asyncio.sleep(wait_time)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                    continue

                error_msg = _error_message(response)

                if not strict and response.status_code == 404:
                    logger.debug(f"404 Not Found: {url}")
                    return {"value": [], "_not_found": True}

                if not strict and response.status_code == 403:
                    logger.warning(f"403 Forbidden: {url} — {error_msg}")
                    return {"value": [], "_forbidden": True, "_error_message": error_msg}

                raise GraphAPIError(response.status_code, error_msg, url)

            except httpx.TimeoutException as e:
                logger.warning(f"Timeout on {url}, attempt {attempt + 1}/{MAX_RETRIES}")
                if attempt == MAX_RETRIES:
                    raise GraphAPIError(0, f"Request timed out: {e}", url) from e
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

            except httpx.TransportError as e:
                logger.warning(f"Connection error on {url}: {e}")
                if attempt == MAX_RETRIES:
                    raise GraphAPIError(0, f"Connection failed: {e}", url) from e
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        raise GraphAPIError(0, "Maximum retries exceeded", url)

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params)
        elif method == "POST":
            return await self._client.post(url, json=json_body, params=params)
        elif method == "PUT":
            return await self._client.put(url, json=json_body, params=params)
        else:
            raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict[str, Any]:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


def _retry_after(headers, default: float) -> float:
    try:
        return float(headers.get("Retry-After", default))
    except ValueError:
        return default


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    if not isinstance(body, dict):
        return response.text[:200]
    return body.get("error", {}).get("message", response.text[:200])
