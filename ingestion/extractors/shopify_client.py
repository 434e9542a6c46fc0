"""
Shopify Admin API client with retry logic.

Provides:
- GraphQL requests for bulk operation submit and status
- Streaming download of bulk result files
- REST requests with Link header pagination
- Exponential backoff for timeouts, network errors, 429 and 5xx responses
"""

import asyncio
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import parse_qs, urlsplit

import httpx

from core.config import settings
from core.exceptions import ApiError, UnexpectedResponseError
from ingestion.extractors.transport import BulkTransport, PagedResponse
from schemas.bulk import BulkOperation, build_run_query_mutation, build_status_query
import logging

logger = logging.getLogger(__name__)

API_NAME = "Shopify"


class ShopifyClient(BulkTransport):
    """
    Async client for one shop, used as a context manager:

        async with ShopifyClient("example-store", token) as client:
            operation = await client.submit_bulk_query(query)

    Attributes:
        max_retries: Maximum number of attempts per request (default: settings.MAX_RETRIES)
        retry_delay: Initial retry delay in seconds (default: settings.RETRY_DELAY)
        timeout: Request timeout in seconds (default: settings.HTTP_TIMEOUT)
    """

    def __init__(
        self,
        shop_name: str,
        access_token: str,
        api_version: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.shop_name = shop_name
        self.access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.retry_delay = settings.RETRY_DELAY if retry_delay is None else retry_delay
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_name}.myshopify.com"

    @property
    def graphql_url(self) -> str:
        return f"{self.base_url}/admin/api/{self.api_version}/graphql.json"

    def rest_url(self, path: str) -> str:
        if path.startswith("/"):
            return f"{self.base_url}{path}"
        return f"{self.base_url}/admin/api/{self.api_version}/{path}"

    async def __aenter__(self) -> "ShopifyClient":
        self._client = httpx.AsyncClient(
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ApiError("Shopify client used outside of its context")
        return self._client

    async def _make_request_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Raises:
            ApiError: For rejected requests, or retryable failures after max retries
        """
        for attempt in range(self.max_retries):
            last_attempt = attempt >= self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)
            context = {"url": url, "method": method, "retry_count": attempt + 1}

            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")
                response = await self.client.request(method, url, params=params, json=json)
            except httpx.TimeoutException as e:
                if last_attempt:
                    raise ApiError(
                        f"Request timeout after {self.max_retries} retries",
                        context={**context, "timeout": self.timeout},
                        original_exception=e
                    )
                logger.warning(f"Request timeout. Retrying in {delay} seconds")
                await asyncio.sleep(delay)
                continue
            except httpx.TransportError as e:
                if last_attempt:
                    raise ApiError(
                        f"Network error after {self.max_retries} retries",
                        context=context,
                        original_exception=e
                    )
                logger.warning(f"Network error. Retrying in {delay} seconds")
                await asyncio.sleep(delay)
                continue

            status = response.status_code
            if status in (401, 403):
                raise ApiError(
                    f"Authentication failed for {self.shop_name}",
                    data=_safe_body(response),
                    context={**context, "status_code": status}
                )

            if status == 429:
                retry_after = _retry_after(response, delay)
                if last_attempt:
                    raise ApiError(
                        f"Rate limit exceeded for {url}",
                        data=_safe_body(response),
                        context={**context, "status_code": status, "retry_after": retry_after}
                    )
                logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                await asyncio.sleep(retry_after)
                continue

            if status >= 500:
                if last_attempt:
                    raise ApiError(
                        f"Server error after {self.max_retries} retries",
                        data=_safe_body(response),
                        context={**context, "status_code": status, "response_body": response.text[:500]}
                    )
                logger.warning(
                    f"Server error {status}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
                continue

            if status >= 400:
                raise ApiError(
                    f"Request to {url} was rejected with status {status}",
                    data=_safe_body(response),
                    context={**context, "status_code": status}
                )

            return response

        raise ApiError("Max retries exceeded", context={"url": url})

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UnexpectedResponseError(
                API_NAME,
                "Response body was not valid JSON",
                context={"url": str(response.request.url), "body": response.text[:200]},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # GraphQL
    # ------------------------------------------------------------------

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        response = await self._make_request_with_retry("POST", self.graphql_url, json=payload)
        body = self._decode(response)
        if not isinstance(body, dict):
            raise UnexpectedResponseError(API_NAME, "GraphQL response was not an object")
        return body

    async def submit_bulk_query(self, query: str) -> BulkOperation:
        body = await self.graphql(build_run_query_mutation(query))
        operation = BulkOperation.from_response(body)
        logger.info(f"Submitted bulk operation {operation.id} ({operation.status})")
        return operation

    async def poll_bulk_job(self, operation_id: str) -> BulkOperation:
        body = await self.graphql(build_status_query(operation_id))
        return BulkOperation.from_response(body)

    async def download_bulk_result(self, url: str) -> AsyncIterator[str]:
        # Result URLs are signed storage links and take no auth header
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as downloader:
                async with downloader.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise ApiError(
                            f"Bulk result download failed with status {response.status_code}",
                            context={"status_code": response.status_code}
                        )
                    async for line in response.aiter_lines():
                        if line.strip():
                            yield line
        except httpx.HTTPError as e:
            raise ApiError(
                "Bulk result download failed",
                context={"error": type(e).__name__},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None
    ) -> PagedResponse:
        response = await self._make_request_with_retry(method, self.rest_url(path), params=params)
        return PagedResponse(data=self._decode(response), next_page_info=_next_page_info(response))


def _safe_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


def _retry_after(response: httpx.Response, default: float) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except ValueError:
        return default


def _next_page_info(response: httpx.Response) -> Optional[str]:
    next_link = response.links.get("next", {}).get("url")
    if not next_link:
        return None
    values = parse_qs(urlsplit(next_link).query).get("page_info")
    return values[0] if values else None
