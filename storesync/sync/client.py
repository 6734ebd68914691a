"""
Platform Client - Shopify Admin REST API

Fetches one page of raw records per call using cursor pagination (the
``rel="next"`` URL of the ``Link`` response header).

Failure classification:
- Missing credential, 401, 403 -> AuthError (never retried)
- Network error, timeout, 429, 5xx -> TransientFetchError (retried with backoff)
- Other 4xx, non-JSON body, missing top-level array -> FetchError
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from storesync.database.models import EntityKind, Tenant
from storesync.sync import metrics
from storesync.sync.errors import AuthError, FetchError, TransientFetchError
from storesync.sync.retry import RetryPolicy, RetryStats, with_retry

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


@dataclass
class Page:
    """One page of raw records; ``next_cursor`` is None on the last page"""
    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None


def parse_next_link(link_header: Optional[str]) -> Optional[str]:
    """Extract the ``rel="next"`` URL from a Link header."""
    if not link_header:
        return None

    # <url>; rel="previous", <url>; rel="next"
    for link in link_header.split(","):
        parts = link.split(";")
        if len(parts) >= 2 and any(p.strip() == 'rel="next"' for p in parts[1:]):
            return parts[0].strip().strip("<>")
    return None


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class ShopifyClient:
    """
    Paginated fetcher over the storefront platform's REST API.

    Owns one ``httpx.AsyncClient``; call ``close()`` on shutdown.

    Example:
        client = ShopifyClient(api_version="2023-10")
        page = await client.fetch_page(tenant, EntityKind.ORDERS, cursor=None)
    """

    def __init__(
        self,
        api_version: str = "2023-10",
        page_size: int = 250,
        request_timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_version = api_version
        self.page_size = page_size
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout),
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": "storesync/1.0"},
        )

    def first_page_url(self, tenant: Tenant, kind: EntityKind) -> str:
        return f"https://{tenant.store_domain}/admin/api/{self.api_version}/{kind.value}.json"

    def _first_page_params(self, kind: EntityKind) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.page_size}
        if kind == EntityKind.ORDERS:
            params["status"] = "any"
        return params

    async def fetch_page(
        self,
        tenant: Tenant,
        kind: EntityKind,
        cursor: Optional[str] = None,
    ) -> Page:
        """
        Fetch one page of raw records.

        Args:
            tenant: Tenant whose store is queried
            kind: Entity kind to fetch
            cursor: Next-page URL from the previous page, None for the first page

        Returns:
            Page of raw records and the next cursor

        Raises:
            AuthError: Credential missing or rejected
            TransientFetchError: Still failing after all retry attempts
            FetchError: Non-retryable failure
        """
        kind = EntityKind(kind)
        if not tenant.access_token:
            raise AuthError(tenant.tenant_id, "No platform credential configured")

        if cursor:
            # page_info cursors carry their own query string
            url, params = cursor, None
        else:
            url, params = self.first_page_url(tenant, kind), self._first_page_params(kind)

        async def attempt(number: int) -> Page:
            return await self._request(tenant, kind, url, params, number)

        return await with_retry(
            attempt,
            self.retry_policy,
            RetryStats(),
            sleep=self._sleep,
            tenant_id=tenant.tenant_id,
            entity_kind=kind.value,
        )

    async def _request(
        self,
        tenant: Tenant,
        kind: EntityKind,
        url: str,
        params: Optional[Dict[str, Any]],
        attempt: int,
    ) -> Page:
        logger.debug(
            "Fetching page",
            tenant_id=tenant.tenant_id,
            entity_kind=kind.value,
            attempt=attempt,
            first_page=params is not None,
        )

        try:
            response = await self._http.get(
                url,
                params=params,
                headers={"X-Shopify-Access-Token": tenant.access_token},
            )
        except httpx.TimeoutException as e:
            metrics.FETCH_REQUESTS.labels(entity_kind=kind.value, outcome="timeout").inc()
            raise TransientFetchError(f"Request timed out: {type(e).__name__}") from e
        except httpx.TransportError as e:
            metrics.FETCH_REQUESTS.labels(entity_kind=kind.value, outcome="network_error").inc()
            raise TransientFetchError(f"Network error: {type(e).__name__}: {e}") from e

        status = response.status_code
        metrics.FETCH_REQUESTS.labels(entity_kind=kind.value, outcome=str(status)).inc()

        if status in (401, 403):
            logger.warning(
                "Platform rejected credential",
                tenant_id=tenant.tenant_id,
                entity_kind=kind.value,
                status_code=status,
            )
            raise AuthError(tenant.tenant_id, f"Platform returned HTTP {status}")

        if status in RETRYABLE_STATUS_CODES:
            raise TransientFetchError(
                f"Platform returned HTTP {status}",
                status_code=status,
                retry_after=_retry_after(response) if status == 429 else None,
            )

        if status >= 400:
            raise FetchError(f"Platform returned HTTP {status}", status_code=status)

        try:
            body = response.json()
        except ValueError as e:
            raise FetchError("Response body is not valid JSON", status_code=status) from e

        records = body.get(kind.value) if isinstance(body, dict) else None
        if not isinstance(records, list):
            raise FetchError(f"Response body has no '{kind.value}' array", status_code=status)

        page = Page(records=records, next_cursor=parse_next_link(response.headers.get("Link")))
        logger.info(
            "Fetched page",
            tenant_id=tenant.tenant_id,
            entity_kind=kind.value,
            attempt=attempt,
            records=len(records),
            has_next=page.next_cursor is not None,
        )
        return page

    async def close(self) -> None:
        await self._http.aclose()
