"""
Unit Tests - Platform Client
"""
import httpx
import pytest
from structlog.testing import capture_logs

from storesync.database.models import EntityKind, Tenant
from storesync.sync.client import ShopifyClient, parse_next_link
from storesync.sync.errors import AuthError, FetchError, TransientFetchError
from storesync.sync.retry import RetryPolicy

DOMAIN = "shop.myshopify.com"
TOKEN = "shpat_do_not_log_me"


@pytest.fixture
def shop() -> Tenant:
    return Tenant(tenant_id="shop", store_domain=DOMAIN, access_token=TOKEN, is_active=True)


class TestParseNextLink:
    """Tests for Link header parsing"""

    def test_next_only(self):
        header = '<https://s.myshopify.com/admin/api/2023-10/orders.json?page_info=abc>; rel="next"'
        assert parse_next_link(header) == "https://s.myshopify.com/admin/api/2023-10/orders.json?page_info=abc"

    def test_previous_and_next(self):
        header = '<https://s/prev?page_info=a>; rel="previous", <https://s/next?page_info=b>; rel="next"'
        assert parse_next_link(header) == "https://s/next?page_info=b"

    def test_previous_only(self):
        assert parse_next_link('<https://s/prev?page_info=a>; rel="previous"') is None

    def test_missing(self):
        assert parse_next_link(None) is None
        assert parse_next_link("") is None


class TestFetchPage:
    """Tests for page fetching and failure classification"""

    async def test_first_page_request(self, client, fake_shopify, shop):
        """Test URL, query and auth header of the first request"""
        fake_shopify.add_pages(DOMAIN, "orders", [{"id": 1}])

        page = await client.fetch_page(shop, EntityKind.ORDERS)

        assert page.records == [{"id": 1}]
        assert page.next_cursor is None
        request = fake_shopify.requests[0]
        assert request.url.path == "/admin/api/2023-10/orders.json"
        assert request.url.params["limit"] == "250"
        assert request.url.params["status"] == "any"
        assert request.headers["X-Shopify-Access-Token"] == TOKEN

    async def test_status_any_only_for_orders(self, client, fake_shopify, shop):
        """Test that customers are not filtered by status"""
        fake_shopify.add_pages(DOMAIN, "customers", [])

        await client.fetch_page(shop, EntityKind.CUSTOMERS)

        assert "status" not in fake_shopify.requests[0].url.params

    async def test_cursor_pagination(self, client, fake_shopify, shop):
        """Test following next cursors to exhaustion"""
        fake_shopify.add_pages(DOMAIN, "products", [{"id": 1}], [{"id": 2}], [{"id": 3}])

        seen, cursor = [], None
        while True:
            page = await client.fetch_page(shop, EntityKind.PRODUCTS, cursor)
            seen.extend(r["id"] for r in page.records)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert seen == [1, 2, 3]
        assert len(fake_shopify.requests) == 3

    async def test_missing_credential_makes_no_request(self, client, fake_shopify):
        """Test AuthError without any request when no token is configured"""
        tenant = Tenant(tenant_id="t0", store_domain=DOMAIN, access_token=None)

        with pytest.raises(AuthError):
            await client.fetch_page(tenant, EntityKind.ORDERS)

        assert fake_shopify.requests == []

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failures_are_not_retried(self, client, fake_shopify, shop, status):
        """Test 401/403 raise AuthError on the first attempt"""
        fake_shopify.fail_always(DOMAIN, "orders", status)

        with pytest.raises(AuthError):
            await client.fetch_page(shop, EntityKind.ORDERS)

        assert len(fake_shopify.requests) == 1

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    async def test_transient_failure_then_success(self, client, fake_shopify, shop, status):
        """Test retryable statuses are retried"""
        fake_shopify.fail_next(DOMAIN, "orders", status)
        fake_shopify.add_pages(DOMAIN, "orders", [{"id": 1}])

        page = await client.fetch_page(shop, EntityKind.ORDERS)

        assert page.records == [{"id": 1}]
        assert len(fake_shopify.requests) == 2

    async def test_retries_exhausted(self, client, fake_shopify, shop, recorded_sleep):
        """Test TransientFetchError after max_attempts with exponential delays"""
        fake_shopify.fail_always(DOMAIN, "orders", 503)

        with pytest.raises(TransientFetchError):
            await client.fetch_page(shop, EntityKind.ORDERS)

        assert len(fake_shopify.requests) == 3
        assert recorded_sleep.delays == [0.5, 1.0]

    async def test_retry_after_honoured(self, client, fake_shopify, shop, recorded_sleep):
        """Test Retry-After on 429 sets the delay floor"""
        fake_shopify.fail_next(DOMAIN, "orders", 429, headers={"Retry-After": "2"})
        fake_shopify.add_pages(DOMAIN, "orders", [])

        await client.fetch_page(shop, EntityKind.ORDERS)

        assert recorded_sleep.delays == [2.0]

    async def test_other_client_errors_are_permanent(self, client, fake_shopify, shop):
        """Test 404 raises FetchError without retries"""
        fake_shopify.fail_always(DOMAIN, "orders", 404)

        with pytest.raises(FetchError) as exc_info:
            await client.fetch_page(shop, EntityKind.ORDERS)

        assert not isinstance(exc_info.value, TransientFetchError)
        assert exc_info.value.status_code == 404
        assert len(fake_shopify.requests) == 1

    async def test_network_errors_are_transient(self, shop, recorded_sleep):
        """Test connection failures are retried then raised as transient"""
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = ShopifyClient(
            retry_policy=RetryPolicy(max_attempts=2, base_delay=0.1, jitter=False),
            transport=httpx.MockTransport(handler),
            sleep=recorded_sleep,
        )
        try:
            with pytest.raises(TransientFetchError):
                await client.fetch_page(shop, EntityKind.CUSTOMERS)
        finally:
            await client.close()

        assert len(attempts) == 2

    async def test_timeouts_are_transient(self, shop, recorded_sleep):
        """Test request timeouts are classified as transient"""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = ShopifyClient(
            retry_policy=RetryPolicy(max_attempts=1),
            transport=httpx.MockTransport(handler),
            sleep=recorded_sleep,
        )
        try:
            with pytest.raises(TransientFetchError):
                await client.fetch_page(shop, EntityKind.PRODUCTS)
        finally:
            await client.close()

    async def test_non_json_body(self, shop, recorded_sleep):
        """Test an HTML body raises FetchError"""
        client = ShopifyClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>")),
            sleep=recorded_sleep,
        )
        try:
            with pytest.raises(FetchError, match="not valid JSON"):
                await client.fetch_page(shop, EntityKind.ORDERS)
        finally:
            await client.close()

    async def test_body_without_array(self, shop, recorded_sleep):
        """Test a JSON body missing the kind's array raises FetchError"""
        client = ShopifyClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"orders": {"id": 1}})),
            sleep=recorded_sleep,
        )
        try:
            with pytest.raises(FetchError, match="no 'orders' array"):
                await client.fetch_page(shop, EntityKind.ORDERS)
        finally:
            await client.close()

    async def test_token_never_logged(self, client, fake_shopify, shop):
        """Test fetch logs carry tenant and kind but not the credential"""
        fake_shopify.fail_next(DOMAIN, "orders", 503)
        fake_shopify.add_pages(DOMAIN, "orders", [{"id": 1}])

        with capture_logs() as logs:
            await client.fetch_page(shop, EntityKind.ORDERS)

        assert any(
            entry.get("tenant_id") == "shop" and entry.get("entity_kind") == "orders" and "attempt" in entry
            for entry in logs
        )
        assert TOKEN not in repr(logs)
