"""
Test Suite Configuration
"""
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storesync.config import get_settings
from storesync.database.models import Base
from storesync.sync.client import ShopifyClient
from storesync.sync.history import RunHistory
from storesync.sync.orchestrator import SyncOrchestrator
from storesync.sync.retry import RetryPolicy
from storesync.sync.store import UpsertStore
from storesync.sync.tenants import TenantDirectory
from storesync.sync.webhooks import WebhookIngestor

TENANT_ID = "t1"
TENANT_DOMAIN = "t1-store.myshopify.com"
TENANT_TOKEN = "shpat_t1_secret_token"
TENANT_WEBHOOK_SECRET = "whsec_t1"


# =============================================================================
# SETTINGS
# =============================================================================

@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Isolate every test from the developer's environment and .env"""
    monkeypatch.setenv("APP_ENV", "testing")
    monkeypatch.setenv("LOG_FORMAT", "text")
    monkeypatch.setenv("SYNC_SCHEDULER_ENABLED", "false")
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def database_url(tmp_path) -> str:
    """On-disk SQLite file per test"""
    return f"sqlite+aiosqlite:///{tmp_path / 'storesync.db'}"


@pytest.fixture
async def test_engine(database_url):
    """Create test database engine with the full schema"""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def store(session_factory) -> UpsertStore:
    return UpsertStore(session_factory)


@pytest.fixture
def tenants(session_factory) -> TenantDirectory:
    return TenantDirectory(session_factory)


@pytest.fixture
def history(session_factory) -> RunHistory:
    return RunHistory(session_factory)


@pytest.fixture
async def tenant(tenants):
    """Registered, active tenant with a credential and webhook secret"""
    return await tenants.register(
        TENANT_ID,
        TENANT_DOMAIN,
        access_token=TENANT_TOKEN,
        store_name="T1 Store",
        webhook_secret=TENANT_WEBHOOK_SECRET,
    )


# =============================================================================
# FAKE PLATFORM
# =============================================================================

class FakeShopify:
    """
    In-memory storefront behind ``httpx.MockTransport``.

    Pages are served with Link-header cursors; failures can be queued per
    (domain, kind) or made permanent.
    """

    def __init__(self):
        self.pages: Dict[Tuple[str, str], List[List[Any]]] = {}
        self.queued_failures: Dict[Tuple[str, str], List[httpx.Response]] = {}
        self.permanent_failures: Dict[Tuple[str, str], int] = {}
        self.page_failures: Dict[Tuple[str, str, int], int] = {}
        self.requests: List[httpx.Request] = []

    def add_pages(self, domain: str, kind: str, *pages: List[Any]) -> None:
        self.pages[(domain, kind)] = list(pages)

    def fail_next(self, domain: str, kind: str, status: int, headers: Optional[Dict[str, str]] = None) -> None:
        self.queued_failures.setdefault((domain, kind), []).append(
            httpx.Response(status, json={"errors": "failure"}, headers=headers)
        )

    def fail_always(self, domain: str, kind: str, status: int) -> None:
        self.permanent_failures[(domain, kind)] = status

    def fail_page(self, domain: str, kind: str, index: int, status: int) -> None:
        self.page_failures[(domain, kind, index)] = status

    def requests_for(self, kind: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(f"/{kind}.json")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        domain = request.url.host
        kind = request.url.path.rsplit("/", 1)[-1][: -len(".json")]
        key = (domain, kind)

        if key in self.permanent_failures:
            return httpx.Response(self.permanent_failures[key], json={"errors": "failure"})
        queued = self.queued_failures.get(key)
        if queued:
            return queued.pop(0)

        pages = self.pages.get(key, [[]])
        index = int(request.url.params.get("page_info", 0))
        if (domain, kind, index) in self.page_failures:
            return httpx.Response(self.page_failures[(domain, kind, index)], json={"errors": "failure"})

        headers = {}
        if index + 1 < len(pages):
            next_url = f"https://{domain}{request.url.path}?limit=250&page_info={index + 1}"
            headers["Link"] = f'<{next_url}>; rel="next"'
        return httpx.Response(200, json={kind: pages[index]}, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def client(fake_shopify, recorded_sleep):
    client = ShopifyClient(
        api_version="2023-10",
        page_size=250,
        request_timeout=5.0,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=4.0, jitter=False),
        transport=fake_shopify.transport,
        sleep=recorded_sleep,
    )
    yield client
    await client.close()


@pytest.fixture
def orchestrator(tenants, client, store, history) -> SyncOrchestrator:
    return SyncOrchestrator(tenants, client, store, history)


@pytest.fixture
def ingestor(tenants, store) -> WebhookIngestor:
    return WebhookIngestor(tenants, store, global_secret=None, require_signature=True)


# =============================================================================
# RAW PLATFORM RECORDS
# =============================================================================

@pytest.fixture
def raw_customer() -> Dict[str, Any]:
    return {
        "id": 501,
        "email": "Ada@Example.com",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "phone": "+15550001",
        "state": "enabled",
        "tags": "vip",
        "accepts_marketing": True,
        "verified_email": True,
        "total_spent": "999.00",
        "orders_count": 12,
    }


@pytest.fixture
def raw_product() -> Dict[str, Any]:
    return {
        "id": 701,
        "title": "Widget",
        "vendor": "Acme",
        "product_type": "Gadgets",
        "handle": "widget",
        "status": "active",
        "tags": "new",
        "variants": [
            {"id": 7011, "price": "25.00", "compare_at_price": "30.00", "sku": "WID-1",
             "inventory_quantity": 10, "taxable": True},
            {"id": 7012, "price": "99.00", "sku": "WID-2", "inventory_quantity": 3},
        ],
    }


@pytest.fixture
def raw_order() -> Dict[str, Any]:
    """Order E100 for customer C1 (501): two units of P1 (701) totalling 49.99"""
    return {
        "id": 100,
        "order_number": 1001,
        "name": "#1001",
        "email": "ada@example.com",
        "financial_status": "paid",
        "fulfillment_status": None,
        "currency": "usd",
        "total_price": "49.99",
        "subtotal_price": "49.99",
        "total_tax": "0.00",
        "total_discounts": "0.01",
        "processed_at": "2024-03-01T10:15:00-05:00",
        "cancelled_at": None,
        "test": False,
        "customer": {"id": 501, "email": "ada@example.com"},
        "line_items": [
            {
                "id": 9001,
                "product_id": 701,
                "variant_id": 7011,
                "title": "Widget",
                "variant_title": "Default",
                "sku": "WID-1",
                "vendor": "Acme",
                "quantity": 2,
                "price": "25.00",
                "total_discount": "0.01",
            }
        ],
    }
