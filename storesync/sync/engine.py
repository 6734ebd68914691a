"""
Sync Engine

Wires the sync components around one session factory and one platform
client, and owns their shutdown order.
"""

from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storesync.config.settings import Settings, get_settings
from storesync.sync.client import ShopifyClient
from storesync.sync.history import RunHistory
from storesync.sync.locks import KeyedLocks
from storesync.sync.orchestrator import SyncOrchestrator
from storesync.sync.retry import RetryPolicy
from storesync.sync.scheduler import FleetScheduler
from storesync.sync.store import UpsertStore
from storesync.sync.tenants import TenantDirectory
from storesync.sync.webhooks import WebhookIngestor

logger = structlog.get_logger(__name__)


@dataclass
class SyncEngine:
    """Container for the wired sync components"""
    tenants: TenantDirectory
    store: UpsertStore
    client: ShopifyClient
    history: RunHistory
    orchestrator: SyncOrchestrator
    webhooks: WebhookIngestor
    scheduler: FleetScheduler
    shutdown_grace_seconds: float = 30.0
    history_limit: int = 20
    _closed: bool = field(default=False, repr=False)

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **client_options,
    ) -> "SyncEngine":
        """
        Build all components from application settings.

        Args:
            session_factory: Session factory bound to the database engine
            settings: Application settings, defaults to get_settings()
            transport: Optional httpx transport for the platform client
            **client_options: Extra ShopifyClient keyword arguments
        """
        settings = settings or get_settings()
        shopify = settings.shopify
        security = settings.security

        tenants = TenantDirectory(session_factory)
        store = UpsertStore(session_factory, KeyedLocks())
        history = RunHistory(session_factory)
        client = ShopifyClient(
            api_version=shopify.api_version,
            page_size=shopify.page_size,
            request_timeout=shopify.request_timeout,
            retry_policy=RetryPolicy(
                max_attempts=shopify.max_attempts,
                base_delay=shopify.backoff_base_seconds,
                max_delay=shopify.backoff_max_seconds,
            ),
            transport=transport,
            **client_options,
        )
        orchestrator = SyncOrchestrator(tenants, client, store, history)
        webhooks = WebhookIngestor(
            tenants,
            store,
            global_secret=security.webhook_secret.get_secret_value() if security.webhook_secret else None,
            require_signature=security.require_webhook_signature,
        )
        scheduler = FleetScheduler(tenants, orchestrator, settings.sync.interval_seconds)

        return cls(
            tenants=tenants,
            store=store,
            client=client,
            history=history,
            orchestrator=orchestrator,
            webhooks=webhooks,
            scheduler=scheduler,
            shutdown_grace_seconds=settings.sync.shutdown_grace_seconds,
            history_limit=settings.sync.history_limit,
        )

    async def close(self) -> None:
        """Stop the scheduler, drain in-flight runs, close the platform client."""
        if self._closed:
            return
        self._closed = True
        self.scheduler.shutdown()
        await self.orchestrator.drain(self.shutdown_grace_seconds)
        await self.client.close()
        logger.info("Sync engine closed")
