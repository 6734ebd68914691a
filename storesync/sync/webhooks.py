"""
Webhook Ingest Path

Applies single records pushed by the platform. Shares the normalizer and
upsert store with the orchestrator and is protected only by per-key
atomicity, never by the tenant's single-flight guard.

Delivery handling:
- Unknown shop domain or topic -> ignored (acknowledged, nothing stored)
- Bad or missing HMAC signature -> WebhookSignatureError (HTTP 401)
- Malformed JSON or record failing normalization -> skipped (acknowledged)
- Record the database refuses to hold -> skipped; other store failures
  propagate (HTTP 500, redelivered by the platform)
"""

import base64
import hashlib
import hmac
import json
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from storesync.database.models import EntityKind, Tenant
from storesync.sync import metrics
from storesync.sync.errors import NormalizationError, StoreWriteError, WebhookSignatureError
from storesync.sync.normalizer import normalize
from storesync.sync.store import UpsertResult, UpsertStore
from storesync.sync.tenants import TenantDirectory

logger = structlog.get_logger(__name__)


WEBHOOK_TOPICS = {
    "orders/create": EntityKind.ORDERS,
    "orders/paid": EntityKind.ORDERS,
    "orders/updated": EntityKind.ORDERS,
    "customers/create": EntityKind.CUSTOMERS,
    "customers/update": EntityKind.CUSTOMERS,
    "products/create": EntityKind.PRODUCTS,
    "products/update": EntityKind.PRODUCTS,
}


class WebhookStatus(str, Enum):
    """What happened to a webhook delivery"""
    PROCESSED = "processed"
    SKIPPED = "skipped"
    IGNORED = "ignored"


class WebhookOutcome(BaseModel):
    """Acknowledgement returned to the platform"""
    status: WebhookStatus
    topic: str
    tenant_id: Optional[str] = None
    entity_kind: Optional[EntityKind] = None
    external_id: Optional[str] = None
    created: Optional[bool] = None
    reason: Optional[str] = None


def compute_signature(secret: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 of the raw body, as sent in X-Shopify-Hmac-Sha256."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class WebhookIngestor:
    """
    Verify, decode and apply webhook deliveries.

    Example:
        ingestor = WebhookIngestor(tenants, store, global_secret="...")
        outcome = await ingestor.handle(shop_domain, "orders/create", body, signature)
    """

    def __init__(
        self,
        tenants: TenantDirectory,
        store: UpsertStore,
        global_secret: Optional[str] = None,
        require_signature: bool = True,
    ):
        self.tenants = tenants
        self.store = store
        self.global_secret = global_secret
        self.require_signature = require_signature

    async def ingest(self, tenant_id: str, kind: EntityKind, raw: Any) -> UpsertResult:
        """
        Normalize and upsert one pushed record.

        Raises:
            NormalizationError: The record cannot be normalized
            StoreConflictError: The database reported a unique-key violation
            StoreWriteError: The database refused the write
        """
        kind = EntityKind(kind)
        record = normalize(kind, raw).unwrap()
        result = await self.store.upsert(tenant_id, kind, record)
        metrics.RECORDS_UPSERTED.labels(
            entity_kind=kind.value,
            source="webhook",
            action="created" if result.created else "updated",
        ).inc()
        return result

    def verify(self, tenant: Tenant, body: bytes, signature: Optional[str]) -> None:
        """
        Check the delivery's HMAC against the tenant secret, else the global one.

        Raises:
            WebhookSignatureError: Signature missing or wrong, or no secret
                configured while signatures are required
        """
        secret = tenant.webhook_secret or self.global_secret
        if not secret:
            if self.require_signature:
                raise WebhookSignatureError(f"No webhook secret configured for tenant {tenant.tenant_id}")
            logger.warning("Accepting unsigned webhook, no secret configured", tenant_id=tenant.tenant_id)
            return

        if not signature:
            raise WebhookSignatureError("Missing webhook signature")

        expected = compute_signature(secret, body)
        if not hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8")):
            raise WebhookSignatureError("Webhook signature mismatch")

    async def handle(
        self,
        shop_domain: Optional[str],
        topic: str,
        body: bytes,
        signature: Optional[str],
        webhook_id: Optional[str] = None,
    ) -> WebhookOutcome:
        """
        Process one webhook delivery end to end.

        Args:
            shop_domain: X-Shopify-Shop-Domain header
            topic: Webhook topic, e.g. "orders/create"
            body: Raw request body
            signature: X-Shopify-Hmac-Sha256 header
            webhook_id: X-Shopify-Webhook-Id header, logged only

        Returns:
            WebhookOutcome

        Raises:
            WebhookSignatureError: Authenticity check failed
        """
        log = logger.bind(topic=topic, shop_domain=shop_domain, webhook_id=webhook_id)

        kind = WEBHOOK_TOPICS.get(topic)
        if kind is None:
            log.warning("Ignoring webhook with unsupported topic")
            metrics.WEBHOOKS_RECEIVED.labels(topic=topic, outcome=WebhookStatus.IGNORED.value).inc()
            return WebhookOutcome(status=WebhookStatus.IGNORED, topic=topic, reason="unsupported_topic")

        tenant = await self.tenants.resolve_domain(shop_domain or "")
        if tenant is None:
            log.warning("Ignoring webhook from unknown shop")
            metrics.WEBHOOKS_RECEIVED.labels(topic=topic, outcome=WebhookStatus.IGNORED.value).inc()
            return WebhookOutcome(status=WebhookStatus.IGNORED, topic=topic, reason="unknown_shop")

        log = log.bind(tenant_id=tenant.tenant_id, entity_kind=kind.value)

        try:
            self.verify(tenant, body, signature)
        except WebhookSignatureError as e:
            log.warning("Rejecting webhook", reason=str(e))
            metrics.WEBHOOKS_RECEIVED.labels(topic=topic, outcome="rejected").inc()
            raise

        try:
            raw = json.loads(body)
        except ValueError:
            log.warning("Skipping webhook with malformed JSON body")
            metrics.WEBHOOKS_RECEIVED.labels(topic=topic, outcome=WebhookStatus.SKIPPED.value).inc()
            metrics.RECORDS_SKIPPED.labels(entity_kind=kind.value, reason="invalid_json").inc()
            return WebhookOutcome(
                status=WebhookStatus.SKIPPED,
                topic=topic,
                tenant_id=tenant.tenant_id,
                entity_kind=kind,
                reason="invalid_json",
            )

        try:
            result = await self.ingest(tenant.tenant_id, kind, raw)
        except NormalizationError as e:
            log.warning("Skipping webhook record", external_id=e.external_id, reason=e.reason)
            metrics.WEBHOOKS_RECEIVED.labels(topic=topic, outcome=WebhookStatus.SKIPPED.value).inc()
            metrics.RECORDS_SKIPPED.labels(entity_kind=kind.value, reason="normalization").inc()
            return WebhookOutcome(
                status=WebhookStatus.SKIPPED,
                topic=topic,
                tenant_id=tenant.tenant_id,
                entity_kind=kind,
                external_id=e.external_id,
                reason=e.reason,
            )
        except StoreWriteError as e:
            if not e.rejected:
                raise
            log.error("Skipping webhook record the store refused", external_id=e.external_id, error=str(e))
            metrics.WEBHOOKS_RECEIVED.labels(topic=topic, outcome=WebhookStatus.SKIPPED.value).inc()
            metrics.RECORDS_SKIPPED.labels(entity_kind=kind.value, reason="store_error").inc()
            return WebhookOutcome(
                status=WebhookStatus.SKIPPED,
                topic=topic,
                tenant_id=tenant.tenant_id,
                entity_kind=kind,
                external_id=e.external_id,
                reason="store_error",
            )

        log.info("Webhook processed", external_id=result.external_id, created=result.created)
        metrics.WEBHOOKS_RECEIVED.labels(topic=topic, outcome=WebhookStatus.PROCESSED.value).inc()
        return WebhookOutcome(
            status=WebhookStatus.PROCESSED,
            topic=topic,
            tenant_id=tenant.tenant_id,
            entity_kind=kind,
            external_id=result.external_id,
            created=result.created,
        )
