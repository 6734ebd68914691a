"""
Webhook Endpoints

Receives platform pushes at ``/shopify/webhooks/{resource}/{action}``.
The raw body is read unparsed so the HMAC is computed over the exact bytes
the platform signed.
"""

from typing import Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from storesync.serving.api.dependencies import get_sync_engine
from storesync.sync.engine import SyncEngine
from storesync.sync.errors import WebhookSignatureError
from storesync.sync.webhooks import WEBHOOK_TOPICS, WebhookOutcome

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/health")
async def webhook_health() -> Dict[str, str]:
    """Liveness check for the platform's webhook configuration screen."""
    return {"status": "ok", "service": "shopify-webhooks"}


@router.post("/{resource}/{action}", response_model=WebhookOutcome, response_model_exclude_none=True)
async def receive_webhook(
    resource: str,
    action: str,
    request: Request,
    shop_domain: Optional[str] = Header(default=None, alias="X-Shopify-Shop-Domain"),
    signature: Optional[str] = Header(default=None, alias="X-Shopify-Hmac-Sha256"),
    webhook_id: Optional[str] = Header(default=None, alias="X-Shopify-Webhook-Id"),
    engine: SyncEngine = Depends(get_sync_engine),
) -> WebhookOutcome:
    """
    Apply one pushed record.

    Returns 200 for processed, skipped and ignored deliveries so the
    platform does not redeliver them; 401 for a bad signature; 500 for
    unexpected failures, which the platform retries.
    """
    topic = f"{resource}/{action}"
    if topic not in WEBHOOK_TOPICS:
        raise HTTPException(status_code=404, detail=f"Unsupported webhook topic: {topic}")

    body = await request.body()

    try:
        return await engine.webhooks.handle(shop_domain, topic, body, signature, webhook_id)
    except WebhookSignatureError:
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    except Exception:
        logger.exception(
            "Webhook processing failed",
            topic=topic,
            shop_domain=shop_domain,
            webhook_id=webhook_id,
        )
        raise HTTPException(status_code=500, detail="Error processing webhook")
