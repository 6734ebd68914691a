"""
Storefront Sync Module
"""
from .client import Page, ShopifyClient
from .engine import SyncEngine
from .errors import (
    AuthError,
    FetchError,
    NormalizationError,
    StoreConflictError,
    StoreWriteError,
    SyncError,
    TenantConflictError,
    TenantNotFoundError,
    TransientFetchError,
    WebhookSignatureError,
)
from .normalizer import NormalizationResult, normalize
from .orchestrator import SyncOrchestrator, SyncRunResult
from .scheduler import FleetScheduler
from .store import UpsertResult, UpsertStore
from .webhooks import WebhookIngestor, WebhookOutcome

__all__ = [
    "Page",
    "ShopifyClient",
    "SyncEngine",
    "AuthError",
    "FetchError",
    "NormalizationError",
    "StoreConflictError",
    "StoreWriteError",
    "SyncError",
    "TenantConflictError",
    "TenantNotFoundError",
    "TransientFetchError",
    "WebhookSignatureError",
    "NormalizationResult",
    "normalize",
    "SyncOrchestrator",
    "SyncRunResult",
    "FleetScheduler",
    "UpsertResult",
    "UpsertStore",
    "WebhookIngestor",
    "WebhookOutcome",
]
