"""
Sync Error Taxonomy

Every failure the engine distinguishes derives from ``SyncError``. The
orchestrator contains each class at a different level: auth aborts a tenant
run, fetch errors abandon one entity kind, normalization and store errors
skip one record.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for storefront sync failures"""
    pass


class AuthError(SyncError):
    """Credential missing or rejected by the platform (401/403). Never retried."""

    def __init__(self, tenant_id: str, message: str = "Platform credential rejected"):
        super().__init__(f"{message} (tenant={tenant_id})")
        self.tenant_id = tenant_id


class FetchError(SyncError):
    """Page fetch failed in a way retrying will not fix."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Network error, timeout, 429 or 5xx. Retried with backoff."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class NormalizationError(SyncError):
    """Raw record could not be turned into a canonical record."""

    def __init__(self, kind: str, reason: str, external_id: Optional[str] = None):
        super().__init__(f"Cannot normalize {kind} record {external_id or '<unknown>'}: {reason}")
        self.kind = kind
        self.reason = reason
        self.external_id = external_id


class StoreConflictError(SyncError):
    """Unique-key violation surfaced from the database despite keyed locking."""

    def __init__(self, tenant_id: str, kind: str, external_id: str, detail: str = ""):
        super().__init__(
            f"Store conflict for {kind} {external_id} (tenant={tenant_id}): {detail}"
        )
        self.tenant_id = tenant_id
        self.kind = kind
        self.external_id = external_id


class WebhookSignatureError(SyncError):
    """Webhook HMAC missing, mismatched, or no secret to check it against."""
    pass


class TenantNotFoundError(SyncError):
    """No tenant registered under the given id or domain."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id


class StoreWriteError(SyncError):
    """
    The database refused a write for a reason other than a key conflict.

    ``rejected`` is True when the record's own values were refused (numeric
    overflow, invalid data), so writing it again would fail the same way.
    """

    def __init__(self, tenant_id: str, kind: str, external_id: str, detail: str = "", rejected: bool = False):
        super().__init__(
            f"Store write failed for {kind} {external_id} (tenant={tenant_id}): {detail}"
        )
        self.tenant_id = tenant_id
        self.kind = kind
        self.external_id = external_id
        self.rejected = rejected


class TenantConflictError(SyncError):
    """Store domain already registered to a different tenant."""

    def __init__(self, tenant_id: str, store_domain: str):
        super().__init__(f"Store domain {store_domain} already belongs to another tenant (tenant={tenant_id})")
        self.tenant_id = tenant_id
        self.store_domain = store_domain
