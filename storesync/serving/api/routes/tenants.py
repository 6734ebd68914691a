"""
Tenant Onboarding Endpoints

Register stores and stop their scheduled sync. Credentials are accepted
but never returned.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, SecretStr

from storesync.database.models import Tenant
from storesync.serving.api.dependencies import get_sync_engine
from storesync.sync.engine import SyncEngine
from storesync.sync.errors import TenantConflictError, TenantNotFoundError

router = APIRouter()


class TenantRegistration(BaseModel):
    """Onboarding request"""
    tenant_id: str = Field(min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.\-]+$")
    store_domain: str = Field(min_length=3, max_length=255)
    store_name: str = ""
    access_token: Optional[SecretStr] = None
    webhook_secret: Optional[SecretStr] = None


class TenantResponse(BaseModel):
    """Tenant as exposed by the API"""
    tenant_id: str
    store_name: str
    store_domain: str
    is_active: bool
    has_access_token: bool
    has_webhook_secret: bool

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantResponse":
        return cls(
            tenant_id=tenant.tenant_id,
            store_name=tenant.store_name or "",
            store_domain=tenant.store_domain,
            is_active=tenant.is_active,
            has_access_token=bool(tenant.access_token),
            has_webhook_secret=bool(tenant.webhook_secret),
        )


def _secret(value: Optional[SecretStr]) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


@router.post("", response_model=TenantResponse)
async def register_tenant(
    registration: TenantRegistration,
    engine: SyncEngine = Depends(get_sync_engine),
) -> TenantResponse:
    """
    Create a tenant, or update the domain and secrets of an existing one.

    Omitted credentials keep their stored values. Returns 409 when the
    store domain is registered to another tenant.
    """
    try:
        tenant = await engine.tenants.register(
            tenant_id=registration.tenant_id,
            store_domain=registration.store_domain,
            access_token=_secret(registration.access_token),
            store_name=registration.store_name,
            webhook_secret=_secret(registration.webhook_secret),
        )
    except TenantConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return TenantResponse.from_tenant(tenant)


@router.post("/{tenant_id}/deactivate", response_model=TenantResponse)
async def deactivate_tenant(
    tenant_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
) -> TenantResponse:
    """Halt scheduled sync for a tenant. Runs already in flight finish."""
    try:
        tenant = await engine.tenants.deactivate(tenant_id)
    except TenantNotFoundError:
        raise HTTPException(status_code=404, detail=f"Tenant not found: {tenant_id}")
    return TenantResponse.from_tenant(tenant)
