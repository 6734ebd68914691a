"""
Tenant Directory

Registration, lookup and deactivation of connected stores.
"""

from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storesync.database.models import Tenant
from storesync.sync.errors import TenantConflictError, TenantNotFoundError

logger = structlog.get_logger(__name__)


def normalize_domain(domain: str) -> str:
    """Lower-case a shop domain and strip scheme and trailing slash."""
    value = domain.strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
    return value.rstrip("/")


class TenantDirectory:
    """Read and maintain the tenants table"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_active(self) -> List[Tenant]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Tenant).where(Tenant.is_active.is_(True)).order_by(Tenant.tenant_id)
            )
            return list(result.scalars().all())

    async def get(self, tenant_id: str) -> Tenant:
        """
        Load a tenant by id.

        Raises:
            TenantNotFoundError: No tenant with that id
        """
        async with self._session_factory() as session:
            tenant = (
                await session.execute(select(Tenant).where(Tenant.tenant_id == tenant_id))
            ).scalar_one_or_none()
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    async def resolve_domain(self, shop_domain: str) -> Optional[Tenant]:
        """Map a webhook's shop domain to its tenant, None if unknown."""
        if not shop_domain:
            return None
        async with self._session_factory() as session:
            return (
                await session.execute(
                    select(Tenant).where(Tenant.store_domain == normalize_domain(shop_domain))
                )
            ).scalar_one_or_none()

    async def register(
        self,
        tenant_id: str,
        store_domain: str,
        access_token: Optional[str] = None,
        store_name: str = "",
        webhook_secret: Optional[str] = None,
    ) -> Tenant:
        """
        Create a tenant, or update domain and secrets of an existing one.

        Re-registering reactivates a deactivated tenant. Omitted (None)
        credentials and an empty store name keep their stored values.

        Raises:
            TenantConflictError: The domain belongs to another tenant
        """
        domain = normalize_domain(store_domain)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    owner = (
                        await session.execute(select(Tenant.tenant_id).where(Tenant.store_domain == domain))
                    ).scalar_one_or_none()
                    if owner is not None and owner != tenant_id:
                        raise TenantConflictError(tenant_id, domain)

                    tenant = (
                        await session.execute(select(Tenant).where(Tenant.tenant_id == tenant_id))
                    ).scalar_one_or_none()
                    created = tenant is None
                    if created:
                        tenant = Tenant(tenant_id=tenant_id, store_domain=domain)
                        session.add(tenant)

                    tenant.store_domain = domain
                    tenant.store_name = store_name or tenant.store_name or ""
                    if access_token is not None:
                        tenant.access_token = access_token
                    if webhook_secret is not None:
                        tenant.webhook_secret = webhook_secret
                    tenant.is_active = True
        except IntegrityError as e:
            # Concurrent registration claimed the domain between check and insert
            raise TenantConflictError(tenant_id, domain) from e

        logger.info(
            "Tenant registered" if created else "Tenant updated",
            tenant_id=tenant_id,
            store_domain=domain,
            has_credential=bool(tenant.access_token),
        )
        return tenant

    async def deactivate(self, tenant_id: str) -> Tenant:
        """
        Stop scheduled sync for a tenant. In-flight runs are not aborted.

        Raises:
            TenantNotFoundError: No tenant with that id
        """
        async with self._session_factory() as session:
            async with session.begin():
                tenant = (
                    await session.execute(select(Tenant).where(Tenant.tenant_id == tenant_id))
                ).scalar_one_or_none()
                if tenant is None:
                    raise TenantNotFoundError(tenant_id)
                tenant.is_active = False

        logger.info("Tenant deactivated", tenant_id=tenant_id)
        return tenant
