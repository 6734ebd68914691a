"""
Database Models - Tenant-Scoped Storefront Mirror

Every synchronized entity carries ``tenant_id`` and the platform's own
``external_id``. The pair is the natural (upsert) key and is enforced by a
unique constraint per table; the UUID primary key is generated on first
insert and never changes.

Tables:
- Tenant: one row per connected store (domain, credential, active flag)
- Customer / Product / Order / OrderLine: mirrored storefront records
- SyncRun: outcome and per-kind counters of every orchestrator run
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class EntityKind(str, Enum):
    """Synchronized entity kinds, valued by the platform's plural resource name"""
    CUSTOMERS = "customers"
    PRODUCTS = "products"
    ORDERS = "orders"

    @property
    def singular(self) -> str:
        return self.value[:-1]


# Referential dependency order: orders reference customers and products
SYNC_ORDER = (EntityKind.CUSTOMERS, EntityKind.PRODUCTS, EntityKind.ORDERS)


class RunStatus(str, Enum):
    """Sync run outcome"""
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED_AUTH = "failed_auth"
    FAILED = "failed"


class RunTrigger(str, Enum):
    """What started a sync run"""
    SCHEDULED = "scheduled"
    MANUAL = "manual"


JsonType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# TENANTS
# =============================================================================

class Tenant(Base):
    """
    Tenant Table

    One row per connected store. ``access_token`` may be absent, in which case
    runs for the tenant end with ``failed_auth`` before any request is made.
    Deactivation halts scheduled sync; tenants are never deleted.
    """
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    store_name: Mapped[str] = mapped_column(String(200), default="")
    store_domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Secrets - never logged, never returned by the API
    access_token: Mapped[Optional[str]] = mapped_column(String(255))
    webhook_secret: Mapped[Optional[str]] = mapped_column(String(255))

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_tenants_active", "is_active"),
    )


# =============================================================================
# MIRRORED ENTITIES
# =============================================================================

class Customer(Base):
    """
    Customer Table

    ``total_spent`` and ``orders_count`` are aggregates maintained by order
    inserts only; customer sync never writes them.
    """
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Contact
    email: Mapped[str] = mapped_column(String(255), default="")
    first_name: Mapped[str] = mapped_column(String(100), default="")
    last_name: Mapped[str] = mapped_column(String(100), default="")
    phone: Mapped[str] = mapped_column(String(50), default="")
    state: Mapped[str] = mapped_column(String(50), default="")
    tags: Mapped[str] = mapped_column(Text, default="")
    accepts_marketing: Mapped[bool] = mapped_column(Boolean, default=False)
    verified_email: Mapped[bool] = mapped_column(Boolean, default=False)

    # Aggregates
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    orders_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_customers_tenant_external"),
        Index("ix_customers_tenant", "tenant_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Product(Base):
    """
    Product Table

    Price, SKU and inventory are taken from the first variant. ``total_sales``
    and ``total_revenue`` are order-driven aggregates.
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Catalog
    title: Mapped[str] = mapped_column(String(255), default="")
    vendor: Mapped[str] = mapped_column(String(255), default="")
    product_type: Mapped[str] = mapped_column(String(255), default="")
    handle: Mapped[str] = mapped_column(String(255), default="")
    status: Mapped[str] = mapped_column(String(50), default="")
    tags: Mapped[str] = mapped_column(Text, default="")
    taxable: Mapped[bool] = mapped_column(Boolean, default=False)

    # Pricing and inventory (first variant)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    compare_at_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    sku: Mapped[str] = mapped_column(String(100), default="")
    inventory_quantity: Mapped[int] = mapped_column(Integer, default=0)

    # Aggregates
    total_sales: Mapped[int] = mapped_column(Integer, default=0)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_products_tenant_external"),
        Index("ix_products_tenant", "tenant_id"),
    )


class Order(Base):
    """
    Order Table

    ``customer_external_id`` is a weak reference resolved by lookup at read
    time; the customer may not exist yet when the order arrives.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)

    order_number: Mapped[str] = mapped_column(String(50), default="")
    name: Mapped[str] = mapped_column(String(100), default="")
    customer_external_id: Mapped[Optional[str]] = mapped_column(String(64))
    email: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(50), default="")

    # Status
    financial_status: Mapped[str] = mapped_column(String(50), default="")
    fulfillment_status: Mapped[str] = mapped_column(String(50), default="")

    # Money
    currency: Mapped[str] = mapped_column(String(3), default="")
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    subtotal_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total_discounts: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)

    # Timestamps reported by the platform
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    test: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    lines: Mapped[List["OrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external"),
        Index("ix_orders_tenant", "tenant_id"),
        Index("ix_orders_customer", "tenant_id", "customer_external_id"),
    )


class OrderLine(Base):
    """
    Order Line Table

    Title, SKU and vendor are a snapshot taken at order time so historical
    orders stay stable when the product is later renamed.
    """
    __tablename__ = "order_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)

    product_external_id: Mapped[Optional[str]] = mapped_column(String(64))
    variant_external_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Snapshot
    title: Mapped[str] = mapped_column(String(255), default="")
    variant_title: Mapped[str] = mapped_column(String(255), default="")
    sku: Mapped[str] = mapped_column(String(100), default="")
    vendor: Mapped[str] = mapped_column(String(255), default="")

    quantity: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total_discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)

    order: Mapped["Order"] = relationship(back_populates="lines")

    __table_args__ = (
        Index("ix_order_lines_order", "order_id"),
        Index("ix_order_lines_product", "product_external_id"),
    )


# =============================================================================
# SYNC BOOKKEEPING
# =============================================================================

class SyncRun(Base):
    """
    Sync Run Table

    One row per orchestrator run. ``kind_stats`` holds per-kind counters:
    ``{"orders": {"fetched": 10, "created": 2, "updated": 8, "skipped": 0,
    "pages_failed": 0}, ...}``.
    """
    __tablename__ = "sync_runs"

    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=RunStatus.RUNNING.value)
    kind_stats: Mapped[dict] = mapped_column(JsonType, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_sync_runs_tenant_started", "tenant_id", "started_at"),
    )


MODEL_FOR_KIND = {
    EntityKind.CUSTOMERS: Customer,
    EntityKind.PRODUCTS: Product,
    EntityKind.ORDERS: Order,
}
