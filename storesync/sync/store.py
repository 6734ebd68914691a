"""
Upsert Store

Idempotent, per-key atomic writes of canonical records.

Each upsert runs in one database transaction while holding the in-process
keyed lock for ``(tenant_id, kind, external_id)``; on PostgreSQL a
transaction-scoped advisory lock on the same key serializes other worker
processes too. Inserting a new order applies its customer and product
aggregates in that same transaction; updating a known order never does.
"""

import hashlib
import uuid
from dataclasses import fields
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel
from sqlalchemy import select, text, update
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from storesync.database.models import (
    MODEL_FOR_KIND,
    Customer,
    EntityKind,
    Order,
    OrderLine,
    Product,
)
from storesync.sync.errors import StoreConflictError, StoreWriteError
from storesync.sync.locks import KeyedLocks
from storesync.sync.normalizer import CanonicalOrder, CanonicalOrderLine, CanonicalRecord

logger = structlog.get_logger(__name__)

# Canonical fields not copied column-for-column
_SPECIAL_FIELDS = {"external_id", "lines"}


class UpsertResult(BaseModel):
    """Outcome of one upsert"""
    kind: EntityKind
    external_id: str
    internal_id: uuid.UUID
    created: bool


def advisory_lock_key(tenant_id: str, kind: EntityKind, external_id: str) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(
        f"{tenant_id}\x1f{kind.value}\x1f{external_id}".encode("utf-8"),
        digest_size=8,
    ).digest()
    return int.from_bytes(digest, "big", signed=True)


def product_aggregate_deltas(order: CanonicalOrder) -> List[Tuple[str, int, Decimal]]:
    """
    Per-product (external_id, quantity, revenue) sums for an order's lines,
    sorted by product external id. Lines without a product are left out.
    """
    totals: Dict[str, Tuple[int, Decimal]] = {}
    for line in order.lines:
        if not line.product_external_id:
            continue
        quantity, revenue = totals.get(line.product_external_id, (0, Decimal("0")))
        totals[line.product_external_id] = (quantity + line.quantity, revenue + line.line_total)
    return [(product_id, quantity, revenue) for product_id, (quantity, revenue) in sorted(totals.items())]


def _column_values(record: CanonicalRecord) -> Dict[str, Any]:
    return {
        f.name: getattr(record, f.name)
        for f in fields(record)
        if f.name not in _SPECIAL_FIELDS
    }


def _line_row(line: CanonicalOrderLine) -> OrderLine:
    return OrderLine(
        position=line.position,
        external_id=line.external_id,
        product_external_id=line.product_external_id,
        variant_external_id=line.variant_external_id,
        title=line.title,
        variant_title=line.variant_title,
        sku=line.sku,
        vendor=line.vendor,
        quantity=line.quantity,
        price=line.price,
        total_discount=line.total_discount,
        line_total=line.line_total,
    )


class UpsertStore:
    """
    Tenant-scoped identity map over the mirrored tables.

    Example:
        store = UpsertStore(get_session_factory())
        result = await store.upsert("t1", EntityKind.ORDERS, canonical_order)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], locks: Optional[KeyedLocks] = None):
        self._session_factory = session_factory
        self._locks = locks or KeyedLocks()

    # =========================================================================
    # WRITES
    # =========================================================================

    async def upsert(self, tenant_id: str, kind: EntityKind, record: CanonicalRecord) -> UpsertResult:
        """
        Insert or overwrite the record stored under its natural key.

        Args:
            tenant_id: Owning tenant
            kind: Entity kind of the record
            record: Canonical record from the normalizer

        Returns:
            UpsertResult with the stable internal id and whether it was created

        Raises:
            StoreConflictError: The database reported a unique-key violation
            StoreWriteError: Any other database failure, including values the
                columns cannot hold
        """
        kind = EntityKind(kind)
        external_id = record.external_id

        async with self._locks.hold((tenant_id, kind.value, external_id)):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._advisory_lock(session, tenant_id, kind, external_id)
                        if kind == EntityKind.ORDERS:
                            internal_id, created = await self._upsert_order(session, tenant_id, record)
                        else:
                            internal_id, created = await self._upsert_flat(session, tenant_id, kind, record)
            except IntegrityError as e:
                logger.error(
                    "Unique key violation during upsert",
                    tenant_id=tenant_id,
                    entity_kind=kind.value,
                    external_id=external_id,
                    error=str(e.orig),
                )
                raise StoreConflictError(tenant_id, kind.value, external_id, str(e.orig)) from e
            except (DBAPIError, OverflowError) as e:
                rejected = isinstance(e, (DataError, OverflowError))
                logger.error(
                    "Database refused upsert",
                    tenant_id=tenant_id,
                    entity_kind=kind.value,
                    external_id=external_id,
                    error=str(e),
                    rejected=rejected,
                )
                raise StoreWriteError(tenant_id, kind.value, external_id, str(e), rejected=rejected) from e

        logger.debug(
            "Record upserted",
            tenant_id=tenant_id,
            entity_kind=kind.value,
            external_id=external_id,
            created=created,
        )
        return UpsertResult(kind=kind, external_id=external_id, internal_id=internal_id, created=created)

    async def _advisory_lock(
        self, session: AsyncSession, tenant_id: str, kind: EntityKind, external_id: str
    ) -> None:
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": advisory_lock_key(tenant_id, kind, external_id)},
        )

    async def _upsert_flat(
        self, session: AsyncSession, tenant_id: str, kind: EntityKind, record: CanonicalRecord
    ):
        model = MODEL_FOR_KIND[kind]
        existing = (
            await session.execute(
                select(model).where(
                    model.tenant_id == tenant_id,
                    model.external_id == record.external_id,
                )
            )
        ).scalar_one_or_none()

        values = _column_values(record)
        if existing is None:
            row = model(id=uuid.uuid4(), tenant_id=tenant_id, external_id=record.external_id, **values)
            session.add(row)
            await session.flush()
            return row.id, True

        for name, value in values.items():
            setattr(existing, name, value)
        return existing.id, False

    async def _upsert_order(self, session: AsyncSession, tenant_id: str, record: CanonicalOrder):
        existing = (
            await session.execute(
                select(Order)
                .where(Order.tenant_id == tenant_id, Order.external_id == record.external_id)
                .options(selectinload(Order.lines))
            )
        ).scalar_one_or_none()

        values = _column_values(record)
        lines = [_line_row(line) for line in record.lines]

        if existing is None:
            order = Order(id=uuid.uuid4(), tenant_id=tenant_id, external_id=record.external_id, **values)
            order.lines = lines
            session.add(order)
            await session.flush()
            await self._apply_order_aggregates(session, tenant_id, record)
            return order.id, True

        for name, value in values.items():
            setattr(existing, name, value)
        # delete-orphan removes the previous lines
        existing.lines = lines
        await session.flush()
        return existing.id, False

    async def _apply_order_aggregates(self, session: AsyncSession, tenant_id: str, record: CanonicalOrder) -> None:
        """Add a newly inserted order to its customer and product aggregates."""
        if record.customer_external_id:
            await session.execute(
                update(Customer)
                .where(
                    Customer.tenant_id == tenant_id,
                    Customer.external_id == record.customer_external_id,
                )
                .values(
                    orders_count=Customer.orders_count + 1,
                    total_spent=Customer.total_spent + record.total_price,
                )
                .execution_options(synchronize_session=False)
            )

        # Sorted keys keep row-lock order consistent across concurrent inserts
        for product_external_id, quantity, revenue in product_aggregate_deltas(record):
            await session.execute(
                update(Product)
                .where(
                    Product.tenant_id == tenant_id,
                    Product.external_id == product_external_id,
                )
                .values(
                    total_sales=Product.total_sales + quantity,
                    total_revenue=Product.total_revenue + revenue,
                    inventory_quantity=Product.inventory_quantity - quantity,
                )
                .execution_options(synchronize_session=False)
            )

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, tenant_id: str, kind: EntityKind, external_id: str):
        """Return the stored record for a natural key, or None."""
        kind = EntityKind(kind)
        model = MODEL_FOR_KIND[kind]
        stmt = select(model).where(model.tenant_id == tenant_id, model.external_id == str(external_id))
        if kind == EntityKind.ORDERS:
            stmt = stmt.options(selectinload(Order.lines))

        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def resolve_order_customer(self, tenant_id: str, order_external_id: str) -> Optional[Customer]:
        """Follow an order's weak customer reference; None if either side is absent."""
        async with self._session_factory() as session:
            customer_external_id = (
                await session.execute(
                    select(Order.customer_external_id).where(
                        Order.tenant_id == tenant_id,
                        Order.external_id == str(order_external_id),
                    )
                )
            ).scalar_one_or_none()
            if customer_external_id is None:
                return None

            return (
                await session.execute(
                    select(Customer).where(
                        Customer.tenant_id == tenant_id,
                        Customer.external_id == customer_external_id,
                    )
                )
            ).scalar_one_or_none()
