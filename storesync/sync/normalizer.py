"""
Record Normalizer

Turns one raw platform record (decoded JSON) into a canonical record.
Handles:
- Type coercion with defaults (Decimal 0, int 0, "", False, None)
- Range checks against the column widths; out-of-range numbers become 0
- Nested references (order -> customer, line -> product/variant)
- First-variant pricing and inventory for products
- Positional ids for order lines the platform sent without one

Pure function, no I/O. Only a missing id, or a raw value that is not an
object, fails a record; any other malformed field falls back to its default.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple, Union

from storesync.database.models import EntityKind
from storesync.sync.errors import NormalizationError

ZERO = Decimal("0")

# Largest magnitudes the mirrored columns hold: Integer, Numeric(10, 2), Numeric(12, 2)
INT_LIMIT = 2 ** 31 - 1
PRICE_LIMIT = Decimal("99999999.99")
AMOUNT_LIMIT = Decimal("9999999999.99")


# =============================================================================
# CANONICAL RECORDS
# =============================================================================

@dataclass(frozen=True)
class CanonicalCustomer:
    """Normalized customer. Aggregates are not part of the canonical form."""
    external_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    state: str = ""
    tags: str = ""
    accepts_marketing: bool = False
    verified_email: bool = False


@dataclass(frozen=True)
class CanonicalProduct:
    """Normalized product with first-variant price, SKU and inventory"""
    external_id: str
    title: str = ""
    vendor: str = ""
    product_type: str = ""
    handle: str = ""
    status: str = ""
    tags: str = ""
    taxable: bool = False
    price: Decimal = ZERO
    compare_at_price: Decimal = ZERO
    sku: str = ""
    inventory_quantity: int = 0


@dataclass(frozen=True)
class CanonicalOrderLine:
    """Normalized order line with snapshot fields"""
    external_id: str
    position: int
    product_external_id: Optional[str] = None
    variant_external_id: Optional[str] = None
    title: str = ""
    variant_title: str = ""
    sku: str = ""
    vendor: str = ""
    quantity: int = 0
    price: Decimal = ZERO
    total_discount: Decimal = ZERO

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity - self.total_discount


@dataclass(frozen=True)
class CanonicalOrder:
    """Normalized order; ``customer_external_id`` is a weak reference"""
    external_id: str
    order_number: str = ""
    name: str = ""
    customer_external_id: Optional[str] = None
    email: str = ""
    phone: str = ""
    financial_status: str = ""
    fulfillment_status: str = ""
    currency: str = ""
    total_price: Decimal = ZERO
    subtotal_price: Decimal = ZERO
    total_tax: Decimal = ZERO
    total_discounts: Decimal = ZERO
    processed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    test: bool = False
    lines: Tuple[CanonicalOrderLine, ...] = field(default_factory=tuple)


CanonicalRecord = Union[CanonicalCustomer, CanonicalProduct, CanonicalOrder]


@dataclass(frozen=True)
class NormalizationResult:
    """Either a canonical record or the error that prevented one"""
    record: Optional[CanonicalRecord] = None
    error: Optional[NormalizationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> CanonicalRecord:
        """Return the record or raise the normalization error."""
        if self.error is not None:
            raise self.error
        return self.record


# =============================================================================
# FIELD COERCION
# =============================================================================

def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _ref(value: Any) -> Optional[str]:
    """Platform ids arrive as integers; store them as strings."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _decimal(value: Any, limit: Decimal = PRICE_LIMIT) -> Decimal:
    """Parse a money value; unparseable, non-finite or out-of-range -> 0."""
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    if not result.is_finite() or abs(result) > limit:
        return ZERO
    return result


def _int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if abs(value) <= INT_LIMIT else 0
    # Range-checked as a Decimal so exponents like "1e999999999" never expand
    return int(_decimal(value, Decimal(INT_LIMIT)))


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into naive UTC; unparseable -> None."""
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


# =============================================================================
# PER-KIND NORMALIZATION
# =============================================================================

def _customer(raw: Dict[str, Any], external_id: str) -> CanonicalCustomer:
    return CanonicalCustomer(
        external_id=external_id,
        email=_text(raw.get("email")).lower(),
        first_name=_text(raw.get("first_name")),
        last_name=_text(raw.get("last_name")),
        phone=_text(raw.get("phone")),
        state=_text(raw.get("state")),
        tags=_text(raw.get("tags")),
        accepts_marketing=_bool(raw.get("accepts_marketing")),
        verified_email=_bool(raw.get("verified_email")),
    )


def _product(raw: Dict[str, Any], external_id: str) -> CanonicalProduct:
    variants = raw.get("variants")
    first_variant = _object(variants[0]) if isinstance(variants, list) and variants else {}
    return CanonicalProduct(
        external_id=external_id,
        title=_text(raw.get("title")),
        vendor=_text(raw.get("vendor")),
        product_type=_text(raw.get("product_type")),
        handle=_text(raw.get("handle")),
        status=_text(raw.get("status")),
        tags=_text(raw.get("tags")),
        taxable=_bool(first_variant.get("taxable")),
        price=_decimal(first_variant.get("price")),
        compare_at_price=_decimal(first_variant.get("compare_at_price")),
        sku=_text(first_variant.get("sku")),
        inventory_quantity=_int(first_variant.get("inventory_quantity")),
    )


def _order_line(raw: Any, order_id: str, position: int) -> CanonicalOrderLine:
    item = _object(raw)
    return CanonicalOrderLine(
        external_id=_ref(item.get("id")) or f"{order_id}:{position}",
        position=position,
        product_external_id=_ref(item.get("product_id")),
        variant_external_id=_ref(item.get("variant_id")),
        title=_text(item.get("title")),
        variant_title=_text(item.get("variant_title")),
        sku=_text(item.get("sku")),
        vendor=_text(item.get("vendor")),
        quantity=_int(item.get("quantity")),
        price=_decimal(item.get("price")),
        total_discount=_decimal(item.get("total_discount")),
    )


def _order(raw: Dict[str, Any], external_id: str) -> CanonicalOrder:
    line_items = raw.get("line_items")
    if not isinstance(line_items, list):
        line_items = []

    return CanonicalOrder(
        external_id=external_id,
        order_number=_text(raw.get("order_number")),
        name=_text(raw.get("name")),
        customer_external_id=_ref(_object(raw.get("customer")).get("id")),
        email=_text(raw.get("email")).lower(),
        phone=_text(raw.get("phone")),
        financial_status=_text(raw.get("financial_status")),
        fulfillment_status=_text(raw.get("fulfillment_status")),
        currency=_text(raw.get("currency")).upper(),
        total_price=_decimal(raw.get("total_price"), AMOUNT_LIMIT),
        subtotal_price=_decimal(raw.get("subtotal_price"), AMOUNT_LIMIT),
        total_tax=_decimal(raw.get("total_tax")),
        total_discounts=_decimal(raw.get("total_discounts")),
        processed_at=_timestamp(raw.get("processed_at")),
        cancelled_at=_timestamp(raw.get("cancelled_at")),
        test=_bool(raw.get("test")),
        lines=tuple(
            _order_line(item, external_id, position)
            for position, item in enumerate(line_items)
        ),
    )


_NORMALIZERS = {
    EntityKind.CUSTOMERS: _customer,
    EntityKind.PRODUCTS: _product,
    EntityKind.ORDERS: _order,
}


def normalize(kind: EntityKind, raw: Any) -> NormalizationResult:
    """
    Normalize one raw platform record.

    Args:
        kind: Entity kind of the record
        raw: Decoded JSON value as received from the platform

    Returns:
        NormalizationResult holding the canonical record, or the error
    """
    kind = EntityKind(kind)

    if not isinstance(raw, dict):
        return NormalizationResult(
            error=NormalizationError(kind.value, f"expected an object, got {type(raw).__name__}")
        )

    external_id = _ref(raw.get("id"))
    if external_id is None:
        return NormalizationResult(error=NormalizationError(kind.value, "missing id"))

    return NormalizationResult(record=_NORMALIZERS[kind](raw, external_id))
