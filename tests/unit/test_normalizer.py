"""
Unit Tests - Record Normalizer
"""
from datetime import datetime
from decimal import Decimal

import pytest

from storesync.database.models import EntityKind
from storesync.sync.errors import NormalizationError
from storesync.sync.normalizer import (
    CanonicalCustomer,
    CanonicalOrder,
    CanonicalProduct,
    normalize,
)


class TestCustomerNormalization:
    """Tests for customer records"""

    def test_fields_are_mapped(self, raw_customer):
        """Test mapping of a complete customer"""
        result = normalize(EntityKind.CUSTOMERS, raw_customer)

        assert result.ok
        customer = result.unwrap()
        assert isinstance(customer, CanonicalCustomer)
        assert customer.external_id == "501"
        assert customer.email == "ada@example.com"
        assert customer.first_name == "Ada"
        assert customer.accepts_marketing is True
        assert customer.verified_email is True

    def test_aggregates_in_payload_are_ignored(self, raw_customer):
        """Test that platform-reported totals never enter the canonical record"""
        customer = normalize(EntityKind.CUSTOMERS, raw_customer).unwrap()

        assert not hasattr(customer, "total_spent")
        assert not hasattr(customer, "orders_count")

    def test_missing_optional_fields_default(self):
        """Test defaults for a bare customer"""
        customer = normalize(EntityKind.CUSTOMERS, {"id": 1}).unwrap()

        assert customer == CanonicalCustomer(external_id="1")
        assert customer.email == ""
        assert customer.accepts_marketing is False

    def test_null_values_default(self):
        """Test that explicit nulls behave like absent fields"""
        customer = normalize(
            EntityKind.CUSTOMERS,
            {"id": 2, "email": None, "first_name": None, "verified_email": None},
        ).unwrap()

        assert customer.email == ""
        assert customer.first_name == ""
        assert customer.verified_email is False


class TestProductNormalization:
    """Tests for product records"""

    def test_first_variant_supplies_price_sku_inventory(self, raw_product):
        """Test that only the first variant is used"""
        product = normalize(EntityKind.PRODUCTS, raw_product).unwrap()

        assert isinstance(product, CanonicalProduct)
        assert product.price == Decimal("25.00")
        assert product.compare_at_price == Decimal("30.00")
        assert product.sku == "WID-1"
        assert product.inventory_quantity == 10
        assert product.taxable is True

    def test_product_without_variants(self):
        """Test defaults when there are no variants"""
        product = normalize(EntityKind.PRODUCTS, {"id": 3, "title": "Bare", "variants": []}).unwrap()

        assert product.title == "Bare"
        assert product.price == Decimal("0")
        assert product.inventory_quantity == 0
        assert product.sku == ""

    def test_malformed_price_falls_back_to_zero(self):
        """Test that an unparseable number does not fail the record"""
        product = normalize(
            EntityKind.PRODUCTS,
            {"id": 4, "variants": [{"price": "abc", "inventory_quantity": "n/a"}]},
        ).unwrap()

        assert product.price == Decimal("0")
        assert product.inventory_quantity == 0


class TestOrderNormalization:
    """Tests for order records"""

    def test_order_fields_and_customer_reference(self, raw_order):
        """Test nested customer id extraction and money fields"""
        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert isinstance(order, CanonicalOrder)
        assert order.external_id == "100"
        assert order.order_number == "1001"
        assert order.customer_external_id == "501"
        assert order.total_price == Decimal("49.99")
        assert order.currency == "USD"
        assert order.fulfillment_status == ""

    def test_timestamps_are_converted_to_utc(self, raw_order):
        """Test ISO-8601 offsets are normalized to naive UTC"""
        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert order.processed_at == datetime(2024, 3, 1, 15, 15, 0)
        assert order.cancelled_at is None

    def test_malformed_timestamp_is_none(self, raw_order):
        """Test an unparseable timestamp falls back to None"""
        raw_order["processed_at"] = "yesterday"

        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert order.processed_at is None

    def test_lines_snapshot_and_total(self, raw_order):
        """Test line snapshot fields and computed line total"""
        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert len(order.lines) == 1
        line = order.lines[0]
        assert line.external_id == "9001"
        assert line.product_external_id == "701"
        assert line.variant_external_id == "7011"
        assert line.title == "Widget"
        assert line.quantity == 2
        assert line.line_total == Decimal("49.99")

    def test_line_without_id_gets_positional_id(self, raw_order):
        """Test positional ids for lines lacking one"""
        raw_order["line_items"].append({"product_id": 702, "price": "5.00"})

        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert order.lines[1].external_id == "100:1"
        assert order.lines[1].position == 1
        assert order.lines[1].quantity == 0

    def test_order_without_customer(self, raw_order):
        """Test guest checkouts have no customer reference"""
        raw_order["customer"] = None

        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert order.customer_external_id is None

    def test_canonical_records_are_immutable(self, raw_order):
        """Test canonical records cannot be mutated"""
        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        with pytest.raises(AttributeError):
            order.total_price = Decimal("1")


class TestOutOfRangeNumbers:
    """Tests for numbers wider than their columns"""

    @pytest.mark.parametrize("quantity", ["1e20", 10 ** 20, -(10 ** 12), "1e999999999", "-inf"])
    def test_oversized_quantity_defaults_to_zero(self, raw_order, quantity):
        """Test huge or non-finite quantities do not fail the order"""
        raw_order["line_items"][0]["quantity"] = quantity

        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert order.lines[0].quantity == 0
        assert order.lines[0].price == Decimal("25.00")

    def test_largest_integer_is_kept(self, raw_product):
        raw_product["variants"][0]["inventory_quantity"] = 2 ** 31 - 1

        product = normalize(EntityKind.PRODUCTS, raw_product).unwrap()

        assert product.inventory_quantity == 2 ** 31 - 1

    def test_oversized_prices_default_to_zero(self, raw_order):
        """Test money fields are checked against their own column width"""
        raw_order["line_items"][0]["price"] = "123456789.00"
        raw_order["total_price"] = "123456789.00"
        raw_order["total_tax"] = "1e12"

        order = normalize(EntityKind.ORDERS, raw_order).unwrap()

        assert order.lines[0].price == Decimal("0")
        assert order.total_price == Decimal("123456789.00")
        assert order.total_tax == Decimal("0")


class TestNormalizationFailures:
    """Tests for the only failing inputs"""

    @pytest.mark.parametrize("raw", [{}, {"id": None}, {"id": ""}, {"id": "  "}])
    def test_missing_id_fails(self, raw):
        """Test that a missing or blank id fails"""
        result = normalize(EntityKind.ORDERS, raw)

        assert not result.ok
        assert result.error.kind == "orders"
        assert result.error.reason == "missing id"
        with pytest.raises(NormalizationError):
            result.unwrap()

    @pytest.mark.parametrize("raw", [None, [], "order", 42])
    def test_non_object_fails(self, raw):
        """Test that non-object raw values fail"""
        result = normalize(EntityKind.CUSTOMERS, raw)

        assert not result.ok
        assert result.error.external_id is None

    def test_normalization_is_pure(self, raw_order):
        """Test the same input yields equal output"""
        assert normalize(EntityKind.ORDERS, raw_order).unwrap() == normalize(EntityKind.ORDERS, raw_order).unwrap()
