"""Tests for freezing a cart into a checkout snapshot."""

from decimal import Decimal

import pydantic
import pytest
from conftest import fill_cart

from exceptions import EmptyCartError
from models.product import Product
from services.cart_snapshot import build_snapshot


class TestBuildSnapshot:
    def test_no_cart(self, db, user):
        with pytest.raises(EmptyCartError, match="Your cart is empty"):
            build_snapshot(db, user.id)

    def test_cart_without_items(self, db, user):
        fill_cart(db, user, [])
        with pytest.raises(EmptyCartError):
            build_snapshot(db, user.id)

    def test_lines_and_totals(self, db, user, products):
        fill_cart(db, user, [(products["mug"], 1), (products["bag"], 2)])

        snapshot = build_snapshot(db, user.id)

        assert [line.product_name for line in snapshot.items] == ["Mug", "Bag"]
        bag = snapshot.items[1]
        assert bag.sku == "BAG-1"
        assert bag.unit_price == Decimal("20.00")
        assert bag.quantity == 2
        assert bag.line_total == Decimal("40.00")
        assert bag.vendor_id == 8
        assert snapshot.sub_total == Decimal("70.00")
        assert snapshot.tax_amount == Decimal("0.00")
        assert snapshot.total_amount == Decimal("70.00")

    def test_tax_per_line(self, db, user, store):
        taxed = Product(store_id=store.id, vendor_id=1, name="Chair", sku="CHR-1",
                        price=Decimal("40.00"), tax_rate=Decimal("23"), stock_quantity=3)
        db.add(taxed)
        db.commit()
        fill_cart(db, user, [(taxed, 1)])

        snapshot = build_snapshot(db, user.id)

        assert snapshot.sub_total == Decimal("40.00")
        assert snapshot.tax_amount == Decimal("9.20")
        assert snapshot.total_amount == Decimal("49.20")

    def test_uses_price_captured_in_cart(self, db, user, products):
        fill_cart(db, user, [(products["mug"], 1)])
        products["mug"].price = Decimal("99.00")
        db.commit()

        snapshot = build_snapshot(db, user.id)

        assert snapshot.items[0].unit_price == Decimal("30.00")

    def test_snapshot_is_frozen(self, db, user, products):
        fill_cart(db, user, [(products["mug"], 1)])
        snapshot = build_snapshot(db, user.id)

        with pytest.raises(pydantic.ValidationError):
            snapshot.sub_total = Decimal("1.00")
        with pytest.raises(pydantic.ValidationError):
            snapshot.items[0].quantity = 5

    def test_does_not_check_stock(self, db, user, products):
        fill_cart(db, user, [(products["lamp"], 50)])

        snapshot = build_snapshot(db, user.id)

        assert snapshot.items[0].quantity == 50
