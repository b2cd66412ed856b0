"""
Tests for the Cart Splitter.

Covers:
  - Grouping by vendor with per-group commission splits
  - Totals consistency
  - Rejection of empty carts, unknown / inactive vendors and bad lines
  - Draft vendor order generation
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import FIXED_NOW
from core.errors import InvalidStateError, NotFoundError, ValidationError
from db.models import CommissionRecord
from marketplace.cart import Cart, CartItem, CartSplitter
from marketplace.commissions import CommissionEngine
from marketplace.repositories import SqlVendorDirectory


@pytest.fixture
def splitter(test_db):
    engine = CommissionEngine(test_db, clock=lambda: FIXED_NOW)
    return CartSplitter(SqlVendorDirectory(test_db), engine)


def _cart(shop, brand) -> Cart:
    return Cart(
        cart_id="cart_1",
        items=[
            CartItem("var_mug", shop.vendor_id, 2, Decimal("12.50"), title="Mug"),
            CartItem("var_tee", brand.vendor_id, 1, Decimal("30.00"), title="Tee"),
            CartItem("var_pin", shop.vendor_id, 3, Decimal("4.99"), title="Pin"),
        ],
    )


@pytest.mark.asyncio
class TestSplit:
    async def test_groups_items_by_vendor(self, splitter, seeded_db):
        """Items are grouped per vendor, in the order vendors first appear."""
        shop, brand = seeded_db["shop"], seeded_db["brand"]

        split = await splitter.split(_cart(shop, brand))

        assert [g.vendor.vendor_id for g in split.vendor_groups] == [shop.vendor_id, brand.vendor_id]
        assert [i.variant_id for i in split.vendor_groups[0].items] == ["var_mug", "var_pin"]
        assert split.vendor_groups[0].subtotal == Decimal("39.97")
        assert split.vendor_groups[1].subtotal == Decimal("30.00")

    async def test_commission_per_group(self, splitter, seeded_db):
        shop, brand = seeded_db["shop"], seeded_db["brand"]

        split = await splitter.split(_cart(shop, brand))
        shop_group, brand_group = split.vendor_groups

        assert shop_group.commission_rate == Decimal("15")
        assert shop_group.commission_tier == "bronze"
        assert shop_group.commission_amount == Decimal("6.00")
        assert shop_group.net_amount == Decimal("33.97")
        assert brand_group.commission_tier == "fixed"
        assert brand_group.commission_amount == Decimal("3.00")
        assert brand_group.net_amount == Decimal("27.00")

    async def test_totals_add_up(self, splitter, seeded_db):
        """Cart totals equal the sum of groups, and commission + payout equals the total."""
        split = await splitter.split(_cart(seeded_db["shop"], seeded_db["brand"]))

        assert split.total_amount == sum(g.subtotal for g in split.vendor_groups)
        assert split.total_commission == sum(g.commission_amount for g in split.vendor_groups)
        assert split.total_commission + split.total_vendor_payout == split.total_amount
        assert split.total_amount == Decimal("69.97")

    async def test_split_has_no_side_effects(self, splitter, test_db, seeded_db):
        await splitter.split(_cart(seeded_db["shop"], seeded_db["brand"]))

        count = await test_db.scalar(select(func.count()).select_from(CommissionRecord))
        assert count == 0

    async def test_empty_cart(self, splitter, seeded_db):
        with pytest.raises(ValidationError):
            await splitter.split(Cart(items=[]))

    async def test_unknown_vendor(self, splitter, seeded_db):
        cart = Cart(items=[CartItem("var_x", uuid.uuid4(), 1, Decimal("5.00"))])
        with pytest.raises(NotFoundError):
            await splitter.split(cart)

    async def test_inactive_vendor(self, splitter, seeded_db):
        cart = Cart(items=[CartItem("var_x", seeded_db["inactive"].vendor_id, 1, Decimal("5.00"))])
        with pytest.raises(InvalidStateError):
            await splitter.split(cart)

    async def test_item_without_vendor(self, splitter, seeded_db):
        cart = Cart(items=[CartItem("var_x", None, 1, Decimal("5.00"))])
        with pytest.raises(ValidationError):
            await splitter.split(cart)

    async def test_non_positive_quantity(self, splitter, seeded_db):
        cart = Cart(items=[CartItem("var_x", seeded_db["shop"].vendor_id, 0, Decimal("5.00"))])
        with pytest.raises(ValidationError):
            await splitter.split(cart)

    async def test_negative_price(self, splitter, seeded_db):
        cart = Cart(items=[CartItem("var_x", seeded_db["shop"].vendor_id, 1, Decimal("-5.00"))])
        with pytest.raises(ValidationError):
            await splitter.split(cart)


@pytest.mark.asyncio
class TestSummaryAndDrafts:
    async def test_vendor_summary(self, splitter, seeded_db):
        summary = await splitter.vendor_summary(_cart(seeded_db["shop"], seeded_db["brand"]))

        assert summary["vendor_count"] == 2
        assert summary["vendors"][0]["vendor_name"] == "Corner Shop"
        assert summary["vendors"][0]["item_count"] == 2
        assert summary["total_commission"] == Decimal("9.00")
        assert summary["total_vendor_payout"] == Decimal("60.97")

    async def test_to_vendor_orders(self, splitter, seeded_db):
        """One pending draft order per vendor group, items reduced to line data."""
        split = await splitter.split(_cart(seeded_db["shop"], seeded_db["brand"]))

        orders = CartSplitter.to_vendor_orders(split)

        assert len(orders) == 2
        assert {o["status"] for o in orders} == {"pending"}
        assert orders[0]["cart_id"] == "cart_1"
        assert orders[0]["vendor_id"] == str(seeded_db["shop"].vendor_id)
        assert orders[0]["items"][0] == {
            "variant_id": "var_mug",
            "quantity": 2,
            "unit_price": Decimal("12.50"),
            "title": "Mug",
        }
        assert orders[1]["net_amount"] == Decimal("27.00")
