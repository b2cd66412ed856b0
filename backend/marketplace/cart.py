"""
Cart Splitter — break a multi-vendor cart into per-vendor draft orders.

Each vendor group carries its subtotal and the commission split computed
by the CommissionEngine. Nothing is persisted here; the caller decides
what to do with the drafts (preview, or create vendor orders on checkout).
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal

import structlog

from core.errors import InvalidStateError, NotFoundError, ValidationError
from db.models import Vendor
from marketplace.commissions import CommissionEngine, round2
from marketplace.ports import VendorDirectory

logger = structlog.get_logger()


@dataclass
class CartItem:
    variant_id: str
    vendor_id: uuid.UUID | None
    quantity: int
    unit_price: Decimal
    title: str | None = None

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity


@dataclass
class Cart:
    items: list[CartItem]
    cart_id: str | None = None


@dataclass
class VendorCartGroup:
    """One vendor's share of the cart."""

    vendor: Vendor
    items: list[CartItem]
    subtotal: Decimal
    commission_rate: Decimal
    commission_tier: str
    commission_amount: Decimal
    net_amount: Decimal


@dataclass
class CartSplit:
    cart_id: str | None
    vendor_groups: list[VendorCartGroup] = field(default_factory=list)
    total_amount: Decimal = Decimal("0.00")
    total_commission: Decimal = Decimal("0.00")
    total_vendor_payout: Decimal = Decimal("0.00")


def _group_by_vendor(items: list[CartItem]) -> dict[uuid.UUID, list[CartItem]]:
    if not items:
        raise ValidationError("Cart has no items")

    groups: dict[uuid.UUID, list[CartItem]] = {}
    for item in items:
        if item.vendor_id is None:
            raise ValidationError(f"Item {item.variant_id} has no vendor")
        if item.quantity <= 0:
            raise ValidationError(f"Item {item.variant_id} has non-positive quantity")
        if Decimal(item.unit_price) < 0:
            raise ValidationError(f"Item {item.variant_id} has a negative unit price")
        groups.setdefault(item.vendor_id, []).append(item)
    return groups


class CartSplitter:
    def __init__(self, vendors: VendorDirectory, commission_engine: CommissionEngine):
        self.vendors = vendors
        self.commission_engine = commission_engine

    async def _active_vendor(self, vendor_id: uuid.UUID) -> Vendor:
        vendor = await self.vendors.get(vendor_id)
        if vendor is None:
            raise NotFoundError(f"Vendor {vendor_id} not found")
        if not vendor.active:
            raise InvalidStateError(f"Vendor {vendor.name} is not active")
        return vendor

    async def split(self, cart: Cart) -> CartSplit:
        """
        Group items by vendor and compute each group's commission split.

        Vendor groups keep first-seen order. Raises ValidationError for an
        empty cart or an item without a vendor, NotFoundError for an unknown
        vendor and InvalidStateError for an inactive vendor.
        """
        groups = _group_by_vendor(cart.items)
        result = CartSplit(cart_id=cart.cart_id)

        for vendor_id, items in groups.items():
            vendor = await self._active_vendor(vendor_id)
            subtotal = round2(sum((item.line_total for item in items), Decimal("0")))
            quote = await self.commission_engine.calculate(vendor, subtotal)

            result.vendor_groups.append(
                VendorCartGroup(
                    vendor=vendor,
                    items=items,
                    subtotal=subtotal,
                    commission_rate=quote.commission_rate,
                    commission_tier=quote.commission_tier,
                    commission_amount=quote.commission_amount,
                    net_amount=quote.net_amount,
                )
            )
            result.total_amount += subtotal
            result.total_commission += quote.commission_amount
            result.total_vendor_payout += quote.net_amount

        logger.info(
            "cart.split",
            cart_id=cart.cart_id,
            vendor_count=len(result.vendor_groups),
            total_amount=str(result.total_amount),
            total_commission=str(result.total_commission),
        )
        return result

    async def vendor_summary(self, cart: Cart) -> dict:
        """Compact per-vendor breakdown used to enrich cart metadata."""
        split = await self.split(cart)
        return {
            "vendor_count": len(split.vendor_groups),
            "vendors": [
                {
                    "vendor_id": str(group.vendor.vendor_id),
                    "vendor_name": group.vendor.name,
                    "item_count": len(group.items),
                    "subtotal": group.subtotal,
                }
                for group in split.vendor_groups
            ],
            "total_commission": split.total_commission,
            "total_vendor_payout": split.total_vendor_payout,
        }

    @staticmethod
    def to_vendor_orders(split: CartSplit) -> list[dict]:
        """Draft vendor orders for checkout. The caller persists them."""
        return [
            {
                "vendor_id": str(group.vendor.vendor_id),
                "cart_id": split.cart_id,
                "status": "pending",
                "subtotal": group.subtotal,
                "commission_rate": group.commission_rate,
                "commission_amount": group.commission_amount,
                "net_amount": group.net_amount,
                "items": [
                    {
                        "variant_id": item.variant_id,
                        "quantity": item.quantity,
                        "unit_price": Decimal(item.unit_price),
                        "title": item.title,
                    }
                    for item in group.items
                ],
            }
            for group in split.vendor_groups
        ]
