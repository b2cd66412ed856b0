"""
Cart Router — split previews for multi-vendor carts.
"""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import get_cart_splitter
from marketplace.cart import Cart, CartItem, CartSplit, CartSplitter

router = APIRouter(prefix="/api/v1/cart", tags=["cart"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CartItemIn(BaseModel):
    variant_id: str = Field(..., min_length=1, max_length=64)
    vendor_id: UUID | None = None
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)
    title: str | None = None


class CartIn(BaseModel):
    cart_id: str | None = None
    items: list[CartItemIn]

    def to_cart(self) -> Cart:
        return Cart(cart_id=self.cart_id, items=[CartItem(**item.model_dump()) for item in self.items])


class CartLineOut(BaseModel):
    variant_id: str
    quantity: int
    unit_price: Decimal
    title: str | None = None

    model_config = {"from_attributes": True}


class VendorGroupOut(BaseModel):
    vendor_id: UUID
    vendor_name: str
    vendor_type: str
    items: list[CartLineOut]
    subtotal: Decimal
    commission_rate: Decimal
    commission_tier: str
    commission_amount: Decimal
    net_amount: Decimal


class CartSplitResponse(BaseModel):
    cart_id: str | None
    vendor_groups: list[VendorGroupOut]
    total_amount: Decimal
    total_commission: Decimal
    total_vendor_payout: Decimal
    vendor_orders: list[dict]


class VendorSummaryEntry(BaseModel):
    vendor_id: UUID
    vendor_name: str
    item_count: int
    subtotal: Decimal


class VendorSummaryResponse(BaseModel):
    vendor_count: int
    vendors: list[VendorSummaryEntry]
    total_commission: Decimal
    total_vendor_payout: Decimal


def _split_response(split: CartSplit) -> CartSplitResponse:
    return CartSplitResponse(
        cart_id=split.cart_id,
        vendor_groups=[
            VendorGroupOut(
                vendor_id=group.vendor.vendor_id,
                vendor_name=group.vendor.name,
                vendor_type=group.vendor.type,
                items=[CartLineOut.model_validate(item) for item in group.items],
                subtotal=group.subtotal,
                commission_rate=group.commission_rate,
                commission_tier=group.commission_tier,
                commission_amount=group.commission_amount,
                net_amount=group.net_amount,
            )
            for group in split.vendor_groups
        ],
        total_amount=split.total_amount,
        total_commission=split.total_commission,
        total_vendor_payout=split.total_vendor_payout,
        vendor_orders=CartSplitter.to_vendor_orders(split),
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/split", response_model=CartSplitResponse)
async def split_cart(body: CartIn, splitter: CartSplitter = Depends(get_cart_splitter)):
    """Preview the per-vendor split of a cart, with draft vendor orders."""
    return _split_response(await splitter.split(body.to_cart()))


@router.post("/vendor-summary", response_model=VendorSummaryResponse)
async def vendor_summary(body: CartIn, splitter: CartSplitter = Depends(get_cart_splitter)):
    return await splitter.vendor_summary(body.to_cart())
