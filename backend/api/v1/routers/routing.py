"""
Routing Router — fulfillment routing and simulation.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_location_catalog, get_router
from marketplace.repositories import SqlLocationCatalog
from marketplace.routing import Address, FulfillmentRouter, RoutingItem, RoutingRequest

router = APIRouter(prefix="/api/v1/routing", tags=["routing"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class AddressIn(BaseModel):
    country_code: str = Field(..., min_length=2, max_length=2)
    state_province: str | None = None
    city: str | None = None
    postal_code: str | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class RoutingItemIn(BaseModel):
    variant_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    vendor_id: str | None = None
    product_id: str | None = None
    metadata: dict = {}


class RouteRequestIn(BaseModel):
    order_id: str | None = None
    address: AddressIn
    items: list[RoutingItemIn] = Field(..., min_length=1)
    service_level: str = Field("standard", pattern="^(standard|express|overnight)$")
    exclude_locations: list[str] = []
    preferred_locations: list[str] = []
    dry_run: bool = True

    def to_request(self) -> RoutingRequest:
        return RoutingRequest(
            address=Address(**self.address.model_dump()),
            items=[RoutingItem(**item.model_dump()) for item in self.items],
            order_id=self.order_id,
            service_level=self.service_level,
            exclude_locations=self.exclude_locations,
            preferred_locations=self.preferred_locations,
        )


class AssignmentOut(BaseModel):
    location_id: UUID
    location_code: str
    vendor_id: str
    items: list[RoutingItemIn]
    estimated_cost: int
    estimated_delivery_days: int


class RouteResponse(BaseModel):
    request_id: str
    timestamp: datetime
    optimal: AssignmentOut
    alternatives: list[AssignmentOut]
    total_estimated_cost: int
    total_estimated_delivery_days: int
    metadata: dict
    scores: list[dict]
    recorded: bool


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/route", response_model=RouteResponse)
async def route_order(
    body: RouteRequestIn,
    fulfillment_router: FulfillmentRouter = Depends(get_router),
    catalog: SqlLocationCatalog = Depends(get_location_catalog),
    db: AsyncSession = Depends(get_db),
):
    """
    Score candidate locations and pick one.

    With ``dry_run`` (default) this is a pure simulation; otherwise the
    chosen location's daily order counter is incremented.
    """
    result = await fulfillment_router.route(body.to_request())
    if not body.dry_run:
        await catalog.record_assignment(result.optimal.location_id)
        await db.commit()
    return {**result.to_dict(), "recorded": not body.dry_run}
