"""
Commissions Router — ledger writes and commission reporting.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.deps import get_commission_engine
from marketplace.commissions import CommissionEngine

router = APIRouter(prefix="/api/v1/commissions", tags=["commissions"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CommissionCreate(BaseModel):
    order_total: Decimal = Field(..., ge=0)


class CommissionResponse(BaseModel):
    commission_id: UUID
    vendor_id: UUID
    order_id: str
    order_total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    status: str
    payout_id: UUID | None
    created_at: datetime
    collected_at: datetime | None
    paid_at: datetime | None

    model_config = {"from_attributes": True}


class StatusBreakdown(BaseModel):
    count: int
    commission: Decimal
    net: Decimal


class VendorReportSummary(BaseModel):
    total_orders: int
    total_sales: Decimal
    total_commission: Decimal
    total_net: Decimal
    by_status: dict[str, StatusBreakdown]


class VendorReportResponse(BaseModel):
    vendor_id: UUID
    period: dict[str, datetime | None]
    summary: VendorReportSummary
    records: list[CommissionResponse]


class AnalyticsBucket(BaseModel):
    count: int
    total_sales: Decimal
    total_commission: Decimal
    total_net: Decimal
    avg_commission_rate: Decimal | None = None


class AnalyticsResponse(BaseModel):
    period: dict[str, datetime | None]
    totals: dict[str, Decimal | int]
    by_vendor_type: dict[str, AnalyticsBucket]
    by_status: dict[str, AnalyticsBucket]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post(
    "/orders/{order_id}/vendors/{vendor_id}",
    response_model=CommissionResponse,
    status_code=201,
)
async def record_commission(
    order_id: str,
    vendor_id: UUID,
    body: CommissionCreate,
    engine: CommissionEngine = Depends(get_commission_engine),
):
    """Record the commission for a placed vendor order (pending until delivery)."""
    return await engine.record_commission(order_id, vendor_id, body.order_total)


@router.post("/orders/{order_id}/collect", response_model=list[CommissionResponse])
async def collect_commission(
    order_id: str,
    vendor_id: UUID | None = None,
    engine: CommissionEngine = Depends(get_commission_engine),
):
    """Mark an order's pending commission(s) collected once delivered."""
    return await engine.mark_collected(order_id, vendor_id=vendor_id)


@router.get("/analytics", response_model=AnalyticsResponse)
async def commission_analytics(
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    engine: CommissionEngine = Depends(get_commission_engine),
):
    return await engine.platform_analytics(start=start, end=end)


@router.get("/vendors/{vendor_id}/report", response_model=VendorReportResponse)
async def vendor_report(
    vendor_id: UUID,
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    engine: CommissionEngine = Depends(get_commission_engine),
):
    return await engine.vendor_report(vendor_id, start=start, end=end)
