"""
Payouts Router — payout creation, history, previews and processing.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.deps import get_payout_scheduler
from marketplace.payouts import ADJUSTMENT_TYPES, AdjustmentInput, PayoutScheduler

router = APIRouter(prefix="/api/v1/payouts", tags=["payouts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class AdjustmentIn(BaseModel):
    type: str = Field(..., pattern=f"^({'|'.join(ADJUSTMENT_TYPES)})$")
    amount: Decimal
    description: str | None = Field(None, max_length=500)


class PayoutCreate(BaseModel):
    end_date: datetime | None = None
    adjustments: list[AdjustmentIn] = []


class BatchPayoutRequest(BaseModel):
    vendor_ids: list[UUID] | None = None
    end_date: datetime | None = None
    min_amount: Decimal | None = Field(None, ge=0)


class AdjustmentResponse(BaseModel):
    adjustment_id: UUID
    type: str
    amount: Decimal
    description: str | None

    model_config = {"from_attributes": True}


class PayoutResponse(BaseModel):
    payout_id: UUID
    vendor_id: UUID
    amount: Decimal
    commission_total: Decimal
    adjustment_total: Decimal
    commission_count: int
    currency: str
    status: str
    period_start: datetime
    period_end: datetime
    transfer_ref: str | None
    failure_reason: str | None
    created_at: datetime
    processed_at: datetime | None
    paid_at: datetime | None
    failed_at: datetime | None
    reversed_at: datetime | None
    adjustments: list[AdjustmentResponse] = []

    model_config = {"from_attributes": True}


class PayoutStatusBucket(BaseModel):
    count: int
    amount: Decimal


class PayoutListSummary(BaseModel):
    total_count: int
    total_amount: Decimal
    by_status: dict[str, PayoutStatusBucket]


class PayoutListResponse(BaseModel):
    payouts: list[PayoutResponse]
    summary: PayoutListSummary


class NextPayoutResponse(BaseModel):
    vendor_id: UUID
    commission_count: int
    amount: Decimal
    currency: str
    period_start: datetime | None
    period_end: datetime
    has_payment_account: bool


class BatchResult(BaseModel):
    vendor_id: UUID
    vendor_name: str
    status: str
    payout_id: UUID | None = None
    amount: Decimal | None = None
    reason: str | None = None
    error: str | None = None


class BatchPayoutResponse(BaseModel):
    total: int
    created: int
    skipped: int
    failed: int
    results: list[BatchResult]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/vendors/{vendor_id}", response_model=PayoutResponse, status_code=201)
async def create_payout(
    vendor_id: UUID,
    body: PayoutCreate,
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    """Create a pending payout from the vendor's collected, unpaid commissions."""
    adjustments = [AdjustmentInput(**adj.model_dump()) for adj in body.adjustments]
    return await scheduler.create_payout(vendor_id, end_date=body.end_date, adjustments=adjustments)


@router.get("/vendors/{vendor_id}", response_model=PayoutListResponse)
async def list_payouts(
    vendor_id: UUID,
    status: str | None = None,
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    return await scheduler.list_payouts(vendor_id, status=status, start=start, end=end, limit=limit, offset=offset)


@router.get("/vendors/{vendor_id}/next", response_model=NextPayoutResponse)
async def next_payout(
    vendor_id: UUID,
    end_date: datetime | None = Query(None),
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    """Preview the next payout without creating anything."""
    return await scheduler.calculate_next_payout(vendor_id, end_date=end_date)


@router.post("/batch", response_model=BatchPayoutResponse)
async def batch_payouts(
    body: BatchPayoutRequest,
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    return await scheduler.create_batch_payouts(
        vendor_ids=body.vendor_ids,
        end_date=body.end_date,
        min_amount=body.min_amount,
    )


@router.post("/{payout_id}/process", response_model=PayoutResponse)
async def process_payout(
    payout_id: UUID,
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    """Send a pending payout to the payment gateway."""
    payout = await scheduler.process_payout(payout_id)
    return await scheduler.payouts.get(payout.payout_id, with_adjustments=True)


@router.post("/{payout_id}/requeue", response_model=PayoutResponse)
async def requeue_payout(
    payout_id: UUID,
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    """Move a failed payout back to pending for a manual re-drive."""
    payout = await scheduler.requeue_payout(payout_id)
    return await scheduler.payouts.get(payout.payout_id, with_adjustments=True)
