"""
Payout Scheduler — batch collected commissions into vendor payouts.

Flow:
  create_payout   collected + unreserved commissions → Payout(pending),
                  reserving every included record in the same transaction
  process_payout  Payout(pending) → gateway transfer → processing, records paid
                  (on gateway failure: Payout(failed), records stay reserved)
  webhooks        processing → paid | failed, processing | paid → reversed;
                  events from any other source status are ignored

A commission's payout_id is written once. Reservation is a conditional
UPDATE (``payout_id IS NULL``) whose row count must match the selection,
so two concurrent payouts for the same vendor can never share a record.

Failed transfers are not retried automatically; an operator re-drives
them with requeue_payout + process_payout.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import (
    ConcurrencyConflictError,
    ExternalGatewayError,
    InvalidStateError,
    NotFoundError,
    NoUnpaidCommissionsError,
    ValidationError,
)
from db.models import Payout, PayoutAdjustment, Vendor
from integrations.base import GatewayEvent, GatewayEventType, PaymentGateway
from marketplace.commissions import CommissionEngine, round2
from marketplace.repositories import CommissionRepository, PayoutRepository, SqlVendorDirectory

logger = structlog.get_logger()

ADJUSTMENT_TYPES = ("fee", "bonus", "clawback", "correction")
MAX_PAGE_SIZE = 100

# Source statuses each transfer event may move a payout out of.
WEBHOOK_TRANSITIONS = {
    GatewayEventType.PAYOUT_PAID.value: {"processing"},
    GatewayEventType.PAYOUT_FAILED.value: {"processing"},
    GatewayEventType.TRANSFER_REVERSED.value: {"processing", "paid"},
}


@dataclass
class AdjustmentInput:
    type: str
    amount: Decimal  # signed; negative reduces the payout
    description: str | None = None


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayoutScheduler:
    """Creates, processes and reconciles vendor payouts."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        vendors: SqlVendorDirectory | None = None,
        commissions: CommissionRepository | None = None,
        payouts: PayoutRepository | None = None,
        commission_engine: CommissionEngine | None = None,
        currency: str = "usd",
        min_amount: Decimal = Decimal("0"),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.vendors = vendors or SqlVendorDirectory(db)
        self.commissions = commissions or CommissionRepository(db)
        self.payouts = payouts or PayoutRepository(db)
        self.commission_engine = commission_engine or CommissionEngine(
            db, vendors=self.vendors, commissions=self.commissions, clock=clock
        )
        self.currency = currency
        self.min_amount = min_amount
        self.clock = clock

    async def _require_vendor(self, vendor_id: uuid.UUID) -> Vendor:
        vendor = await self.vendors.get(vendor_id)
        if vendor is None:
            raise NotFoundError(f"Vendor {vendor_id} not found")
        return vendor

    async def _require_payout(self, payout_id: uuid.UUID) -> Payout:
        payout = await self.payouts.get(payout_id)
        if payout is None:
            raise NotFoundError(f"Payout {payout_id} not found")
        return payout

    # ── Creation ──────────────────────────────────────────────────────

    async def create_payout(
        self,
        vendor_id: uuid.UUID,
        end_date: datetime | None = None,
        adjustments: list[AdjustmentInput] | None = None,
    ) -> Payout:
        vendor = await self._require_vendor(vendor_id)
        if not vendor.active:
            raise InvalidStateError(f"Vendor {vendor.name} is not active")
        if not vendor.payment_account_ref:
            raise InvalidStateError(f"Vendor {vendor.name} has no active payment account")

        adjustments = adjustments or []
        for adj in adjustments:
            if adj.type not in ADJUSTMENT_TYPES:
                raise ValidationError(f"Unknown adjustment type '{adj.type}'")

        period_end = end_date or self.clock()
        unpaid = await self.commissions.find_unpaid_commissions(vendor_id, on_or_before=period_end, for_update=True)
        if not unpaid:
            raise NoUnpaidCommissionsError(f"No unpaid commissions for vendor {vendor.name}")

        commission_total = sum((r.net_amount for r in unpaid), Decimal("0"))
        adjustment_total = sum((round2(a.amount) for a in adjustments), Decimal("0"))
        amount = commission_total + adjustment_total
        if amount <= 0:
            raise ValidationError(f"Payout amount must be positive (got {amount})")

        now = self.clock()
        payout = Payout(
            payout_id=uuid.uuid4(),
            vendor_id=vendor_id,
            amount=amount,
            commission_total=commission_total,
            adjustment_total=adjustment_total,
            commission_count=len(unpaid),
            currency=self.currency,
            status="pending",
            period_start=min(r.created_at for r in unpaid),
            period_end=period_end,
            created_at=now,
            adjustments=[
                PayoutAdjustment(type=a.type, amount=round2(a.amount), description=a.description, created_at=now)
                for a in adjustments
            ],
        )
        await self.payouts.add(payout)

        commission_ids = [r.commission_id for r in unpaid]
        reserved = await self.commissions.reserve_commissions(commission_ids, payout.payout_id)
        if reserved != len(commission_ids):
            await self.db.rollback()
            logger.warning(
                "payout.reservation_conflict",
                vendor_id=str(vendor_id),
                expected=len(commission_ids),
                reserved=reserved,
            )
            raise ConcurrencyConflictError(
                f"Commissions for vendor {vendor_id} were reserved by a concurrent payout; retry"
            )

        await self.db.commit()
        logger.info(
            "payout.created",
            payout_id=str(payout.payout_id),
            vendor_id=str(vendor_id),
            amount=str(amount),
            commission_count=len(unpaid),
            adjustment_total=str(adjustment_total),
        )
        return payout

    # ── Processing ────────────────────────────────────────────────────

    async def process_payout(self, payout_id: uuid.UUID) -> Payout:
        payout = await self._require_payout(payout_id)
        if payout.status != "pending":
            raise InvalidStateError(f"Payout {payout_id} is {payout.status}, expected pending")

        vendor = await self._require_vendor(payout.vendor_id)
        if not vendor.payment_account_ref:
            raise InvalidStateError(f"Vendor {vendor.name} has no active payment account")

        metadata = {
            "payout_id": str(payout.payout_id),
            "vendor_id": str(vendor.vendor_id),
            "commission_count": str(payout.commission_count),
        }
        try:
            result = await self.gateway.transfer(
                vendor.payment_account_ref,
                to_cents(payout.amount),
                payout.currency,
                metadata,
                idempotency_key=f"payout-{payout.payout_id}",
            )
        except ExternalGatewayError as exc:
            payout.status = "failed"
            payout.failure_reason = (exc.reason or exc.message)[:500]
            payout.failed_at = self.clock()
            await self.db.commit()
            logger.error(
                "payout.failed",
                payout_id=str(payout.payout_id),
                vendor_id=str(vendor.vendor_id),
                reason=payout.failure_reason,
            )
            raise

        payout.transfer_ref = result.transfer_ref
        payout.status = "processing"
        payout.processed_at = self.clock()

        records = await self.commissions.list_for_payout(payout.payout_id)
        await self.commission_engine.mark_paid([r.commission_id for r in records], payout.payout_id)
        await self.db.commit()

        logger.info(
            "payout.processed",
            payout_id=str(payout.payout_id),
            vendor_id=str(vendor.vendor_id),
            transfer_ref=result.transfer_ref,
            amount=str(payout.amount),
        )
        return payout

    async def requeue_payout(self, payout_id: uuid.UUID) -> Payout:
        """Manual re-drive: failed → pending. Commissions stay reserved to this payout."""
        payout = await self._require_payout(payout_id)
        if payout.status != "failed":
            raise InvalidStateError(f"Payout {payout_id} is {payout.status}, expected failed")

        payout.status = "pending"
        payout.failure_reason = None
        payout.failed_at = None
        await self.db.commit()
        logger.info("payout.requeued", payout_id=str(payout_id))
        return payout

    # ── Previews and batches ──────────────────────────────────────────

    async def calculate_next_payout(self, vendor_id: uuid.UUID, end_date: datetime | None = None) -> dict:
        """Read-only preview of what create_payout would include right now."""
        vendor = await self._require_vendor(vendor_id)
        period_end = end_date or self.clock()
        unpaid = await self.commissions.find_unpaid_commissions(vendor_id, on_or_before=period_end)
        total = sum((r.net_amount for r in unpaid), Decimal("0"))
        return {
            "vendor_id": str(vendor_id),
            "commission_count": len(unpaid),
            "amount": round2(total),
            "currency": self.currency,
            "period_start": min((r.created_at for r in unpaid), default=None),
            "period_end": period_end,
            "has_payment_account": bool(vendor.payment_account_ref),
        }

    async def create_batch_payouts(
        self,
        vendor_ids: list[uuid.UUID] | None = None,
        end_date: datetime | None = None,
        min_amount: Decimal | None = None,
    ) -> dict:
        """
        Create payouts for every active, onboarded vendor (optionally filtered).

        Vendors run sequentially; one vendor's failure is recorded in
        ``results`` and never aborts the rest of the batch.
        """
        minimum = self.min_amount if min_amount is None else Decimal(min_amount)
        period_end = end_date or self.clock()

        # Plain tuples: a per-vendor rollback expires ORM instances.
        vendors = [
            (v.vendor_id, v.name)
            for v in await self.vendors.list_active(vendor_ids=vendor_ids, onboarded_only=True)
        ]

        results = []
        counts = {"created": 0, "skipped": 0, "failed": 0}
        for vendor_id, vendor_name in vendors:
            entry = {"vendor_id": str(vendor_id), "vendor_name": vendor_name}
            try:
                preview = await self.calculate_next_payout(vendor_id, end_date=period_end)
                if preview["commission_count"] == 0:
                    entry.update(status="skipped", reason="No unpaid commissions")
                elif preview["amount"] < minimum:
                    entry.update(status="skipped", reason=f"Below minimum amount of {minimum}")
                else:
                    payout = await self.create_payout(vendor_id, end_date=period_end)
                    entry.update(status="created", payout_id=str(payout.payout_id), amount=payout.amount)
            except Exception as exc:
                await self.db.rollback()
                logger.exception("payout.batch_vendor_failed", vendor_id=str(vendor_id))
                entry.update(status="failed", error=getattr(exc, "message", None) or str(exc))

            counts[entry["status"]] += 1
            results.append(entry)

        logger.info("payout.batch_completed", total=len(vendors), **counts)
        return {"total": len(vendors), **counts, "results": results}

    # ── History ───────────────────────────────────────────────────────

    async def list_payouts(
        self,
        vendor_id: uuid.UUID,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        if start and end and start > end:
            raise ValidationError("start date must be on or before end date")
        if not 1 <= limit <= MAX_PAGE_SIZE or offset < 0:
            raise ValidationError(f"limit must be 1..{MAX_PAGE_SIZE} and offset non-negative")
        await self._require_vendor(vendor_id)

        payouts = await self.payouts.list_for_vendor(
            vendor_id, status=status, start=start, end=end, limit=limit, offset=offset
        )
        by_status: dict[str, dict] = {}
        total_amount = Decimal("0")
        for payout in payouts:
            total_amount += payout.amount
            bucket = by_status.setdefault(payout.status, {"count": 0, "amount": Decimal("0")})
            bucket["count"] += 1
            bucket["amount"] += payout.amount

        return {
            "payouts": payouts,
            "summary": {"total_count": len(payouts), "total_amount": total_amount, "by_status": by_status},
        }

    # ── Reconciliation ────────────────────────────────────────────────

    async def _apply_account_update(self, event: GatewayEvent) -> dict:
        vendor = await self.vendors.get_by_account_ref(event.account_ref) if event.account_ref else None
        if vendor is None:
            await self.db.commit()
            return {"status": "ignored", "reason": "unknown account"}

        await self.vendors.set_onboarding_flags(
            vendor.vendor_id,
            payouts_enabled=bool(event.data.get("payouts_enabled")),
            details_submitted=bool(event.data.get("details_submitted")),
        )
        await self.db.commit()
        logger.info("vendor.onboarding_updated", vendor_id=str(vendor.vendor_id), account=event.account_ref)
        return {"status": "processed", "vendor_id": str(vendor.vendor_id)}

    async def handle_transfer_webhook(self, event: GatewayEvent) -> dict:
        """
        Apply a verified gateway event. At-least-once delivery: the event id is
        recorded in the same transaction as the state change, and repeats are
        acknowledged without effect.
        """
        payout_uuid = None
        if event.payout_id:
            try:
                payout_uuid = uuid.UUID(event.payout_id)
            except ValueError:
                payout_uuid = None

        if not await self.payouts.record_webhook_event(event.event_id, event.type, payout_uuid):
            logger.info("payout.webhook_duplicate", event_id=event.event_id, event_type=event.type)
            return {"status": "duplicate", "event_id": event.event_id}

        if event.type == GatewayEventType.ACCOUNT_UPDATED.value:
            return await self._apply_account_update(event)

        payout = await self.payouts.get(payout_uuid) if payout_uuid else None
        if payout is None or event.type not in WEBHOOK_TRANSITIONS:
            await self.db.commit()
            return {"status": "ignored", "event_id": event.event_id}

        now = self.clock()
        if payout.status not in WEBHOOK_TRANSITIONS[event.type]:
            logger.warning(
                "payout.webhook_ignored",
                payout_id=str(payout.payout_id),
                event_id=event.event_id,
                event_type=event.type,
                payout_status=payout.status,
            )
            await self.db.commit()
            return {"status": "ignored", "event_id": event.event_id, "payout_status": payout.status}

        if event.type == GatewayEventType.TRANSFER_REVERSED.value:
            payout.status = "reversed"
            payout.reversed_at = now
            logger.warning("payout.reversed", payout_id=str(payout.payout_id), event_id=event.event_id)
        elif event.type == GatewayEventType.PAYOUT_PAID.value:
            payout.status = "paid"
            payout.paid_at = now
            logger.info("payout.paid", payout_id=str(payout.payout_id), event_id=event.event_id)
        elif event.type == GatewayEventType.PAYOUT_FAILED.value:
            payout.status = "failed"
            payout.failed_at = now
            payout.failure_reason = (event.failure_reason or "Payout failed at gateway")[:500]
            logger.error("payout.failed", payout_id=str(payout.payout_id), reason=payout.failure_reason)

        await self.db.commit()
        return {"status": "processed", "event_id": event.event_id, "payout_status": payout.status}
