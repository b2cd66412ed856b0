"""
Commission Engine — platform cut vs. vendor net, tiering and the commission ledger.

Rate schedule:
  - shop:        tiered on trailing 3-month average monthly sales
                   bronze  (< $50,000)            15%
                   silver  ($50,000 – $200,000)   20%
                   gold    (>= $200,000)          25%
  - brand:       fixed 10%
  - distributor: fixed 5%

Lifecycle of a CommissionRecord:
  pending (order placed) → collected (order delivered)
    → processing (reserved by a payout) → paid (transfer accepted)

Tier changes are prospective: a re-evaluated tier only affects orders
recorded after it, never commissions already on the ledger.
"""

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFoundError, ValidationError
from db.models import CommissionRecord, Vendor
from marketplace.ports import VendorDirectory
from marketplace.repositories import CommissionRepository, SqlVendorDirectory

logger = structlog.get_logger()

CENT = Decimal("0.01")
TRAILING_MONTHS = 3


@dataclass(frozen=True)
class TierBand:
    min_sales: Decimal
    max_sales: Decimal | None  # None = unbounded
    rate: Decimal


SHOP_COMMISSION_TIERS = {
    "bronze": TierBand(Decimal("0"), Decimal("50000"), Decimal("15")),
    "silver": TierBand(Decimal("50000"), Decimal("200000"), Decimal("20")),
    "gold": TierBand(Decimal("200000"), None, Decimal("25")),
}

VENDOR_TYPE_COMMISSION = {
    "brand": Decimal("10"),
    "distributor": Decimal("5"),
}


def round2(value: Decimal) -> Decimal:
    """Round half-up to the cent."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def tier_for_average(avg_monthly_sales: Decimal) -> str:
    if avg_monthly_sales >= SHOP_COMMISSION_TIERS["gold"].min_sales:
        return "gold"
    if avg_monthly_sales >= SHOP_COMMISSION_TIERS["silver"].min_sales:
        return "silver"
    return "bronze"


def resolve_rate(vendor_type: str, commission_tier: str | None) -> tuple[Decimal, str]:
    """(rate percent, tier) for a vendor type and its current tier."""
    if vendor_type == "shop":
        tier = commission_tier if commission_tier in SHOP_COMMISSION_TIERS else "bronze"
        return SHOP_COMMISSION_TIERS[tier].rate, tier
    if vendor_type in VENDOR_TYPE_COMMISSION:
        return VENDOR_TYPE_COMMISSION[vendor_type], "fixed"
    raise ValidationError(f"Unknown vendor type '{vendor_type}'")


def split_amount(amount: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """(commission, net). Net is derived by subtraction so the two always sum to amount."""
    amount = round2(amount)
    commission = round2(amount * rate / Decimal("100"))
    return commission, amount - commission


def trailing_periods(now: datetime, months: int = TRAILING_MONTHS) -> list[tuple[int, int]]:
    """(month, year) pairs ending at now's month, current month included."""
    periods = []
    month, year = now.month, now.year
    for _ in range(months):
        periods.append((month, year))
        month -= 1
        if month == 0:
            month, year = 12, year - 1
    return periods


@dataclass
class CommissionQuote:
    vendor_id: uuid.UUID
    vendor_type: str
    amount: Decimal
    commission_rate: Decimal
    commission_tier: str
    commission_amount: Decimal
    net_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "vendor_id": str(self.vendor_id),
            "vendor_type": self.vendor_type,
            "order_total": self.amount,
            "commission_rate": self.commission_rate,
            "commission_tier": self.commission_tier,
            "commission_amount": self.commission_amount,
            "net_amount": self.net_amount,
        }


def _empty_bucket() -> dict:
    return {
        "count": 0,
        "total_sales": Decimal("0"),
        "total_commission": Decimal("0"),
        "total_net": Decimal("0"),
    }


def _add_to_bucket(bucket: dict, record: CommissionRecord) -> None:
    bucket["count"] += 1
    bucket["total_sales"] += record.order_total
    bucket["total_commission"] += record.commission_amount
    bucket["total_net"] += record.net_amount


class CommissionEngine:
    """Computes commission splits and keeps the commission ledger."""

    def __init__(
        self,
        db: AsyncSession,
        vendors: VendorDirectory | None = None,
        commissions: CommissionRepository | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.vendors = vendors or SqlVendorDirectory(db)
        self.commissions = commissions or CommissionRepository(db)
        self.clock = clock

    async def _require_vendor(self, vendor_id: uuid.UUID) -> Vendor:
        vendor = await self.vendors.get(vendor_id)
        if vendor is None:
            raise NotFoundError(f"Vendor {vendor_id} not found")
        return vendor

    # ── Rate resolution ───────────────────────────────────────────────

    async def calculate(self, vendor: Vendor | uuid.UUID, amount: Decimal) -> CommissionQuote:
        """Split ``amount`` into commission and net for a vendor (no side effects)."""
        if not isinstance(vendor, Vendor):
            vendor = await self._require_vendor(vendor)

        amount = Decimal(amount)
        if amount < 0:
            raise ValidationError("Commission amount cannot be negative")

        rate, tier = resolve_rate(vendor.type, vendor.commission_tier)
        commission, net = split_amount(amount, rate)
        return CommissionQuote(
            vendor_id=vendor.vendor_id,
            vendor_type=vendor.type,
            amount=round2(amount),
            commission_rate=rate,
            commission_tier=tier,
            commission_amount=commission,
            net_amount=net,
        )

    async def determine_tier(self, vendor: Vendor) -> str:
        """Tier from the trailing 3-month average of recorded monthly volume."""
        if vendor.type != "shop":
            return "fixed"
        volumes = await self.commissions.volumes_for_periods(vendor.vendor_id, trailing_periods(self.clock()))
        total = sum((v.total_sales for v in volumes), Decimal("0"))
        average = total / max(len(volumes), 1)
        return tier_for_average(average)

    # ── Ledger ────────────────────────────────────────────────────────

    async def record_commission(self, order_id: str, vendor_id: uuid.UUID, order_total: Decimal) -> CommissionRecord:
        """
        Persist the commission for a placed vendor order.

        Records once per (vendor, order); a repeated call returns the
        existing record without touching totals or volume again.
        """
        if not order_id:
            raise ValidationError("order_id is required")
        vendor = await self._require_vendor(vendor_id)

        existing = await self.commissions.get_for_vendor_order(vendor_id, order_id)
        if existing is not None:
            logger.info("commission.duplicate_ignored", vendor_id=str(vendor_id), order_id=order_id)
            return existing

        quote = await self.calculate(vendor, order_total)
        now = self.clock()

        record = await self.commissions.add(
            CommissionRecord(
                vendor_id=vendor_id,
                order_id=order_id,
                order_total=quote.amount,
                commission_rate=quote.commission_rate,
                commission_amount=quote.commission_amount,
                net_amount=quote.net_amount,
                status="pending",
                created_at=now,
            )
        )

        await self.vendors.increment_totals(vendor_id, quote.amount, quote.commission_amount)
        await self.commissions.upsert_monthly_volume(vendor_id, now.month, now.year, quote.amount)

        if vendor.type == "shop":
            new_tier = await self.determine_tier(vendor)
            old_tier = vendor.commission_tier
            if new_tier != old_tier:
                new_rate = SHOP_COMMISSION_TIERS[new_tier].rate
                await self.vendors.set_commission_tier(vendor_id, new_tier, new_rate)
                logger.info(
                    "commission.tier_changed",
                    vendor_id=str(vendor_id),
                    old_tier=old_tier,
                    new_tier=new_tier,
                    rate=str(new_rate),
                )

        await self.db.commit()

        logger.info(
            "commission.recorded",
            vendor_id=str(vendor_id),
            order_id=order_id,
            order_total=str(quote.amount),
            commission=str(quote.commission_amount),
            net=str(quote.net_amount),
            rate=str(quote.commission_rate),
        )
        return record

    async def mark_collected(self, order_id: str, vendor_id: uuid.UUID | None = None) -> list[CommissionRecord]:
        """Move an order's pending commission(s) to collected once the order is delivered."""
        records = await self.commissions.find_pending_for_order(order_id)
        if vendor_id is not None:
            records = [r for r in records if r.vendor_id == vendor_id]
        if not records:
            raise NotFoundError(f"Commission record for order {order_id} not found")

        collected_at = self.clock()
        await self.commissions.mark_collected([r.commission_id for r in records], collected_at)
        await self.db.commit()

        logger.info("commission.collected", order_id=order_id, count=len(records))
        return records

    async def mark_paid(self, commission_ids: Sequence[uuid.UUID], payout_id: uuid.UUID) -> int:
        """
        Bulk-transition commissions to paid under ``payout_id``.

        Runs inside the caller's transaction (the payout scheduler commits).
        """
        updated = await self.commissions.mark_paid(commission_ids, payout_id, self.clock())
        logger.info("commission.paid", payout_id=str(payout_id), count=updated)
        return updated

    # ── Reporting ─────────────────────────────────────────────────────

    @staticmethod
    def _check_period(start: datetime | None, end: datetime | None) -> None:
        if start and end and start > end:
            raise ValidationError("start date must be on or before end date")

    async def vendor_report(
        self,
        vendor_id: uuid.UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        """Per-vendor commission totals, broken down by status."""
        self._check_period(start, end)
        await self._require_vendor(vendor_id)
        records = await self.commissions.list_between(vendor_id=vendor_id, start=start, end=end)

        summary = {
            "total_orders": 0,
            "total_sales": Decimal("0"),
            "total_commission": Decimal("0"),
            "total_net": Decimal("0"),
            "by_status": {},
        }
        for record in records:
            summary["total_orders"] += 1
            summary["total_sales"] += record.order_total
            summary["total_commission"] += record.commission_amount
            summary["total_net"] += record.net_amount

            status = summary["by_status"].setdefault(
                record.status, {"count": 0, "commission": Decimal("0"), "net": Decimal("0")}
            )
            status["count"] += 1
            status["commission"] += record.commission_amount
            status["net"] += record.net_amount

        return {
            "vendor_id": str(vendor_id),
            "period": {"start": start, "end": end},
            "summary": summary,
            "records": records,
        }

    async def platform_analytics(self, start: datetime | None = None, end: datetime | None = None) -> dict:
        """Platform-wide commission totals by vendor type and by status."""
        self._check_period(start, end)
        records = await self.commissions.list_between(start=start, end=end)

        vendors = await self.vendors.list_by_ids(sorted({r.vendor_id for r in records}, key=str))
        vendor_types = {v.vendor_id: v.type for v in vendors}

        totals = {
            "total_orders": 0,
            "total_sales": Decimal("0"),
            "total_commission": Decimal("0"),
            "total_net": Decimal("0"),
        }
        by_vendor_type: dict[str, dict] = {}
        by_status: dict[str, dict] = {}

        for record in records:
            totals["total_orders"] += 1
            totals["total_sales"] += record.order_total
            totals["total_commission"] += record.commission_amount
            totals["total_net"] += record.net_amount

            vendor_type = vendor_types.get(record.vendor_id, "unknown")
            _add_to_bucket(by_vendor_type.setdefault(vendor_type, _empty_bucket()), record)
            _add_to_bucket(by_status.setdefault(record.status, _empty_bucket()), record)

        for bucket in by_vendor_type.values():
            sales = bucket["total_sales"]
            bucket["avg_commission_rate"] = (
                round2(bucket["total_commission"] / sales * Decimal("100")) if sales else Decimal("0.00")
            )

        return {
            "period": {"start": start, "end": end},
            "totals": totals,
            "by_vendor_type": by_vendor_type,
            "by_status": by_status,
        }
