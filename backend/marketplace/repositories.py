"""
SQL repositories for the marketplace core.

Named, typed query methods over an AsyncSession. Running totals are
changed with single-statement increments (``SET x = x + :delta``) so
concurrent order placement cannot lose updates, and commission
reservation is a conditional UPDATE guarded by ``payout_id IS NULL``.
"""

import uuid
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.models import (
    CommissionRecord,
    FulfillmentLocation,
    LocationInventory,
    Payout,
    ProcessedWebhookEvent,
    RoutingRule,
    Vendor,
    VendorMonthlyVolume,
)


class SqlVendorDirectory:
    """VendorDirectory backed by the vendors table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, vendor_id: uuid.UUID) -> Vendor | None:
        return await self.db.get(Vendor, vendor_id)

    async def list_active(
        self,
        vendor_ids: Sequence[uuid.UUID] | None = None,
        onboarded_only: bool = False,
    ) -> list[Vendor]:
        query = select(Vendor).where(Vendor.active.is_(True))
        if vendor_ids is not None:
            query = query.where(Vendor.vendor_id.in_(list(vendor_ids)))
        if onboarded_only:
            query = query.where(Vendor.payment_account_ref.isnot(None))
        result = await self.db.execute(query.order_by(Vendor.created_at, Vendor.name))
        return list(result.scalars().all())

    async def list_by_ids(self, vendor_ids: Sequence[uuid.UUID]) -> list[Vendor]:
        if not vendor_ids:
            return []
        result = await self.db.execute(select(Vendor).where(Vendor.vendor_id.in_(list(vendor_ids))))
        return list(result.scalars().all())

    async def get_by_account_ref(self, account_ref: str) -> Vendor | None:
        result = await self.db.execute(select(Vendor).where(Vendor.payment_account_ref == account_ref))
        return result.scalar_one_or_none()

    async def increment_totals(self, vendor_id: uuid.UUID, revenue: Decimal, commission: Decimal) -> None:
        await self.db.execute(
            update(Vendor)
            .where(Vendor.vendor_id == vendor_id)
            .values(
                total_revenue=Vendor.total_revenue + revenue,
                total_commission=Vendor.total_commission + commission,
            )
        )

    async def set_commission_tier(self, vendor_id: uuid.UUID, tier: str, rate: Decimal) -> None:
        await self.db.execute(
            update(Vendor)
            .where(Vendor.vendor_id == vendor_id)
            .values(commission_tier=tier, commission_rate=rate, updated_at=datetime.utcnow())
        )

    async def set_onboarding_flags(self, vendor_id: uuid.UUID, payouts_enabled: bool, details_submitted: bool) -> None:
        await self.db.execute(
            update(Vendor)
            .where(Vendor.vendor_id == vendor_id)
            .values(payouts_enabled=payouts_enabled, details_submitted=details_submitted, updated_at=datetime.utcnow())
        )


class CommissionRepository:
    """Commission ledger and monthly volume roll-ups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, record: CommissionRecord) -> CommissionRecord:
        self.db.add(record)
        await self.db.flush()
        return record

    async def get_for_vendor_order(self, vendor_id: uuid.UUID, order_id: str) -> CommissionRecord | None:
        result = await self.db.execute(
            select(CommissionRecord).where(
                CommissionRecord.vendor_id == vendor_id,
                CommissionRecord.order_id == order_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_pending_for_order(self, order_id: str) -> list[CommissionRecord]:
        result = await self.db.execute(
            select(CommissionRecord)
            .where(CommissionRecord.order_id == order_id, CommissionRecord.status == "pending")
            .order_by(CommissionRecord.created_at)
        )
        return list(result.scalars().all())

    async def find_unpaid_commissions(
        self,
        vendor_id: uuid.UUID,
        on_or_before: datetime | None = None,
        for_update: bool = False,
    ) -> list[CommissionRecord]:
        """Collected, not yet attached to any payout, oldest first."""
        query = select(CommissionRecord).where(
            CommissionRecord.vendor_id == vendor_id,
            CommissionRecord.status == "collected",
            CommissionRecord.payout_id.is_(None),
        )
        if on_or_before is not None:
            query = query.where(CommissionRecord.created_at <= on_or_before)
        query = query.order_by(CommissionRecord.created_at, CommissionRecord.order_id)
        if for_update:
            # Row locks on PostgreSQL; SQLite ignores this and relies on the guarded UPDATE below.
            query = query.with_for_update()
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def reserve_commissions(self, commission_ids: Sequence[uuid.UUID], payout_id: uuid.UUID) -> int:
        """Stamp payout_id on still-unreserved records. Returns the number of rows won."""
        if not commission_ids:
            return 0
        result = await self.db.execute(
            update(CommissionRecord)
            .where(
                CommissionRecord.commission_id.in_(list(commission_ids)),
                CommissionRecord.payout_id.is_(None),
                CommissionRecord.status == "collected",
            )
            .values(payout_id=payout_id, status="processing")
        )
        return result.rowcount

    async def mark_collected(self, commission_ids: Sequence[uuid.UUID], collected_at: datetime) -> int:
        result = await self.db.execute(
            update(CommissionRecord)
            .where(
                CommissionRecord.commission_id.in_(list(commission_ids)),
                CommissionRecord.status == "pending",
            )
            .values(status="collected", collected_at=collected_at)
        )
        return result.rowcount

    async def mark_paid(self, commission_ids: Sequence[uuid.UUID], payout_id: uuid.UUID, paid_at: datetime) -> int:
        """Move reserved records to paid. Never re-points a record at a different payout."""
        if not commission_ids:
            return 0
        result = await self.db.execute(
            update(CommissionRecord)
            .where(
                CommissionRecord.commission_id.in_(list(commission_ids)),
                or_(CommissionRecord.payout_id.is_(None), CommissionRecord.payout_id == payout_id),
            )
            .values(status="paid", payout_id=payout_id, paid_at=paid_at)
        )
        return result.rowcount

    async def list_for_payout(self, payout_id: uuid.UUID) -> list[CommissionRecord]:
        result = await self.db.execute(
            select(CommissionRecord)
            .where(CommissionRecord.payout_id == payout_id)
            .order_by(CommissionRecord.created_at)
        )
        return list(result.scalars().all())

    async def list_between(
        self,
        vendor_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CommissionRecord]:
        query = select(CommissionRecord)
        if vendor_id is not None:
            query = query.where(CommissionRecord.vendor_id == vendor_id)
        if start is not None:
            query = query.where(CommissionRecord.created_at >= start)
        if end is not None:
            query = query.where(CommissionRecord.created_at <= end)
        result = await self.db.execute(query.order_by(CommissionRecord.created_at))
        return list(result.scalars().all())

    async def upsert_monthly_volume(self, vendor_id: uuid.UUID, month: int, year: int, amount: Decimal) -> None:
        """Increment the (vendor, month, year) row, creating it on first sale of the month."""
        increment = (
            update(VendorMonthlyVolume)
            .where(
                VendorMonthlyVolume.vendor_id == vendor_id,
                VendorMonthlyVolume.month == month,
                VendorMonthlyVolume.year == year,
            )
            .values(
                total_sales=VendorMonthlyVolume.total_sales + amount,
                order_count=VendorMonthlyVolume.order_count + 1,
            )
        )
        result = await self.db.execute(increment)
        if result.rowcount:
            return

        try:
            async with self.db.begin_nested():
                self.db.add(
                    VendorMonthlyVolume(
                        vendor_id=vendor_id,
                        month=month,
                        year=year,
                        total_sales=amount,
                        order_count=1,
                    )
                )
        except IntegrityError:
            # A concurrent writer created the row between our UPDATE and INSERT.
            await self.db.execute(increment)

    async def volumes_for_periods(
        self,
        vendor_id: uuid.UUID,
        periods: Sequence[tuple[int, int]],
    ) -> list[VendorMonthlyVolume]:
        """Volume rows for the given (month, year) periods that exist."""
        if not periods:
            return []
        clauses = [and_(VendorMonthlyVolume.month == m, VendorMonthlyVolume.year == y) for m, y in periods]
        result = await self.db.execute(
            select(VendorMonthlyVolume).where(VendorMonthlyVolume.vendor_id == vendor_id, or_(*clauses))
        )
        return list(result.scalars().all())


class PayoutRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, payout: Payout) -> Payout:
        self.db.add(payout)
        await self.db.flush()
        return payout

    async def get(self, payout_id: uuid.UUID, with_adjustments: bool = False) -> Payout | None:
        query = select(Payout).where(Payout.payout_id == payout_id)
        if with_adjustments:
            # Refresh a collection the identity map may hold unloaded.
            query = query.options(selectinload(Payout.adjustments)).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_for_vendor(
        self,
        vendor_id: uuid.UUID,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Payout]:
        query = select(Payout).options(selectinload(Payout.adjustments)).where(Payout.vendor_id == vendor_id)
        if status:
            query = query.where(Payout.status == status)
        if start is not None:
            query = query.where(Payout.created_at >= start)
        if end is not None:
            query = query.where(Payout.created_at <= end)
        query = query.order_by(Payout.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def record_webhook_event(self, event_id: str, event_type: str, payout_id: uuid.UUID | None) -> bool:
        """Insert the provider event id. False means it was already processed."""
        try:
            async with self.db.begin_nested():
                self.db.add(ProcessedWebhookEvent(event_id=event_id, event_type=event_type, payout_id=payout_id))
        except IntegrityError:
            return False
        return True


class SqlLocationCatalog:
    """LocationCatalog backed by fulfillment_locations / routing_rules / location_inventory."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_locations(self, country_code: str) -> list[FulfillmentLocation]:
        result = await self.db.execute(
            select(FulfillmentLocation)
            .where(
                FulfillmentLocation.active.is_(True),
                FulfillmentLocation.country_code == country_code,
            )
            .order_by(FulfillmentLocation.code)
        )
        return list(result.scalars().all())

    async def list_rules(self, at: datetime) -> list[RoutingRule]:
        result = await self.db.execute(
            select(RoutingRule).where(
                RoutingRule.active.is_(True),
                or_(RoutingRule.valid_from.is_(None), RoutingRule.valid_from <= at),
                or_(RoutingRule.valid_until.is_(None), RoutingRule.valid_until >= at),
            )
        )
        return list(result.scalars().all())

    async def available_quantities(
        self,
        location_ids: Sequence[uuid.UUID],
        variant_ids: Sequence[str],
    ) -> dict[uuid.UUID, dict[str, int]]:
        if not location_ids or not variant_ids:
            return {}
        result = await self.db.execute(
            select(
                LocationInventory.location_id,
                LocationInventory.variant_id,
                LocationInventory.quantity_available,
            ).where(
                LocationInventory.location_id.in_(list(location_ids)),
                LocationInventory.variant_id.in_(list(variant_ids)),
            )
        )
        stock: dict[uuid.UUID, dict[str, int]] = {}
        for location_id, variant_id, qty in result.all():
            stock.setdefault(location_id, {})[variant_id] = qty or 0
        return stock

    async def record_assignment(self, location_id: uuid.UUID) -> None:
        """Atomic load counter bump for a location that just received an order."""
        await self.db.execute(
            update(FulfillmentLocation)
            .where(FulfillmentLocation.location_id == location_id)
            .values(current_day_orders=FulfillmentLocation.current_day_orders + 1)
        )

    async def reset_daily_orders(self) -> int:
        result = await self.db.execute(
            update(FulfillmentLocation)
            .where(FulfillmentLocation.current_day_orders != 0)
            .values(current_day_orders=0)
        )
        return result.rowcount
