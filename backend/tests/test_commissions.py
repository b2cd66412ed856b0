"""
Tests for the Commission Engine.

Covers:
  - Rate resolution per vendor type / tier
  - Split rounding and the commission + net == total invariant
  - Trailing 3-month tiering (prospective only)
  - Ledger transitions and reporting
"""

import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from structlog.testing import capture_logs
from sqlalchemy import func, select

from conftest import FIXED_NOW
from core.errors import NotFoundError, ValidationError
from db.models import CommissionRecord, VendorMonthlyVolume
from marketplace.commissions import (
    CommissionEngine,
    resolve_rate,
    round2,
    split_amount,
    tier_for_average,
    trailing_periods,
)

# ── Rate table ─────────────────────────────────────────────────────────


class TestRateResolution:
    def test_shop_tiers(self):
        """Shop vendors use their stored tier's rate."""
        assert resolve_rate("shop", "bronze") == (Decimal("15"), "bronze")
        assert resolve_rate("shop", "silver") == (Decimal("20"), "silver")
        assert resolve_rate("shop", "gold") == (Decimal("25"), "gold")

    def test_shop_with_unknown_tier_falls_back_to_bronze(self):
        assert resolve_rate("shop", "fixed") == (Decimal("15"), "bronze")
        assert resolve_rate("shop", None) == (Decimal("15"), "bronze")

    def test_brand_and_distributor_are_fixed(self):
        """Brand 10%, distributor 5%, regardless of stored tier."""
        assert resolve_rate("brand", "gold") == (Decimal("10"), "fixed")
        assert resolve_rate("distributor", "bronze") == (Decimal("5"), "fixed")

    def test_unknown_vendor_type_rejected(self):
        with pytest.raises(ValidationError):
            resolve_rate("wholesaler", None)

    def test_tier_thresholds(self):
        assert tier_for_average(Decimal("49999.99")) == "bronze"
        assert tier_for_average(Decimal("50000")) == "silver"
        assert tier_for_average(Decimal("75000")) == "silver"
        assert tier_for_average(Decimal("199999.99")) == "silver"
        assert tier_for_average(Decimal("200000")) == "gold"
        assert tier_for_average(Decimal("1500000")) == "gold"


class TestSplitArithmetic:
    def test_silver_example(self):
        """$1,000.00 at 20% → $200.00 commission, $800.00 net."""
        commission, net = split_amount(Decimal("1000.00"), Decimal("20"))
        assert commission == Decimal("200.00")
        assert net == Decimal("800.00")

    def test_round_half_up(self):
        assert round2(Decimal("0.125")) == Decimal("0.13")
        assert round2(Decimal("0.124")) == Decimal("0.12")

    def test_commission_plus_net_equals_amount(self):
        """Net is derived by subtraction so the parts always sum to the total."""
        for amount in ["0.01", "0.07", "19.99", "33.33", "1234.57", "99999.99"]:
            for rate in ["5", "10", "15", "20", "25"]:
                commission, net = split_amount(Decimal(amount), Decimal(rate))
                assert commission + net == Decimal(amount)
                assert commission == commission.quantize(Decimal("0.01"))


class TestTrailingPeriods:
    def test_includes_current_month(self):
        assert trailing_periods(datetime(2026, 3, 15)) == [(3, 2026), (2, 2026), (1, 2026)]

    def test_wraps_year_boundary(self):
        assert trailing_periods(datetime(2026, 1, 2)) == [(1, 2026), (12, 2025), (11, 2025)]


# ── Engine against the database ────────────────────────────────────────


@pytest.fixture
def engine(test_db):
    return CommissionEngine(test_db, clock=lambda: FIXED_NOW)


@pytest.mark.asyncio
class TestCalculate:
    async def test_unknown_vendor(self, engine):
        """Calculating for a vendor id that does not exist raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await engine.calculate(uuid.uuid4(), Decimal("10.00"))

    async def test_brand_quote(self, engine, seeded_db):
        quote = await engine.calculate(seeded_db["brand"].vendor_id, Decimal("250.00"))
        assert quote.commission_rate == Decimal("10")
        assert quote.commission_tier == "fixed"
        assert quote.commission_amount == Decimal("25.00")
        assert quote.net_amount == Decimal("225.00")

    async def test_negative_amount_rejected(self, engine, seeded_db):
        with pytest.raises(ValidationError):
            await engine.calculate(seeded_db["shop"], Decimal("-1.00"))


@pytest.mark.asyncio
class TestRecordCommission:
    async def test_creates_pending_record_and_updates_totals(self, engine, test_db, seeded_db):
        """A recorded commission is pending and bumps vendor totals and monthly volume."""
        shop = seeded_db["shop"]

        record = await engine.record_commission("order_1001", shop.vendor_id, Decimal("120.00"))

        assert record.status == "pending"
        assert record.commission_rate == Decimal("15")
        assert record.commission_amount == Decimal("18.00")
        assert record.net_amount == Decimal("102.00")
        assert record.commission_amount + record.net_amount == record.order_total

        await test_db.refresh(shop)
        assert shop.total_revenue == Decimal("120.00")
        assert shop.total_commission == Decimal("18.00")

        volume = (
            await test_db.execute(select(VendorMonthlyVolume).where(VendorMonthlyVolume.vendor_id == shop.vendor_id))
        ).scalar_one()
        assert (volume.month, volume.year) == (3, 2026)
        assert volume.total_sales == Decimal("120.00")
        assert volume.order_count == 1

    async def test_second_order_increments_same_volume_row(self, engine, test_db, seeded_db):
        shop = seeded_db["shop"]
        await engine.record_commission("order_a", shop.vendor_id, Decimal("100.00"))
        await engine.record_commission("order_b", shop.vendor_id, Decimal("50.00"))

        volumes = (
            (await test_db.execute(select(VendorMonthlyVolume).where(VendorMonthlyVolume.vendor_id == shop.vendor_id)))
            .scalars()
            .all()
        )
        assert len(volumes) == 1
        assert volumes[0].total_sales == Decimal("150.00")
        assert volumes[0].order_count == 2

    async def test_repeat_for_same_vendor_order_is_ignored(self, engine, test_db, seeded_db):
        """Recording twice for the same (vendor, order) does not double count."""
        brand = seeded_db["brand"]
        first = await engine.record_commission("order_dup", brand.vendor_id, Decimal("80.00"))
        second = await engine.record_commission("order_dup", brand.vendor_id, Decimal("80.00"))

        assert first.commission_id == second.commission_id
        count = await test_db.scalar(select(func.count()).select_from(CommissionRecord))
        assert count == 1
        await test_db.refresh(brand)
        assert brand.total_revenue == Decimal("80.00")

    async def test_unknown_vendor(self, engine):
        with pytest.raises(NotFoundError):
            await engine.record_commission("order_x", uuid.uuid4(), Decimal("10.00"))

    async def test_tier_upgrade_is_prospective(self, engine, test_db, seeded_db):
        """Crossing into gold changes the vendor's rate for later orders only."""
        shop = seeded_db["shop"]
        test_db.add_all(
            [
                VendorMonthlyVolume(vendor_id=shop.vendor_id, month=2, year=2026, total_sales=Decimal("250000")),
                VendorMonthlyVolume(vendor_id=shop.vendor_id, month=1, year=2026, total_sales=Decimal("250000")),
            ]
        )
        await test_db.commit()

        record = await engine.record_commission("order_big", shop.vendor_id, Decimal("250000.00"))
        assert record.commission_rate == Decimal("15")
        assert record.commission_amount == Decimal("37500.00")

        await test_db.refresh(shop)
        assert shop.commission_tier == "gold"
        assert shop.commission_rate == Decimal("25")

        quote = await engine.calculate(shop, Decimal("100.00"))
        assert quote.commission_rate == Decimal("25")
        assert quote.commission_amount == Decimal("25.00")

    async def test_tier_change_logs_previous_tier(self, engine, test_db, seeded_db):
        shop = seeded_db["shop"]
        test_db.add(VendorMonthlyVolume(vendor_id=shop.vendor_id, month=2, year=2026, total_sales=Decimal("600000")))
        await test_db.commit()

        with capture_logs() as logs:
            await engine.record_commission("order_tier", shop.vendor_id, Decimal("10.00"))

        changed = [entry for entry in logs if entry["event"] == "commission.tier_changed"]
        assert len(changed) == 1
        assert (changed[0]["old_tier"], changed[0]["new_tier"]) == ("bronze", "gold")

    async def test_silver_average_example(self, engine, test_db, seeded_db):
        """Trailing average of $75,000/month resolves to silver at 20%."""
        shop = seeded_db["shop"]
        test_db.add_all(
            [
                VendorMonthlyVolume(vendor_id=shop.vendor_id, month=3, year=2026, total_sales=Decimal("74000")),
                VendorMonthlyVolume(vendor_id=shop.vendor_id, month=2, year=2026, total_sales=Decimal("75000")),
                VendorMonthlyVolume(vendor_id=shop.vendor_id, month=1, year=2026, total_sales=Decimal("76000")),
            ]
        )
        await test_db.commit()

        await engine.record_commission("order_s", shop.vendor_id, Decimal("1000.00"))
        await test_db.refresh(shop)
        assert shop.commission_tier == "silver"

        quote = await engine.calculate(shop, Decimal("1000.00"))
        assert quote.commission_rate == Decimal("20")
        assert quote.commission_amount == Decimal("200.00")
        assert quote.net_amount == Decimal("800.00")

    async def test_months_outside_window_ignored(self, engine, test_db, seeded_db):
        """Volume older than the trailing window does not lift the tier."""
        shop = seeded_db["shop"]
        test_db.add(VendorMonthlyVolume(vendor_id=shop.vendor_id, month=12, year=2025, total_sales=Decimal("900000")))
        await test_db.commit()

        await engine.record_commission("order_small", shop.vendor_id, Decimal("10.00"))
        await test_db.refresh(shop)
        assert shop.commission_tier == "bronze"

    async def test_brand_tier_untouched(self, engine, test_db, seeded_db):
        brand = seeded_db["brand"]
        await engine.record_commission("order_br", brand.vendor_id, Decimal("500000.00"))
        await test_db.refresh(brand)
        assert brand.commission_tier == "fixed"
        assert brand.commission_rate == Decimal("10")


@pytest.mark.asyncio
class TestLifecycle:
    async def test_mark_collected(self, engine, seeded_db):
        shop = seeded_db["shop"]
        await engine.record_commission("order_c", shop.vendor_id, Decimal("40.00"))

        records = await engine.mark_collected("order_c")
        assert len(records) == 1
        assert records[0].status == "collected"
        assert records[0].collected_at == FIXED_NOW

    async def test_mark_collected_covers_every_vendor_on_the_order(self, engine, seeded_db):
        await engine.record_commission("order_multi", seeded_db["shop"].vendor_id, Decimal("40.00"))
        await engine.record_commission("order_multi", seeded_db["brand"].vendor_id, Decimal("60.00"))

        records = await engine.mark_collected("order_multi")
        assert {r.status for r in records} == {"collected"}
        assert len(records) == 2

    async def test_mark_collected_unknown_order(self, engine, seeded_db):
        with pytest.raises(NotFoundError):
            await engine.mark_collected("order_missing")

    async def test_mark_collected_twice_fails(self, engine, seeded_db):
        """Only pending records transition; a second call finds nothing."""
        await engine.record_commission("order_twice", seeded_db["shop"].vendor_id, Decimal("40.00"))
        await engine.mark_collected("order_twice")
        with pytest.raises(NotFoundError):
            await engine.mark_collected("order_twice")


@pytest.mark.asyncio
class TestReporting:
    async def test_vendor_report(self, engine, seeded_db):
        shop = seeded_db["shop"]
        await engine.record_commission("order_r1", shop.vendor_id, Decimal("100.00"))
        await engine.record_commission("order_r2", shop.vendor_id, Decimal("200.00"))
        await engine.mark_collected("order_r1")

        report = await engine.vendor_report(shop.vendor_id)
        summary = report["summary"]
        assert summary["total_orders"] == 2
        assert summary["total_sales"] == Decimal("300.00")
        assert summary["total_commission"] == Decimal("45.00")
        assert summary["total_net"] == Decimal("255.00")
        assert summary["by_status"]["pending"]["count"] == 1
        assert summary["by_status"]["collected"]["commission"] == Decimal("15.00")

    async def test_report_rejects_inverted_period(self, engine, seeded_db):
        with pytest.raises(ValidationError):
            await engine.vendor_report(seeded_db["shop"].vendor_id, start=datetime(2026, 3, 2), end=datetime(2026, 3, 1))

    async def test_platform_analytics_by_vendor_type(self, engine, seeded_db):
        await engine.record_commission("order_p1", seeded_db["shop"].vendor_id, Decimal("100.00"))
        await engine.record_commission("order_p2", seeded_db["brand"].vendor_id, Decimal("300.00"))

        analytics = await engine.platform_analytics()
        assert analytics["totals"]["total_orders"] == 2
        assert analytics["totals"]["total_commission"] == Decimal("45.00")
        assert analytics["by_vendor_type"]["shop"]["avg_commission_rate"] == Decimal("15.00")
        assert analytics["by_vendor_type"]["brand"]["total_net"] == Decimal("270.00")
        assert analytics["by_status"]["pending"]["count"] == 2
