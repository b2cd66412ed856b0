"""
Tests for the scheduled workers' async bodies and Celery wiring.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from db.models import FulfillmentLocation, Payout
from marketplace.repositories import SqlLocationCatalog
from workers.celery_app import celery_app
from workers.payouts import run_batch


class TestCeleryWiring:
    def test_tasks_registered(self):
        import workers.locations  # noqa: F401

        assert "workers.payouts.run_batch_payouts" in celery_app.tasks
        assert "workers.locations.reset_daily_order_counters" in celery_app.tasks

    def test_beat_schedule(self):
        schedule = celery_app.conf.beat_schedule
        assert schedule["batch-payouts-weekly"]["task"] == "workers.payouts.run_batch_payouts"
        assert schedule["reset-location-counters-daily"]["options"]["queue"] == "maintenance"


@pytest.mark.asyncio
class TestRunBatch:
    async def test_creates_payouts_in_own_session(self, session_factory, test_db, seeded_db, make_collected):
        """The batch job commits through its own session scope."""
        await make_collected(seeded_db["shop"], ["100.00"])
        await make_collected(seeded_db["brand"], ["10.00"])

        summary = await run_batch(session_factory, min_amount=Decimal("50"))

        assert (summary["created"], summary["skipped"]) == (1, 1)
        count = await test_db.scalar(select(func.count()).select_from(Payout))
        assert count == 1


@pytest.mark.asyncio
class TestResetCounters:
    async def test_reset_daily_orders(self, test_db, seeded_db):
        catalog = SqlLocationCatalog(test_db)
        await catalog.record_assignment(seeded_db["newark"].location_id)
        await catalog.record_assignment(seeded_db["newark"].location_id)
        await catalog.record_assignment(seeded_db["chicago"].location_id)
        await test_db.commit()

        reset = await catalog.reset_daily_orders()
        await test_db.commit()

        assert reset == 2
        remaining = await test_db.scalar(
            select(func.count()).select_from(FulfillmentLocation).where(FulfillmentLocation.current_day_orders != 0)
        )
        assert remaining == 0
