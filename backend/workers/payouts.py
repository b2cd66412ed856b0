"""
Payout Workers — scheduled batch payout creation.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def run_batch(
    factory: async_sessionmaker,
    min_amount: Decimal | None = None,
    vendor_ids: list[uuid.UUID] | None = None,
) -> dict:
    """Create pending payouts for every eligible vendor using one session."""
    from core.config import get_settings
    from db.session import session_scope
    from integrations.stripe_connect import StripeConnectGateway
    from marketplace.payouts import PayoutScheduler

    settings = get_settings()
    async with session_scope(factory) as db:
        scheduler = PayoutScheduler(
            db,
            StripeConnectGateway.from_settings(settings),
            currency=settings.payout_currency,
            min_amount=settings.payout_min_amount,
        )
        return await scheduler.create_batch_payouts(vendor_ids=vendor_ids, min_amount=min_amount)


@celery_app.task(
    name="workers.payouts.run_batch_payouts",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def run_batch_payouts(self, min_amount: str | None = None, vendor_ids: list[str] | None = None):
    """
    Weekly job: batch every active, onboarded vendor's collected commissions
    into pending payouts. Vendors below the minimum are skipped.
    """
    from core.config import get_settings
    from db.session import build_engine

    settings = get_settings()
    run_id = self.request.id or "manual"
    if not settings.payout_batch_enabled:
        logger.info("payout.batch_disabled", run_id=run_id)
        return {"status": "disabled"}

    logger.info("payout.batch_started", run_id=run_id)

    async def _run():
        engine = build_engine(settings.database_url)
        try:
            factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await run_batch(
                factory,
                min_amount=Decimal(min_amount) if min_amount is not None else None,
                vendor_ids=[uuid.UUID(v) for v in vendor_ids] if vendor_ids else None,
            )
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_run())
    except Exception as exc:
        logger.error("payout.batch_run_failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    return {
        "status": "success",
        "run_id": run_id,
        "total": summary["total"],
        "created": summary["created"],
        "skipped": summary["skipped"],
        "failed": summary["failed"],
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
