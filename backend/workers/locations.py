"""
Location Workers — fulfillment location housekeeping.
"""

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.locations.reset_daily_order_counters",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
)
def reset_daily_order_counters(self):
    """Daily job: zero every location's current_day_orders counter."""

    async def _reset():
        from core.config import get_settings
        from db.session import build_engine, session_scope
        from marketplace.repositories import SqlLocationCatalog

        engine = build_engine(get_settings().database_url)
        try:
            factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_scope(factory) as db:
                return await SqlLocationCatalog(db).reset_daily_orders()
        finally:
            await engine.dispose()

    try:
        reset = asyncio.run(_reset())
    except Exception as exc:
        logger.error("locations.reset_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    logger.info("locations.counters_reset", locations=reset)
    return {"status": "success", "locations_reset": reset, "completed_at": datetime.now(timezone.utc).isoformat()}
