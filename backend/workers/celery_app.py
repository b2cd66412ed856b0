"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "bazaar",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.payouts", "workers.locations"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.payouts.*": {"queue": "payouts"},
        "workers.locations.*": {"queue": "maintenance"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Payouts ────────────────────────────────────────────────
        # Creates pending payouts only; transfers are processed separately.
        "batch-payouts-weekly": {
            "task": "workers.payouts.run_batch_payouts",
            "schedule": crontab(hour=6, minute=0, day_of_week="monday"),
            "options": {"queue": "payouts"},
        },
        # ── Fulfillment ────────────────────────────────────────────
        "reset-location-counters-daily": {
            "task": "workers.locations.reset_daily_order_counters",
            "schedule": crontab(hour=0, minute=5),
            "options": {"queue": "maintenance"},
        },
    },
)
