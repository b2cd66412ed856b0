"""
Webhooks Router — inbound payment gateway events.

Signatures are verified before anything is parsed or dispatched; repeat
deliveries of the same event id are acknowledged without effect.
"""

import structlog
from fastapi import APIRouter, Depends, Request

from api.deps import get_gateway, get_payout_scheduler
from integrations.base import PaymentGateway
from marketplace.payouts import PayoutScheduler

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])
logger = structlog.get_logger()


@router.post("/payments")
async def payment_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    """Handle payment gateway webhooks (Stripe-Signature verified)."""
    body = await request.body()
    signature = request.headers.get("stripe-signature", "")

    event = gateway.parse_webhook(body, signature)
    logger.info("webhook.received", event_id=event.event_id, event_type=event.type)

    outcome = await scheduler.handle_transfer_webhook(event)
    return {"received": True, "event_type": event.type, **outcome}
