"""
Integration adapters package.

Payment provider adapters behind the PaymentGateway interface:
  - Stripe Connect  (express connected accounts, transfers, webhooks)

Usage:
    from integrations import StripeConnectGateway

    gateway = StripeConnectGateway.from_settings(get_settings())
    result = await gateway.transfer("acct_123", 8500, "usd", {"payout_id": "..."})
"""

from integrations.base import (
    AccountBalance,
    AccountStatus,
    GatewayEvent,
    GatewayEventType,
    PaymentGateway,
    TransferResult,
)
from integrations.stripe_connect import StripeConnectGateway

__all__ = [
    "AccountBalance",
    "AccountStatus",
    "GatewayEvent",
    "GatewayEventType",
    "PaymentGateway",
    "TransferResult",
    "StripeConnectGateway",
]
