"""
Payment Gateway — Abstract Base Class

The payout scheduler and the webhook endpoint talk to the payment
provider only through this interface, so the provider (Stripe Connect
today) can be swapped or faked in tests without touching payout logic.

Amounts crossing this boundary are integer minor units (cents).
Failures surface as core.errors.ExternalGatewayError carrying the
provider's raw reason; adapters never return error sentinels.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from db.models import Vendor

logger = structlog.get_logger()


# ── Event types ────────────────────────────────────────────────────────────


class GatewayEventType(str, Enum):
    """Inbound webhook events the marketplace reacts to."""

    ACCOUNT_UPDATED = "account.updated"
    TRANSFER_REVERSED = "transfer.reversed"
    PAYOUT_PAID = "payout.paid"
    PAYOUT_FAILED = "payout.failed"


# Merchant category codes by vendor type.
VENDOR_MCC = {
    "shop": "5999",  # Miscellaneous retail
    "brand": "5699",  # Apparel and accessories
    "distributor": "5045",  # Wholesale
}


# ── Result containers ─────────────────────────────────────────────────────


@dataclass
class TransferResult:
    """Gateway acceptance of a transfer to a connected account."""

    transfer_ref: str
    amount_cents: int
    currency: str
    destination: str
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class AccountStatus:
    account_ref: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    requirements: list[str] = field(default_factory=list)


@dataclass
class AccountBalance:
    available: dict[str, int]  # currency -> cents
    pending: dict[str, int]


@dataclass
class GatewayEvent:
    """A verified inbound webhook, reduced to what reconciliation needs."""

    event_id: str
    type: str
    payout_id: str | None = None  # from transfer/payout metadata
    account_ref: str | None = None
    failure_reason: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


# ── Abstract gateway ──────────────────────────────────────────────────────


class PaymentGateway(ABC):
    """
    Base class for payment providers.

    Lifecycle of a vendor's money:
        1. create_account(vendor)     : connected account for the vendor
        2. account_link / login_link  : hosted onboarding and dashboard
        3. transfer(account_ref, ...) : move a payout to the vendor
        4. parse_webhook(body, sig)   : verified async status updates
    """

    def __init__(self):
        self.logger = logger.bind(gateway=self.gateway_name)

    @property
    @abstractmethod
    def gateway_name(self) -> str: ...

    @abstractmethod
    async def create_account(self, vendor: Vendor) -> str:
        """Create a connected account and return its reference."""
        ...

    @abstractmethod
    async def transfer(
        self,
        account_ref: str,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> TransferResult:
        """Move funds to a connected account. Never retried automatically."""
        ...

    @abstractmethod
    async def balance(self, account_ref: str) -> AccountBalance: ...

    @abstractmethod
    async def login_link(self, account_ref: str) -> str: ...

    @abstractmethod
    async def account_link(self, account_ref: str, return_url: str, refresh_url: str) -> str: ...

    @abstractmethod
    async def onboarding_status(self, account_ref: str) -> AccountStatus: ...

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature_header: str) -> GatewayEvent:
        """Verify the signature and decode the event. Raises WebhookSignatureError."""
        ...
