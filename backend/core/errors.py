"""
Marketplace error taxonomy.

Every core operation either returns its result or raises exactly one of
these. The API layer maps them onto HTTP status codes in one place
(see api.main).
"""


class MarketplaceError(Exception):
    """Base class for all typed marketplace failures."""

    code = "marketplace_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(MarketplaceError):
    """Malformed input: missing vendor tag on an item, bad date range, non-positive payout."""

    code = "validation_error"


class NotFoundError(MarketplaceError):
    code = "not_found"


class InvalidStateError(MarketplaceError):
    """Entity exists but is in the wrong state for the requested operation."""

    code = "invalid_state"


class NoFulfillableLocationError(MarketplaceError):
    code = "no_fulfillable_location"


class NoUnpaidCommissionsError(MarketplaceError):
    code = "no_unpaid_commissions"


class ConcurrencyConflictError(MarketplaceError):
    """Another transaction reserved some of the same commission records first."""

    code = "concurrency_conflict"


class ExternalGatewayError(MarketplaceError):
    """Wraps a payment provider failure, keeping the provider's raw reason."""

    code = "gateway_error"

    def __init__(self, message: str, reason: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.reason = reason or message
        self.status_code = status_code

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class WebhookSignatureError(MarketplaceError):
    """Inbound gateway webhook failed signature or timestamp verification."""

    code = "invalid_signature"
