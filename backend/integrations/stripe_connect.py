"""
Stripe Connect Payment Gateway

Talks to the Stripe REST API directly over httpx (form-encoded bodies,
bearer secret key). Read-style calls retry transient transport errors
with tenacity; transfers are sent exactly once with an Idempotency-Key
so a manual re-drive of the same payout cannot pay twice.
"""

import hashlib
import hmac
import json
import time
from collections.abc import Callable
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import Settings, get_settings
from core.errors import ExternalGatewayError, WebhookSignatureError
from db.models import Vendor
from integrations.base import (
    VENDOR_MCC,
    AccountBalance,
    AccountStatus,
    GatewayEvent,
    GatewayEventType,
    PaymentGateway,
    TransferResult,
)

_transient_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


def flatten_form(data: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Stripe bracket notation: {"metadata": {"a": 1}} -> {"metadata[a]": "1"}."""
    flat: dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(flatten_form(value, name))
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


def _error_reason(response: httpx.Response) -> str:
    try:
        error = response.json().get("error", {})
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    return error.get("message") or error.get("code") or f"HTTP {response.status_code}"


class StripeConnectGateway(PaymentGateway):
    """PaymentGateway backed by Stripe Connect (Express accounts)."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str = "",
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 15.0,
        webhook_tolerance: int = 300,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.webhook_tolerance = webhook_tolerance
        self.transport = transport
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "StripeConnectGateway":
        settings = settings or get_settings()
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            api_base=settings.stripe_api_base,
            timeout=settings.gateway_timeout_seconds,
            webhook_tolerance=settings.stripe_webhook_tolerance_seconds,
        )

    @property
    def gateway_name(self) -> str:
        return "stripe_connect"

    # ── HTTP plumbing ──────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {self.secret_key}"},
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict:
        async with self._client() as client:
            response = await client.request(
                method,
                path,
                data=flatten_form(data) if data else None,
                headers=headers,
            )
        if response.is_error:
            reason = _error_reason(response)
            raise ExternalGatewayError(
                f"Stripe {method} {path} failed",
                reason=reason,
                status_code=response.status_code,
            )
        return response.json()

    @_transient_retry
    async def _read(self, method: str, path: str, data: dict | None = None, headers: dict | None = None) -> dict:
        return await self._send(method, path, data=data, headers=headers)

    async def _call(self, method: str, path: str, data: dict | None = None, headers: dict | None = None) -> dict:
        """Retrying call for operations that are safe to repeat."""
        try:
            return await self._read(method, path, data=data, headers=headers)
        except httpx.TransportError as exc:
            raise ExternalGatewayError(f"Stripe {method} {path} unreachable", reason=str(exc)) from exc

    # ── Accounts ───────────────────────────────────────────────────────

    async def create_account(self, vendor: Vendor) -> str:
        body = {
            "type": "express",
            "country": vendor.country_code or "US",
            "email": vendor.email,
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            "business_type": "individual" if vendor.type == "shop" else "company",
            "business_profile": {
                "name": vendor.name,
                "url": vendor.website,
                "mcc": VENDOR_MCC.get(vendor.type, VENDOR_MCC["shop"]),
            },
            "metadata": {"vendor_id": str(vendor.vendor_id), "vendor_type": vendor.type},
        }
        # Keyed by vendor so a retried request returns the same account.
        account = await self._call(
            "POST",
            "/accounts",
            data=body,
            headers={"Idempotency-Key": f"account-{vendor.vendor_id}"},
        )
        self.logger.info("gateway.account_created", vendor_id=str(vendor.vendor_id), account=account["id"])
        return account["id"]

    async def onboarding_status(self, account_ref: str) -> AccountStatus:
        account = await self._call("GET", f"/accounts/{account_ref}")
        requirements = account.get("requirements") or {}
        return AccountStatus(
            account_ref=account_ref,
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
            requirements=list(requirements.get("currently_due") or []),
        )

    async def account_link(self, account_ref: str, return_url: str, refresh_url: str) -> str:
        link = await self._call(
            "POST",
            "/account_links",
            data={
                "account": account_ref,
                "refresh_url": refresh_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        )
        return link["url"]

    async def login_link(self, account_ref: str) -> str:
        link = await self._call("POST", f"/accounts/{account_ref}/login_links")
        return link["url"]

    async def balance(self, account_ref: str) -> AccountBalance:
        payload = await self._call("GET", "/balance", headers={"Stripe-Account": account_ref})

        def _by_currency(entries: list[dict]) -> dict[str, int]:
            totals: dict[str, int] = {}
            for entry in entries or []:
                totals[entry["currency"]] = totals.get(entry["currency"], 0) + int(entry["amount"])
            return totals

        return AccountBalance(
            available=_by_currency(payload.get("available")),
            pending=_by_currency(payload.get("pending")),
        )

    # ── Transfers ──────────────────────────────────────────────────────

    async def transfer(
        self,
        account_ref: str,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> TransferResult:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            payload = await self._send(
                "POST",
                "/transfers",
                data={
                    "amount": amount_cents,
                    "currency": currency,
                    "destination": account_ref,
                    "metadata": metadata,
                },
                headers=headers,
            )
        except ExternalGatewayError as exc:
            self.logger.warning(
                "gateway.transfer_failed",
                account=account_ref,
                amount_cents=amount_cents,
                reason=exc.reason,
                status_code=exc.status_code,
            )
            raise
        except httpx.TransportError as exc:
            self.logger.warning("gateway.transfer_failed", account=account_ref, amount_cents=amount_cents, reason=str(exc))
            raise ExternalGatewayError("Stripe transfer unreachable", reason=str(exc)) from exc

        return TransferResult(
            transfer_ref=payload["id"],
            amount_cents=int(payload.get("amount", amount_cents)),
            currency=payload.get("currency", currency),
            destination=payload.get("destination", account_ref),
            metadata=dict(payload.get("metadata") or metadata),
        )

    # ── Webhooks ───────────────────────────────────────────────────────

    def verify_signature(self, payload: bytes, signature_header: str) -> None:
        """Stripe-Signature: ``t=<unix>,v1=<hex>[,v1=<hex>...]`` over ``"{t}.{body}"``."""
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")

        timestamp = None
        signatures = []
        for part in (signature_header or "").split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)
        if not timestamp or not signatures:
            raise WebhookSignatureError("Malformed webhook signature header")

        try:
            sent_at = int(timestamp)
        except ValueError as exc:
            raise WebhookSignatureError("Malformed webhook timestamp") from exc
        if abs(self.clock() - sent_at) > self.webhook_tolerance:
            raise WebhookSignatureError("Webhook timestamp outside tolerance")

        signed = f"{timestamp}.".encode() + payload
        expected = hmac.new(self.webhook_secret.encode(), signed, hashlib.sha256).hexdigest()
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise WebhookSignatureError("Invalid webhook signature")

    def parse_webhook(self, payload: bytes, signature_header: str) -> GatewayEvent:
        self.verify_signature(payload, signature_header)
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise WebhookSignatureError("Webhook body is not valid JSON") from exc

        obj = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        event_type = event.get("type", "")

        account_ref = event.get("account")
        if event_type == GatewayEventType.ACCOUNT_UPDATED.value:
            account_ref = obj.get("id") or account_ref

        return GatewayEvent(
            event_id=event.get("id", ""),
            type=event_type,
            payout_id=metadata.get("payout_id"),
            account_ref=account_ref,
            failure_reason=obj.get("failure_message") or obj.get("failure_code"),
            data=obj,
        )
