"""
Test Configuration — Fixtures for async DB, test client, fake gateway and seed data.

Each test gets its own in-memory SQLite database, so services are free
to commit and roll back exactly as they do in production.
"""

import json
import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_db, get_gateway
from api.main import app
from core.errors import ExternalGatewayError, WebhookSignatureError
from db.session import Base
from integrations.base import AccountBalance, AccountStatus, GatewayEvent, PaymentGateway, TransferResult

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FIXED_NOW = datetime(2026, 3, 15, 12, 0, 0)


class FakeGateway(PaymentGateway):
    """In-memory PaymentGateway that records transfers and can be told to fail."""

    gateway_name = "fake"

    def __init__(self, fail_reason: str | None = None):
        super().__init__()
        self.fail_reason = fail_reason
        self.transfers: list[dict] = []
        self.accounts: dict[str, AccountStatus] = {}

    async def create_account(self, vendor) -> str:
        account_ref = f"acct_{vendor.vendor_id.hex[:12]}"
        self.accounts[account_ref] = AccountStatus(account_ref, False, False, False)
        return account_ref

    async def transfer(self, account_ref, amount_cents, currency, metadata, idempotency_key=None) -> TransferResult:
        self.transfers.append(
            {
                "account_ref": account_ref,
                "amount_cents": amount_cents,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if self.fail_reason:
            raise ExternalGatewayError("Transfer declined", reason=self.fail_reason, status_code=402)
        return TransferResult(
            transfer_ref=f"tr_{len(self.transfers):04d}",
            amount_cents=amount_cents,
            currency=currency,
            destination=account_ref,
            metadata=metadata,
        )

    async def balance(self, account_ref) -> AccountBalance:
        paid = sum(t["amount_cents"] for t in self.transfers if t["account_ref"] == account_ref)
        return AccountBalance(available={"usd": paid}, pending={})

    async def login_link(self, account_ref) -> str:
        return f"https://gateway.test/login/{account_ref}"

    async def account_link(self, account_ref, return_url, refresh_url) -> str:
        return f"https://gateway.test/onboard/{account_ref}"

    async def onboarding_status(self, account_ref) -> AccountStatus:
        return self.accounts.get(account_ref, AccountStatus(account_ref, True, True, True))

    def parse_webhook(self, payload: bytes, signature_header: str) -> GatewayEvent:
        if signature_header != "valid":
            raise WebhookSignatureError("Invalid webhook signature")
        event = json.loads(payload)
        obj = event.get("data", {}).get("object", {})
        return GatewayEvent(
            event_id=event["id"],
            type=event["type"],
            payout_id=(obj.get("metadata") or {}).get("payout_id"),
            account_ref=obj.get("id") if event["type"] == "account.updated" else None,
            failure_reason=obj.get("failure_message"),
            data=obj,
        )


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
async def client(test_db, fake_gateway):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: fake_gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """Seed vendors and fulfillment locations used across integration tests."""
    from db.models import FulfillmentLocation, LocationInventory, Vendor

    shop = Vendor(
        name="Corner Shop",
        email="hello@cornershop.test",
        type="shop",
        commission_rate=Decimal("15.00"),
        commission_tier="bronze",
        payment_account_ref="acct_shop",
        payouts_enabled=True,
        details_submitted=True,
    )
    brand = Vendor(
        name="Acme Brand",
        email="partners@acme.test",
        type="brand",
        commission_rate=Decimal("10.00"),
        commission_tier="fixed",
        payment_account_ref="acct_brand",
        payouts_enabled=True,
        details_submitted=True,
    )
    distributor = Vendor(
        name="Bulk Goods Co",
        type="distributor",
        commission_rate=Decimal("5.00"),
        commission_tier="fixed",
        payment_account_ref=None,
    )
    inactive = Vendor(
        name="Closed Shop",
        type="shop",
        commission_tier="bronze",
        payment_account_ref="acct_closed",
        active=False,
    )
    test_db.add_all([shop, brand, distributor, inactive])
    await test_db.flush()

    newark = FulfillmentLocation(
        code="NJ-EWR",
        name="Newark Warehouse",
        type="warehouse",
        city="Newark",
        state_province="NJ",
        country_code="US",
        latitude=40.7357,
        longitude=-74.1724,
        processing_time_hours=24,
        fulfillment_rate=0.98,
        error_rate=0.02,
    )
    chicago = FulfillmentLocation(
        code="IL-ORD",
        name="Chicago DC",
        type="distribution_center",
        vendor_id=brand.vendor_id,
        city="Chicago",
        state_province="IL",
        country_code="US",
        latitude=41.8781,
        longitude=-87.6298,
        processing_time_hours=48,
        fulfillment_rate=0.95,
        error_rate=0.05,
    )
    toronto = FulfillmentLocation(
        code="ON-YYZ",
        name="Toronto Warehouse",
        type="warehouse",
        city="Toronto",
        state_province="ON",
        country_code="CA",
        latitude=43.6532,
        longitude=-79.3832,
    )
    test_db.add_all([newark, chicago, toronto])
    await test_db.flush()

    test_db.add_all(
        [
            LocationInventory(location_id=newark.location_id, variant_id="var_mug", quantity_available=10),
            LocationInventory(location_id=chicago.location_id, variant_id="var_mug", quantity_available=50),
            LocationInventory(location_id=toronto.location_id, variant_id="var_mug", quantity_available=99),
        ]
    )
    await test_db.commit()

    return {
        "shop": shop,
        "brand": brand,
        "distributor": distributor,
        "inactive": inactive,
        "newark": newark,
        "chicago": chicago,
        "toronto": toronto,
    }


@pytest.fixture
def make_collected(test_db):
    """Factory: insert collected, unreserved commission records for a vendor."""

    async def _make(vendor, amounts, created_at=None):
        return await _add_collected(test_db, vendor, amounts, created_at)

    return _make


async def _add_collected(db, vendor, amounts, created_at=None):
    from db.models import CommissionRecord
    from marketplace.commissions import resolve_rate, split_amount

    rate, _ = resolve_rate(vendor.type, vendor.commission_tier)
    records = []
    for amount in amounts:
        commission, net = split_amount(Decimal(amount), rate)
        records.append(
            CommissionRecord(
                vendor_id=vendor.vendor_id,
                order_id=f"order_{uuid.uuid4().hex[:10]}",
                order_total=Decimal(amount),
                commission_rate=rate,
                commission_amount=commission,
                net_amount=net,
                status="collected",
                created_at=created_at or FIXED_NOW,
                collected_at=created_at or FIXED_NOW,
            )
        )
    db.add_all(records)
    await db.commit()
    return records
