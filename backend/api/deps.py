"""
Bazaar API Dependencies

Dependency injection for DB sessions, the payment gateway and the
marketplace services. Each request gets services bound to its own
session; tests swap any of these through app.dependency_overrides.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal
from integrations.base import PaymentGateway
from integrations.stripe_connect import StripeConnectGateway
from marketplace.cart import CartSplitter
from marketplace.commissions import CommissionEngine
from marketplace.payouts import PayoutScheduler
from marketplace.repositories import SqlLocationCatalog, SqlVendorDirectory
from marketplace.routing import FulfillmentRouter

settings = get_settings()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_gateway() -> PaymentGateway:
    return StripeConnectGateway.from_settings(settings)


def get_commission_engine(db: AsyncSession = Depends(get_db)) -> CommissionEngine:
    return CommissionEngine(db)


def get_cart_splitter(
    db: AsyncSession = Depends(get_db),
    engine: CommissionEngine = Depends(get_commission_engine),
) -> CartSplitter:
    return CartSplitter(SqlVendorDirectory(db), engine)


def get_location_catalog(db: AsyncSession = Depends(get_db)) -> SqlLocationCatalog:
    return SqlLocationCatalog(db)


def get_router(catalog: SqlLocationCatalog = Depends(get_location_catalog)) -> FulfillmentRouter:
    return FulfillmentRouter(
        catalog,
        base_shipping_cents=settings.routing_base_shipping_cents,
        preferred_boost=settings.routing_preferred_boost,
    )


def get_payout_scheduler(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PayoutScheduler:
    return PayoutScheduler(
        db,
        gateway,
        currency=settings.payout_currency,
        min_amount=settings.payout_min_amount,
    )
