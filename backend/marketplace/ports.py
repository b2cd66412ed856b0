"""
Ports the marketplace core depends on.

Every service receives its collaborators through its constructor; the
SQL implementations live in marketplace.repositories and the payment
provider adapter lives in integrations/.
"""

import uuid
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from db.models import FulfillmentLocation, RoutingRule, Vendor


class VendorDirectory(Protocol):
    """Vendor records: type, commission rate/tier, payment account, active flag."""

    async def get(self, vendor_id: uuid.UUID) -> Vendor | None: ...

    async def list_active(
        self,
        vendor_ids: Sequence[uuid.UUID] | None = None,
        onboarded_only: bool = False,
    ) -> list[Vendor]: ...

    async def list_by_ids(self, vendor_ids: Sequence[uuid.UUID]) -> list[Vendor]: ...

    async def increment_totals(self, vendor_id: uuid.UUID, revenue: Decimal, commission: Decimal) -> None: ...

    async def set_commission_tier(self, vendor_id: uuid.UUID, tier: str, rate: Decimal) -> None: ...


class LocationCatalog(Protocol):
    """Read-mostly routing configuration: locations, rules and stock."""

    async def list_locations(self, country_code: str) -> list[FulfillmentLocation]: ...

    async def list_rules(self, at: datetime) -> list[RoutingRule]: ...

    async def available_quantities(
        self,
        location_ids: Sequence[uuid.UUID],
        variant_ids: Sequence[str],
    ) -> dict[uuid.UUID, dict[str, int]]: ...
