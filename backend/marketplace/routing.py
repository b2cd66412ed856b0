"""
Fulfillment Router — pick the location that should ship an order.

Pipeline:
  1. Eligibility: active locations in the destination country, minus
     request exclusions.
  2. Rules: current routing rules, highest priority first, prune / boost /
     surcharge candidates and may pin the shipping service level.
  3. Scoring: five 0-100 factors, weighted
       inventory 0.25, distance 0.20, cost 0.25, time 0.20, reliability 0.10
     plus any preference boost.
  4. Selection: best-scoring location with full inventory, else best with
     partial inventory. Unfulfillable locations are never selected.
  5. Alternatives: next three fulfillable locations by score.

A request is always routed to a single location; split shipments across
locations are not attempted. ``route`` reads configuration only, so it is
safe to call concurrently and for simulations.
"""

import math
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime

import structlog

from core.errors import NoFulfillableLocationError, ValidationError
from db.models import FulfillmentLocation
from marketplace.ports import LocationCatalog
from marketplace.rules import TRANSIT_DAYS, RuleEffects, apply_rules

logger = structlog.get_logger()

ALGORITHM_VERSION = "1.0.0"

SCORING_WEIGHTS = {
    "inventory": 0.25,
    "distance": 0.20,
    "cost": 0.25,
    "time": 0.20,
    "reliability": 0.10,
}

# (exclusive upper bound, score)
DISTANCE_TIERS_MILES = [(50, 100), (150, 90), (300, 80), (500, 70), (1000, 50), (2000, 30)]
COST_TIERS_CENTS = [(500, 100), (1000, 90), (1500, 80), (2000, 70), (3000, 50), (5000, 30)]
# (inclusive upper bound, score)
TIME_TIERS_DAYS = [(1, 100), (2, 90), (3, 80), (5, 60), (7, 40)]

DEFAULT_PROCESSING_HOURS = 24
DEFAULT_FULFILLMENT_RATE = 0.95
DEFAULT_ERROR_RATE = 0.02


# ─── Request / result types ─────────────────────────────────────────────────


@dataclass
class Address:
    country_code: str
    state_province: str | None = None
    city: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass
class RoutingItem:
    variant_id: str
    quantity: int
    vendor_id: str | None = None
    product_id: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class RoutingRequest:
    address: Address
    items: list[RoutingItem]
    order_id: str | None = None
    service_level: str = "standard"
    exclude_locations: list[str] = field(default_factory=list)  # location codes or ids
    preferred_locations: list[str] = field(default_factory=list)


@dataclass
class InventoryStatus:
    available: bool  # every requested unit is in stock
    partial: bool
    total_requested: int
    items_available: int
    items_missing: list[str]


@dataclass
class LocationScore:
    location_id: uuid.UUID
    location_code: str
    location_name: str
    vendor_id: str
    total_score: float
    can_fulfill: bool
    factors: dict[str, float]
    boost: float
    distance_miles: float | None
    estimated_cost: int
    estimated_shipping_cost: int
    estimated_handling_cost: int
    surcharge_cents: int
    estimated_delivery_days: int
    inventory_status: InventoryStatus


@dataclass
class RoutingAssignment:
    location_id: uuid.UUID
    location_code: str
    vendor_id: str
    items: list[RoutingItem]
    estimated_cost: int
    estimated_delivery_days: int


@dataclass
class RoutingResult:
    request_id: str
    timestamp: datetime
    optimal: RoutingAssignment
    alternatives: list[RoutingAssignment]
    total_estimated_cost: int
    total_estimated_delivery_days: int
    metadata: dict
    scores: list[LocationScore]

    def to_dict(self) -> dict:
        return asdict(self)


# ─── Pure scoring helpers ───────────────────────────────────────────────────


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in miles between two (lat, lon) points."""
    R = 3959  # Earth radius in miles
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _tier(value: float, tiers: list[tuple[float, int]], floor: int, inclusive: bool = False) -> int:
    for bound, score in tiers:
        if value <= bound if inclusive else value < bound:
            return score
    return floor


def distance_score(address: Address, location: FulfillmentLocation) -> tuple[int, float | None]:
    """(score, miles). Falls back to state/zone matching without coordinates."""
    if None not in (address.latitude, address.longitude, location.latitude, location.longitude):
        miles = haversine_miles(address.latitude, address.longitude, location.latitude, location.longitude)
        return _tier(miles, DISTANCE_TIERS_MILES, 10), miles

    if address.state_province and address.state_province == location.state_province:
        return 85, None
    if address.state_province and address.state_province in (location.shipping_zones or []):
        return 70, None
    return 40, None


def cost_score(total_cost_cents: int) -> int:
    return _tier(total_cost_cents, COST_TIERS_CENTS, 10)


def time_score(delivery_days: int) -> int:
    return _tier(delivery_days, TIME_TIERS_DAYS, 20, inclusive=True)


def reliability_score(location: FulfillmentLocation) -> int:
    fulfillment_rate = location.fulfillment_rate if location.fulfillment_rate is not None else DEFAULT_FULFILLMENT_RATE
    error_rate = location.error_rate if location.error_rate is not None else DEFAULT_ERROR_RATE
    return round(fulfillment_rate * 100 * (1 - error_rate))


def inventory_score(status: InventoryStatus) -> int:
    if status.available:
        return 100
    if status.partial and status.total_requested:
        return round(status.items_available / status.total_requested * 80)
    return 0


def estimate_delivery_days(location: FulfillmentLocation, service_level: str) -> int:
    processing_hours = location.processing_time_hours or DEFAULT_PROCESSING_HOURS
    return math.ceil(processing_hours / 24) + TRANSIT_DAYS.get(service_level, TRANSIT_DAYS["standard"])


def handling_cost(location: FulfillmentLocation, total_quantity: int) -> int:
    return (location.handling_fee_cents or 0) + (location.pick_pack_fee_cents or 0) * total_quantity


def check_inventory(required: dict[str, int], stock: dict[str, int]) -> InventoryStatus:
    total_requested = sum(required.values())
    items_available = 0
    missing = []
    for variant_id, qty in required.items():
        on_hand = max(stock.get(variant_id, 0), 0)
        items_available += min(on_hand, qty)
        if on_hand < qty:
            missing.append(variant_id)
    available = not missing
    return InventoryStatus(
        available=available,
        partial=not available and items_available > 0,
        total_requested=total_requested,
        items_available=items_available,
        items_missing=missing,
    )


def build_rule_context(request: RoutingRequest, service_level: str) -> dict:
    items = [asdict(item) for item in request.items]
    return {
        "order_id": request.order_id,
        "address": asdict(request.address),
        "service_level": service_level,
        "items": items,
        "item_count": len(items),
        "total_quantity": sum(item.quantity for item in request.items),
        "vendor_ids": sorted({item.vendor_id for item in request.items if item.vendor_id}),
    }


# ─── Router ─────────────────────────────────────────────────────────────────


class FulfillmentRouter:
    """Score candidate locations and choose one for an order."""

    def __init__(
        self,
        catalog: LocationCatalog,
        base_shipping_cents: int = 799,
        preferred_boost: float = 10.0,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.catalog = catalog
        self.base_shipping_cents = base_shipping_cents
        self.preferred_boost = preferred_boost
        self.clock = clock

    def _validate(self, request: RoutingRequest) -> None:
        if not request.address or not request.address.country_code:
            raise ValidationError("Destination country is required")
        if not request.items:
            raise ValidationError("Routing request has no items")
        for item in request.items:
            if item.quantity <= 0:
                raise ValidationError(f"Item {item.variant_id} has non-positive quantity")
        if request.service_level not in TRANSIT_DAYS:
            raise ValidationError(f"Unknown service level '{request.service_level}'")

    def estimate_shipping(self, distance: int) -> int:
        """Distance-scaled flat rate: base at score 100, up to 2x base at score 0."""
        return round(self.base_shipping_cents * (1 + (100 - distance) / 100))

    def score_location(
        self,
        request: RoutingRequest,
        location: FulfillmentLocation,
        required: dict[str, int],
        stock: dict[str, int],
        effects: RuleEffects,
        service_level: str,
    ) -> LocationScore:
        status = check_inventory(required, stock)
        total_quantity = sum(required.values())

        dist, miles = distance_score(request.address, location)
        shipping = self.estimate_shipping(dist)
        handling = handling_cost(location, total_quantity)
        surcharge = effects.surcharge_for(location.code)
        estimated_cost = shipping + handling + surcharge
        days = estimate_delivery_days(location, service_level)

        factors = {
            "inventory": inventory_score(status),
            "distance": dist,
            "cost": cost_score(estimated_cost),
            "time": time_score(days),
            "reliability": reliability_score(location),
        }
        boost = effects.boost_for(location.code)
        if location.code in request.preferred_locations or str(location.location_id) in request.preferred_locations:
            boost += self.preferred_boost

        total = sum(factors[name] * weight for name, weight in SCORING_WEIGHTS.items()) + boost

        return LocationScore(
            location_id=location.location_id,
            location_code=location.code,
            location_name=location.name,
            vendor_id=str(location.vendor_id) if location.vendor_id else "marketplace",
            total_score=round(total, 4),
            can_fulfill=status.available or status.partial,
            factors=factors,
            boost=boost,
            distance_miles=round(miles, 2) if miles is not None else None,
            estimated_cost=estimated_cost,
            estimated_shipping_cost=shipping,
            estimated_handling_cost=handling,
            surcharge_cents=surcharge,
            estimated_delivery_days=days,
            inventory_status=status,
        )

    @staticmethod
    def _assignment(score: LocationScore, request: RoutingRequest) -> RoutingAssignment:
        return RoutingAssignment(
            location_id=score.location_id,
            location_code=score.location_code,
            vendor_id=score.vendor_id,
            items=list(request.items),
            estimated_cost=score.estimated_cost,
            estimated_delivery_days=score.estimated_delivery_days,
        )

    async def route(self, request: RoutingRequest) -> RoutingResult:
        started = time.perf_counter()
        self._validate(request)
        now = self.clock()
        request_id = f"routing_{uuid.uuid4().hex[:12]}"

        # 1. Eligibility
        excluded = set(request.exclude_locations)
        locations = [
            loc
            for loc in await self.catalog.list_locations(request.address.country_code)
            if loc.active is not False and loc.code not in excluded and str(loc.location_id) not in excluded
        ]

        # 2. Rules
        rules = await self.catalog.list_rules(now)
        effects = apply_rules(
            rules,
            build_rule_context(request, request.service_level),
            at=now,
            default_boost=self.preferred_boost,
        )
        service_level = effects.service_level or request.service_level
        candidates = [loc for loc in locations if effects.allows(loc.code)]

        # 3. Scoring
        required: dict[str, int] = {}
        for item in request.items:
            required[item.variant_id] = required.get(item.variant_id, 0) + item.quantity

        stock = await self.catalog.available_quantities([loc.location_id for loc in candidates], list(required))
        scores = [
            self.score_location(request, loc, required, stock.get(loc.location_id, {}), effects, service_level)
            for loc in candidates
        ]
        # Stable: equal scores keep catalog order.
        scores.sort(key=lambda s: -s.total_score)

        # 4. Selection
        full = [s for s in scores if s.inventory_status.available]
        fulfillable = [s for s in scores if s.can_fulfill]
        if not fulfillable:
            logger.warning(
                "routing.no_fulfillable_location",
                order_id=request.order_id,
                locations_evaluated=len(locations),
                candidates=len(candidates),
            )
            raise NoFulfillableLocationError("No fulfillment location can fulfill this order")
        best = full[0] if full else fulfillable[0]

        # 5. Alternatives
        alternatives = [s for s in fulfillable if s.location_id != best.location_id][:3]

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        optimal = self._assignment(best, request)

        logger.info(
            "routing.completed",
            request_id=request_id,
            order_id=request.order_id,
            location=best.location_code,
            score=best.total_score,
            locations_evaluated=len(locations),
            rules_applied=len(effects.applied),
        )

        return RoutingResult(
            request_id=request_id,
            timestamp=now,
            optimal=optimal,
            alternatives=[self._assignment(s, request) for s in alternatives],
            total_estimated_cost=optimal.estimated_cost,
            total_estimated_delivery_days=optimal.estimated_delivery_days,
            metadata={
                "algorithm_version": ALGORITHM_VERSION,
                "processing_time": elapsed_ms,
                "locations_evaluated": len(locations),
                "rules_applied": len(effects.applied),
                "applied_rules": list(effects.applied),
                "excluded_by_rules": sorted(loc.code for loc in locations if not effects.allows(loc.code)),
                "service_level": service_level,
            },
            scores=scores,
        )
