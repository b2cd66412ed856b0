"""
Bazaar Database Models

Tables for the order-allocation and money-settlement core.

Tables:
  Settlement (1-6):
  1. vendors                    - Independent sellers (read-mostly, owned by the vendor directory)
  2. commission_records         - One row per (vendor, order); the commission ledger
  3. vendor_monthly_volumes     - Monthly sales roll-up used for shop tiering
  4. payouts                    - Batched transfers of a vendor's net amounts
  5. payout_adjustments         - Manual fees / bonuses / clawbacks folded into a payout
  6. processed_webhook_events   - Provider event ids already applied (idempotent webhooks)

  Fulfillment (7-9):
  7. fulfillment_locations      - Warehouses, stores, DCs and dropship partners
  8. location_inventory         - Sellable quantity per (location, variant)
  9. routing_rules              - Admin-defined condition/action pairs
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def Money():
    return Numeric(12, 2, asdecimal=True)


VENDOR_TYPES = ("shop", "brand", "distributor")
COMMISSION_TIERS = ("bronze", "silver", "gold", "fixed")
COMMISSION_STATUSES = ("pending", "collected", "processing", "paid")
PAYOUT_STATUSES = ("pending", "processing", "paid", "failed", "reversed")
LOCATION_TYPES = ("warehouse", "store", "dropship", "distribution_center")
RULE_OPERATORS = ("equals", "not_equals", "contains", "greater_than", "less_than", "in", "not_in")
RULE_ACTIONS = (
    "require_location",
    "exclude_location",
    "prefer_location",
    "apply_surcharge",
    "require_shipping_method",
)


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ─── 1. Vendors ─────────────────────────────────────────────────────────────


class Vendor(Base):
    __tablename__ = "vendors"

    vendor_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    type = Column(String(20), nullable=False, default="shop")
    commission_rate = Column(Numeric(5, 2), nullable=False, default=Decimal("15.00"))
    commission_tier = Column(String(10), nullable=False, default="bronze")
    payment_account_ref = Column(String(100))  # NULL until onboarded with the gateway
    payouts_enabled = Column(Boolean, nullable=False, default=False)
    details_submitted = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    country_code = Column(String(2), default="US")
    website = Column(String(255))
    # Running totals, only ever changed by single-statement SQL increments
    total_revenue = Column(Money(), nullable=False, default=Decimal("0"))
    total_commission = Column(Money(), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in_clause("type", VENDOR_TYPES), name="ck_vendor_type"),
        CheckConstraint(_in_clause("commission_tier", COMMISSION_TIERS), name="ck_vendor_commission_tier"),
    )

    commissions = relationship("CommissionRecord", back_populates="vendor")
    payouts = relationship("Payout", back_populates="vendor")


# ─── 2. Commission Records ──────────────────────────────────────────────────


class CommissionRecord(Base):
    __tablename__ = "commission_records"

    commission_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    vendor_id = Column(GUID(), ForeignKey("vendors.vendor_id"), nullable=False)
    order_id = Column(String(64), nullable=False)
    order_total = Column(Money(), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)
    commission_amount = Column(Money(), nullable=False)
    net_amount = Column(Money(), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    payout_id = Column(GUID(), ForeignKey("payouts.payout_id"))  # write-once
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    collected_at = Column(DateTime)
    paid_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("vendor_id", "order_id", name="uq_commission_vendor_order"),
        CheckConstraint(_in_clause("status", COMMISSION_STATUSES), name="ck_commission_status"),
        Index("ix_commission_vendor_status", "vendor_id", "status"),
        Index("ix_commission_payout", "payout_id"),
    )

    vendor = relationship("Vendor", back_populates="commissions")
    payout = relationship("Payout", back_populates="commissions")


# ─── 3. Vendor Monthly Volumes ──────────────────────────────────────────────


class VendorMonthlyVolume(Base):
    __tablename__ = "vendor_monthly_volumes"

    volume_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    vendor_id = Column(GUID(), ForeignKey("vendors.vendor_id"), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    total_sales = Column(Money(), nullable=False, default=Decimal("0"))
    order_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("vendor_id", "month", "year", name="uq_monthly_volume_period"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_volume_month"),
    )


# ─── 4. Payouts ─────────────────────────────────────────────────────────────


class Payout(Base):
    __tablename__ = "payouts"

    payout_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    vendor_id = Column(GUID(), ForeignKey("vendors.vendor_id"), nullable=False)
    amount = Column(Money(), nullable=False)
    commission_total = Column(Money(), nullable=False)
    adjustment_total = Column(Money(), nullable=False, default=Decimal("0"))
    commission_count = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False, default="pending")
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    transfer_ref = Column(String(100))
    failure_reason = Column(String(500))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    processed_at = Column(DateTime)
    paid_at = Column(DateTime)
    failed_at = Column(DateTime)
    reversed_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint(_in_clause("status", PAYOUT_STATUSES), name="ck_payout_status"),
        CheckConstraint("amount > 0", name="ck_payout_amount_positive"),
        Index("ix_payout_vendor_status", "vendor_id", "status"),
    )

    vendor = relationship("Vendor", back_populates="payouts")
    commissions = relationship("CommissionRecord", back_populates="payout")
    adjustments = relationship("PayoutAdjustment", back_populates="payout", cascade="all, delete-orphan")


# ─── 5. Payout Adjustments ──────────────────────────────────────────────────


class PayoutAdjustment(Base):
    __tablename__ = "payout_adjustments"

    adjustment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    payout_id = Column(GUID(), ForeignKey("payouts.payout_id"), nullable=False)
    type = Column(String(30), nullable=False)  # fee, bonus, clawback, correction
    amount = Column(Money(), nullable=False)  # signed
    description = Column(String(500))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    payout = relationship("Payout", back_populates="adjustments")


# ─── 6. Processed Webhook Events ────────────────────────────────────────────


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_events"

    event_id = Column(String(100), primary_key=True)  # provider event id
    event_type = Column(String(100), nullable=False)
    payout_id = Column(GUID())
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 7. Fulfillment Locations ───────────────────────────────────────────────


class FulfillmentLocation(Base):
    __tablename__ = "fulfillment_locations"

    location_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    type = Column(String(30), nullable=False, default="warehouse")
    vendor_id = Column(GUID(), ForeignKey("vendors.vendor_id"))  # NULL = marketplace-operated
    city = Column(String(100))
    state_province = Column(String(100))
    postal_code = Column(String(20))
    country_code = Column(String(2), nullable=False, default="US")
    latitude = Column(Float)
    longitude = Column(Float)
    shipping_zones = Column(JSON, default=list)  # state/province codes served
    processing_time_hours = Column(Integer, nullable=False, default=24)
    fulfillment_rate = Column(Float, nullable=False, default=0.95)
    error_rate = Column(Float, nullable=False, default=0.02)
    handling_fee_cents = Column(Integer, nullable=False, default=0)
    pick_pack_fee_cents = Column(Integer, nullable=False, default=0)
    daily_order_capacity = Column(Integer)
    current_day_orders = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in_clause("type", LOCATION_TYPES), name="ck_location_type"),
        CheckConstraint("fulfillment_rate BETWEEN 0 AND 1", name="ck_location_fulfillment_rate"),
        CheckConstraint("error_rate BETWEEN 0 AND 1", name="ck_location_error_rate"),
    )

    inventory = relationship("LocationInventory", back_populates="location", cascade="all, delete-orphan")


# ─── 8. Location Inventory ──────────────────────────────────────────────────


class LocationInventory(Base):
    __tablename__ = "location_inventory"

    inventory_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    location_id = Column(GUID(), ForeignKey("fulfillment_locations.location_id"), nullable=False)
    variant_id = Column(String(64), nullable=False)
    quantity_available = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("location_id", "variant_id", name="uq_location_inventory_variant"),)

    location = relationship("FulfillmentLocation", back_populates="inventory")


# ─── 9. Routing Rules ───────────────────────────────────────────────────────


class RoutingRule(Base):
    __tablename__ = "routing_rules"

    rule_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    field_path = Column(String(255), nullable=False)
    operator = Column(String(20), nullable=False)
    value = Column(JSON)
    action = Column(String(40), nullable=False)
    action_params = Column(JSON, default=dict)
    priority = Column(Integer, nullable=False, default=0)  # higher evaluated first
    active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime)
    valid_until = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in_clause("operator", RULE_OPERATORS), name="ck_routing_rule_operator"),
        CheckConstraint(_in_clause("action", RULE_ACTIONS), name="ck_routing_rule_action"),
    )
