"""
Marketplace core schema - settlement and fulfillment tables

Revision ID: 001
Revises: None
Create Date: 2026-10-12
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def upgrade() -> None:
    # 1. Vendors
    op.create_table(
        "vendors",
        _uuid_pk("vendor_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("type", sa.String(20), nullable=False, server_default="shop"),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False, server_default="15.00"),
        sa.Column("commission_tier", sa.String(10), nullable=False, server_default="bronze"),
        sa.Column("payment_account_ref", sa.String(100)),
        sa.Column("payouts_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("details_submitted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("country_code", sa.String(2), server_default="US"),
        sa.Column("website", sa.String(255)),
        sa.Column("total_revenue", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_commission", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('shop', 'brand', 'distributor')", name="ck_vendor_type"),
        sa.CheckConstraint(
            "commission_tier IN ('bronze', 'silver', 'gold', 'fixed')", name="ck_vendor_commission_tier"
        ),
    )
    op.create_index("ix_vendors_account_ref", "vendors", ["payment_account_ref"])

    # 2. Payouts (before commission_records, which reference them)
    op.create_table(
        "payouts",
        _uuid_pk("payout_id"),
        sa.Column("vendor_id", UUID(as_uuid=True), sa.ForeignKey("vendors.vendor_id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("adjustment_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("commission_count", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("period_start", sa.DateTime, nullable=False),
        sa.Column("period_end", sa.DateTime, nullable=False),
        sa.Column("transfer_ref", sa.String(100)),
        sa.Column("failure_reason", sa.String(500)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime),
        sa.Column("paid_at", sa.DateTime),
        sa.Column("failed_at", sa.DateTime),
        sa.Column("reversed_at", sa.DateTime),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'paid', 'failed', 'reversed')", name="ck_payout_status"
        ),
        sa.CheckConstraint("amount > 0", name="ck_payout_amount_positive"),
    )
    op.create_index("ix_payout_vendor_status", "payouts", ["vendor_id", "status"])

    # 3. Commission records
    op.create_table(
        "commission_records",
        _uuid_pk("commission_id"),
        sa.Column("vendor_id", UUID(as_uuid=True), sa.ForeignKey("vendors.vendor_id"), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("order_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payout_id", UUID(as_uuid=True), sa.ForeignKey("payouts.payout_id")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("collected_at", sa.DateTime),
        sa.Column("paid_at", sa.DateTime),
        sa.UniqueConstraint("vendor_id", "order_id", name="uq_commission_vendor_order"),
        sa.CheckConstraint(
            "status IN ('pending', 'collected', 'processing', 'paid')", name="ck_commission_status"
        ),
    )
    op.create_index("ix_commission_vendor_status", "commission_records", ["vendor_id", "status"])
    op.create_index("ix_commission_payout", "commission_records", ["payout_id"])

    # 4. Vendor monthly volumes
    op.create_table(
        "vendor_monthly_volumes",
        _uuid_pk("volume_id"),
        sa.Column("vendor_id", UUID(as_uuid=True), sa.ForeignKey("vendors.vendor_id"), nullable=False),
        sa.Column("month", sa.Integer, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("total_sales", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("order_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("vendor_id", "month", "year", name="uq_monthly_volume_period"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_volume_month"),
    )

    # 5. Payout adjustments
    op.create_table(
        "payout_adjustments",
        _uuid_pk("adjustment_id"),
        sa.Column("payout_id", UUID(as_uuid=True), sa.ForeignKey("payouts.payout_id"), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(500)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 6. Processed webhook events
    op.create_table(
        "processed_webhook_events",
        sa.Column("event_id", sa.String(100), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payout_id", UUID(as_uuid=True)),
        sa.Column("received_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 7. Fulfillment locations
    op.create_table(
        "fulfillment_locations",
        _uuid_pk("location_id"),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(30), nullable=False, server_default="warehouse"),
        sa.Column("vendor_id", UUID(as_uuid=True), sa.ForeignKey("vendors.vendor_id")),
        sa.Column("city", sa.String(100)),
        sa.Column("state_province", sa.String(100)),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("country_code", sa.String(2), nullable=False, server_default="US"),
        sa.Column("latitude", sa.Float),
        sa.Column("longitude", sa.Float),
        sa.Column("shipping_zones", sa.JSON),
        sa.Column("processing_time_hours", sa.Integer, nullable=False, server_default="24"),
        sa.Column("fulfillment_rate", sa.Float, nullable=False, server_default="0.95"),
        sa.Column("error_rate", sa.Float, nullable=False, server_default="0.02"),
        sa.Column("handling_fee_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("pick_pack_fee_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("daily_order_capacity", sa.Integer),
        sa.Column("current_day_orders", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "type IN ('warehouse', 'store', 'dropship', 'distribution_center')", name="ck_location_type"
        ),
        sa.CheckConstraint("fulfillment_rate BETWEEN 0 AND 1", name="ck_location_fulfillment_rate"),
        sa.CheckConstraint("error_rate BETWEEN 0 AND 1", name="ck_location_error_rate"),
    )
    op.create_index("ix_locations_country_active", "fulfillment_locations", ["country_code", "active"])

    # 8. Location inventory
    op.create_table(
        "location_inventory",
        _uuid_pk("inventory_id"),
        sa.Column(
            "location_id",
            UUID(as_uuid=True),
            sa.ForeignKey("fulfillment_locations.location_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("variant_id", sa.String(64), nullable=False),
        sa.Column("quantity_available", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("location_id", "variant_id", name="uq_location_inventory_variant"),
    )

    # 9. Routing rules
    op.create_table(
        "routing_rules",
        _uuid_pk("rule_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("field_path", sa.String(255), nullable=False),
        sa.Column("operator", sa.String(20), nullable=False),
        sa.Column("value", sa.JSON),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("action_params", sa.JSON),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("valid_from", sa.DateTime),
        sa.Column("valid_until", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "operator IN ('equals', 'not_equals', 'contains', 'greater_than', 'less_than', 'in', 'not_in')",
            name="ck_routing_rule_operator",
        ),
        sa.CheckConstraint(
            "action IN ('require_location', 'exclude_location', 'prefer_location', "
            "'apply_surcharge', 'require_shipping_method')",
            name="ck_routing_rule_action",
        ),
    )


def downgrade() -> None:
    op.drop_table("routing_rules")
    op.drop_table("location_inventory")
    op.drop_index("ix_locations_country_active", table_name="fulfillment_locations")
    op.drop_table("fulfillment_locations")
    op.drop_table("processed_webhook_events")
    op.drop_table("payout_adjustments")
    op.drop_table("vendor_monthly_volumes")
    op.drop_index("ix_commission_payout", table_name="commission_records")
    op.drop_index("ix_commission_vendor_status", table_name="commission_records")
    op.drop_table("commission_records")
    op.drop_index("ix_payout_vendor_status", table_name="payouts")
    op.drop_table("payouts")
    op.drop_index("ix_vendors_account_ref", table_name="vendors")
    op.drop_table("vendors")
