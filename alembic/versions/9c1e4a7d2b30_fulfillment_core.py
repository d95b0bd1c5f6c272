"""fulfillment_core: items / locations / inventory_records / stock_ledger / sales_orders / pickings / audit_events

Revision ID: 9c1e4a7d2b30
Revises:
Create Date: 2026-10-18 10:12:41.208315

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = "9c1e4a7d2b30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonType = sa.JSON().with_variant(JSONB(), "postgresql")


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=False),
        sa.Column("standard_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("code", name="uq_items_code"),
    )

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("max_capacity", sa.Integer(), nullable=False),
        sa.Column("current_capacity", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("max_capacity > 0", name="ck_locations_max_capacity_positive"),
        sa.CheckConstraint("current_capacity >= 0", name="ck_locations_current_capacity_nonneg"),
        sa.CheckConstraint("category IN ('Storage', 'Other')", name="ck_locations_category"),
    )
    op.create_index(
        "uq_locations_code_live",
        "locations",
        ["code"],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
        sqlite_where=sa.text("is_deleted = 0"),
    )
    op.create_index("ix_locations_category", "locations", ["category"])

    op.create_table(
        "inventory_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _ts("last_updated"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("item_id", "location_id", name="uq_inventory_records_item_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_records_quantity_nonneg"),
    )
    op.create_index("ix_inventory_records_item_id", "inventory_records", ["item_id"])
    op.create_index("ix_inventory_records_location_id", "inventory_records", ["location_id"])
    op.create_index("ix_inventory_records_item_fifo", "inventory_records", ["item_id", "last_updated", "id"])

    op.create_table(
        "stock_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("ref", sa.String(length=128), nullable=False),
        sa.Column("ref_line", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("after_qty", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        _ts("occurred_at"),
    )
    op.create_index("ix_stock_ledger_item_id", "stock_ledger", ["item_id"])
    op.create_index("ix_stock_ledger_location_id", "stock_ledger", ["location_id"])
    op.create_index("ix_stock_ledger_ref", "stock_ledger", ["ref"])
    op.create_index("ix_stock_ledger_item_loc_time", "stock_ledger", ["item_id", "location_id", "occurred_at"])

    op.create_table(
        "sales_orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("so_number", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column(
            "holding_location_id",
            sa.Integer(),
            sa.ForeignKey("locations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        _ts("order_date"),
        _ts("shipped_at", nullable=True),
        _ts("cancelled_at", nullable=True),
        _ts("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("so_number", name="uq_sales_orders_so_number"),
    )
    op.create_index("ix_sales_orders_customer_id", "sales_orders", ["customer_id"])
    op.create_index("ix_sales_orders_status", "sales_orders", ["status"])
    op.create_index("ix_sales_orders_order_date", "sales_orders", ["order_date"])

    op.create_table(
        "sales_order_lines",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "sales_order_id",
            sa.Integer(),
            sa.ForeignKey("sales_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(18, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_sales_order_lines_quantity_positive"),
    )
    op.create_index("ix_sales_order_lines_sales_order_id", "sales_order_lines", ["sales_order_id"])

    op.create_table(
        "pickings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("picking_number", sa.String(length=32), nullable=False),
        sa.Column(
            "sales_order_id",
            sa.Integer(),
            sa.ForeignKey("sales_orders.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("picking_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("completed_at", nullable=True),
        _ts("cancelled_at", nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("picking_number", name="uq_pickings_picking_number"),
    )
    op.create_index("ix_pickings_sales_order_id", "pickings", ["sales_order_id"])
    op.create_index(
        "uq_pickings_live_per_order",
        "pickings",
        ["sales_order_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'Cancelled'"),
        sqlite_where=sa.text("status <> 'Cancelled'"),
    )
    op.create_index("ix_pickings_status", "pickings", ["status"])
    op.create_index("ix_pickings_picking_date", "pickings", ["picking_date"])

    op.create_table(
        "picking_details",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("picking_id", sa.Integer(), sa.ForeignKey("pickings.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "sales_order_line_id",
            sa.Integer(),
            sa.ForeignKey("sales_order_lines.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column(
            "location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("quantity_required", sa.Integer(), nullable=False),
        sa.Column("quantity_picked", sa.Integer(), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity_required > 0", name="ck_picking_details_required_positive"),
        sa.CheckConstraint(
            "quantity_picked >= 0 AND quantity_picked <= quantity_required",
            name="ck_picking_details_picked_range",
        ),
    )
    op.create_index("ix_picking_details_picking_id", "picking_details", ["picking_id"])
    op.create_index("ix_picking_details_item_location", "picking_details", ["item_id", "location_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("before", JsonType, nullable=True),
        sa.Column("after", JsonType, nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_name", sa.String(length=128), nullable=False),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
    op.create_index("ix_audit_events_trace_id", "audit_events", ["trace_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("picking_details")
    op.drop_table("pickings")
    op.drop_table("sales_order_lines")
    op.drop_table("sales_orders")
    op.drop_table("stock_ledger")
    op.drop_table("inventory_records")
    op.drop_table("locations")
    op.drop_table("items")
