"""initial_stockunits_schema

Revision ID: 7c1e0a4b2f10
Revises:
Create Date: 2025-10-15 12:30:19.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7c1e0a4b2f10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("name", name="uq_categories_name"),
    )

    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("barcode", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("total_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("created_at"),
        sa.UniqueConstraint("barcode", name="uq_items_barcode"),
    )
    op.create_index("ix_items_category_id", "items", ["category_id"])

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("barcode", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("barcode", name="uq_locations_barcode"),
    )

    # 每 item 一行计数器：生成条码后缀的唯一来源
    op.create_table(
        "sequence_counters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.UniqueConstraint("item_id", name="uq_sequence_counters_item"),
        sa.CheckConstraint("last_value >= 0", name="ck_sequence_counters_non_negative"),
    )

    op.create_table(
        "pool_barcodes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("barcode", sa.String(length=80), nullable=False),
        sa.Column("in_use", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at"),
        _ts("last_used_at", nullable=True),
        sa.UniqueConstraint("barcode", name="uq_pool_barcodes_barcode"),
    )
    op.create_index("ix_pool_barcodes_item_in_use", "pool_barcodes", ["item_id", "in_use"])

    op.create_table(
        "stock_aggregates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "location_id",
            sa.Integer(),
            sa.ForeignKey("locations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("added_at", nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("item_id", "location_id", name="uq_stock_aggregates_item_location"),
    )
    op.create_index("ix_stock_aggregates_item_id", "stock_aggregates", ["item_id"])
    op.create_index("ix_stock_aggregates_location_id", "stock_aggregates", ["location_id"])

    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "location_id",
            sa.Integer(),
            sa.ForeignKey("locations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "aggregate_id",
            sa.Integer(),
            sa.ForeignKey("stock_aggregates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "pool_barcode_id",
            sa.Integer(),
            sa.ForeignKey("pool_barcodes.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("item_id", "sequence_number", name="uq_units_item_sequence"),
        sa.UniqueConstraint("pool_barcode_id", name="uq_units_pool_barcode_id"),
    )
    op.create_index("ix_units_aggregate_id", "units", ["aggregate_id"])
    op.create_index("ix_units_location_item", "units", ["location_id", "item_id"])
    op.create_index("ix_units_added_at", "units", ["added_at"])


def downgrade() -> None:
    op.drop_index("ix_units_added_at", table_name="units")
    op.drop_index("ix_units_location_item", table_name="units")
    op.drop_index("ix_units_aggregate_id", table_name="units")
    op.drop_table("units")

    op.drop_index("ix_stock_aggregates_location_id", table_name="stock_aggregates")
    op.drop_index("ix_stock_aggregates_item_id", table_name="stock_aggregates")
    op.drop_table("stock_aggregates")

    op.drop_index("ix_pool_barcodes_item_in_use", table_name="pool_barcodes")
    op.drop_table("pool_barcodes")

    op.drop_table("sequence_counters")
    op.drop_table("locations")

    op.drop_index("ix_items_category_id", table_name="items")
    op.drop_table("items")
    op.drop_table("categories")
