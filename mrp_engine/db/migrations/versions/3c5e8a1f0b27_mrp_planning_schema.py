"""MRP planning schema.

- products, boms, bom_items (master data with planning parameters)
- warehouses, stock_levels
- supply_orders, demand_orders
- calendar_exceptions
- mrp_runs, mrp_recommendations, mrp_dependent_demands
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c5e8a1f0b27"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NOW = sa.text("CURRENT_TIMESTAMP")
QTY = sa.Numeric(18, 6)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("sku", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("make_or_buy", sa.Text(), nullable=False, server_default="buy"),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("safety_stock", QTY, nullable=False, server_default="0"),
        sa.Column("reorder_point", QTY, nullable=True),
        sa.Column("minimum_order_qty", QTY, nullable=True),
        sa.Column("order_multiple", QTY, nullable=True),
        sa.Column("maximum_stock", QTY, nullable=True),
        sa.Column("low_level_code", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),
    )
    op.create_index("ix_products_company_id", "products", ["company_id"])

    op.create_table(
        "boms",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("bom_number", sa.Text(), nullable=False),
        sa.Column("version", sa.Text(), nullable=False, server_default="1"),
        sa.Column("bom_type", sa.Text(), nullable=False, server_default="manufacturing"),
        sa.Column("status", sa.Text(), nullable=False, server_default="draft"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("quantity", QTY, nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_boms_company_id", "boms", ["company_id"])
    op.create_index("ix_boms_product_id", "boms", ["product_id"])

    op.create_table(
        "bom_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("bom_id", sa.Uuid(), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("component_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("scrap_percentage", QTY, nullable=False, server_default="0"),
        sa.Column("is_phantom", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("is_optional", sa.Boolean(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bom_id"], ["boms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["component_id"], ["products.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_bom_items_company_id", "bom_items", ["company_id"])
    op.create_index("ix_bom_items_bom_id", "bom_items", ["bom_id"])
    op.create_index("ix_bom_items_component_id", "bom_items", ["component_id"])

    op.create_table(
        "warehouses",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_warehouses_company_id", "warehouses", ["company_id"])

    op.create_table(
        "stock_levels",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("warehouse_id", sa.Uuid(), nullable=False),
        sa.Column("quantity_on_hand", QTY, nullable=False, server_default="0"),
        sa.Column("quantity_reserved", QTY, nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("product_id", "warehouse_id", name="uq_stock_levels_product_warehouse"),
    )
    op.create_index("ix_stock_levels_company_id", "stock_levels", ["company_id"])
    op.create_index("ix_stock_levels_product_id", "stock_levels", ["product_id"])

    op.create_table(
        "supply_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("warehouse_id", sa.Uuid(), nullable=True),
        sa.Column("order_type", sa.Text(), nullable=False),
        sa.Column("order_number", sa.Text(), nullable=False),
        sa.Column("quantity_open", QTY, nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="open"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_supply_orders_company_id", "supply_orders", ["company_id"])
    op.create_index("ix_supply_orders_product_id", "supply_orders", ["product_id"])

    op.create_table(
        "demand_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("demand_type", sa.Text(), nullable=False),
        sa.Column("reference", sa.Text(), nullable=True),
        sa.Column("quantity_open", QTY, nullable=False),
        sa.Column("required_date", sa.Date(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="open"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_demand_orders_company_id", "demand_orders", ["company_id"])
    op.create_index("ix_demand_orders_product_id", "demand_orders", ["product_id"])

    op.create_table(
        "calendar_exceptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("work_center_id", sa.Uuid(), nullable=True),
        sa.Column("calendar_date", sa.Date(), nullable=False),
        sa.Column("day_type", sa.Text(), nullable=False),
        sa.Column("working_hours", QTY, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "company_id", "work_center_id", "calendar_date", name="uq_calendar_exceptions_scope_date"
        ),
    )
    op.create_index("ix_calendar_exceptions_company_id", "calendar_exceptions", ["company_id"])
    op.create_index("ix_calendar_exceptions_calendar_date", "calendar_exceptions", ["calendar_date"])

    op.create_table(
        "mrp_runs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("run_number", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("planning_horizon_start", sa.Date(), nullable=False),
        sa.Column("planning_horizon_end", sa.Date(), nullable=False),
        sa.Column("include_safety_stock", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("respect_lead_times", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("consider_wip", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("net_change", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("product_filters", sa.JSON(), nullable=False),
        sa.Column("warehouse_filters", sa.JSON(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("products_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("products_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recommendations_generated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("warnings_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("warnings_summary", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "run_number", name="uq_mrp_runs_company_run_number"),
    )
    op.create_index("ix_mrp_runs_company_id", "mrp_runs", ["company_id"])
    op.create_index("ix_mrp_runs_status", "mrp_runs", ["status"])

    op.create_table(
        "mrp_recommendations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("warehouse_id", sa.Uuid(), nullable=True),
        sa.Column("recommendation_type", sa.Text(), nullable=False),
        sa.Column("required_date", sa.Date(), nullable=False),
        sa.Column("suggested_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("gross_requirement", QTY, nullable=False),
        sa.Column("net_requirement", QTY, nullable=False),
        sa.Column("suggested_quantity", QTY, nullable=False),
        sa.Column("current_stock", QTY, nullable=False),
        sa.Column("projected_stock", QTY, nullable=False),
        sa.Column("demand_source_type", sa.Text(), nullable=True),
        sa.Column("demand_source_id", sa.Uuid(), nullable=True),
        sa.Column("priority", sa.Text(), nullable=False, server_default="medium"),
        sa.Column("is_urgent", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("urgency_reason", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("actioned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actioned_by", sa.Uuid(), nullable=True),
        sa.Column("action_reference_type", sa.Text(), nullable=True),
        sa.Column("action_reference_id", sa.Uuid(), nullable=True),
        sa.Column("action_notes", sa.Text(), nullable=True),
        sa.Column("calculation_details", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["run_id"], ["mrp_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_mrp_recommendations_company_id", "mrp_recommendations", ["company_id"])
    op.create_index("ix_mrp_recommendations_run_product", "mrp_recommendations", ["run_id", "product_id"])

    op.create_table(
        "mrp_dependent_demands",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("source_product_id", sa.Uuid(), nullable=False),
        sa.Column("required_date", sa.Date(), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("is_optional", sa.Boolean(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["run_id"], ["mrp_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["source_product_id"], ["products.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_mrp_dependent_demands_company_id", "mrp_dependent_demands", ["company_id"])
    op.create_index("ix_mrp_dependent_demands_run_product", "mrp_dependent_demands", ["run_id", "product_id"])
    op.create_index("ix_mrp_dependent_demands_run_source", "mrp_dependent_demands", ["run_id", "source_product_id"])


def downgrade() -> None:
    for table in (
        "mrp_dependent_demands",
        "mrp_recommendations",
        "mrp_runs",
        "calendar_exceptions",
        "demand_orders",
        "supply_orders",
        "stock_levels",
        "warehouses",
        "bom_items",
        "boms",
        "products",
    ):
        op.drop_table(table)
