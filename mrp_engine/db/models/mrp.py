from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mrp_engine.db.base import Base, CompanyMixin, TimestampMixin, UUIDPkMixin
from mrp_engine.db.models.master_data import QUANTITY


class MrpRun(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """
    One planning run. Status and counters are mutated only by the orchestrator.
    """
    __tablename__ = "mrp_runs"
    __table_args__ = (UniqueConstraint("company_id", "run_number", name="uq_mrp_runs_company_run_number"),)

    run_number: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    planning_horizon_start: Mapped[date] = mapped_column(Date, nullable=False)
    planning_horizon_end: Mapped[date] = mapped_column(Date, nullable=False)

    include_safety_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    respect_lead_times: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    consider_wip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    net_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    product_filters: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    warehouse_filters: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", server_default="pending", index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    products_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    products_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    recommendations_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    warnings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    warnings_summary: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class MrpRecommendation(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """A planning decision for one product within one run."""
    __tablename__ = "mrp_recommendations"
    __table_args__ = (
        Index("ix_mrp_recommendations_run_product", "run_id", "product_id"),
    )

    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("mrp_runs.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    # Source warehouse for transfers.
    warehouse_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    recommendation_type: Mapped[str] = mapped_column(Text, nullable=False)
    required_date: Mapped[date] = mapped_column(Date, nullable=False)
    suggested_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    gross_requirement: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0)
    net_requirement: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0)
    suggested_quantity: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0)
    current_stock: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0)
    projected_stock: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0)

    demand_source_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    demand_source_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    priority: Mapped[str] = mapped_column(Text, nullable=False, default="medium", server_default="medium")
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    urgency_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lifecycle below is owned by the approval workflow, not by the engine.
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", server_default="pending")
    actioned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    actioned_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    action_reference_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    action_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    calculation_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class MrpDependentDemand(UUIDPkMixin, CompanyMixin, Base):
    """
    Component demand created by a parent's planned work order within a run.

    Rows are written by the parent's chunk and read by chunks of later LLC tiers.
    """
    __tablename__ = "mrp_dependent_demands"
    __table_args__ = (
        Index("ix_mrp_dependent_demands_run_product", "run_id", "product_id"),
        Index("ix_mrp_dependent_demands_run_source", "run_id", "source_product_id"),
    )

    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("mrp_runs.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    source_product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    required_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[float] = mapped_column(QUANTITY, nullable=False)
    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
