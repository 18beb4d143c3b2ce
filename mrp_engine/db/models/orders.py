from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from sqlalchemy import Date, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mrp_engine.db.base import Base, CompanyMixin, TimestampMixin, UUIDPkMixin
from mrp_engine.db.models.master_data import QUANTITY


class SupplyOrder(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """Open purchase or work order line expected to deliver a product."""
    __tablename__ = "supply_orders"

    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    warehouse_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True)
    order_type: Mapped[str] = mapped_column(Text, nullable=False)  # purchase_order/work_order
    order_number: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_open: Mapped[float] = mapped_column(QUANTITY, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="open", server_default="open")


class DemandOrder(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """Independent demand line (sales order, forecast) or work-order material demand."""
    __tablename__ = "demand_orders"

    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    demand_type: Mapped[str] = mapped_column(Text, nullable=False)  # sales_order/forecast/work_order_material
    reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity_open: Mapped[float] = mapped_column(QUANTITY, nullable=False)
    required_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="open", server_default="open")
