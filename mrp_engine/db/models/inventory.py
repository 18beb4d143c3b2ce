from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Text, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mrp_engine.db.base import Base, CompanyMixin, TimestampMixin, UUIDPkMixin
from mrp_engine.db.models.master_data import QUANTITY


class Warehouse(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """Stock-holding warehouse."""
    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")


class StockLevel(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """On-hand and reserved quantity of one product in one warehouse."""
    __tablename__ = "stock_levels"
    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_stock_levels_product_warehouse"),
    )

    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False)
    quantity_on_hand: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0, server_default="0")
    quantity_reserved: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0, server_default="0")

    @property
    def quantity_free(self) -> float:
        return float(self.quantity_on_hand or 0) - float(self.quantity_reserved or 0)
