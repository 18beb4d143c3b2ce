from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, Text, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mrp_engine.db.base import Base, CompanyMixin, TimestampMixin, UUIDPkMixin

QUANTITY = Numeric(18, 6, asdecimal=False)


class Product(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """Product master record with its planning parameters."""
    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),)

    sku: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    make_or_buy: Mapped[str] = mapped_column(Text, nullable=False, default="buy", server_default="buy")
    lead_time_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    safety_stock: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0, server_default="0")
    reorder_point: Mapped[Optional[float]] = mapped_column(QUANTITY, nullable=True)
    minimum_order_qty: Mapped[Optional[float]] = mapped_column(QUANTITY, nullable=True)
    order_multiple: Mapped[Optional[float]] = mapped_column(QUANTITY, nullable=True)
    maximum_stock: Mapped[Optional[float]] = mapped_column(QUANTITY, nullable=True)
    # Written only by the low-level-code calculator.
    low_level_code: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class Bom(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """Versioned Bill of Materials header for a product."""
    __tablename__ = "boms"

    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    bom_number: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str] = mapped_column(Text, nullable=False, default="1", server_default="1")
    bom_type: Mapped[str] = mapped_column(Text, nullable=False, default="manufacturing", server_default="manufacturing")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft", server_default="draft")  # draft/active/obsolete
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    # Output quantity the item quantities refer to.
    quantity: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=1, server_default="1")


class BomItem(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """Component line of a BOM."""
    __tablename__ = "bom_items"

    bom_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("boms.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    component_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity: Mapped[float] = mapped_column(QUANTITY, nullable=False)
    scrap_percentage: Mapped[float] = mapped_column(QUANTITY, nullable=False, default=0, server_default="0")
    is_phantom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
