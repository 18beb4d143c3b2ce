from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from sqlalchemy import Date, Text, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mrp_engine.db.base import Base, CompanyMixin, TimestampMixin, UUIDPkMixin
from mrp_engine.db.models.master_data import QUANTITY


class CalendarException(UUIDPkMixin, CompanyMixin, TimestampMixin, Base):
    """
    Date override of the standard working week.

    A null work_center_id scopes the override to the whole company.
    """
    __tablename__ = "calendar_exceptions"
    __table_args__ = (
        UniqueConstraint("company_id", "work_center_id", "calendar_date", name="uq_calendar_exceptions_scope_date"),
    )

    work_center_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    calendar_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    day_type: Mapped[str] = mapped_column(Text, nullable=False)  # working/holiday/maintenance/shutdown
    working_hours: Mapped[Optional[float]] = mapped_column(QUANTITY, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
