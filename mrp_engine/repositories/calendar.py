from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from mrp_engine.db.models.calendar import CalendarException
from .base import BaseRepository


class CalendarRepository(BaseRepository):
    """Repository for company and work-center calendar exceptions."""

    async def list_exceptions(
        self, company_id: UUID, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[CalendarException]:
        stmt = select(CalendarException).where(CalendarException.company_id == company_id)
        if start is not None:
            stmt = stmt.where(CalendarException.calendar_date >= start)
        if end is not None:
            stmt = stmt.where(CalendarException.calendar_date <= end)
        stmt = stmt.order_by(CalendarException.calendar_date)
        res = await self.scalars(stmt)
        return list(res)
