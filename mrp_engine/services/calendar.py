from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from mrp_engine.core.enums import CalendarDayType
from mrp_engine.core.exceptions import CalendarScopeError
from mrp_engine.core.settings import MrpSettings
from mrp_engine.repositories.calendar import CalendarRepository
from mrp_engine.services.base import BaseService
from mrp_engine.services.cache import MrpCacheManager

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


@dataclass(frozen=True)
class CalendarScope:
    """Company-wide scope, or one work center of the company."""
    company_id: UUID
    work_center_id: Optional[UUID] = None


@dataclass(frozen=True)
class ExceptionDay:
    work_center_id: Optional[UUID]
    calendar_date: date
    day_type: CalendarDayType
    working_hours: Optional[float] = None

    def to_cache(self) -> dict:
        return {
            "work_center_id": str(self.work_center_id) if self.work_center_id else None,
            "calendar_date": self.calendar_date.isoformat(),
            "day_type": self.day_type.value,
            "working_hours": self.working_hours,
        }

    @classmethod
    def from_cache(cls, raw: dict) -> "ExceptionDay":
        return cls(
            work_center_id=UUID(raw["work_center_id"]) if raw.get("work_center_id") else None,
            calendar_date=date.fromisoformat(raw["calendar_date"]),
            day_type=CalendarDayType(raw["day_type"]),
            working_hours=raw.get("working_hours"),
        )


class WorkingCalendar:
    """
    Working-day answers for one company.

    Lookup order for a (scope, date): work-center exception, then company exception,
    then the standard working week. Instances are immutable after construction.
    """

    def __init__(
        self,
        company_id: UUID,
        exceptions: Iterable[ExceptionDay],
        *,
        working_days: Iterable[int],
        default_working_hours: float,
        max_scan_days: int,
    ) -> None:
        self.company_id = company_id
        self._overrides: Dict[Tuple[Optional[UUID], date], ExceptionDay] = {
            (e.work_center_id, e.calendar_date): e for e in exceptions
        }
        self._working_days = frozenset(working_days)
        self._default_hours = default_working_hours
        self._max_scan_days = max_scan_days

    @classmethod
    def from_settings(
        cls, company_id: UUID, exceptions: Iterable[ExceptionDay], settings: MrpSettings
    ) -> "WorkingCalendar":
        return cls(
            company_id,
            exceptions,
            working_days=settings.WORKING_DAYS,
            default_working_hours=settings.DEFAULT_WORKING_HOURS,
            max_scan_days=settings.MAX_CALENDAR_SCAN_DAYS,
        )

    def _check_scope(self, scope: CalendarScope) -> None:
        if scope is None or scope.company_id is None:
            raise CalendarScopeError("Calendar scope requires a company id")
        if scope.company_id != self.company_id:
            raise CalendarScopeError(
                f"Calendar for company {self.company_id} cannot answer for company {scope.company_id}"
            )

    def _override(self, scope: CalendarScope, day: date) -> Optional[ExceptionDay]:
        if scope.work_center_id is not None:
            hit = self._overrides.get((scope.work_center_id, day))
            if hit is not None:
                return hit
        return self._overrides.get((None, day))

    # PUBLIC_INTERFACE
    def is_working_day(self, scope: CalendarScope, day: date) -> bool:
        """Return True when the scope works on the given date."""
        self._check_scope(scope)
        override = self._override(scope, day)
        if override is not None:
            return override.day_type.is_available
        return day.weekday() in self._working_days

    # PUBLIC_INTERFACE
    def working_hours(self, scope: CalendarScope, day: date) -> float:
        """Available hours on the date: the override's hours, else the default on working days."""
        if not self.is_working_day(scope, day):
            return 0.0
        override = self._override(scope, day)
        if override is not None and override.working_hours is not None:
            return float(override.working_hours)
        return self._default_hours

    # PUBLIC_INTERFACE
    def shift_to_working_day(self, scope: CalendarScope, day: date, direction: Direction) -> date:
        """
        Return `day` if it is a working day, else the nearest working day in `direction`.

        Raises:
            CalendarScopeError: malformed scope, or no working day within the scan limit.
        """
        step = timedelta(days=1 if direction == Direction.FORWARD else -1)
        current = day
        for _ in range(self._max_scan_days + 1):
            if self.is_working_day(scope, current):
                return current
            current += step
        raise CalendarScopeError(
            f"No working day within {self._max_scan_days} days {direction.value} of {day.isoformat()}"
        )

    def _step_working_days(self, scope: CalendarScope, day: date, count: int, step: timedelta) -> date:
        current = day
        remaining = count
        scanned = 0
        while remaining > 0:
            current += step
            scanned += 1
            if scanned > self._max_scan_days + count:
                raise CalendarScopeError(
                    f"Could not move {count} working days from {day.isoformat()}"
                )
            if self.is_working_day(scope, current):
                remaining -= 1
        return current

    # PUBLIC_INTERFACE
    def subtract_working_days(self, scope: CalendarScope, day: date, count: int) -> date:
        """Date that lies `count` working days before `day`."""
        return self._step_working_days(scope, day, count, timedelta(days=-1))

    # PUBLIC_INTERFACE
    def add_working_days(self, scope: CalendarScope, day: date, count: int) -> date:
        """Date that lies `count` working days after `day`."""
        return self._step_working_days(scope, day, count, timedelta(days=1))


class CalendarService(BaseService):
    """Builds WorkingCalendar instances from cached or stored calendar exceptions."""

    def __init__(self, session: AsyncSession, cache: MrpCacheManager, settings: MrpSettings) -> None:
        super().__init__(session)
        self.repo = CalendarRepository(session)
        self.cache = cache
        self.settings = settings

    # PUBLIC_INTERFACE
    async def load(self, company_id: UUID) -> WorkingCalendar:
        """
        Return the company's calendar, reading exceptions through the company cache.

        Parameters:
            company_id: company whose exceptions to load
        Returns:
            WorkingCalendar covering company and work-center exceptions
        """
        cached = await self.cache.get_calendar(company_id)
        if cached is not None:
            exceptions = [ExceptionDay.from_cache(raw) for raw in cached]
        else:
            rows = await self.repo.list_exceptions(company_id)
            exceptions = [
                ExceptionDay(
                    work_center_id=row.work_center_id,
                    calendar_date=row.calendar_date,
                    day_type=CalendarDayType(row.day_type),
                    working_hours=row.working_hours,
                )
                for row in rows
            ]
            await self.cache.put_calendar(company_id, [e.to_cache() for e in exceptions])
            logger.debug("Loaded %d calendar exceptions for company %s", len(exceptions), company_id)
        return WorkingCalendar.from_settings(company_id, exceptions, self.settings)

