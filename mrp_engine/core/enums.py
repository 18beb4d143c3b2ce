"""
Closed vocabularies used by planning records.

Values are stored as plain text columns; these enums are the single place that
lists what the engine accepts and emits.
"""

from __future__ import annotations

from enum import Enum


class MakeOrBuy(str, Enum):
    MAKE = "make"
    BUY = "buy"


class BomStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    OBSOLETE = "obsolete"


class CalendarDayType(str, Enum):
    WORKING = "working"
    HOLIDAY = "holiday"
    MAINTENANCE = "maintenance"
    SHUTDOWN = "shutdown"

    @property
    def is_available(self) -> bool:
        return self is CalendarDayType.WORKING


class SupplyType(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    WORK_ORDER = "work_order"


class DemandType(str, Enum):
    SALES_ORDER = "sales_order"
    FORECAST = "forecast"
    WORK_ORDER_MATERIAL = "work_order_material"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)

    @property
    def can_cancel(self) -> bool:
        return self in (RunStatus.PENDING, RunStatus.RUNNING)


class RecommendationType(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    WORK_ORDER = "work_order"
    TRANSFER = "transfer"
    RESCHEDULE_IN = "reschedule_in"
    RESCHEDULE_OUT = "reschedule_out"
    CANCEL = "cancel"
    EXPEDITE = "expedite"

    @property
    def description(self) -> str:
        return _RECOMMENDATION_DESCRIPTIONS[self]


_RECOMMENDATION_DESCRIPTIONS = {
    RecommendationType.PURCHASE_ORDER: "Create a new purchase order",
    RecommendationType.WORK_ORDER: "Create a new work order",
    RecommendationType.TRANSFER: "Transfer stock from another warehouse",
    RecommendationType.RESCHEDULE_IN: "Move an existing order to an earlier date",
    RecommendationType.RESCHEDULE_OUT: "Move an existing order to a later date",
    RecommendationType.CANCEL: "Cancel an existing order that is no longer needed",
    RecommendationType.EXPEDITE: "Expedite an existing order",
}


class RecommendationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIONED = "actioned"
    EXPIRED = "expired"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def sort_order(self) -> int:
        """Critical first."""
        return _PRIORITY_ORDER[self]


_PRIORITY_ORDER = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 2,
    Priority.MEDIUM: 3,
    Priority.LOW: 4,
}
