"""
Requirements netting for a single product.

The engine is pure: it receives everything it needs in a PlanningInput (stock,
demand, open supply, parameters) and returns the decisions to persist. Loading inputs
and writing recommendations is the chunk worker's job.

Per product:
  gross     = independent + dependent demand within the horizon
  available = planning stock - safety stock (optional) + scheduled receipts (optional)
  net       = max(0, gross - available)

A positive net produces one new order (purchase, work, or a transfer when another
warehouse can cover it). Open orders are pegged against time-phased demand to produce
reschedule, expedite and cancel messages.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

from mrp_engine.core.enums import MakeOrBuy, Priority, RecommendationType
from mrp_engine.schemas.mrp import (
    CancelDetails,
    DemandLine,
    ExpediteDetails,
    NewOrderDetails,
    PeggedOrder,
    PlanningParameters,
    RescheduleDetails,
    TransferDetails,
)
from mrp_engine.services.calendar import CalendarScope, Direction, WorkingCalendar

logger = logging.getLogger(__name__)

EPSILON = 1e-9
PRECISION = 6

Details = Union[NewOrderDetails, TransferDetails, RescheduleDetails, CancelDetails, ExpediteDetails]


@dataclass(frozen=True)
class DemandEntry:
    required_date: date
    quantity: float
    source_type: str
    source_id: Optional[UUID] = None
    reference: Optional[str] = None


@dataclass(frozen=True)
class ReceiptEntry:
    order_id: UUID
    order_type: str
    order_number: str
    quantity: float
    due_date: date


@dataclass(frozen=True)
class WarehouseStock:
    warehouse_id: UUID
    on_hand: float
    reserved: float = 0.0

    @property
    def free(self) -> float:
        return self.on_hand - self.reserved


@dataclass(frozen=True)
class ProductParameters:
    product_id: UUID
    sku: str
    make_or_buy: MakeOrBuy
    lead_time_days: int = 0
    safety_stock: float = 0.0
    minimum_order_qty: Optional[float] = None
    order_multiple: Optional[float] = None
    maximum_stock: Optional[float] = None

    @classmethod
    def from_product(cls, product) -> "ProductParameters":
        def _opt(v):
            return None if v is None else float(v)

        return cls(
            product_id=product.id,
            sku=product.sku,
            make_or_buy=MakeOrBuy(product.make_or_buy),
            lead_time_days=int(product.lead_time_days or 0),
            safety_stock=float(product.safety_stock or 0),
            minimum_order_qty=_opt(product.minimum_order_qty),
            order_multiple=_opt(product.order_multiple),
            maximum_stock=_opt(product.maximum_stock),
        )

    def to_schema(self) -> PlanningParameters:
        return PlanningParameters(
            safety_stock=self.safety_stock,
            lead_time_days=self.lead_time_days,
            minimum_order_qty=self.minimum_order_qty,
            order_multiple=self.order_multiple,
            maximum_stock=self.maximum_stock,
            make_or_buy=self.make_or_buy,
        )


@dataclass(frozen=True)
class PlanningOptions:
    horizon_start: date
    horizon_end: date
    today: date
    include_safety_stock: bool = True
    respect_lead_times: bool = True
    consider_wip: bool = True
    reschedule_tolerance_days: int = 0


@dataclass
class PlanningInput:
    parameters: ProductParameters
    planning_stock: float
    demands: List[DemandEntry] = field(default_factory=list)
    receipts: List[ReceiptEntry] = field(default_factory=list)
    # Stock outside the planning warehouses, candidate transfer sources.
    other_warehouses: List[WarehouseStock] = field(default_factory=list)


@dataclass
class PlannedDecision:
    recommendation_type: RecommendationType
    required_date: date
    suggested_date: date
    due_date: date
    gross_requirement: float
    net_requirement: float
    suggested_quantity: float
    current_stock: float
    projected_stock: float
    priority: Priority
    is_urgent: bool
    details: Details
    urgency_reason: Optional[str] = None
    warehouse_id: Optional[UUID] = None
    demand_source_type: Optional[str] = None
    demand_source_id: Optional[UUID] = None


@dataclass
class NettingResult:
    gross_requirement: float
    scheduled_receipts: float
    available_supply: float
    net_requirement: float
    decisions: List[PlannedDecision] = field(default_factory=list)

    @property
    def planned_work_order(self) -> Optional[PlannedDecision]:
        """The new work order, whose components become dependent demand."""
        for decision in self.decisions:
            if decision.recommendation_type == RecommendationType.WORK_ORDER:
                return decision
        return None


# PUBLIC_INTERFACE
def lot_size(
    net: float, params: ProductParameters, projected_before_order: float
) -> Tuple[float, float, bool]:
    """
    Size an order for a net requirement.

    Returns:
        (quantity, quantity before the maximum-stock cap, whether the cap applied)
    """
    qty = max(net, params.minimum_order_qty or 0.0)
    multiple = params.order_multiple or 0.0
    if multiple > 0:
        qty = math.ceil(qty / multiple - EPSILON) * multiple
    uncapped = round(qty, PRECISION)

    capped = False
    if params.maximum_stock is not None:
        room = params.maximum_stock - projected_before_order
        if room > 0:
            # Never cap below what is actually short.
            limit = max(room, net)
            if qty > limit + EPSILON:
                qty = limit
                capped = True
    return round(qty, PRECISION), uncapped, capped


class NettingEngine:
    """Turns one product's planning input into recommendations."""

    def __init__(self, calendar: WorkingCalendar, scope: CalendarScope) -> None:
        self.calendar = calendar
        self.scope = scope

    # PUBLIC_INTERFACE
    def plan(self, data: PlanningInput, options: PlanningOptions) -> NettingResult:
        """
        Net the product and decide what to recommend.

        Parameters:
            data: stock, demand, open supply and parameters of the product
            options: horizon, flags and today's date of the run
        Returns:
            NettingResult with gross/available/net figures and zero or more decisions
        """
        params = data.parameters
        start, end = options.horizon_start, options.horizon_end
        safety_level = params.safety_stock if options.include_safety_stock else 0.0

        demands = sorted(
            (d for d in data.demands if start <= d.required_date <= end and d.quantity > 0),
            key=lambda d: d.required_date,
        )
        receipts: List[ReceiptEntry] = []
        if options.consider_wip:
            receipts = sorted(
                (r for r in data.receipts if start <= r.due_date <= end and r.quantity > 0),
                key=lambda r: (r.due_date, r.order_number),
            )

        stock = float(data.planning_stock)
        gross = round(sum(d.quantity for d in demands), PRECISION)
        scheduled = round(sum(r.quantity for r in receipts), PRECISION)
        available = round(stock - safety_level + scheduled, PRECISION)
        net = round(max(0.0, gross - available), PRECISION)

        result = NettingResult(
            gross_requirement=gross,
            scheduled_receipts=scheduled,
            available_supply=available,
            net_requirement=net,
        )
        demand_lines = [
            DemandLine(
                required_date=d.required_date,
                quantity=d.quantity,
                source_type=d.source_type,
                source_id=d.source_id,
                reference=d.reference,
            )
            for d in demands
        ]
        base_details = dict(
            parameters=params.to_schema(),
            current_stock=stock,
            gross_requirement=gross,
            scheduled_receipts=scheduled,
            available_supply=available,
            net_requirement=net,
            negative_stock=stock < 0,
            demands=demand_lines,
        )
        figures = dict(
            gross_requirement=gross,
            net_requirement=net,
            current_stock=stock,
        )

        result.decisions.extend(
            self._peg_open_orders(params, options, stock, safety_level, demands, receipts, base_details, figures)
        )

        if net > EPSILON:
            result.decisions.append(
                self._new_supply(data, options, stock, safety_level, demands, receipts, base_details, figures)
            )

        logger.debug(
            "Netted %s: gross=%s available=%s net=%s decisions=%d",
            params.sku,
            gross,
            available,
            net,
            len(result.decisions),
        )
        return result

    # --- time phasing ---------------------------------------------------------------

    @staticmethod
    def _first_shortage(
        opening: float,
        safety_level: float,
        demands: Sequence[DemandEntry],
        receipts: Sequence[Tuple[date, float]],
        horizon_start: date,
    ) -> Optional[date]:
        """First date projected stock drops below the safety level, or None."""
        if opening < safety_level - EPSILON:
            return horizon_start
        movements: Dict[date, float] = {}
        for when, qty in receipts:
            movements[when] = movements.get(when, 0.0) + qty
        for d in demands:
            movements[d.required_date] = movements.get(d.required_date, 0.0) - d.quantity
        projected = opening
        for when in sorted(movements):
            projected += movements[when]
            if projected < safety_level - EPSILON:
                return when
        return None

    def _suggested_date(self, required: date, lead_time_days: int, options: PlanningOptions) -> date:
        if not options.respect_lead_times:
            return required
        if lead_time_days > 0:
            return self.calendar.subtract_working_days(self.scope, required, lead_time_days)
        return self.calendar.shift_to_working_day(self.scope, required, Direction.BACKWARD)

    @staticmethod
    def _priority(
        suggested: date, due: date, lead_time_days: int, today: date, negative_stock: bool
    ) -> Tuple[Priority, bool, Optional[str]]:
        days_until = (suggested - today).days
        due_in = (due - today).days
        is_urgent = suggested <= today or due_in <= lead_time_days

        if days_until < 0:
            priority = Priority.CRITICAL
        elif days_until <= 3:
            priority = Priority.HIGH
        elif days_until <= 7:
            priority = Priority.MEDIUM
        else:
            priority = Priority.LOW
        if (is_urgent or negative_stock) and priority.sort_order > Priority.HIGH.sort_order:
            priority = Priority.HIGH

        if negative_stock:
            reason: Optional[str] = "Negative stock position"
        elif suggested <= today:
            reason = "Order date is today or in the past - immediate action required"
        elif days_until <= 3:
            reason = "Order date is within 3 days"
        elif due_in <= lead_time_days:
            reason = "Due date is within lead time"
        else:
            reason = None
        return priority, is_urgent, reason

    # --- decisions ------------------------------------------------------------------

    def _peg_open_orders(
        self,
        params: ProductParameters,
        options: PlanningOptions,
        stock: float,
        safety_level: float,
        demands: Sequence[DemandEntry],
        receipts: Sequence[ReceiptEntry],
        base_details: dict,
        figures: dict,
    ) -> List[PlannedDecision]:
        decisions: List[PlannedDecision] = []
        covered = stock
        for receipt in receipts:
            pegged = PeggedOrder(
                order_id=receipt.order_id,
                order_type=receipt.order_type,
                order_number=receipt.order_number,
                quantity_open=receipt.quantity,
                due_date=receipt.due_date,
            )
            needed = self._first_shortage(covered, safety_level, demands, [], options.horizon_start)
            covered += receipt.quantity
            common = dict(
                figures,
                suggested_quantity=receipt.quantity,
                projected_stock=round(covered - figures["gross_requirement"], PRECISION),
                demand_source_type=receipt.order_type,
                demand_source_id=receipt.order_id,
            )

            if needed is None:
                decisions.append(
                    PlannedDecision(
                        recommendation_type=RecommendationType.CANCEL,
                        required_date=receipt.due_date,
                        suggested_date=options.today,
                        due_date=receipt.due_date,
                        priority=Priority.LOW,
                        is_urgent=False,
                        details=CancelDetails(order=pegged, **base_details),
                        **common,
                    )
                )
                continue

            if needed < receipt.due_date:
                suggested = self._suggested_date(needed, params.lead_time_days, options)
                priority, urgent, reason = self._priority(
                    suggested, needed, params.lead_time_days, options.today, stock < 0
                )
                if (needed - options.today).days <= params.lead_time_days:
                    rec_type = RecommendationType.EXPEDITE
                    details: Details = ExpediteDetails(order=pegged, needed_date=needed, **base_details)
                else:
                    rec_type = RecommendationType.RESCHEDULE_IN
                    details = RescheduleDetails(order=pegged, direction="in", new_due_date=needed, **base_details)
                decisions.append(
                    PlannedDecision(
                        recommendation_type=rec_type,
                        required_date=needed,
                        suggested_date=suggested,
                        due_date=needed,
                        priority=priority,
                        is_urgent=urgent,
                        urgency_reason=reason,
                        details=details,
                        **common,
                    )
                )
            elif (needed - receipt.due_date).days > options.reschedule_tolerance_days:
                decisions.append(
                    PlannedDecision(
                        recommendation_type=RecommendationType.RESCHEDULE_OUT,
                        required_date=needed,
                        suggested_date=options.today,
                        due_date=needed,
                        priority=Priority.LOW,
                        is_urgent=False,
                        details=RescheduleDetails(order=pegged, direction="out", new_due_date=needed, **base_details),
                        **common,
                    )
                )
        return decisions

    def _new_supply(
        self,
        data: PlanningInput,
        options: PlanningOptions,
        stock: float,
        safety_level: float,
        demands: Sequence[DemandEntry],
        receipts: Sequence[ReceiptEntry],
        base_details: dict,
        figures: dict,
    ) -> PlannedDecision:
        params = data.parameters
        net = figures["net_requirement"]
        gross = figures["gross_requirement"]
        scheduled = base_details["scheduled_receipts"]
        projected_before = stock + scheduled - gross

        required = self._first_shortage(
            stock, safety_level, demands, [(r.due_date, r.quantity) for r in receipts], options.horizon_start
        ) or options.horizon_start
        suggested = self._suggested_date(required, params.lead_time_days, options)
        due = required
        priority, urgent, reason = self._priority(suggested, due, params.lead_time_days, options.today, stock < 0)

        source = next((d for d in demands if d.required_date >= required), None)
        common = dict(
            figures,
            required_date=required,
            suggested_date=suggested,
            due_date=due,
            priority=priority,
            is_urgent=urgent,
            urgency_reason=reason,
            demand_source_type=source.source_type if source else None,
            demand_source_id=source.source_id if source else None,
        )

        donors = sorted(
            (w for w in data.other_warehouses if w.free >= net - EPSILON),
            key=lambda w: (-w.free, str(w.warehouse_id)),
        )
        if donors:
            donor = donors[0]
            return PlannedDecision(
                recommendation_type=RecommendationType.TRANSFER,
                suggested_quantity=net,
                projected_stock=round(projected_before + net, PRECISION),
                warehouse_id=donor.warehouse_id,
                details=TransferDetails(
                    source_warehouse_id=donor.warehouse_id,
                    source_free_stock=donor.free,
                    **base_details,
                ),
                **common,
            )

        qty, uncapped, capped = lot_size(net, params, projected_before)
        rec_type = (
            RecommendationType.WORK_ORDER
            if params.make_or_buy == MakeOrBuy.MAKE
            else RecommendationType.PURCHASE_ORDER
        )
        return PlannedDecision(
            recommendation_type=rec_type,
            suggested_quantity=qty,
            projected_stock=round(projected_before + qty, PRECISION),
            details=NewOrderDetails(
                lot_sized_quantity=uncapped,
                capped_by_maximum_stock=capped,
                **base_details,
            ),
            **common,
        )
