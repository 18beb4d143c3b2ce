"""
Single-product netting: gross/available/net, lot sizing, new orders, transfers
and messages for existing open orders.
"""

from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest

from mrp_engine.core.enums import MakeOrBuy, Priority, RecommendationType
from mrp_engine.schemas.mrp import calculation_details_adapter
from mrp_engine.services.calendar import CalendarScope, WorkingCalendar
from mrp_engine.services.netting import (
    DemandEntry,
    NettingEngine,
    PlanningInput,
    PlanningOptions,
    ProductParameters,
    ReceiptEntry,
    WarehouseStock,
    lot_size,
)

TODAY = date(2025, 3, 3)
HORIZON_END = date(2025, 6, 30)


@pytest.fixture
def netting(company_id):
    calendar = WorkingCalendar(
        company_id, [], working_days=[0, 1, 2, 3, 4], default_working_hours=8.0, max_scan_days=366
    )
    return NettingEngine(calendar, CalendarScope(company_id))


def params(make_or_buy=MakeOrBuy.BUY, **fields):
    return ProductParameters(product_id=uuid4(), sku="P-1", make_or_buy=make_or_buy, **fields)


def options(**overrides):
    values = dict(horizon_start=TODAY, horizon_end=HORIZON_END, today=TODAY)
    values.update(overrides)
    return PlanningOptions(**values)


def sales(qty, when, ref="SO-1"):
    return DemandEntry(required_date=when, quantity=qty, source_type="sales_order", source_id=uuid4(), reference=ref)


def receipt(qty, due, number="PO-1"):
    return ReceiptEntry(order_id=uuid4(), order_type="purchase_order", order_number=number, quantity=qty, due_date=due)


class TestNetRequirement:
    def test_purchase_with_lot_sizing_and_lead_time(self, netting):
        """Free stock 20 against demand 100 gives net 80, lot sized to 100, ordered 5 working days ahead."""
        data = PlanningInput(
            parameters=params(lead_time_days=5, minimum_order_qty=50, order_multiple=25),
            planning_stock=20,
            demands=[sales(100, date(2025, 3, 24))],
        )
        result = netting.plan(data, options())

        assert result.gross_requirement == 100
        assert result.available_supply == 20
        assert result.net_requirement == 80
        assert len(result.decisions) == 1
        decision = result.decisions[0]
        assert decision.recommendation_type == RecommendationType.PURCHASE_ORDER
        assert decision.suggested_quantity == 100
        assert decision.required_date == date(2025, 3, 24)
        assert decision.suggested_date == date(2025, 3, 17)
        assert decision.projected_stock == 20
        assert decision.priority == Priority.LOW
        assert decision.is_urgent is False
        assert decision.details.lot_sized_quantity == 100
        assert decision.demand_source_type == "sales_order"

    def test_make_product_gets_work_order(self, netting):
        data = PlanningInput(
            parameters=params(MakeOrBuy.MAKE, lead_time_days=2),
            planning_stock=0,
            demands=[sales(10, date(2025, 3, 20))],
        )
        result = netting.plan(data, options())
        assert result.planned_work_order is not None
        assert result.planned_work_order.suggested_quantity == 10
        assert result.planned_work_order.suggested_date == date(2025, 3, 18)

    def test_make_product_below_safety_stock(self, netting):
        """Stock 30, safety 10, demand 100 in 20 days: net 100 + 10 - 30 = 80, lot sized to 100."""
        required = date(2025, 3, 23)
        data = PlanningInput(
            parameters=params(
                MakeOrBuy.MAKE, lead_time_days=5, safety_stock=10, minimum_order_qty=50, order_multiple=25
            ),
            planning_stock=30,
            demands=[sales(100, required)],
        )
        result = netting.plan(data, options(include_safety_stock=True))

        assert result.gross_requirement == 100
        assert result.available_supply == 20
        assert result.net_requirement == 80
        [decision] = result.decisions
        assert decision.recommendation_type == RecommendationType.WORK_ORDER
        assert decision.suggested_quantity == 100
        assert decision.required_date == required
        # Sunday 23rd back 5 working days is Monday 17th.
        assert decision.suggested_date == date(2025, 3, 17)
        assert decision.suggested_date == netting.calendar.subtract_working_days(netting.scope, required, 5)
        assert result.planned_work_order.suggested_quantity == 100

    def test_covered_demand_recommends_nothing(self, netting):
        data = PlanningInput(parameters=params(), planning_stock=500, demands=[sales(100, date(2025, 3, 24))])
        result = netting.plan(data, options())
        assert result.net_requirement == 0
        assert result.decisions == []

    def test_demand_outside_horizon_is_ignored(self, netting):
        data = PlanningInput(parameters=params(), planning_stock=0, demands=[sales(100, date(2025, 8, 1))])
        result = netting.plan(data, options())
        assert result.gross_requirement == 0
        assert result.decisions == []

    def test_safety_stock_flag(self, netting):
        data = PlanningInput(
            parameters=params(safety_stock=20), planning_stock=100, demands=[sales(90, date(2025, 3, 24))]
        )
        assert netting.plan(data, options()).net_requirement == 10
        assert netting.plan(data, options(include_safety_stock=False)).net_requirement == 0

    def test_scheduled_receipts_need_consider_wip(self, netting):
        data = PlanningInput(
            parameters=params(),
            planning_stock=0,
            demands=[sales(50, date(2025, 3, 24))],
            receipts=[receipt(50, date(2025, 3, 20))],
        )
        assert netting.plan(data, options()).net_requirement == 0
        without = netting.plan(data, options(consider_wip=False))
        assert without.scheduled_receipts == 0
        assert without.net_requirement == 50

    def test_lead_time_ignored_when_not_respected(self, netting):
        data = PlanningInput(
            parameters=params(lead_time_days=5), planning_stock=0, demands=[sales(10, date(2025, 3, 24))]
        )
        decision = netting.plan(data, options(respect_lead_times=False)).decisions[0]
        assert decision.suggested_date == date(2025, 3, 24)

    def test_net_is_never_negative(self, netting):
        data = PlanningInput(parameters=params(), planning_stock=1000, receipts=[receipt(10, date(2025, 3, 10))])
        result = netting.plan(data, options())
        assert result.net_requirement == 0
        assert all(d.suggested_quantity >= 0 for d in result.decisions)

    def test_negative_stock_is_urgent(self, netting):
        data = PlanningInput(parameters=params(), planning_stock=-10)
        decision = netting.plan(data, options()).decisions[0]
        assert decision.suggested_quantity == 10
        assert decision.required_date == TODAY
        assert decision.is_urgent is True
        assert decision.priority == Priority.HIGH
        assert decision.urgency_reason == "Negative stock position"
        assert decision.details.negative_stock is True

    def test_details_round_trip_through_discriminator(self, netting):
        data = PlanningInput(parameters=params(), planning_stock=0, demands=[sales(5, date(2025, 3, 24))])
        decision = netting.plan(data, options()).decisions[0]
        restored = calculation_details_adapter.validate_python(decision.details.model_dump(mode="json"))
        assert restored.kind == "new_order"
        assert restored.demands[0].reference == "SO-1"


class TestTransfer:
    def test_other_warehouse_covers_shortage(self, netting):
        donor = uuid4()
        data = PlanningInput(
            parameters=params(minimum_order_qty=500),
            planning_stock=20,
            demands=[sales(100, date(2025, 3, 24))],
            other_warehouses=[WarehouseStock(uuid4(), on_hand=50), WarehouseStock(donor, on_hand=200, reserved=20)],
        )
        decision = netting.plan(data, options()).decisions[0]
        assert decision.recommendation_type == RecommendationType.TRANSFER
        assert decision.suggested_quantity == 80
        assert decision.warehouse_id == donor
        assert decision.details.source_free_stock == 180

    def test_insufficient_other_stock_orders_instead(self, netting):
        data = PlanningInput(
            parameters=params(),
            planning_stock=0,
            demands=[sales(100, date(2025, 3, 24))],
            other_warehouses=[WarehouseStock(uuid4(), on_hand=99)],
        )
        decision = netting.plan(data, options()).decisions[0]
        assert decision.recommendation_type == RecommendationType.PURCHASE_ORDER


class TestOpenOrders:
    def test_unneeded_order_is_cancelled(self, netting):
        data = PlanningInput(
            parameters=params(),
            planning_stock=100,
            demands=[sales(50, date(2025, 3, 24))],
            receipts=[receipt(40, date(2025, 3, 20))],
        )
        result = netting.plan(data, options())
        assert [d.recommendation_type for d in result.decisions] == [RecommendationType.CANCEL]
        assert result.decisions[0].details.order.order_number == "PO-1"

    def test_late_order_is_rescheduled_in(self, netting):
        data = PlanningInput(
            parameters=params(lead_time_days=5),
            planning_stock=0,
            demands=[sales(50, date(2025, 3, 17))],
            receipts=[receipt(50, date(2025, 3, 28))],
        )
        result = netting.plan(data, options())
        assert [d.recommendation_type for d in result.decisions] == [RecommendationType.RESCHEDULE_IN]
        assert result.decisions[0].details.new_due_date == date(2025, 3, 17)
        assert result.net_requirement == 0

    def test_late_order_inside_lead_time_is_expedited(self, netting):
        data = PlanningInput(
            parameters=params(lead_time_days=20),
            planning_stock=0,
            demands=[sales(50, date(2025, 3, 17))],
            receipts=[receipt(50, date(2025, 3, 28))],
        )
        decision = netting.plan(data, options()).decisions[0]
        assert decision.recommendation_type == RecommendationType.EXPEDITE
        assert decision.details.needed_date == date(2025, 3, 17)
        assert decision.is_urgent is True

    def test_early_order_is_rescheduled_out_beyond_tolerance(self, netting):
        data = PlanningInput(
            parameters=params(),
            planning_stock=0,
            demands=[sales(50, date(2025, 3, 28))],
            receipts=[receipt(50, date(2025, 3, 10))],
        )
        result = netting.plan(data, options())
        assert [d.recommendation_type for d in result.decisions] == [RecommendationType.RESCHEDULE_OUT]
        assert result.decisions[0].details.new_due_date == date(2025, 3, 28)

        tolerant = netting.plan(data, options(reschedule_tolerance_days=30))
        assert tolerant.decisions == []


class TestLotSize:
    def test_minimum_and_multiple(self):
        p = params(minimum_order_qty=50, order_multiple=25)
        assert lot_size(80, p, 0) == (100, 100, False)
        assert lot_size(10, p, 0) == (50, 50, False)

    def test_multiple_on_exact_boundary(self):
        assert lot_size(75, params(order_multiple=25), 0) == (75, 75, False)

    def test_maximum_stock_caps_order(self):
        p = params(minimum_order_qty=100, maximum_stock=50)
        assert lot_size(10, p, 0) == (50, 100, True)

    def test_cap_never_goes_below_net(self):
        p = params(minimum_order_qty=100, maximum_stock=50)
        assert lot_size(10, p, 45) == (10, 100, True)
