from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter

from mrp_engine.core.enums import MakeOrBuy


class RunFlags(BaseModel):
    """Behaviour switches of a planning run."""
    include_safety_stock: bool = Field(True, description="Subtract safety stock from available supply")
    respect_lead_times: bool = Field(True, description="Offset suggested dates by the product lead time")
    consider_wip: bool = Field(True, description="Count open purchase/work orders as scheduled receipts")
    net_change: bool = Field(False, description="Plan only products marked dirty since the last run")


class ProductFilters(BaseModel):
    """Restricts which products a full run plans."""
    product_ids: Optional[List[UUID]] = Field(None, description="Plan only these products")
    make_or_buy: Optional[MakeOrBuy] = Field(None, description="Plan only make or only buy products")


class WarehouseFilters(BaseModel):
    """Restricts which warehouses contribute planning stock."""
    include: Optional[List[UUID]] = Field(None, description="Only these warehouses count as planning stock")
    exclude: Optional[List[UUID]] = Field(None, description="These warehouses never count as planning stock")

    def allows(self, warehouse_id: UUID) -> bool:
        if self.include is not None and warehouse_id not in self.include:
            return False
        if self.exclude and warehouse_id in self.exclude:
            return False
        return True


class RunSubmission(BaseModel):
    """Request to plan a company over a horizon."""
    name: Optional[str] = Field(None, description="Optional label for the run")
    planning_horizon_start: date = Field(..., description="First day of the planning horizon")
    planning_horizon_end: date = Field(..., description="Last day of the planning horizon (inclusive)")
    flags: RunFlags = Field(default_factory=RunFlags)
    product_filters: ProductFilters = Field(default_factory=ProductFilters)
    warehouse_filters: WarehouseFilters = Field(default_factory=WarehouseFilters)
    created_by: Optional[UUID] = Field(None, description="Submitting user id, if known")


class RunProgress(BaseModel):
    """Live progress of a running run, kept in the cache store."""
    processed: int = Field(0, description="Products processed so far")
    total: int = Field(0, description="Products selected for the run")
    percentage: float = Field(0.0, description="processed / total * 100")
    current_tier: Optional[int] = Field(None, description="Low-level code currently being planned")
    updated_at: Optional[datetime] = Field(None)


class MrpRunRead(BaseModel):
    """MRP run read model."""
    id: UUID = Field(..., description="Run id")
    company_id: UUID = Field(..., description="Company id")
    run_number: str = Field(..., description="Run number, unique per company")
    name: Optional[str] = Field(None)
    planning_horizon_start: date = Field(...)
    planning_horizon_end: date = Field(...)
    include_safety_stock: bool = Field(...)
    respect_lead_times: bool = Field(...)
    consider_wip: bool = Field(...)
    net_change: bool = Field(...)
    status: str = Field(..., description="pending/running/completed/failed/cancelled")
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)
    error_message: Optional[str] = Field(None)
    products_total: int = Field(0)
    products_processed: int = Field(0)
    recommendations_generated: int = Field(0)
    warnings_count: int = Field(0)
    warnings_summary: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class RunStatusRead(BaseModel):
    """Run record plus live progress."""
    run: MrpRunRead
    progress: Optional[RunProgress] = None


class MrpRecommendationRead(BaseModel):
    """MRP recommendation read model."""
    id: UUID = Field(..., description="Recommendation id")
    run_id: UUID = Field(...)
    product_id: UUID = Field(...)
    warehouse_id: Optional[UUID] = Field(None)
    recommendation_type: str = Field(...)
    required_date: date = Field(...)
    suggested_date: date = Field(...)
    due_date: Optional[date] = Field(None)
    gross_requirement: float = Field(...)
    net_requirement: float = Field(...)
    suggested_quantity: float = Field(...)
    current_stock: float = Field(...)
    projected_stock: float = Field(...)
    priority: str = Field(...)
    is_urgent: bool = Field(...)
    urgency_reason: Optional[str] = Field(None)
    status: str = Field(...)
    calculation_details: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class RecommendationPage(BaseModel):
    """One page of a run's recommendations."""
    items: List[MrpRecommendationRead] = Field(default_factory=list)
    total: int = Field(0, description="Recommendations matching the filters")
    limit: int = Field(100)
    offset: int = Field(0)


# --- calculation_details audit payload -------------------------------------------------

CALCULATION_DETAILS_VERSION = 1


class DemandLine(BaseModel):
    """One demand that contributed to the gross requirement."""
    required_date: date
    quantity: float
    source_type: str = Field(..., description="sales_order/forecast/work_order_material/dependent")
    source_id: Optional[UUID] = None
    reference: Optional[str] = None


class PlanningParameters(BaseModel):
    """Product planning fields as read when the decision was made."""
    safety_stock: float = 0.0
    lead_time_days: int = 0
    minimum_order_qty: Optional[float] = None
    order_multiple: Optional[float] = None
    maximum_stock: Optional[float] = None
    make_or_buy: MakeOrBuy = MakeOrBuy.BUY


class PeggedOrder(BaseModel):
    """Existing open order a reschedule/cancel/expedite decision refers to."""
    order_id: UUID
    order_type: str
    order_number: str
    quantity_open: float
    due_date: date


class _DetailsBase(BaseModel):
    version: int = CALCULATION_DETAILS_VERSION
    parameters: PlanningParameters
    current_stock: float
    gross_requirement: float
    scheduled_receipts: float
    available_supply: float
    net_requirement: float
    negative_stock: bool = False
    demands: List[DemandLine] = Field(default_factory=list)


class NewOrderDetails(_DetailsBase):
    kind: Literal["new_order"] = "new_order"
    lot_sized_quantity: float
    capped_by_maximum_stock: bool = False


class TransferDetails(_DetailsBase):
    kind: Literal["transfer"] = "transfer"
    source_warehouse_id: UUID
    source_free_stock: float


class RescheduleDetails(_DetailsBase):
    kind: Literal["reschedule"] = "reschedule"
    order: PeggedOrder
    direction: Literal["in", "out"]
    new_due_date: date


class CancelDetails(_DetailsBase):
    kind: Literal["cancel"] = "cancel"
    order: PeggedOrder


class ExpediteDetails(_DetailsBase):
    kind: Literal["expedite"] = "expedite"
    order: PeggedOrder
    needed_date: date


CalculationDetails = Annotated[
    Union[NewOrderDetails, TransferDetails, RescheduleDetails, CancelDetails, ExpediteDetails],
    Field(discriminator="kind"),
]

# PUBLIC_INTERFACE
calculation_details_adapter: TypeAdapter[CalculationDetails] = TypeAdapter(CalculationDetails)
