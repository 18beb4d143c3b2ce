from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mrp_engine.core.enums import BomStatus
from mrp_engine.db.models.inventory import StockLevel
from mrp_engine.db.models.master_data import Bom, BomItem, Product
from mrp_engine.db.models.orders import DemandOrder, SupplyOrder
from .base import BaseRepository


@dataclass(frozen=True)
class BomEdge:
    """One parent -> component edge of an active BOM."""
    bom_id: UUID
    bom_number: str
    parent_id: UUID
    component_id: UUID
    is_phantom: bool
    is_optional: bool


class MasterDataRepository(BaseRepository):
    """
    Read access to the planning inputs owned by master-data code:
    products, BOMs, stock levels and open supply/demand.

    The only write is update_low_level_codes, which persists the calculator's output.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    # --- products ---------------------------------------------------------------

    async def get_product(self, product_id: UUID) -> Optional[Product]:
        stmt = select(Product).where(Product.id == product_id)
        return await self.scalar_one_or_none(stmt)

    async def get_products(self, product_ids: Iterable[UUID]) -> Dict[UUID, Product]:
        ids = list(product_ids)
        if not ids:
            return {}
        res = await self.scalars(select(Product).where(Product.id.in_(ids)))
        return {p.id: p for p in res}

    async def list_active_product_ids(self, company_id: UUID) -> List[UUID]:
        stmt = select(Product.id).where(Product.company_id == company_id, Product.is_active.is_(True))
        res = await self.scalars(stmt)
        return list(res)

    async def list_planning_products(
        self,
        company_id: UUID,
        *,
        product_ids: Optional[Sequence[UUID]] = None,
        make_or_buy: Optional[str] = None,
    ) -> List[Product]:
        """Active products of the company matching the run's product filters."""
        stmt = select(Product).where(Product.company_id == company_id, Product.is_active.is_(True))
        if product_ids is not None:
            stmt = stmt.where(Product.id.in_(list(product_ids)))
        if make_or_buy:
            stmt = stmt.where(Product.make_or_buy == make_or_buy)
        stmt = stmt.order_by(Product.sku)
        res = await self.scalars(stmt)
        return list(res)

    async def update_low_level_codes(self, company_id: UUID, codes: Dict[UUID, int]) -> int:
        """Persist codes that differ from the stored ones. Returns the number of rows changed."""
        current = await self.execute(
            select(Product.id, Product.low_level_code).where(Product.company_id == company_id)
        )
        changes = [
            {"id": pid, "low_level_code": codes[pid]}
            for pid, llc in current.all()
            if pid in codes and llc != codes[pid]
        ]
        if changes:
            await self.session.execute(update(Product), changes)
        return len(changes)

    # --- BOMs -------------------------------------------------------------------

    async def get_active_bom_edges(self, company_id: UUID) -> List[BomEdge]:
        """All component edges of active BOMs whose parent and component are active products."""
        component = Product.__table__.alias("component")
        parent = Product.__table__.alias("parent")
        stmt = (
            select(
                Bom.id,
                Bom.bom_number,
                Bom.product_id,
                BomItem.component_id,
                BomItem.is_phantom,
                BomItem.is_optional,
            )
            .join(BomItem, BomItem.bom_id == Bom.id)
            .join(parent, parent.c.id == Bom.product_id)
            .join(component, component.c.id == BomItem.component_id)
            .where(
                Bom.company_id == company_id,
                Bom.status == BomStatus.ACTIVE.value,
                parent.c.is_active.is_(True),
                component.c.is_active.is_(True),
            )
            .order_by(Bom.bom_number, BomItem.line_no)
        )
        res = await self.execute(stmt)
        return [
            BomEdge(
                bom_id=row[0],
                bom_number=row[1],
                parent_id=row[2],
                component_id=row[3],
                is_phantom=bool(row[4]),
                is_optional=bool(row[5]),
            )
            for row in res.all()
        ]

    async def get_bom(self, bom_id: UUID) -> Optional[Bom]:
        return await self.scalar_one_or_none(select(Bom).where(Bom.id == bom_id))

    async def get_default_bom(self, product_id: UUID) -> Optional[Bom]:
        """The product's default BOM, only if it is active."""
        stmt = (
            select(Bom)
            .where(
                Bom.product_id == product_id,
                Bom.is_default.is_(True),
                Bom.status == BomStatus.ACTIVE.value,
            )
            .order_by(Bom.version.desc())
            .limit(1)
        )
        return await self.scalar_one_or_none(stmt)

    async def get_bom_items(self, bom_id: UUID) -> List[BomItem]:
        stmt = select(BomItem).where(BomItem.bom_id == bom_id).order_by(BomItem.line_no)
        res = await self.scalars(stmt)
        return list(res)

    # --- stock and open orders --------------------------------------------------

    async def get_stock_levels(self, product_id: UUID) -> List[StockLevel]:
        stmt = select(StockLevel).where(StockLevel.product_id == product_id).order_by(StockLevel.warehouse_id)
        res = await self.scalars(stmt)
        return list(res)

    async def get_open_supply(self, product_id: UUID, start: date, end: date) -> List[SupplyOrder]:
        """Open purchase/work orders for the product due within [start, end]."""
        stmt = (
            select(SupplyOrder)
            .where(
                SupplyOrder.product_id == product_id,
                SupplyOrder.status == "open",
                SupplyOrder.quantity_open > 0,
                SupplyOrder.due_date >= start,
                SupplyOrder.due_date <= end,
            )
            .order_by(SupplyOrder.due_date, SupplyOrder.order_number)
        )
        res = await self.scalars(stmt)
        return list(res)

    async def get_open_demand(
        self, product_id: UUID, start: date, end: date, demand_types: Sequence[str]
    ) -> List[DemandOrder]:
        """Open demand lines of the given types required within [start, end]."""
        stmt = (
            select(DemandOrder)
            .where(
                DemandOrder.product_id == product_id,
                DemandOrder.status == "open",
                DemandOrder.quantity_open > 0,
                DemandOrder.required_date >= start,
                DemandOrder.required_date <= end,
                DemandOrder.demand_type.in_(list(demand_types)),
            )
            .order_by(DemandOrder.required_date)
        )
        res = await self.scalars(stmt)
        return list(res)
