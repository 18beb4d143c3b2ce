"""
Database seeding utilities for a small planning demo.

Seeds, for one company:
- A main warehouse and a spare-parts warehouse
- Products: BIKE (make) built from FRAME (make, phantom), WHEEL (make) and BELL (buy, optional);
  FRAME is built from TUBE (buy); WHEEL is built from SPOKE (buy) with scrap
- Default active BOMs for every make product
- Stock, an open purchase order and sales/forecast demand for BIKE
- A company holiday

Usage:
  python -m mrp_engine.db.run_migrations upgrade head
  python -m mrp_engine.db.seed
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mrp_engine.db.models.calendar import CalendarException
from mrp_engine.db.models.inventory import StockLevel, Warehouse
from mrp_engine.db.models.master_data import Bom, BomItem, Product
from mrp_engine.db.models.orders import DemandOrder, SupplyOrder
from mrp_engine.db.session import get_session_maker

logger = logging.getLogger(__name__)

DEMO_COMPANY_ID = UUID("00000000-0000-4000-8000-000000000001")


# PUBLIC_INTERFACE
async def seed_all(company_id: UUID = DEMO_COMPANY_ID, today: Optional[date] = None) -> Dict[str, UUID]:
    """
    Seed the demo dataset with the global session factory.

    Returns:
        dict mapping SKU to product id
    """
    maker = get_session_maker()
    async with maker() as session:
        ids = await seed_demo(session, company_id, today=today)
        await session.commit()
    return ids


# PUBLIC_INTERFACE
async def seed_demo(session: AsyncSession, company_id: UUID, today: Optional[date] = None) -> Dict[str, UUID]:
    """
    Insert the demo dataset into `session` (not committed). Existing SKUs are reused,
    so seeding twice does not duplicate products.

    Parameters:
        session: open session
        company_id: company to seed
        today: anchor for order and demand dates (defaults to date.today())
    Returns:
        dict mapping SKU to product id
    """
    today = today or date.today()
    existing = await session.execute(select(Product.sku, Product.id).where(Product.company_id == company_id))
    ids: Dict[str, UUID] = {sku: pid for sku, pid in existing.all()}
    if ids:
        logger.info("Company %s already seeded (%d products)", company_id, len(ids))
        return ids

    main_wh = Warehouse(id=uuid4(), company_id=company_id, code="MAIN", name="Main warehouse")
    spare_wh = Warehouse(id=uuid4(), company_id=company_id, code="SPARE", name="Spare parts")
    session.add_all([main_wh, spare_wh])

    products = [
        # sku, name, make_or_buy, lead time, safety stock, moq, multiple
        ("BIKE", "City bike", "make", 3, 0, None, None),
        ("FRAME", "Bike frame (phantom)", "make", 0, 0, None, None),
        ("WHEEL", "Wheel", "make", 2, 4, None, None),
        ("TUBE", "Steel tube", "buy", 5, 0, 50, 25),
        ("SPOKE", "Spoke", "buy", 7, 0, 500, 100),
        ("BELL", "Bell", "buy", 4, 0, None, None),
    ]
    for sku, name, mob, lead, safety, moq, multiple in products:
        product = Product(
            id=uuid4(),
            company_id=company_id,
            sku=sku,
            name=name,
            make_or_buy=mob,
            lead_time_days=lead,
            safety_stock=safety,
            minimum_order_qty=moq,
            order_multiple=multiple,
        )
        session.add(product)
        ids[sku] = product.id

    def bom(sku: str, number: str) -> Bom:
        header = Bom(
            id=uuid4(),
            company_id=company_id,
            product_id=ids[sku],
            bom_number=number,
            status="active",
            is_default=True,
            quantity=1,
        )
        session.add(header)
        return header

    def line(header: Bom, line_no: int, sku: str, qty: float, **flags) -> None:
        session.add(
            BomItem(company_id=company_id, bom_id=header.id, line_no=line_no, component_id=ids[sku], quantity=qty, **flags)
        )

    bike = bom("BIKE", "BOM-BIKE")
    line(bike, 10, "FRAME", 1, is_phantom=True)
    line(bike, 20, "WHEEL", 2)
    line(bike, 30, "BELL", 1, is_optional=True)
    frame = bom("FRAME", "BOM-FRAME")
    line(frame, 10, "TUBE", 3)
    wheel = bom("WHEEL", "BOM-WHEEL")
    line(wheel, 10, "SPOKE", 32, scrap_percentage=5)

    session.add_all(
        [
            StockLevel(company_id=company_id, product_id=ids["BIKE"], warehouse_id=main_wh.id, quantity_on_hand=5),
            StockLevel(company_id=company_id, product_id=ids["WHEEL"], warehouse_id=main_wh.id, quantity_on_hand=6),
            StockLevel(company_id=company_id, product_id=ids["SPOKE"], warehouse_id=spare_wh.id, quantity_on_hand=2000),
            SupplyOrder(
                company_id=company_id,
                product_id=ids["TUBE"],
                warehouse_id=main_wh.id,
                order_type="purchase_order",
                order_number="PO-DEMO-1",
                quantity_open=60,
                due_date=today + timedelta(days=20),
            ),
            DemandOrder(
                company_id=company_id,
                product_id=ids["BIKE"],
                demand_type="sales_order",
                reference="SO-DEMO-1",
                quantity_open=25,
                required_date=today + timedelta(days=21),
            ),
            DemandOrder(
                company_id=company_id,
                product_id=ids["BIKE"],
                demand_type="forecast",
                reference="FC-DEMO-1",
                quantity_open=40,
                required_date=today + timedelta(days=45),
            ),
            CalendarException(
                company_id=company_id,
                calendar_date=today + timedelta(days=14),
                day_type="holiday",
                description="Company holiday",
            ),
        ]
    )
    await session.flush()
    logger.info("Seeded demo data for company %s: %d products", company_id, len(ids))
    return ids


if __name__ == "__main__":
    asyncio.run(seed_all())
