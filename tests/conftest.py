"""
Shared fixtures for the planning engine tests.

Every test gets its own SQLite file (the chunk workers open concurrent sessions,
which an in-memory database shared through one connection cannot serve).
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Optional
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from mrp_engine.core.settings import MrpSettings
from mrp_engine.db.base import Base
from mrp_engine.db.models.inventory import StockLevel, Warehouse
from mrp_engine.db.models.master_data import Bom, BomItem, Product
from mrp_engine.db.models.orders import DemandOrder, SupplyOrder
from mrp_engine.db.session import build_session_maker
from mrp_engine.services.cache import InMemoryCacheStore, MrpCacheManager

# A Monday; weekends around it are predictable.
TODAY = date(2025, 3, 3)


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def mrp_settings() -> MrpSettings:
    return MrpSettings(
        CHUNK_SIZE=2,
        WORKER_CONCURRENCY=3,
        CHUNK_TIMEOUT_SECONDS=10.0,
        CHUNK_MAX_ATTEMPTS=2,
        CHUNK_RETRY_BACKOFF_SECONDS=[0.0],
        RUN_TIMEOUT_SECONDS=60.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(mrp_settings: MrpSettings, clock: FakeClock) -> MrpCacheManager:
    return MrpCacheManager(InMemoryCacheStore(clock), mrp_settings)


@pytest.fixture
async def engine(tmp_path):
    db_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'mrp.db'}",
        connect_args={"timeout": 30},
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


class MasterDataFactory:
    """Small builders for master data rows; callers commit."""

    def __init__(self, session, company_id: UUID) -> None:
        self.session = session
        self.company_id = company_id
        self._warehouse: Optional[Warehouse] = None
        self._line = 0

    async def warehouse(self, code: str = "MAIN") -> Warehouse:
        wh = Warehouse(id=uuid4(), company_id=self.company_id, code=code, name=code)
        self.session.add(wh)
        await self.session.flush()
        if self._warehouse is None:
            self._warehouse = wh
        return wh

    async def default_warehouse(self) -> Warehouse:
        if self._warehouse is None:
            await self.warehouse()
        return self._warehouse

    async def product(self, sku: str, make_or_buy: str = "buy", **fields) -> Product:
        product = Product(id=uuid4(), company_id=self.company_id, sku=sku, name=sku, make_or_buy=make_or_buy, **fields)
        self.session.add(product)
        await self.session.flush()
        return product

    async def bom(self, product: Product, lines: Dict[Product, float], *, phantom=(), optional=(), scrap=None,
                  status: str = "active", quantity: float = 1, number: Optional[str] = None) -> Bom:
        header = Bom(
            id=uuid4(),
            company_id=self.company_id,
            product_id=product.id,
            bom_number=number or f"BOM-{product.sku}",
            status=status,
            is_default=True,
            quantity=quantity,
        )
        self.session.add(header)
        scrap = scrap or {}
        for component, qty in lines.items():
            self._line += 10
            self.session.add(
                BomItem(
                    company_id=self.company_id,
                    bom_id=header.id,
                    line_no=self._line,
                    component_id=component.id,
                    quantity=qty,
                    scrap_percentage=scrap.get(component, 0),
                    is_phantom=component in phantom,
                    is_optional=component in optional,
                )
            )
        await self.session.flush()
        return header

    async def stock(self, product: Product, on_hand: float, reserved: float = 0,
                    warehouse: Optional[Warehouse] = None) -> StockLevel:
        wh = warehouse or await self.default_warehouse()
        row = StockLevel(
            company_id=self.company_id,
            product_id=product.id,
            warehouse_id=wh.id,
            quantity_on_hand=on_hand,
            quantity_reserved=reserved,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def demand(self, product: Product, quantity: float, required: date,
                     demand_type: str = "sales_order", reference: Optional[str] = None) -> DemandOrder:
        row = DemandOrder(
            company_id=self.company_id,
            product_id=product.id,
            demand_type=demand_type,
            reference=reference,
            quantity_open=quantity,
            required_date=required,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def supply(self, product: Product, quantity: float, due: date,
                     order_type: str = "purchase_order", number: str = "PO-1") -> SupplyOrder:
        row = SupplyOrder(
            company_id=self.company_id,
            product_id=product.id,
            order_type=order_type,
            order_number=number,
            quantity_open=quantity,
            due_date=due,
        )
        self.session.add(row)
        await self.session.flush()
        return row


@pytest.fixture
def factory(session, company_id) -> MasterDataFactory:
    return MasterDataFactory(session, company_id)
