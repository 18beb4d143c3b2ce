"""
Low-level codes: deepest BOM level of each product, cycle detection, caching.
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import select

from mrp_engine.core.exceptions import CycleDetected
from mrp_engine.db.models.master_data import Product
from mrp_engine.repositories.master_data import BomEdge
from mrp_engine.services.low_level_code import LowLevelCodeService, compute_low_level_codes, find_cycle


def edge(parent, component, number="BOM-X", phantom=False):
    return BomEdge(
        bom_id=uuid4(),
        bom_number=number,
        parent_id=parent,
        component_id=component,
        is_phantom=phantom,
        is_optional=False,
    )


class TestComputeLowLevelCodes:
    def test_component_below_every_parent(self):
        a, b, c, d = (uuid4() for _ in range(4))
        # C is used directly by A and under B, so it takes the deeper level.
        edges = [edge(a, b), edge(a, c), edge(b, c), edge(c, d)]
        codes = compute_low_level_codes([a, b, c, d], edges)
        assert codes == {a: 0, b: 1, c: 2, d: 3}
        for e in edges:
            assert codes[e.component_id] > codes[e.parent_id]

    def test_unused_products_are_level_zero(self):
        a, b = uuid4(), uuid4()
        assert compute_low_level_codes([a, b], []) == {a: 0, b: 0}

    def test_self_reference_is_a_cycle(self):
        a = uuid4()
        with pytest.raises(CycleDetected) as info:
            compute_low_level_codes([a], [edge(a, a, "BOM-A")])
        assert info.value.bom_refs == ["BOM-A"]

    def test_two_product_cycle_names_both_boms(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        edges = [edge(c, a, "BOM-C"), edge(a, b, "BOM-A"), edge(b, a, "BOM-B")]
        with pytest.raises(CycleDetected) as info:
            compute_low_level_codes([a, b, c], edges)
        assert info.value.bom_refs == ["BOM-A", "BOM-B"]
        assert "Circular reference" in str(info.value)


class TestFindCycle:
    def test_acyclic(self):
        a, b = uuid4(), uuid4()
        assert find_cycle([edge(a, b)]) == []

    def test_returns_cycle_edges_in_order(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        ab, bc, ca = edge(a, b, "AB"), edge(b, c, "BC"), edge(c, a, "CA")
        cycle = find_cycle([ab, bc, ca])
        assert [e.bom_number for e in cycle] == ["AB", "BC", "CA"]


class TestLowLevelCodeService:
    async def test_codes_are_cached_and_persisted(self, session, factory, cache, company_id):
        bike = await factory.product("BIKE", "make")
        wheel = await factory.product("WHEEL", "make")
        spoke = await factory.product("SPOKE")
        await factory.bom(bike, {wheel: 2})
        await factory.bom(wheel, {spoke: 32})
        await session.commit()

        service = LowLevelCodeService(session, cache)
        codes = await service.get_codes(company_id)
        assert codes == {bike.id: 0, wheel.id: 1, spoke.id: 2}
        assert await cache.get_llc(company_id) == codes

        stored = dict((await session.execute(select(Product.id, Product.low_level_code))).all())
        assert stored == {bike.id: 0, wheel.id: 1, spoke.id: 2}

    async def test_cache_hit_skips_recompute(self, session, factory, cache, company_id):
        part = await factory.product("PART")
        await session.commit()
        await cache.put_llc(company_id, {part.id: 7})
        assert await LowLevelCodeService(session, cache).get_codes(company_id) == {part.id: 7}
        assert await LowLevelCodeService(session, cache).get_codes(company_id, force=True) == {part.id: 0}

    async def test_inactive_bom_is_ignored(self, session, factory, cache, company_id):
        top = await factory.product("TOP", "make")
        sub = await factory.product("SUB")
        await factory.bom(top, {sub: 1}, status="draft")
        await session.commit()
        codes = await LowLevelCodeService(session, cache).get_codes(company_id)
        assert codes == {top.id: 0, sub.id: 0}
