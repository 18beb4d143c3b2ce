"""
Invalidation hooks: relevance filtering and best-effort behaviour.
"""

from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

from mrp_engine.services.cache import InMemoryCacheStore, MrpCacheManager
from mrp_engine.services.change_notifications import ChangeNotifier


class BrokenStore(InMemoryCacheStore):
    """Store whose writes always fail."""

    async def invalidate(self, key):
        raise ConnectionError("cache unavailable")

    async def invalidate_prefix(self, prefix):
        raise ConnectionError("cache unavailable")


def bom_row(company_id):
    return SimpleNamespace(id=uuid4(), company_id=company_id, product_id=uuid4(), bom_number="BOM-1")


class TestBomHooks:
    async def test_bom_change_invalidates_and_marks_dirty(self, cache, company_id):
        bom = bom_row(company_id)
        await cache.put_llc(company_id, {uuid4(): 0})
        await cache.put_explosion(company_id, bom.id, {"components": [], "depends_on": []})

        assert await ChangeNotifier(cache).bom_changed(bom, ["status"])
        assert await cache.get_llc(company_id) is None
        assert await cache.get_explosion(company_id, bom.id) is None
        assert await cache.get_dirty(company_id) == {bom.product_id}

    async def test_reassigned_bom_marks_both_parents_dirty(self, cache, company_id):
        bom = bom_row(company_id)
        previous = uuid4()
        assert await ChangeNotifier(cache).bom_changed(bom, ["product_id"], previous_product_id=previous)
        assert await cache.get_dirty(company_id) == {bom.product_id, previous}

    async def test_irrelevant_bom_field_is_ignored(self, cache, company_id):
        bom = bom_row(company_id)
        await cache.put_llc(company_id, {uuid4(): 0})
        assert not await ChangeNotifier(cache).bom_changed(bom, ["description"])
        assert await cache.get_llc(company_id) is not None
        assert await cache.get_dirty(company_id) == set()

    async def test_item_quantity_change_keeps_llc(self, cache, company_id):
        bom = bom_row(company_id)
        item = SimpleNamespace(id=uuid4())
        await cache.put_llc(company_id, {uuid4(): 0})
        await cache.put_explosion(company_id, bom.id, {"components": [], "depends_on": []})

        assert await ChangeNotifier(cache).bom_item_changed(item, bom, ["quantity"])
        assert await cache.get_explosion(company_id, bom.id) is None
        assert await cache.get_llc(company_id) is not None
        assert await cache.get_dirty(company_id) == {bom.product_id}

    async def test_item_component_change_drops_llc(self, cache, company_id):
        bom = bom_row(company_id)
        await cache.put_llc(company_id, {uuid4(): 0})
        assert await ChangeNotifier(cache).bom_item_changed(SimpleNamespace(id=uuid4()), bom, ["component_id"])
        assert await cache.get_llc(company_id) is None

    async def test_item_delete_counts_as_structural(self, cache, company_id):
        bom = bom_row(company_id)
        await cache.put_llc(company_id, {uuid4(): 0})
        assert await ChangeNotifier(cache).bom_item_changed(SimpleNamespace(id=uuid4()), bom)
        assert await cache.get_llc(company_id) is None


class TestProductAndCalendarHooks:
    async def test_planning_field_marks_product_dirty(self, cache, company_id):
        product = SimpleNamespace(id=uuid4(), company_id=company_id, sku="P-1")
        assert await ChangeNotifier(cache).product_changed(product, ["name", "lead_time_days"])
        assert await cache.get_dirty(company_id) == {product.id}

    async def test_cosmetic_product_change_is_ignored(self, cache, company_id):
        product = SimpleNamespace(id=uuid4(), company_id=company_id, sku="P-1")
        assert not await ChangeNotifier(cache).product_changed(product, ["name", "description"])
        assert await cache.get_dirty(company_id) == set()

    async def test_calendar_change_drops_company_cache(self, cache, company_id):
        await cache.put_calendar(company_id, [])
        assert await ChangeNotifier(cache).calendar_changed(company_id, ["day_type"])
        assert await cache.get_calendar(company_id) is None
        assert not await ChangeNotifier(cache).calendar_changed(company_id, ["description"])


class TestFailuresAreSwallowed:
    async def test_store_failure_returns_false(self, mrp_settings, company_id, caplog):
        notifier = ChangeNotifier(MrpCacheManager(BrokenStore(), mrp_settings))
        product = SimpleNamespace(id=uuid4(), company_id=company_id, sku="P-1")

        assert await notifier.product_changed(product, ["safety_stock"]) is False
        assert await notifier.bom_changed(bom_row(company_id)) is False
        assert await notifier.calendar_changed(company_id) is False
        assert "MRP cache invalidation failed" in caplog.text
