from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, Optional
from uuid import UUID

from mrp_engine.core.exceptions import CacheInvalidationFailure
from mrp_engine.services.cache import MrpCacheManager

logger = logging.getLogger(__name__)

BOM_FIELDS: FrozenSet[str] = frozenset({"status", "product_id", "bom_type", "version", "is_default"})
BOM_ITEM_FIELDS: FrozenSet[str] = frozenset(
    {"component_id", "quantity", "scrap_percentage", "is_phantom", "is_optional"}
)
PRODUCT_MRP_FIELDS: FrozenSet[str] = frozenset(
    {
        "is_active",
        "lead_time_days",
        "safety_stock",
        "reorder_point",
        "make_or_buy",
        "minimum_order_qty",
        "order_multiple",
        "maximum_stock",
    }
)
CALENDAR_FIELDS: FrozenSet[str] = frozenset({"calendar_date", "day_type", "working_hours", "work_center_id"})


def _touches(changed_fields: Optional[Iterable[str]], watched: FrozenSet[str]) -> bool:
    """None means the row was created or deleted, which always counts."""
    if changed_fields is None:
        return True
    return not watched.isdisjoint(changed_fields)


class ChangeNotifier:
    """
    Invalidation hooks called by master-data write paths.

    Every hook is best effort: a cache failure is logged and swallowed so the
    triggering write is never blocked. A stale entry lives at most one cache TTL.
    """

    def __init__(self, cache: MrpCacheManager) -> None:
        self.cache = cache

    async def _guard(self, action: str, step: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await step()
            return True
        except Exception as exc:
            logger.exception("MRP cache invalidation failed: %s", CacheInvalidationFailure(f"{action}: {exc}"))
            return False

    # PUBLIC_INTERFACE
    async def bom_changed(
        self,
        bom: Any,
        changed_fields: Optional[Iterable[str]] = None,
        previous_product_id: Optional[UUID] = None,
    ) -> bool:
        """
        A BOM header was created, updated or deleted.

        Parameters:
            bom: the Bom row (company_id, id, product_id are read)
            changed_fields: names of updated columns, or None for create/delete
            previous_product_id: former parent when product_id was reassigned; it loses the BOM
        Returns:
            True if the change was relevant and handled without error.
        """
        if not _touches(changed_fields, BOM_FIELDS):
            return False
        company_id: UUID = bom.company_id
        parents = [bom.product_id]
        if previous_product_id is not None and previous_product_id != bom.product_id:
            parents.append(previous_product_id)

        async def step() -> None:
            await self.cache.invalidate_llc(company_id)
            await self.cache.invalidate_bom_explosion(company_id, bom.id)
            await self.cache.invalidate_company(company_id)
            await self.cache.mark_many_dirty(company_id, parents)

        ok = await self._guard(f"bom_changed({bom.id})", step)
        if ok:
            logger.info("Invalidated MRP caches after change to BOM %s", getattr(bom, "bom_number", bom.id))
        return ok

    # PUBLIC_INTERFACE
    async def bom_item_changed(self, item: Any, bom: Any, changed_fields: Optional[Iterable[str]] = None) -> bool:
        """A BOM line was created, updated or deleted; `bom` is its owning header."""
        fields = None if changed_fields is None else set(changed_fields)
        if not _touches(fields, BOM_ITEM_FIELDS):
            return False
        company_id: UUID = bom.company_id
        structure_changed = fields is None or "component_id" in fields

        async def step() -> None:
            await self.cache.invalidate_bom_explosion(company_id, bom.id)
            if structure_changed:
                await self.cache.invalidate_llc(company_id)
            await self.cache.mark_dirty(company_id, bom.product_id)

        return await self._guard(f"bom_item_changed({getattr(item, 'id', None)})", step)

    # PUBLIC_INTERFACE
    async def product_changed(self, product: Any, changed_fields: Iterable[str]) -> bool:
        """A product was updated; only planning-relevant fields trigger invalidation."""
        fields = set(changed_fields)
        if PRODUCT_MRP_FIELDS.isdisjoint(fields):
            return False
        company_id: UUID = product.company_id

        async def step() -> None:
            await self.cache.invalidate_llc(company_id)
            await self.cache.invalidate_company(company_id)
            await self.cache.mark_dirty(company_id, product.id)

        ok = await self._guard(f"product_changed({product.id})", step)
        if ok:
            logger.info(
                "Product %s MRP fields changed (%s); marked dirty",
                getattr(product, "sku", product.id),
                ", ".join(sorted(fields & PRODUCT_MRP_FIELDS)),
            )
        return ok

    # PUBLIC_INTERFACE
    async def calendar_changed(self, company_id: UUID, changed_fields: Optional[Iterable[str]] = None) -> bool:
        """A calendar exception changed; date math affects every product of the company."""
        if not _touches(changed_fields, CALENDAR_FIELDS):
            return False
        return await self._guard(
            f"calendar_changed({company_id})", lambda: self.cache.invalidate_company(company_id)
        )
