from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from mrp_engine.core.exceptions import CycleDetected
from mrp_engine.repositories.master_data import BomEdge, MasterDataRepository
from mrp_engine.services.base import BaseService
from mrp_engine.services.cache import MrpCacheManager

logger = logging.getLogger(__name__)


def find_cycle(edges: Sequence[BomEdge]) -> List[BomEdge]:
    """
    Return the edges of one cycle in the graph, in traversal order, or [] if acyclic.

    Iterative depth-first search with an explicit path, so deep BOM trees cannot
    exhaust the interpreter stack.
    """
    adjacency: Dict[UUID, List[BomEdge]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.parent_id].append(edge)

    on_path, done = 1, 2
    state: Dict[UUID, int] = {}
    for root in list(adjacency):
        if state.get(root):
            continue
        state[root] = on_path
        path: List[BomEdge] = []
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node, children = stack[-1]
            edge = next(children, None)
            if edge is None:
                state[node] = done
                stack.pop()
                if path:
                    path.pop()
                continue
            child = edge.component_id
            seen = state.get(child)
            if seen == on_path:
                if child == node:
                    return [edge]
                cycle = [edge]
                for entered in reversed(path):
                    cycle.append(entered)
                    if entered.parent_id == child:
                        break
                return list(reversed(cycle))
            if seen is None:
                state[child] = on_path
                path.append(edge)
                stack.append((child, iter(adjacency.get(child, []))))
    return []


def describe_cycle(cycle: Sequence[BomEdge]) -> str:
    return ", ".join(f"{e.bom_number} ({e.parent_id} -> {e.component_id})" for e in cycle)


# PUBLIC_INTERFACE
def compute_low_level_codes(product_ids: Iterable[UUID], edges: Sequence[BomEdge]) -> Dict[UUID, int]:
    """
    Compute the deepest level at which every product occurs as a component.

    Every product starts at 0; each pass raises code[component] to code[parent] + 1
    across all edges until nothing changes. An acyclic graph settles within
    |products| passes, so failing to settle within |products| + 1 means a cycle.

    Raises:
        CycleDetected: naming the BOMs on one offending cycle.
    """
    codes: Dict[UUID, int] = {pid: 0 for pid in product_ids}
    for edge in edges:
        codes.setdefault(edge.parent_id, 0)
        codes.setdefault(edge.component_id, 0)

    max_passes = len(codes) + 1
    for _ in range(max_passes):
        changed = False
        for edge in edges:
            required = codes[edge.parent_id] + 1
            if codes[edge.component_id] < required:
                codes[edge.component_id] = required
                changed = True
        if not changed:
            return codes

    cycle = find_cycle(edges)
    bom_refs = sorted({e.bom_number for e in cycle})
    raise CycleDetected(
        f"Circular reference detected in BOM graph: {describe_cycle(cycle) or 'unresolved edges'}",
        bom_refs=bom_refs,
    )


class LowLevelCodeService(BaseService):
    """
    Serves the company's low-level-code map from the cache, recomputing it
    (and persisting it to products.low_level_code) on a miss.
    """

    def __init__(self, session: AsyncSession, cache: MrpCacheManager) -> None:
        super().__init__(session)
        self.repo = MasterDataRepository(session)
        self.cache = cache

    # PUBLIC_INTERFACE
    async def get_codes(self, company_id: UUID, *, force: bool = False) -> Dict[UUID, int]:
        """
        Return {product_id: low_level_code} for all active products of the company.

        Parameters:
            company_id: company to plan
            force: skip the cache and recompute
        Returns:
            The LLC map; products absent from every BOM have code 0.
        """
        if not force:
            cached: Optional[Dict[UUID, int]] = await self.cache.get_llc(company_id)
            if cached is not None:
                logger.debug("LLC cache hit for company %s (%d products)", company_id, len(cached))
                return cached

        product_ids = await self.repo.list_active_product_ids(company_id)
        edges = await self.repo.get_active_bom_edges(company_id)
        codes = compute_low_level_codes(product_ids, edges)

        changed = await self.repo.update_low_level_codes(company_id, codes)
        await self.repo.commit()
        await self.cache.put_llc(company_id, codes)
        logger.info(
            "Computed low-level codes for company %s: %d products, %d edges, max level %d, %d updated",
            company_id,
            len(codes),
            len(edges),
            max(codes.values(), default=0),
            changed,
        )
        return codes
