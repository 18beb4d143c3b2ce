from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from mrp_engine.core.exceptions import CycleDetected, MissingBomError
from mrp_engine.db.models.master_data import Bom
from mrp_engine.repositories.master_data import MasterDataRepository
from mrp_engine.services.cache import MrpCacheManager

logger = logging.getLogger(__name__)

QUANTITY_PRECISION = 6


@dataclass(frozen=True)
class ExplodedComponent:
    """Flattened requirement for one component."""
    component_id: UUID
    quantity: float
    is_optional: bool = False


@dataclass
class ExplosionResult:
    components: List[ExplodedComponent] = field(default_factory=list)
    # BOMs (besides the root) whose content shaped this result, i.e. phantom BOMs.
    depends_on: Set[UUID] = field(default_factory=set)
    warnings: List[str] = field(default_factory=list)


class BomExploder:
    """
    Flattens a BOM into component requirements.

    Only the requested level is returned: regular components are emitted as they are,
    while phantom components are replaced by the contents of their own default BOM,
    recursively. Per-unit results are cached per BOM; any quantity is a linear
    scaling of the unit result.
    """

    def __init__(self, repo: MasterDataRepository, cache: Optional[MrpCacheManager] = None) -> None:
        self.repo = repo
        self.cache = cache

    # PUBLIC_INTERFACE
    async def explode(self, bom_id: UUID, quantity: float) -> List[ExplodedComponent]:
        """
        Return the component requirements for building `quantity` of the BOM's product.

        Raises:
            CycleDetected: a phantom chain leads back to a BOM already being exploded.
        """
        result = await self.explode_detailed(bom_id, quantity)
        return result.components

    # PUBLIC_INTERFACE
    async def explode_detailed(self, bom_id: UUID, quantity: float) -> ExplosionResult:
        """Like explode(), also returning phantom dependencies and warnings."""
        bom = await self.repo.get_bom(bom_id)
        if bom is None:
            raise ValueError(f"BOM {bom_id} not found")
        unit = await self._unit_explosion(bom)
        return ExplosionResult(
            components=[
                ExplodedComponent(
                    component_id=c.component_id,
                    quantity=round(c.quantity * quantity, QUANTITY_PRECISION),
                    is_optional=c.is_optional,
                )
                for c in unit.components
            ],
            depends_on=set(unit.depends_on),
            warnings=list(unit.warnings),
        )

    # PUBLIC_INTERFACE
    async def explode_product(self, product_id: UUID, quantity: float, sku: Optional[str] = None) -> ExplosionResult:
        """
        Explode the product's default active BOM.

        Raises:
            MissingBomError: the product has no default active BOM.
        """
        bom = await self.repo.get_default_bom(product_id)
        if bom is None:
            raise MissingBomError(product_id, sku)
        return await self.explode_detailed(bom.id, quantity)

    async def _unit_explosion(self, bom: Bom) -> ExplosionResult:
        if self.cache is not None:
            cached = await self.cache.get_explosion(bom.company_id, bom.id)
            if cached is not None:
                return ExplosionResult(
                    components=[
                        ExplodedComponent(UUID(c["component_id"]), float(c["quantity"]), bool(c["is_optional"]))
                        for c in cached["components"]
                    ],
                    depends_on={UUID(b) for b in cached["depends_on"]},
                    warnings=list(cached.get("warnings", [])),
                )

        acc: Dict[Tuple[UUID, bool], float] = {}
        result = ExplosionResult()
        await self._walk(bom, 1.0, False, [bom.id], acc, result)
        result.components = [
            ExplodedComponent(component_id=cid, quantity=qty, is_optional=optional)
            for (cid, optional), qty in acc.items()
        ]

        if self.cache is not None:
            await self.cache.put_explosion(
                bom.company_id,
                bom.id,
                {
                    "components": [
                        {"component_id": str(c.component_id), "quantity": c.quantity, "is_optional": c.is_optional}
                        for c in result.components
                    ],
                    "depends_on": sorted(str(b) for b in result.depends_on),
                    "warnings": result.warnings,
                },
            )
        return result

    async def _walk(
        self,
        bom: Bom,
        quantity: float,
        optional: bool,
        path: List[UUID],
        acc: Dict[Tuple[UUID, bool], float],
        result: ExplosionResult,
    ) -> None:
        base = float(bom.quantity or 1) or 1.0
        per_base = quantity / base
        for item in await self.repo.get_bom_items(bom.id):
            scrap = float(item.scrap_percentage or 0)
            required = per_base * float(item.quantity) * (1 + scrap / 100)
            item_optional = optional or bool(item.is_optional)

            if item.is_phantom:
                child_bom = await self.repo.get_default_bom(item.component_id)
                if child_bom is not None:
                    if child_bom.id in path:
                        chain = " -> ".join(str(b) for b in path + [child_bom.id])
                        raise CycleDetected(
                            f"Circular reference detected in BOM: {child_bom.bom_number} ({chain})",
                            bom_refs=[str(b) for b in path + [child_bom.id]],
                        )
                    result.depends_on.add(child_bom.id)
                    await self._walk(child_bom, required, item_optional, path + [child_bom.id], acc, result)
                    continue
                msg = (
                    f"Phantom component {item.component_id} in BOM {bom.bom_number} has no default "
                    f"active BOM; treated as a regular component"
                )
                logger.warning(msg)
                result.warnings.append(msg)

            key = (item.component_id, item_optional)
            acc[key] = acc.get(key, 0.0) + required
