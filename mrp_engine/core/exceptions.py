"""
Error taxonomy for the planning engine.

Only a few of these end a run: CycleDetected raised while computing low-level codes,
and chunk failures that exhaust their retries. The rest are recorded as product-level
warnings or logged and swallowed at the point where the engine handles them.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence
from uuid import UUID


class MrpError(Exception):
    """Base class for all planning engine errors."""


class RunValidationError(MrpError):
    """Run parameters were rejected before a run record was created."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class RunNotFound(MrpError):
    """No MRP run exists with the requested id."""

    def __init__(self, run_id: UUID) -> None:
        super().__init__(f"MRP run {run_id} not found")
        self.run_id = run_id


class CycleDetected(MrpError):
    """
    A cycle exists in the BOM graph.

    `bom_refs` lists the BOM ids (or numbers) on the offending path, in traversal order.
    """

    def __init__(self, message: str, bom_refs: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.bom_refs = list(bom_refs)


class MissingBomError(MrpError):
    """A make product needs to be exploded but has no default active BOM."""

    def __init__(self, product_id: UUID, sku: Optional[str] = None) -> None:
        label = sku or str(product_id)
        super().__init__(f"Product {label} has no default active BOM")
        self.product_id = product_id


class CalendarScopeError(MrpError):
    """A calendar lookup was asked for a malformed scope or found no working day."""


class CacheInvalidationFailure(MrpError):
    """Invalidating cached planning data failed; callers log it and carry on."""


class ChunkError(MrpError):
    """A chunk failed on every allowed attempt."""

    def __init__(self, message: str, product_ids: Iterable[UUID] = (), attempts: int = 0) -> None:
        super().__init__(message)
        self.product_ids = list(product_ids)
        self.attempts = attempts


class ChunkTimeout(ChunkError):
    """A chunk exceeded its execution timeout on every allowed attempt."""


class RunCancelled(MrpError):
    """The run was cancelled; raised inside workers to stop work without writing."""

    def __init__(self, run_id: UUID) -> None:
        super().__init__(f"MRP run {run_id} was cancelled")
        self.run_id = run_id
