from __future__ import annotations

from datetime import date
from typing import Any, Collection, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mrp_engine.core.enums import RunStatus
from mrp_engine.db.models.mrp import MrpDependentDemand, MrpRecommendation, MrpRun
from .base import BaseRepository


class MrpRunRepository(BaseRepository):
    """
    Repository for MRP run records.

    Status changes are compare-and-set updates and counters are incremented in SQL,
    so concurrent chunk workers never read-modify-write the run row.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    async def get_run(self, run_id: UUID) -> Optional[MrpRun]:
        stmt = select(MrpRun).where(MrpRun.id == run_id).execution_options(populate_existing=True)
        return await self.scalar_one_or_none(stmt)

    async def get_status(self, run_id: UUID) -> Optional[RunStatus]:
        """Fresh status read that bypasses the identity map."""
        value = await self.scalar_one_or_none(select(MrpRun.status).where(MrpRun.id == run_id))
        return RunStatus(value) if value is not None else None

    async def count_runs_with_prefix(self, company_id: UUID, prefix: str) -> int:
        stmt = select(func.count(MrpRun.id)).where(
            MrpRun.company_id == company_id, MrpRun.run_number.like(f"{prefix}%")
        )
        res = await self.execute(stmt)
        return int(res.scalar_one())

    async def create_run(self, run: MrpRun) -> MrpRun:
        await self.add(run)
        await self.session.flush()
        return run

    async def transition(
        self,
        run_id: UUID,
        from_statuses: Collection[RunStatus],
        to_status: RunStatus,
        **values: Any,
    ) -> bool:
        """
        Move the run to `to_status` only if it is currently in one of `from_statuses`.

        Returns:
            True when the row was updated, False when the run was in another state.
        """
        stmt = (
            update(MrpRun)
            .where(MrpRun.id == run_id, MrpRun.status.in_([s.value for s in from_statuses]))
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        res = await self.execute(stmt)
        return res.rowcount == 1

    async def set_fields(self, run_id: UUID, **values: Any) -> None:
        stmt = (
            update(MrpRun)
            .where(MrpRun.id == run_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.execute(stmt)

    async def increment_counters(
        self,
        run_id: UUID,
        *,
        products_processed: int = 0,
        recommendations_generated: int = 0,
        warnings_count: int = 0,
    ) -> None:
        """Atomically add to the run's aggregate counters."""
        stmt = (
            update(MrpRun)
            .where(MrpRun.id == run_id)
            .values(
                products_processed=MrpRun.products_processed + products_processed,
                recommendations_generated=MrpRun.recommendations_generated + recommendations_generated,
                warnings_count=MrpRun.warnings_count + warnings_count,
            )
            .execution_options(synchronize_session=False)
        )
        await self.execute(stmt)

    async def latest_completed_run_id(self, company_id: UUID, exclude_run_id: UUID) -> Optional[UUID]:
        stmt = (
            select(MrpRun.id)
            .where(
                MrpRun.company_id == company_id,
                MrpRun.status == RunStatus.COMPLETED.value,
                MrpRun.id != exclude_run_id,
            )
            .order_by(MrpRun.completed_at.desc())
            .limit(1)
        )
        return await self.scalar_one_or_none(stmt)


class RecommendationRepository(BaseRepository):
    """Repository for MRP recommendations."""

    async def replace_for_product(
        self, run_id: UUID, product_id: UUID, rows: Sequence[MrpRecommendation]
    ) -> None:
        """Delete-then-insert the product's recommendations so a re-run chunk never duplicates rows."""
        await self.execute(
            delete(MrpRecommendation)
            .where(MrpRecommendation.run_id == run_id, MrpRecommendation.product_id == product_id)
            .execution_options(synchronize_session=False)
        )
        await self.add_all(rows)

    async def list_for_run(
        self,
        run_id: UUID,
        *,
        recommendation_type: Optional[str] = None,
        product_id: Optional[UUID] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[MrpRecommendation]:
        stmt = select(MrpRecommendation).where(MrpRecommendation.run_id == run_id)
        if recommendation_type:
            stmt = stmt.where(MrpRecommendation.recommendation_type == recommendation_type)
        if product_id:
            stmt = stmt.where(MrpRecommendation.product_id == product_id)
        stmt = stmt.order_by(MrpRecommendation.suggested_date, MrpRecommendation.product_id).offset(offset).limit(limit)
        res = await self.scalars(stmt)
        return list(res)

    async def count_for_run(
        self,
        run_id: UUID,
        *,
        recommendation_type: Optional[str] = None,
        product_id: Optional[UUID] = None,
    ) -> int:
        stmt = select(func.count(MrpRecommendation.id)).where(MrpRecommendation.run_id == run_id)
        if recommendation_type:
            stmt = stmt.where(MrpRecommendation.recommendation_type == recommendation_type)
        if product_id:
            stmt = stmt.where(MrpRecommendation.product_id == product_id)
        res = await self.execute(stmt)
        return int(res.scalar_one())


class DependentDemandRepository(BaseRepository):
    """Repository for dependent demand rows passed from parent tiers to component tiers."""

    async def replace_for_source(
        self, run_id: UUID, source_product_id: UUID, rows: Iterable[MrpDependentDemand]
    ) -> None:
        await self.execute(
            delete(MrpDependentDemand)
            .where(
                MrpDependentDemand.run_id == run_id,
                MrpDependentDemand.source_product_id == source_product_id,
            )
            .execution_options(synchronize_session=False)
        )
        await self.add_all(rows)

    async def list_for_product(
        self,
        run_id: UUID,
        product_id: UUID,
        *,
        exclude_sources: Collection[UUID] = (),
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[MrpDependentDemand]:
        stmt = select(MrpDependentDemand).where(
            MrpDependentDemand.run_id == run_id, MrpDependentDemand.product_id == product_id
        )
        if exclude_sources:
            stmt = stmt.where(MrpDependentDemand.source_product_id.not_in(list(exclude_sources)))
        if start is not None:
            stmt = stmt.where(MrpDependentDemand.required_date >= start)
        if end is not None:
            stmt = stmt.where(MrpDependentDemand.required_date <= end)
        stmt = stmt.order_by(MrpDependentDemand.required_date)
        res = await self.scalars(stmt)
        return list(res)

    async def copy_from_run(
        self, from_run_id: UUID, to_run_id: UUID, *, exclude_sources: Collection[UUID] = ()
    ) -> int:
        """Copy another run's dependent demand rows into `to_run_id`, skipping the given parents."""
        stmt = select(MrpDependentDemand).where(MrpDependentDemand.run_id == from_run_id)
        if exclude_sources:
            stmt = stmt.where(MrpDependentDemand.source_product_id.not_in(list(exclude_sources)))
        copies = [
            MrpDependentDemand(
                company_id=row.company_id,
                run_id=to_run_id,
                product_id=row.product_id,
                source_product_id=row.source_product_id,
                required_date=row.required_date,
                quantity=row.quantity,
                is_optional=row.is_optional,
            )
            for row in await self.scalars(stmt)
        ]
        await self.add_all(copies)
        return len(copies)
