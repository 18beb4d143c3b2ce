from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mrp_engine.core.enums import RunStatus
from mrp_engine.core.exceptions import RunNotFound, RunValidationError
from mrp_engine.core.settings import MrpSettings
from mrp_engine.db.models.mrp import MrpRecommendation, MrpRun
from mrp_engine.repositories.mrp import MrpRunRepository, RecommendationRepository
from mrp_engine.schemas.mrp import MrpRunRead, RunStatusRead, RunSubmission
from mrp_engine.services.base import BaseService
from mrp_engine.services.cache import MrpCacheManager
from mrp_engine.services.orchestrator import MrpOrchestrator

logger = logging.getLogger(__name__)

RUN_NUMBER_ATTEMPTS = 3


# PUBLIC_INTERFACE
def validate_submission(submission: RunSubmission) -> None:
    """
    Reject run parameters that cannot produce a meaningful run.

    Raises:
        RunValidationError: horizon end before start, or an empty product filter.
    """
    if submission.planning_horizon_end < submission.planning_horizon_start:
        raise RunValidationError(
            "planning_horizon_end must not be before planning_horizon_start",
            field="planning_horizon_end",
        )
    product_ids = submission.product_filters.product_ids
    if product_ids is not None and not product_ids:
        raise RunValidationError(
            "product_filters.product_ids must not be empty; omit it to plan all products",
            field="product_filters.product_ids",
        )


class MrpRunService(BaseService):
    """
    Run lifecycle entry points used by the API: submit, cancel, status and results.

    Submission only creates the pending run; execution is handed to a RunDispatcher.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: MrpCacheManager,
        settings: MrpSettings,
        today: Callable[[], date] = date.today,
    ) -> None:
        super().__init__(session)
        self.runs = MrpRunRepository(session)
        self.recommendations = RecommendationRepository(session)
        self.cache = cache
        self.settings = settings
        self.today = today

    async def _require_run(self, run_id: UUID, company_id: Optional[UUID] = None) -> MrpRun:
        run = await self.runs.get_run(run_id)
        if run is None or (company_id is not None and run.company_id != company_id):
            raise RunNotFound(run_id)
        return run

    async def _next_run_number(self, company_id: UUID) -> str:
        prefix = f"MRP-{self.today():%Y%m%d}-"
        count = await self.runs.count_runs_with_prefix(company_id, prefix)
        return f"{prefix}{count + 1:04d}"

    # PUBLIC_INTERFACE
    async def submit_run(self, company_id: UUID, submission: RunSubmission) -> MrpRun:
        """
        Validate the submission and create a pending run.

        Parameters:
            company_id: company to plan
            submission: horizon, flags and filters
        Returns:
            The persisted pending MrpRun.
        Raises:
            RunValidationError: parameters rejected; nothing is written.
        """
        validate_submission(submission)
        flags = submission.flags
        for attempt in range(1, RUN_NUMBER_ATTEMPTS + 1):
            run = MrpRun(
                company_id=company_id,
                run_number=await self._next_run_number(company_id),
                name=submission.name,
                planning_horizon_start=submission.planning_horizon_start,
                planning_horizon_end=submission.planning_horizon_end,
                include_safety_stock=flags.include_safety_stock,
                respect_lead_times=flags.respect_lead_times,
                consider_wip=flags.consider_wip,
                net_change=flags.net_change,
                product_filters=submission.product_filters.model_dump(mode="json", exclude_none=True),
                warehouse_filters=submission.warehouse_filters.model_dump(mode="json", exclude_none=True),
                status=RunStatus.PENDING.value,
                created_by=submission.created_by,
            )
            try:
                await self.runs.create_run(run)
                await self.session.commit()
            except IntegrityError:
                # Two submissions raced for the same run number.
                await self.session.rollback()
                if attempt == RUN_NUMBER_ATTEMPTS:
                    raise
                logger.warning("Run number collision for company %s, retrying", company_id)
                continue
            break
        logger.info("Submitted MRP run %s (%s) for company %s", run.run_number, run.id, company_id)
        return run

    # PUBLIC_INTERFACE
    async def cancel_run(self, run_id: UUID, company_id: Optional[UUID] = None) -> RunStatus:
        """
        Cancel a pending or running run.

        Cancelling a run that already finished is a no-op returning its final status.

        Raises:
            RunNotFound: unknown run id.
        """
        status = RunStatus((await self._require_run(run_id, company_id)).status)
        if not status.can_cancel:
            return status
        cancelled = await self.runs.transition(
            run_id,
            (RunStatus.PENDING, RunStatus.RUNNING),
            RunStatus.CANCELLED,
            completed_at=datetime.now(tz=timezone.utc),
        )
        await self.session.commit()
        if cancelled:
            logger.info("Cancelled MRP run %s", run_id)
            return RunStatus.CANCELLED
        return await self.runs.get_status(run_id) or status

    # PUBLIC_INTERFACE
    async def get_run_status(self, run_id: UUID, company_id: Optional[UUID] = None) -> RunStatusRead:
        """
        Return the run record plus live progress from the cache, if any.

        Raises:
            RunNotFound: unknown run id.
        """
        run = await self._require_run(run_id, company_id)
        progress = None
        try:
            progress = await self.cache.get_progress(run_id)
        except Exception:
            logger.exception("Failed to read progress for run %s", run_id)
        return RunStatusRead(run=MrpRunRead.model_validate(run), progress=progress)

    # PUBLIC_INTERFACE
    async def list_recommendations(
        self,
        run_id: UUID,
        *,
        company_id: Optional[UUID] = None,
        recommendation_type: Optional[str] = None,
        product_id: Optional[UUID] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[MrpRecommendation], int]:
        """Return one page of a run's recommendations and the number matching the filters."""
        await self._require_run(run_id, company_id)
        rows = await self.recommendations.list_for_run(
            run_id,
            recommendation_type=recommendation_type,
            product_id=product_id,
            limit=limit,
            offset=offset,
        )
        total = await self.recommendations.count_for_run(
            run_id, recommendation_type=recommendation_type, product_id=product_id
        )
        return rows, total


class RunDispatcher:
    """
    Starts run executions as background tasks on the running event loop.

    References to the tasks are kept until they finish so they are not garbage
    collected mid-run.
    """

    def __init__(self, orchestrator: MrpOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._tasks: Set[asyncio.Task] = set()

    # PUBLIC_INTERFACE
    def dispatch(self, run_id: UUID) -> asyncio.Task:
        """Schedule orchestrator.execute(run_id) and return the task."""
        task = asyncio.create_task(self._execute(run_id), name=f"mrp-run-{run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(self, run_id: UUID) -> Optional[RunStatus]:
        try:
            return await self.orchestrator.execute(run_id)
        except Exception:
            logger.exception("Background execution of MRP run %s failed", run_id)
            return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # PUBLIC_INTERFACE
    async def wait_all(self) -> None:
        """Wait for every dispatched run to finish (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
