"""
MRP run orchestration.

A run moves pending -> running -> completed/failed/cancelled. While running, the
selected products are grouped into low-level-code tiers and processed tier by tier:
all chunks of tier n finish before any chunk of tier n+1 starts, because a child's
dependent demand is written by its parents' chunks.

Within a tier, chunks are pulled from a queue by a bounded pool of worker tasks.
Each chunk opens its own session, writes product-keyed rows (replace, never append)
and adds its totals to the run counters with an SQL increment. A chunk is retried
with backoff after a timeout or error; exhausting the attempts fails the run.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mrp_engine.core.enums import DemandType, RunStatus
from mrp_engine.core.exceptions import (
    ChunkError,
    ChunkTimeout,
    CycleDetected,
    MissingBomError,
    MrpError,
    RunCancelled,
    RunNotFound,
)
from mrp_engine.core.logging import company_id_var, run_id_var
from mrp_engine.core.settings import MrpSettings
from mrp_engine.db.models.master_data import Product
from mrp_engine.db.models.mrp import MrpDependentDemand, MrpRecommendation, MrpRun
from mrp_engine.repositories.master_data import BomEdge, MasterDataRepository
from mrp_engine.repositories.mrp import (
    DependentDemandRepository,
    MrpRunRepository,
    RecommendationRepository,
)
from mrp_engine.schemas.mrp import ProductFilters, WarehouseFilters
from mrp_engine.services.bom_explosion import BomExploder
from mrp_engine.services.cache import MrpCacheManager
from mrp_engine.services.calendar import CalendarScope, CalendarService
from mrp_engine.services.low_level_code import LowLevelCodeService
from mrp_engine.services.netting import (
    DemandEntry,
    NettingEngine,
    PlannedDecision,
    PlanningInput,
    PlanningOptions,
    ProductParameters,
    ReceiptEntry,
    WarehouseStock,
)

logger = logging.getLogger(__name__)

WARN_NO_BOM = "products_without_bom"
WARN_EXPLOSION = "bom_explosion_errors"
WARN_PROCESSING = "product_processing_errors"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class WarningSummary:
    """Warnings grouped by category with a count and a few example messages."""

    def __init__(self, examples_limit: int = 3) -> None:
        self._limit = examples_limit
        self._groups: Dict[str, Dict[str, object]] = {}

    def add(self, category: str, message: str) -> None:
        group = self._groups.setdefault(category, {"count": 0, "examples": []})
        group["count"] = int(group["count"]) + 1  # type: ignore[arg-type]
        examples = group["examples"]
        if len(examples) < self._limit:  # type: ignore[arg-type]
            examples.append(message)  # type: ignore[union-attr]

    def extend(self, items: Iterable[Tuple[str, str]]) -> None:
        for category, message in items:
            self.add(category, message)

    @property
    def total(self) -> int:
        return sum(int(g["count"]) for g in self._groups.values())  # type: ignore[arg-type]

    def as_dict(self) -> Dict[str, Dict[str, object]]:
        return {k: {"count": v["count"], "examples": list(v["examples"])} for k, v in self._groups.items()}  # type: ignore[call-overload]


@dataclass(frozen=True)
class RunContext:
    """Immutable description of the run handed to every chunk."""
    run_id: UUID
    company_id: UUID
    options: PlanningOptions
    warehouse_filters: WarehouseFilters
    selected: FrozenSet[UUID] = frozenset()
    # Completed run whose dependent demand stands in for parents outside a net-change selection.
    baseline_run_id: Optional[UUID] = None


@dataclass
class ChunkOutcome:
    products: int = 0
    recommendations: int = 0
    warnings: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class Selection:
    product_ids: List[UUID]
    levels: Dict[UUID, int]
    consumed_dirty: Set[UUID] = field(default_factory=set)
    baseline_run_id: Optional[UUID] = None


def descendants(roots: Iterable[UUID], edges: Sequence[BomEdge]) -> Set[UUID]:
    """Roots plus every product reachable below them in the BOM graph."""
    children: Dict[UUID, List[UUID]] = defaultdict(list)
    for edge in edges:
        children[edge.parent_id].append(edge.component_id)
    seen: Set[UUID] = set()
    frontier = list(roots)
    while frontier:
        node = frontier.pop()
        if node in seen:
            continue
        seen.add(node)
        frontier.extend(children.get(node, []))
    return seen


def chunked(items: Sequence[UUID], size: int) -> List[List[UUID]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class MrpOrchestrator:
    """
    Executes MRP runs.

    The orchestrator is long-lived and holds no per-run state: each execute() call
    opens its own sessions from the injected factory and talks to the cache through
    the injected MrpCacheManager.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cache: MrpCacheManager,
        settings: MrpSettings,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.session_maker = session_maker
        self.cache = cache
        self.settings = settings
        self.today = today

    # PUBLIC_INTERFACE
    async def execute(self, run_id: UUID) -> RunStatus:
        """
        Execute a pending run to a terminal state.

        Parameters:
            run_id: id of a run created by MrpRunService.submit_run
        Returns:
            The status the run ended in (or its current status if it was not pending).
        Raises:
            RunNotFound: no such run.
        """
        async with self.session_maker() as session:
            run = await MrpRunRepository(session).get_run(run_id)
            if run is None:
                raise RunNotFound(run_id)
            status = RunStatus(run.status)
            company_id = run.company_id

        run_token = run_id_var.set(str(run_id))
        company_token = company_id_var.set(str(company_id))
        try:
            if status != RunStatus.PENDING:
                logger.warning("Run %s is %s, not pending; skipping execution", run.run_number, status.value)
                return status

            lock_token = uuid4().hex
            if not await self.cache.acquire_run_lock(company_id, lock_token):
                return await self._finish_failed(
                    run_id,
                    "Another MRP run is already in progress for this company",
                    from_statuses=(RunStatus.PENDING,),
                )
            try:
                return await self._execute_locked(run)
            finally:
                try:
                    await self.cache.release_run_lock(company_id, lock_token)
                except Exception:
                    logger.exception("Failed to release MRP lock for company %s", company_id)
        finally:
            run_id_var.reset(run_token)
            company_id_var.reset(company_token)

    async def _execute_locked(self, run: MrpRun) -> RunStatus:
        async with self.session_maker() as session:
            repo = MrpRunRepository(session)
            started = await repo.transition(run.id, (RunStatus.PENDING,), RunStatus.RUNNING, started_at=_utcnow())
            await session.commit()
            if not started:
                current = await repo.get_status(run.id)
                logger.info("Run %s left pending before start (now %s)", run.run_number, current)
                return current or RunStatus.CANCELLED

        logger.info(
            "MRP run %s started: horizon %s..%s net_change=%s",
            run.run_number,
            run.planning_horizon_start,
            run.planning_horizon_end,
            run.net_change,
        )
        warnings = WarningSummary(self.settings.WARNING_EXAMPLES_LIMIT)
        try:
            selection = await asyncio.wait_for(
                self._run(run, warnings), timeout=self.settings.RUN_TIMEOUT_SECONDS
            )
        except RunCancelled:
            logger.info("MRP run %s was cancelled; stopped dispatching chunks", run.run_number)
            await self._save_warnings(run.id, warnings)
            return RunStatus.CANCELLED
        except asyncio.TimeoutError:
            return await self._finish_failed(
                run.id,
                f"MRP run exceeded the run timeout of {self.settings.RUN_TIMEOUT_SECONDS:g} seconds",
                warnings=warnings,
            )
        except CycleDetected as exc:
            return await self._finish_failed(run.id, f"Low-level code calculation failed: {exc}", warnings=warnings)
        except ChunkError as exc:
            return await self._finish_failed(run.id, str(exc), warnings=warnings)
        except Exception as exc:
            logger.exception("MRP run %s failed unexpectedly", run.run_number)
            return await self._finish_failed(run.id, f"MRP run failed: {exc}", warnings=warnings)

        async with self.session_maker() as session:
            repo = MrpRunRepository(session)
            completed = await repo.transition(
                run.id,
                (RunStatus.RUNNING,),
                RunStatus.COMPLETED,
                completed_at=_utcnow(),
                warnings_summary=warnings.as_dict(),
            )
            await session.commit()
            if not completed:
                current = await repo.get_status(run.id)
                logger.info("Run %s finished work but is now %s", run.run_number, current)
                return current or RunStatus.CANCELLED

        if run.net_change and selection.consumed_dirty:
            try:
                await self.cache.clear_dirty(run.company_id, selection.consumed_dirty)
            except Exception:
                logger.exception("Failed to clear dirty products after run %s", run.run_number)

        logger.info(
            "MRP run %s completed: %d products, %d warnings",
            run.run_number,
            len(selection.product_ids),
            warnings.total,
        )
        return RunStatus.COMPLETED

    async def _run(self, run: MrpRun, warnings: WarningSummary) -> Selection:
        async with self.session_maker() as session:
            levels = await LowLevelCodeService(session, self.cache).get_codes(run.company_id)
            selection = await self._select_products(session, run, levels)
            await MrpRunRepository(session).set_fields(run.id, products_total=len(selection.product_ids))
            await session.commit()

        total = len(selection.product_ids)
        await self._publish_progress(run.id, 0, total, None)
        if not total:
            logger.info("MRP run %s has no products to plan", run.run_number)
            await self._carry_forward_dependent_demand(run, selection)
            return selection

        ctx = RunContext(
            run_id=run.id,
            company_id=run.company_id,
            options=PlanningOptions(
                horizon_start=run.planning_horizon_start,
                horizon_end=run.planning_horizon_end,
                today=self.today(),
                include_safety_stock=run.include_safety_stock,
                respect_lead_times=run.respect_lead_times,
                consider_wip=run.consider_wip,
                reschedule_tolerance_days=self.settings.RESCHEDULE_TOLERANCE_DAYS,
            ),
            warehouse_filters=WarehouseFilters.model_validate(run.warehouse_filters or {}),
            selected=frozenset(selection.product_ids),
            baseline_run_id=selection.baseline_run_id,
        )

        tiers: Dict[int, List[UUID]] = defaultdict(list)
        for pid in selection.product_ids:
            tiers[selection.levels.get(pid, 0)].append(pid)

        for level in sorted(tiers):
            await self._ensure_running(ctx.run_id)
            chunks = chunked(tiers[level], self.settings.CHUNK_SIZE)
            logger.info("Planning tier %d: %d products in %d chunks", level, len(tiers[level]), len(chunks))
            for outcome in await self._run_tier(ctx, level, chunks, total):
                warnings.extend(outcome.warnings)
        await self._carry_forward_dependent_demand(run, selection)
        return selection

    async def _carry_forward_dependent_demand(self, run: MrpRun, selection: Selection) -> None:
        """
        Copy the baseline's dependent demand of parents this net-change run did not plan.

        Every completed run then holds the company's full set of dependent demand, so the
        next net-change run can use it as its baseline.
        """
        if selection.baseline_run_id is None:
            return
        await self._ensure_running(run.id)
        async with self.session_maker() as session:
            copied = await DependentDemandRepository(session).copy_from_run(
                selection.baseline_run_id,
                run.id,
                exclude_sources=selection.product_ids,
            )
            await session.commit()
        logger.info(
            "Carried %d dependent demand rows forward from run %s", copied, selection.baseline_run_id
        )

    async def _select_products(self, session: AsyncSession, run: MrpRun, levels: Dict[UUID, int]) -> Selection:
        master = MasterDataRepository(session)
        filters = ProductFilters.model_validate(run.product_filters or {})
        make_or_buy = filters.make_or_buy.value if filters.make_or_buy else None
        consumed: Set[UUID] = set()
        baseline: Optional[UUID] = None
        product_ids = filters.product_ids

        if run.net_change:
            dirty = await self.cache.get_dirty(run.company_id)
            consumed = set(dirty)
            active = set(await master.list_active_product_ids(run.company_id))
            dirty_active = dirty & active
            ratio = len(dirty_active) / len(active) if active else 0.0
            if ratio > self.settings.NET_CHANGE_MAX_DIRTY_RATIO:
                logger.info(
                    "Net-change run: %.0f%% of products dirty, planning all products", ratio * 100
                )
            else:
                baseline = await MrpRunRepository(session).latest_completed_run_id(run.company_id, run.id)
                if not dirty_active:
                    return Selection(product_ids=[], levels=levels, consumed_dirty=consumed, baseline_run_id=baseline)
                edges = await master.get_active_bom_edges(run.company_id)
                affected = descendants(dirty_active, edges) & active
                if product_ids is not None:
                    affected &= set(product_ids)
                product_ids = sorted(affected, key=str)
                logger.info(
                    "Net-change run: %d dirty products expand to %d affected; baseline run %s",
                    len(dirty_active),
                    len(affected),
                    baseline,
                )

        products = await master.list_planning_products(
            run.company_id, product_ids=product_ids, make_or_buy=make_or_buy
        )
        ordered = sorted(products, key=lambda p: (levels.get(p.id, 0), p.sku))
        return Selection(
            product_ids=[p.id for p in ordered],
            levels=levels,
            consumed_dirty=consumed,
            baseline_run_id=baseline,
        )

    # --- tiers and chunks -------------------------------------------------------------

    async def _run_tier(
        self, ctx: RunContext, level: int, chunks: List[List[UUID]], total: int
    ) -> List[ChunkOutcome]:
        """Drain the tier's chunk queue with a bounded worker pool; returns once every chunk is done."""
        queue: asyncio.Queue[Tuple[int, List[UUID]]] = asyncio.Queue()
        for index, chunk in enumerate(chunks):
            queue.put_nowait((index, chunk))

        outcomes: List[ChunkOutcome] = []
        failures: List[ChunkError] = []

        async def worker() -> None:
            while not failures:
                try:
                    index, chunk = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    outcome = await self._run_chunk_with_retries(ctx, level, index, chunk)
                except ChunkError as exc:
                    failures.append(exc)
                    return
                finally:
                    queue.task_done()
                outcomes.append(outcome)
                await self._publish_progress_from_run(ctx.run_id, total, level)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(self.settings.WORKER_CONCURRENCY, len(chunks)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        if failures:
            raise failures[0]
        return outcomes

    async def _run_chunk_with_retries(
        self, ctx: RunContext, level: int, index: int, chunk: List[UUID]
    ) -> ChunkOutcome:
        attempts = self.settings.CHUNK_MAX_ATTEMPTS
        timeout = self.settings.CHUNK_TIMEOUT_SECONDS
        label = f"{level}.{index}"
        error: ChunkError = ChunkError(f"Chunk {label} did not run", chunk)
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(self._process_chunk(ctx, chunk), timeout=timeout)
            except RunCancelled:
                raise
            except asyncio.TimeoutError:
                error = ChunkTimeout(
                    f"Chunk {label} ({len(chunk)} products) timed out after {timeout:g} seconds "
                    f"on {attempt} of {attempts} attempts",
                    chunk,
                    attempt,
                )
                logger.warning("Chunk %s timed out (attempt %d/%d)", label, attempt, attempts)
            except Exception as exc:
                error = ChunkError(
                    f"Chunk {label} ({len(chunk)} products) failed on {attempt} of {attempts} attempts: {exc}",
                    chunk,
                    attempt,
                )
                logger.exception("Chunk %s failed (attempt %d/%d)", label, attempt, attempts)
            if attempt < attempts:
                delay = self.settings.backoff_for(attempt)
                logger.info("Retrying chunk %s in %gs", label, delay)
                await asyncio.sleep(delay)
        raise error

    async def _process_chunk(self, ctx: RunContext, chunk: List[UUID]) -> ChunkOutcome:
        outcome = ChunkOutcome()
        async with self.session_maker() as session:
            runs = MrpRunRepository(session)
            await self._ensure_running(ctx.run_id, runs)

            master = MasterDataRepository(session)
            calendar = await CalendarService(session, self.cache, self.settings).load(ctx.company_id)
            engine = NettingEngine(calendar, CalendarScope(company_id=ctx.company_id))
            exploder = BomExploder(master, self.cache)
            products = await master.get_products(chunk)

            try:
                for product_id in chunk:
                    await self._ensure_running(ctx.run_id, runs)
                    product = products.get(product_id)
                    if product is None:
                        outcome.warnings.append((WARN_PROCESSING, f"Product {product_id} no longer exists"))
                        outcome.products += 1
                        continue
                    try:
                        written, warns = await self._plan_product(session, ctx, product, engine, exploder, master, runs)
                    except RunCancelled:
                        raise
                    except MrpError as exc:
                        await session.rollback()
                        logger.warning("Skipping product %s: %s", product.sku, exc)
                        written, warns = 0, [(WARN_PROCESSING, f"{product.sku}: {exc}")]
                    outcome.products += 1
                    outcome.recommendations += written
                    outcome.warnings.extend(warns)
            except RunCancelled:
                await session.rollback()
                # Products planned before the cancellation are already committed.
                await self._add_counters(runs, ctx.run_id, outcome)
                await session.commit()
                raise

            await self._add_counters(runs, ctx.run_id, outcome)
            await session.commit()
        return outcome

    @staticmethod
    async def _add_counters(runs: MrpRunRepository, run_id: UUID, outcome: ChunkOutcome) -> None:
        await runs.increment_counters(
            run_id,
            products_processed=outcome.products,
            recommendations_generated=outcome.recommendations,
            warnings_count=len(outcome.warnings),
        )

    # --- one product ------------------------------------------------------------------

    async def _load_input(
        self, session: AsyncSession, ctx: RunContext, product: Product, master: MasterDataRepository
    ) -> PlanningInput:
        opts = ctx.options
        planning_stock = 0.0
        others: List[WarehouseStock] = []
        for level in await master.get_stock_levels(product.id):
            if ctx.warehouse_filters.allows(level.warehouse_id):
                planning_stock += level.quantity_free
            else:
                others.append(
                    WarehouseStock(
                        warehouse_id=level.warehouse_id,
                        on_hand=float(level.quantity_on_hand or 0),
                        reserved=float(level.quantity_reserved or 0),
                    )
                )

        demand_types = [DemandType.SALES_ORDER.value, DemandType.FORECAST.value]
        if opts.consider_wip:
            demand_types.append(DemandType.WORK_ORDER_MATERIAL.value)
        demands = [
            DemandEntry(
                required_date=row.required_date,
                quantity=float(row.quantity_open),
                source_type=row.demand_type,
                source_id=row.id,
                reference=row.reference,
            )
            for row in await master.get_open_demand(product.id, opts.horizon_start, opts.horizon_end, demand_types)
        ]

        dependents = DependentDemandRepository(session)
        rows = await dependents.list_for_product(
            ctx.run_id, product.id, start=opts.horizon_start, end=opts.horizon_end
        )
        if ctx.baseline_run_id is not None:
            rows += await dependents.list_for_product(
                ctx.baseline_run_id,
                product.id,
                exclude_sources=ctx.selected,
                start=opts.horizon_start,
                end=opts.horizon_end,
            )
        demands += [
            DemandEntry(
                required_date=row.required_date,
                quantity=float(row.quantity),
                source_type="dependent",
                source_id=row.source_product_id,
            )
            for row in rows
            if not row.is_optional
        ]

        receipts: List[ReceiptEntry] = []
        if opts.consider_wip:
            receipts = [
                ReceiptEntry(
                    order_id=row.id,
                    order_type=row.order_type,
                    order_number=row.order_number,
                    quantity=float(row.quantity_open),
                    due_date=row.due_date,
                )
                for row in await master.get_open_supply(product.id, opts.horizon_start, opts.horizon_end)
            ]

        return PlanningInput(
            parameters=ProductParameters.from_product(product),
            planning_stock=round(planning_stock, 6),
            demands=demands,
            receipts=receipts,
            other_warehouses=others,
        )

    async def _plan_product(
        self,
        session: AsyncSession,
        ctx: RunContext,
        product: Product,
        engine: NettingEngine,
        exploder: BomExploder,
        master: MasterDataRepository,
        runs: MrpRunRepository,
    ) -> Tuple[int, List[Tuple[str, str]]]:
        data = await self._load_input(session, ctx, product, master)
        result = engine.plan(data, ctx.options)

        warns: List[Tuple[str, str]] = []
        dependent_rows: List[MrpDependentDemand] = []
        planned = result.planned_work_order
        if planned is not None:
            try:
                explosion = await exploder.explode_product(product.id, planned.suggested_quantity, product.sku)
            except MissingBomError as exc:
                warns.append((WARN_NO_BOM, str(exc)))
            except CycleDetected as exc:
                warns.append((WARN_EXPLOSION, f"{product.sku}: {exc}"))
            else:
                warns.extend((WARN_EXPLOSION, w) for w in explosion.warnings)
                needed_on = max(planned.suggested_date, ctx.options.horizon_start)
                dependent_rows = [
                    MrpDependentDemand(
                        company_id=ctx.company_id,
                        run_id=ctx.run_id,
                        product_id=component.component_id,
                        source_product_id=product.id,
                        required_date=needed_on,
                        quantity=component.quantity,
                        is_optional=component.is_optional,
                    )
                    for component in explosion.components
                ]

        rows = [self._to_row(ctx, product.id, d) for d in result.decisions]

        # Last cancellation check before this product's rows become visible.
        await self._ensure_running(ctx.run_id, runs)
        await RecommendationRepository(session).replace_for_product(ctx.run_id, product.id, rows)
        await DependentDemandRepository(session).replace_for_source(ctx.run_id, product.id, dependent_rows)
        await session.commit()
        return len(rows), warns

    @staticmethod
    def _to_row(ctx: RunContext, product_id: UUID, decision: PlannedDecision) -> MrpRecommendation:
        return MrpRecommendation(
            company_id=ctx.company_id,
            run_id=ctx.run_id,
            product_id=product_id,
            warehouse_id=decision.warehouse_id,
            recommendation_type=decision.recommendation_type.value,
            required_date=decision.required_date,
            suggested_date=decision.suggested_date,
            due_date=decision.due_date,
            gross_requirement=decision.gross_requirement,
            net_requirement=decision.net_requirement,
            suggested_quantity=decision.suggested_quantity,
            current_stock=decision.current_stock,
            projected_stock=decision.projected_stock,
            demand_source_type=decision.demand_source_type,
            demand_source_id=decision.demand_source_id,
            priority=decision.priority.value,
            is_urgent=decision.is_urgent,
            urgency_reason=decision.urgency_reason,
            status="pending",
            calculation_details=decision.details.model_dump(mode="json"),
        )

    # --- status helpers -----------------------------------------------------------------

    async def _ensure_running(self, run_id: UUID, runs: Optional[MrpRunRepository] = None) -> None:
        """Raise RunCancelled unless the run is still running."""
        if runs is not None:
            status = await runs.get_status(run_id)
        else:
            async with self.session_maker() as session:
                status = await MrpRunRepository(session).get_status(run_id)
        if status != RunStatus.RUNNING:
            raise RunCancelled(run_id)

    async def _finish_failed(
        self,
        run_id: UUID,
        message: str,
        *,
        from_statuses: Sequence[RunStatus] = (RunStatus.RUNNING,),
        warnings: Optional[WarningSummary] = None,
    ) -> RunStatus:
        logger.error("MRP run %s failed: %s", run_id, message)
        values = {"completed_at": _utcnow(), "error_message": message}
        if warnings is not None:
            values["warnings_summary"] = warnings.as_dict()
        async with self.session_maker() as session:
            repo = MrpRunRepository(session)
            failed = await repo.transition(run_id, tuple(from_statuses), RunStatus.FAILED, **values)
            await session.commit()
            if not failed:
                return await repo.get_status(run_id) or RunStatus.FAILED
        return RunStatus.FAILED

    async def _save_warnings(self, run_id: UUID, warnings: WarningSummary) -> None:
        try:
            async with self.session_maker() as session:
                await MrpRunRepository(session).set_fields(run_id, warnings_summary=warnings.as_dict())
                await session.commit()
        except Exception:
            logger.exception("Failed to store warnings for cancelled run %s", run_id)

    async def _publish_progress(self, run_id: UUID, processed: int, total: int, tier: Optional[int]) -> None:
        try:
            await self.cache.set_progress(run_id, processed, total, tier)
        except Exception:
            logger.exception("Failed to publish progress for run %s", run_id)

    async def _publish_progress_from_run(self, run_id: UUID, total: int, tier: int) -> None:
        async with self.session_maker() as session:
            run = await MrpRunRepository(session).get_run(run_id)
        if run is not None:
            await self._publish_progress(run_id, run.products_processed, total, tier)
