"""
Run orchestration against the demo dataset: tiered planning, counters, retries,
timeouts, cancellation, run locks and net-change selection.

Demo dataset (see mrp_engine.db.seed), planned from Monday 2025-03-03:
  BIKE  demand 25 + 40, stock 5          -> work order 60
  WHEEL 2 per BIKE, stock 6, safety 4    -> work order 118
  TUBE  3 per FRAME (phantom), PO 60     -> reschedule-in + purchase order 125
  SPOKE 32 per WHEEL + 5% scrap, 2000    -> purchase order 2000
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from mrp_engine.core.enums import RunStatus
from mrp_engine.db.models.inventory import Warehouse
from mrp_engine.db.models.mrp import MrpDependentDemand, MrpRecommendation
from mrp_engine.db.seed import seed_demo
from mrp_engine.repositories.master_data import BomEdge
from mrp_engine.repositories.mrp import MrpRunRepository
from mrp_engine.schemas.mrp import ProductFilters, RunFlags, RunSubmission, WarehouseFilters
from mrp_engine.services.mrp_runs import MrpRunService
from mrp_engine.services.orchestrator import (
    WARN_NO_BOM,
    MrpOrchestrator,
    WarningSummary,
    chunked,
    descendants,
)


@pytest.fixture
async def demo(session, company_id, today):
    ids = await seed_demo(session, company_id, today=today)
    await session.commit()
    return ids


@pytest.fixture
def orchestrator(session_maker, cache, mrp_settings, today):
    return MrpOrchestrator(session_maker, cache, mrp_settings, today=lambda: today)


@pytest.fixture
def submit(session_maker, cache, mrp_settings, company_id, today):
    async def _submit(**fields):
        fields.setdefault("planning_horizon_start", today)
        fields.setdefault("planning_horizon_end", today + timedelta(days=90))
        async with session_maker() as s:
            service = MrpRunService(s, cache, mrp_settings, today=lambda: today)
            run = await service.submit_run(company_id, RunSubmission(**fields))
            return run.id

    return _submit


async def load_run(session_maker, run_id):
    async with session_maker() as s:
        return await MrpRunRepository(s).get_run(run_id)


async def recommendations_by_sku(session_maker, run_id, ids):
    skus = {pid: sku for sku, pid in ids.items()}
    async with session_maker() as s:
        rows = (await s.execute(select(MrpRecommendation).where(MrpRecommendation.run_id == run_id))).scalars()
        found = {}
        for row in rows:
            found.setdefault(skus[row.product_id], []).append(row)
    return found


async def dependent_demand_by_sku(session_maker, run_id, ids):
    skus = {pid: sku for sku, pid in ids.items()}
    async with session_maker() as s:
        rows = (
            await s.execute(select(MrpDependentDemand).where(MrpDependentDemand.run_id == run_id))
        ).scalars().all()
    return {skus[r.product_id]: (r.quantity, r.is_optional) for r in rows}


class TestHelpers:
    def test_descendants(self):
        a, b, c, d = (uuid4() for _ in range(4))
        edges = [
            BomEdge(uuid4(), "B1", a, b, False, False),
            BomEdge(uuid4(), "B2", b, c, False, False),
            BomEdge(uuid4(), "B3", d, c, False, False),
        ]
        assert descendants([b], edges) == {b, c}
        assert descendants([a], edges) == {a, b, c}

    def test_chunked(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunked([], 3) == []

    def test_warning_summary_keeps_a_few_examples(self):
        summary = WarningSummary(examples_limit=2)
        summary.extend([(WARN_NO_BOM, "a"), (WARN_NO_BOM, "b"), (WARN_NO_BOM, "c"), ("other", "x")])
        assert summary.total == 4
        assert summary.as_dict() == {
            WARN_NO_BOM: {"count": 3, "examples": ["a", "b"]},
            "other": {"count": 1, "examples": ["x"]},
        }


class TestFullRun:
    async def test_plans_every_tier(self, demo, submit, orchestrator, session_maker):
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED

        run = await load_run(session_maker, run_id)
        assert run.status == "completed"
        assert run.started_at is not None and run.completed_at is not None
        assert run.products_total == 6
        assert run.products_processed == 6
        assert run.recommendations_generated == 5
        assert run.warnings_count == 0
        assert run.warnings_summary == {}

        recs = await recommendations_by_sku(session_maker, run_id, demo)
        assert set(recs) == {"BIKE", "WHEEL", "TUBE", "SPOKE"}
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["BIKE"]] == [("work_order", 60)]
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["WHEEL"]] == [("work_order", 118)]
        assert sorted((r.recommendation_type, r.suggested_quantity) for r in recs["TUBE"]) == [
            ("purchase_order", 125),
            ("reschedule_in", 60),
        ]
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["SPOKE"]] == [("purchase_order", 2000)]

    async def test_dependent_demand_skips_phantoms(self, demo, submit, orchestrator, session_maker):
        run_id = await submit()
        await orchestrator.execute(run_id)

        assert await dependent_demand_by_sku(session_maker, run_id, demo) == {
            "TUBE": (180, False),
            "WHEEL": (120, False),
            "BELL": (60, True),
            "SPOKE": (pytest.approx(3964.8), False),
        }

    async def test_counters_exact_with_single_worker(self, demo, submit, session_maker, cache, mrp_settings, today):
        settings = mrp_settings.model_copy(update={"WORKER_CONCURRENCY": 1, "CHUNK_SIZE": 1})
        orchestrator = MrpOrchestrator(session_maker, cache, settings, today=lambda: today)
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED
        run = await load_run(session_maker, run_id)
        assert (run.products_processed, run.recommendations_generated) == (6, 5)

    async def test_progress_is_published(self, demo, submit, orchestrator, cache):
        run_id = await submit()
        await orchestrator.execute(run_id)
        progress = await cache.get_progress(run_id)
        assert (progress.processed, progress.total, progress.percentage) == (6, 6, 100.0)

    async def test_runs_are_independent(self, demo, submit, orchestrator, session_maker):
        first = await submit()
        second = await submit()
        await orchestrator.execute(first)
        await orchestrator.execute(second)
        for run_id in (first, second):
            run = await load_run(session_maker, run_id)
            assert run.recommendations_generated == 5

    async def test_make_or_buy_filter(self, demo, submit, orchestrator, session_maker):
        run_id = await submit(product_filters=ProductFilters(make_or_buy="buy"))
        await orchestrator.execute(run_id)
        run = await load_run(session_maker, run_id)
        assert run.products_total == 3
        recs = await recommendations_by_sku(session_maker, run_id, demo)
        # No parents were planned, so components see no dependent demand.
        assert set(recs) == {"TUBE"}
        assert [r.recommendation_type for r in recs["TUBE"]] == ["cancel"]

    async def test_excluded_warehouse_stock_does_not_count(self, demo, submit, orchestrator, session_maker, company_id):
        async with session_maker() as s:
            spare = (
                await s.execute(select(Warehouse.id).where(Warehouse.company_id == company_id, Warehouse.code == "SPARE"))
            ).scalar_one()
        run_id = await submit(warehouse_filters=WarehouseFilters(exclude=[spare]))
        await orchestrator.execute(run_id)
        recs = await recommendations_by_sku(session_maker, run_id, demo)
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["SPOKE"]] == [("purchase_order", 4000)]

    async def test_missing_bom_is_a_warning(self, session, factory, submit, orchestrator, session_maker, today):
        loose = await factory.product("LOOSE", "make")
        await factory.demand(loose, 10, today + timedelta(days=10))
        await session.commit()

        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED
        run = await load_run(session_maker, run_id)
        assert run.recommendations_generated == 1
        assert run.warnings_count == 1
        assert run.warnings_summary[WARN_NO_BOM]["count"] == 1
        assert "LOOSE" in run.warnings_summary[WARN_NO_BOM]["examples"][0]


class TestChunkFailures:
    async def test_retry_after_transient_failure(self, demo, submit, orchestrator, session_maker, monkeypatch):
        original = orchestrator._process_chunk
        calls = []

        async def flaky(ctx, chunk):
            calls.append(chunk)
            if len(calls) == 1:
                raise RuntimeError("database connection reset")
            return await original(ctx, chunk)

        monkeypatch.setattr(orchestrator, "_process_chunk", flaky)
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED
        run = await load_run(session_maker, run_id)
        assert run.products_processed == 6
        assert run.recommendations_generated == 5
        assert calls[0] == calls[1]

    async def test_exhausted_retries_fail_the_run(self, demo, submit, orchestrator, session_maker, monkeypatch, cache, company_id):
        async def broken(ctx, chunk):
            raise RuntimeError("boom")

        monkeypatch.setattr(orchestrator, "_process_chunk", broken)
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.FAILED
        run = await load_run(session_maker, run_id)
        assert run.status == "failed"
        assert "failed on 2 of 2 attempts" in run.error_message
        assert run.completed_at is not None
        # Lock was released.
        assert await cache.acquire_run_lock(company_id, "next")

    async def test_chunk_timeout_fails_the_run(self, demo, submit, session_maker, cache, mrp_settings, today, monkeypatch):
        settings = mrp_settings.model_copy(update={"CHUNK_TIMEOUT_SECONDS": 0.05})
        orchestrator = MrpOrchestrator(session_maker, cache, settings, today=lambda: today)

        async def slow(ctx, chunk):
            await asyncio.sleep(5)

        monkeypatch.setattr(orchestrator, "_process_chunk", slow)
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.FAILED
        run = await load_run(session_maker, run_id)
        assert "timed out" in run.error_message

    async def test_run_timeout_fails_the_run(self, demo, submit, session_maker, cache, mrp_settings, today, monkeypatch):
        settings = mrp_settings.model_copy(update={"RUN_TIMEOUT_SECONDS": 0.05})
        orchestrator = MrpOrchestrator(session_maker, cache, settings, today=lambda: today)

        async def slow(ctx, chunk):
            await asyncio.sleep(5)

        monkeypatch.setattr(orchestrator, "_process_chunk", slow)
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.FAILED
        run = await load_run(session_maker, run_id)
        assert "run timeout" in run.error_message


class TestRunLifecycle:
    async def test_cancel_while_running(self, demo, submit, orchestrator, session_maker, cache, mrp_settings, monkeypatch, company_id):
        original = orchestrator._process_chunk

        async def cancel_first(ctx, chunk):
            async with session_maker() as s:
                await MrpRunService(s, cache, mrp_settings).cancel_run(ctx.run_id)
            return await original(ctx, chunk)

        monkeypatch.setattr(orchestrator, "_process_chunk", cancel_first)
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.CANCELLED

        run = await load_run(session_maker, run_id)
        assert run.status == "cancelled"
        assert run.recommendations_generated == 0
        assert await recommendations_by_sku(session_maker, run_id, demo) == {}
        assert await cache.acquire_run_lock(company_id, "next")

    async def test_cancel_mid_chunk_counts_written_products(self, demo, submit, orchestrator, session_maker, cache, mrp_settings, monkeypatch):
        original = orchestrator._plan_product

        async def cancel_after_spoke(session, ctx, product, *args):
            result = await original(session, ctx, product, *args)
            if product.sku == "SPOKE":
                async with session_maker() as s:
                    await MrpRunService(s, cache, mrp_settings).cancel_run(ctx.run_id)
            return result

        monkeypatch.setattr(orchestrator, "_plan_product", cancel_after_spoke)
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.CANCELLED

        # SPOKE and TUBE share the last chunk; TUBE is never planned.
        recs = await recommendations_by_sku(session_maker, run_id, demo)
        assert "SPOKE" in recs and "TUBE" not in recs
        run = await load_run(session_maker, run_id)
        assert run.recommendations_generated == sum(len(rows) for rows in recs.values())
        assert run.products_processed == 5

    async def test_cancelled_before_start_is_not_executed(self, demo, submit, orchestrator, session_maker, cache, mrp_settings):
        run_id = await submit()
        async with session_maker() as s:
            assert await MrpRunService(s, cache, mrp_settings).cancel_run(run_id) == RunStatus.CANCELLED
        assert await orchestrator.execute(run_id) == RunStatus.CANCELLED
        run = await load_run(session_maker, run_id)
        assert run.started_at is None

    async def test_held_lock_fails_the_run(self, demo, submit, orchestrator, session_maker, cache, company_id):
        assert await cache.acquire_run_lock(company_id, "someone-else")
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.FAILED
        run = await load_run(session_maker, run_id)
        assert run.error_message == "Another MRP run is already in progress for this company"
        # The other holder keeps its lock.
        assert not await cache.acquire_run_lock(company_id, "third")

    async def test_bom_cycle_fails_the_run(self, session, factory, submit, orchestrator, session_maker):
        a = await factory.product("A", "make")
        b = await factory.product("B", "make")
        await factory.bom(a, {b: 1})
        await factory.bom(b, {a: 1})
        await session.commit()

        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.FAILED
        run = await load_run(session_maker, run_id)
        assert run.error_message.startswith("Low-level code calculation failed:")
        assert "BOM-A" in run.error_message or "BOM-B" in run.error_message

    async def test_completed_run_is_not_executed_twice(self, demo, submit, orchestrator):
        run_id = await submit()
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED


class TestNetChange:
    async def test_plans_dirty_products_and_descendants(self, demo, submit, orchestrator, session_maker, cache, company_id):
        baseline = await submit()
        assert await orchestrator.execute(baseline) == RunStatus.COMPLETED

        await cache.mark_dirty(company_id, demo["WHEEL"])
        run_id = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED

        run = await load_run(session_maker, run_id)
        assert run.products_total == 2
        recs = await recommendations_by_sku(session_maker, run_id, demo)
        # WHEEL still sees BIKE's dependent demand from the baseline run.
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["WHEEL"]] == [("work_order", 118)]
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["SPOKE"]] == [("purchase_order", 2000)]
        assert set(recs) == {"WHEEL", "SPOKE"}
        assert await cache.get_dirty(company_id) == set()

    async def test_nothing_dirty_plans_nothing(self, demo, submit, orchestrator, session_maker):
        run_id = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED
        run = await load_run(session_maker, run_id)
        assert run.products_total == 0

    async def test_many_dirty_products_plan_everything(self, demo, submit, orchestrator, session_maker, cache, company_id):
        await cache.mark_many_dirty(company_id, [demo["WHEEL"], demo["TUBE"]])
        run_id = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED
        run = await load_run(session_maker, run_id)
        assert run.products_total == 6
        assert await cache.get_dirty(company_id) == set()

    async def test_failed_run_keeps_dirty_products(self, demo, submit, orchestrator, cache, company_id, monkeypatch):
        async def broken(ctx, chunk):
            raise RuntimeError("boom")

        monkeypatch.setattr(orchestrator, "_process_chunk", broken)
        await cache.mark_dirty(company_id, demo["WHEEL"])
        run_id = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(run_id) == RunStatus.FAILED
        assert await cache.get_dirty(company_id) == {demo["WHEEL"]}

    async def test_consecutive_net_change_runs_keep_parent_demand(self, demo, submit, orchestrator, session_maker, cache, company_id):
        assert await orchestrator.execute(await submit()) == RunStatus.COMPLETED

        await cache.mark_dirty(company_id, demo["SPOKE"])
        first = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(first) == RunStatus.COMPLETED
        assert (await load_run(session_maker, first)).products_total == 1

        await cache.mark_dirty(company_id, demo["WHEEL"])
        second = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(second) == RunStatus.COMPLETED

        recs = await recommendations_by_sku(session_maker, second, demo)
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["WHEEL"]] == [("work_order", 118)]
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["SPOKE"]] == [("purchase_order", 2000)]
        # BIKE's rows were carried forward, WHEEL's were rewritten.
        assert await dependent_demand_by_sku(session_maker, second, demo) == {
            "TUBE": (180, False),
            "WHEEL": (120, False),
            "BELL": (60, True),
            "SPOKE": (pytest.approx(3964.8), False),
        }

    async def test_empty_net_change_run_carries_parent_demand(self, demo, submit, orchestrator, session_maker, cache, company_id):
        assert await orchestrator.execute(await submit()) == RunStatus.COMPLETED
        idle = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(idle) == RunStatus.COMPLETED
        assert set(await dependent_demand_by_sku(session_maker, idle, demo)) == {"TUBE", "WHEEL", "BELL", "SPOKE"}

        await cache.mark_dirty(company_id, demo["WHEEL"])
        run_id = await submit(flags=RunFlags(net_change=True))
        assert await orchestrator.execute(run_id) == RunStatus.COMPLETED
        recs = await recommendations_by_sku(session_maker, run_id, demo)
        assert [(r.recommendation_type, r.suggested_quantity) for r in recs["WHEEL"]] == [("work_order", 118)]
