from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status

from mrp_engine.core.deps import get_company_id, get_dispatcher, get_run_service
from mrp_engine.core.enums import RecommendationType
from mrp_engine.schemas.common import RunAccepted
from mrp_engine.schemas.mrp import (
    MrpRecommendationRead,
    RecommendationPage,
    RunStatusRead,
    RunSubmission,
)
from mrp_engine.services.mrp_runs import MrpRunService, RunDispatcher

router = APIRouter(prefix="/mrp", tags=["MRP"])


# PUBLIC_INTERFACE
@router.post(
    "/runs",
    response_model=RunAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit MRP run",
    description="Validate the parameters, create a pending run and start it in the background.",
)
async def submit_run(
    payload: RunSubmission,
    company_id: UUID = Depends(get_company_id),
    service: MrpRunService = Depends(get_run_service),
    dispatcher: RunDispatcher = Depends(get_dispatcher),
) -> RunAccepted:
    run = await service.submit_run(company_id, payload)
    dispatcher.dispatch(run.id)
    return RunAccepted(run_id=run.id, run_number=run.run_number, status=run.status)


# PUBLIC_INTERFACE
@router.get(
    "/runs/{run_id}",
    response_model=RunStatusRead,
    summary="Get MRP run status",
    description="Run record with counters, warnings summary and live progress.",
)
async def get_run_status(
    run_id: UUID = Path(...),
    company_id: UUID = Depends(get_company_id),
    service: MrpRunService = Depends(get_run_service),
) -> RunStatusRead:
    return await service.get_run_status(run_id, company_id=company_id)


# PUBLIC_INTERFACE
@router.post(
    "/runs/{run_id}/cancel",
    response_model=RunStatusRead,
    summary="Cancel MRP run",
    description="Cancel a pending or running run. Finished runs are returned unchanged.",
)
async def cancel_run(
    run_id: UUID = Path(...),
    company_id: UUID = Depends(get_company_id),
    service: MrpRunService = Depends(get_run_service),
) -> RunStatusRead:
    await service.cancel_run(run_id, company_id=company_id)
    return await service.get_run_status(run_id, company_id=company_id)


# PUBLIC_INTERFACE
@router.get(
    "/runs/{run_id}/recommendations",
    response_model=RecommendationPage,
    summary="List run recommendations",
    description="Recommendations of a run ordered by suggested date.",
)
async def list_recommendations(
    run_id: UUID = Path(...),
    company_id: UUID = Depends(get_company_id),
    service: MrpRunService = Depends(get_run_service),
    recommendation_type: Optional[RecommendationType] = Query(None, description="Filter by recommendation type"),
    product_id: Optional[UUID] = Query(None, description="Filter by product"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> RecommendationPage:
    items, total = await service.list_recommendations(
        run_id,
        company_id=company_id,
        recommendation_type=recommendation_type.value if recommendation_type else None,
        product_id=product_id,
        limit=limit,
        offset=offset,
    )
    return RecommendationPage(
        items=[MrpRecommendationRead.model_validate(x) for x in items],
        total=total,
        limit=limit,
        offset=offset,
    )
