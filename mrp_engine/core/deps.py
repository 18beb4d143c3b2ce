from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncGenerator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mrp_engine.core.settings import MrpSettings
from mrp_engine.services.cache import MrpCacheManager
from mrp_engine.services.mrp_runs import MrpRunService, RunDispatcher

logger = logging.getLogger(__name__)


@dataclass
class EngineRuntime:
    """Long-lived collaborators shared by all requests; stored on app.state.engine."""
    session_maker: async_sessionmaker[AsyncSession]
    cache: MrpCacheManager
    settings: MrpSettings
    dispatcher: RunDispatcher


# PUBLIC_INTERFACE
async def get_company_id(x_company_id: str | None = Header(default=None, alias="X-Company-ID")) -> UUID:
    """
    Extract and validate the company id from the X-Company-ID header.

    Raises:
        HTTPException: 400 Bad Request if header missing or invalid UUID.
    Returns:
        UUID: company identifier
    """
    if not x_company_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Company-ID header is required.",
        )
    try:
        return UUID(x_company_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Company-ID header must be a valid UUID string.",
        )


# PUBLIC_INTERFACE
def get_runtime(request: Request) -> EngineRuntime:
    """Return the engine runtime attached to the application."""
    return request.app.state.engine


# PUBLIC_INTERFACE
async def get_session(runtime: EngineRuntime = Depends(get_runtime)) -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped AsyncSession from the runtime's session factory."""
    async with runtime.session_maker() as session:
        yield session


# PUBLIC_INTERFACE
async def get_run_service(
    session: AsyncSession = Depends(get_session),
    runtime: EngineRuntime = Depends(get_runtime),
) -> MrpRunService:
    """Build the run service for this request."""
    return MrpRunService(session, runtime.cache, runtime.settings)


# PUBLIC_INTERFACE
def get_dispatcher(runtime: EngineRuntime = Depends(get_runtime)) -> RunDispatcher:
    return runtime.dispatcher
