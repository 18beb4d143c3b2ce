from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mrp_engine.core.deps import EngineRuntime
from mrp_engine.core.exceptions import MrpError, RunNotFound, RunValidationError
from mrp_engine.core.logging import company_id_var, configure_logging, correlation_id_var
from mrp_engine.core.settings import AppSettings, get_app_settings, get_mrp_settings
from mrp_engine.db.run_migrations import upgrade as upgrade_schema
from mrp_engine.db.seed import seed_all
from mrp_engine.db.session import get_session_maker
from mrp_engine.schemas.common import ErrorInfo, ErrorResponse, MessageResponse
from mrp_engine.services.cache import InMemoryCacheStore, MrpCacheManager
from mrp_engine.services.mrp_runs import RunDispatcher
from mrp_engine.services.orchestrator import MrpOrchestrator

# Routers
from mrp_engine.api.routes.mrp import router as mrp_router

# Configure structured logging once at import
configure_logging()
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Liveness and readiness probes."},
    {"name": "MRP", "description": "Submit, monitor and cancel planning runs; read their recommendations."},
]


# PUBLIC_INTERFACE
def build_runtime() -> EngineRuntime:
    """
    Wire the engine collaborators from environment settings.

    The cache store is an in-process InMemoryCacheStore; a shared store implementing
    the same CacheStore protocol can be passed to create_app instead.
    """
    mrp_settings = get_mrp_settings()
    cache = MrpCacheManager(InMemoryCacheStore(), mrp_settings)
    session_maker = get_session_maker()
    orchestrator = MrpOrchestrator(session_maker, cache, mrp_settings)
    return EngineRuntime(
        session_maker=session_maker,
        cache=cache,
        settings=mrp_settings,
        dispatcher=RunDispatcher(orchestrator),
    )


def _build_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Build a standardized ErrorResponse JSONResponse."""
    ts = datetime.now(tz=timezone.utc)
    corr = getattr(request.state, "correlation_id", None)
    company = getattr(request.state, "company_id", None)
    err = ErrorResponse(
        status=status_code,
        error=ErrorInfo(type=error_type, message=message, details=details),
        correlation_id=corr,
        company_id=company,
        path=request.url.path,
        method=request.method,
        timestamp=ts,
    )
    return JSONResponse(status_code=status_code, content=err.model_dump(mode="json"))


async def request_context_middleware(request: Request, call_next):
    """
    Enrich request context with correlation_id and company_id for logging and error responses.
    Adds 'X-Correlation-ID' to every response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    company = request.headers.get("X-Company-ID")
    # Set context vars for this request lifecycle
    token_corr = correlation_id_var.set(corr)
    token_company = company_id_var.set(company)
    request.state.correlation_id = corr
    request.state.company_id = company

    logger.info("Incoming request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token_corr)
        company_id_var.reset(token_company)

    response.headers["X-Correlation-ID"] = corr
    return response


async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global handler for HTTPException to produce a standardized error envelope.
    """
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        error_type="http_error",
        message=str(detail),
        details=None if isinstance(exc.detail, str) else exc.detail,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Global handler for request validation errors with a standard structure.
    """
    return _build_error_response(
        request=request,
        status_code=422,
        error_type="validation_error",
        message="Request validation failed",
        details=exc.errors(),
    )


async def run_validation_handler(request: Request, exc: RunValidationError):
    """Run parameters rejected before a run was created."""
    return _build_error_response(
        request=request,
        status_code=422,
        error_type="run_validation_error",
        message=str(exc),
        details={"field": exc.field} if exc.field else None,
    )


async def run_not_found_handler(request: Request, exc: RunNotFound):
    return _build_error_response(
        request=request,
        status_code=404,
        error_type="not_found",
        message=str(exc),
    )


async def mrp_error_handler(request: Request, exc: MrpError):
    """Planning errors that escape a request without a dedicated mapping."""
    logger.exception("Planning error processing request")
    return _build_error_response(
        request=request,
        status_code=500,
        error_type="mrp_error",
        message=str(exc),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler to avoid leaking stack traces and to return a structured error.
    """
    logger.exception("Unhandled error processing request")
    return _build_error_response(
        request=request,
        status_code=500,
        error_type="internal_error",
        message="An unexpected error occurred",
        details=None,
    )


# PUBLIC_INTERFACE
def health_check() -> MessageResponse:
    """
    Basic liveness health check endpoint.

    Returns:
        MessageResponse: Simple confirmation that the service is running.
    """
    return MessageResponse(message="Healthy")


# PUBLIC_INTERFACE
def create_app(runtime: Optional[EngineRuntime] = None, settings: Optional[AppSettings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters:
        runtime: engine collaborators; built from environment settings when omitted
        settings: application settings; read from the environment when omitted
    Returns:
        Configured FastAPI app with the MRP routes under /api/v1.
    """
    settings = settings or get_app_settings()
    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        openapi_tags=openapi_tags,
    )
    # Built on startup when not injected.
    app.state.engine = runtime

    # CORS - avoid wildcard with credentials
    cors_allow_credentials = settings.CORS_ALLOW_CREDENTIALS
    if settings.CORS_ORIGINS == ["*"] and cors_allow_credentials:
        logger.warning("CORS_ALLOW_CREDENTIALS=True with '*' origins is not permitted; disabling credentials.")
        cors_allow_credentials = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=cors_allow_credentials,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )
    app.middleware("http")(request_context_middleware)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RunValidationError, run_validation_handler)
    app.add_exception_handler(RunNotFound, run_not_found_handler)
    app.add_exception_handler(MrpError, mrp_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.on_event("startup")
    async def on_startup() -> None:
        """
        Run migrations and optional seeding on service startup.

        This ensures the database schema is up to date. Seeding is opt-in via settings.
        """
        if app.state.engine is None:
            app.state.engine = build_runtime()

        if settings.RUN_MIGRATIONS_ON_STARTUP:
            try:
                logger.info("Running Alembic migrations: upgrade head")
                # env.py drives its own event loop, so it runs off the server loop.
                await asyncio.to_thread(upgrade_schema, "head")
                logger.info("Migrations completed.")
            except Exception as exc:
                logger.exception("Migration step failed: %s", exc)

        if settings.AUTO_SEED:
            try:
                logger.info("Running database seeding...")
                await seed_all()
                logger.info("Seeding completed.")
            except Exception as exc:
                logger.exception("Seeding step failed: %s", exc)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        """Let in-flight runs reach a terminal state before the loop stops."""
        runtime = app.state.engine
        if runtime is not None and runtime.dispatcher.pending:
            logger.info("Waiting for %d MRP run(s) to finish", runtime.dispatcher.pending)
            await runtime.dispatcher.wait_all()

    # Build API v1 router and include sub-routers
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        response_model=MessageResponse,
        summary="Health Check",
        tags=["Health"],
    )
    api_v1.include_router(mrp_router)
    app.include_router(api_v1)
    return app


app = create_app()
