"""FastAPI application entry point."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ridership_api import errors
from ridership_api.config import get_settings
from ridership_api.database import check_database_connection, close_database
from ridership_api.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from ridership_api.routers.admin import router as admin_router
from ridership_api.routers.events import router as events_router
from ridership_api.routers.summaries import router as summaries_router
from ridership_api.routers.trips import router as trips_router
from ridership_api.services.aggregation.worker import get_worker, reset_worker

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    setup_logging()
    logger.info("Starting Ridership Usage API")

    settings = get_settings()
    if settings.analytics_auto_start:
        worker = get_worker()
        await worker.start()

    yield

    worker = get_worker()
    if worker.is_running:
        await worker.stop()
    reset_worker()

    logger.info("Shutting down Ridership Usage API")
    await close_database()


def _error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Trip ledger for a multi-modal transit network, with incrementally "
            "maintained per-rider monthly summaries and per-route analytics"
        ),
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_request_context(request_id=request_id, path=request.url.path)

        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(trips_router)
    app.include_router(events_router)
    app.include_router(summaries_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["meta"])
    async def health_check() -> dict[str, Any]:
        """Health check endpoint returning application status."""
        settings = get_settings()
        missing_env = settings.missing_required_env()
        db_healthy = await check_database_connection()

        worker = get_worker()
        worker_status = await worker.get_status()
        worker_healthy = worker_status["running"] or not settings.analytics_auto_start

        status = (
            "unhealthy"
            if missing_env
            else "healthy"
            if (db_healthy and worker_healthy)
            else "degraded"
        )

        issues: list[str] = []
        if missing_env:
            issues.append("Missing required environment variables: " + ", ".join(missing_env))
        if not db_healthy:
            issues.append("Database is unreachable")
        if settings.analytics_auto_start and not worker_status["running"]:
            issues.append("Analytics worker is not running")

        return {
            "service": settings.app_name,
            "status": status,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "database": db_healthy,
                "analytics": {
                    "workerRunning": worker_status["running"],
                    "runCount": worker_status["run_count"],
                    "lastRunAt": worker_status["last_run_at"],
                },
            },
            "issues": issues,
        }

    # Domain errors
    @app.exception_handler(errors.ValidationError)
    async def validation_error_handler(_request: Request, exc: errors.ValidationError) -> JSONResponse:
        return _error_response(422, "invalid_trip", exc)

    @app.exception_handler(errors.InvalidTrip)
    async def invalid_trip_handler(_request: Request, exc: errors.InvalidTrip) -> JSONResponse:
        return _error_response(422, "invalid_trip", exc)

    @app.exception_handler(errors.TripNotFound)
    async def not_found_handler(_request: Request, exc: errors.TripNotFound) -> JSONResponse:
        return _error_response(404, "trip_not_found", exc)

    @app.exception_handler(errors.InvalidTransition)
    async def transition_handler(_request: Request, exc: errors.InvalidTransition) -> JSONResponse:
        return _error_response(409, "invalid_transition", exc)

    @app.exception_handler(errors.KeyConflictExhausted)
    async def conflict_handler(request: Request, exc: errors.KeyConflictExhausted) -> JSONResponse:
        logger.warning(
            "Fold abandoned after retries",
            trip_id=exc.trip_id,
            attempts=exc.attempts,
            path=request.url.path,
        )
        response = _error_response(503, "key_conflict", exc)
        response.headers["Retry-After"] = "1"
        return response

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


app = create_app()
