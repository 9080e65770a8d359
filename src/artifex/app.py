"""FastAPI application factory."""

from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from artifex.api.responses import ApiError, error_body
from artifex.api.routes import generation, quota
from artifex.core.config import OrchestratorPolicy, Settings, configure_logging
from artifex.core.database import setup_db_session
from artifex.services.generation.orchestrator import JobOrchestrator
from artifex.services.generation.runner import JobRunner
from artifex.services.history.store import DatabaseHistoryStore
from artifex.services.media import build_media_store
from artifex.services.providers import build_provider_client
from artifex.services.quota.ledger import PostgresQuotaLedger
from artifex.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, initialize database session factory, wire the
      orchestrator and its collaborators, release reservations left by a crash
    - Shutdown: Wait for in-flight jobs so quota and history stay consistent
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    ledger = PostgresQuotaLedger(uow_factory, settings.tier_monthly_limits)
    history = DatabaseHistoryStore(uow_factory)
    orchestrator = JobOrchestrator(
        provider=build_provider_client(settings),
        media_store=build_media_store(settings),
        ledger=ledger,
        history=history,
        capabilities=settings.tier_capabilities,
        policy=OrchestratorPolicy.from_settings(settings),
    )
    runner = JobRunner(orchestrator)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.ledger = ledger
    app.state.runner = runner

    # Reservations still active after a crash would block quota forever
    try:
        await ledger.release_stale_reservations(
            timedelta(minutes=settings.stale_reservation_minutes)
        )
    except Exception as e:
        # Log error but don't prevent startup
        logger.error(
            "startup.recovery_failed",
            error=str(e),
            error_type=type(e).__name__,
            message="Stale reservation release failed during startup",
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        provider=settings.generation_provider,
    )

    yield

    logger.info("application.shutdown", in_flight_jobs=runner.in_flight)
    await runner.drain()

    # Note: async_sessionmaker doesn't have close_all(), engine cleanup happens automatically


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as ``{"success": false, "message", "code"}``."""

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        if errors:
            location = ".".join(str(part) for part in errors[0]["loc"] if part != "body")
            message = f"{location}: {errors[0]['msg']}" if location else errors[0]["msg"]
        else:
            message = "Invalid request"
        error = ApiError(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", message)
        return JSONResponse(status_code=error.status_code, content=error_body(error))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "api.unhandled_error",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        error = ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Internal server error"
        )
        return JSONResponse(status_code=error.status_code, content=error_body(error))


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Artifex Generation API",
        description="AI image and video generation with quota accounting",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(generation.router)
    app.include_router(quota.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
