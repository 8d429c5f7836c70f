"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from timebank_engine.api.routes import (
    health_router,
    integrations_router,
    time_bank_router,
    time_entries_router,
)
from timebank_engine.config import Settings, get_settings
from timebank_engine.database import Database
from timebank_engine.exceptions import TimeBankError
from timebank_engine.provider.client import ClockifyClient, ClockifyClientFactory
from timebank_engine.provider.errors import ProviderError, map_provider_error
from timebank_engine.services.scheduler import AutoSyncScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    database: Database = app.state.database

    # Startup
    if settings.create_schema:
        await database.create_schema()

    scheduler = None
    if settings.auto_sync_enabled:
        scheduler = AutoSyncScheduler(
            database,
            app.state.client_factory,
            hour_utc=settings.auto_sync_hour_utc,
            lookback_days=settings.auto_sync_lookback_days,
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info(
            "Auto sync enabled at %02d:00 UTC, lookback %d days",
            settings.auto_sync_hour_utc,
            settings.auto_sync_lookback_days,
        )

    yield

    # Shutdown
    if scheduler is not None:
        await scheduler.stop()
        app.state.scheduler = None
    await database.dispose()


def _error(status_code: int, detail: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    client_factory: Callable[[str], ClockifyClient] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The database and provider client factory live on ``app.state`` so tests
    and embedding code can inject their own.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Time Bank Engine API",
        description="Time-tracking reconciliation and time-bank ledger",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database or Database(settings.database_url, echo=settings.debug)
    app.state.client_factory = client_factory or ClockifyClientFactory(settings)
    app.state.scheduler = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(TimeBankError)
    async def time_bank_error_handler(request: Request, exc: TimeBankError) -> JSONResponse:
        return _error(exc.status_code, exc.message, exc.code)

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
        """Map provider failures to credential, rate-limit or upstream errors."""
        mapped = map_provider_error(exc)
        logger.warning("Provider call failed on %s: %s", request.url.path, exc)
        return _error(mapped.http_status, mapped.message, mapped.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed input is a 400, not FastAPI's default 422."""
        errors = exc.errors()
        detail = "invalid request"
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            detail = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
        return _error(status.HTTP_400_BAD_REQUEST, detail, "VALIDATION_ERROR")

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "database error", "DATABASE_ERROR")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
            "INTERNAL_ERROR",
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(integrations_router)
    app.include_router(time_entries_router)
    app.include_router(time_bank_router)

    return app


# Default app instance for uvicorn
app = create_app()
