"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from reminder_engine.api.v1.router import api_router
from reminder_engine.config import settings
from reminder_engine.core.exceptions import AppException
from reminder_engine.core.firebase import initialize_firebase
from reminder_engine.core.redis_client import (
    TickLock,
    check_redis_connection,
    close_redis_connection,
    get_redis_client,
)
from reminder_engine.database import AsyncSessionLocal, check_database_connection, engine
from reminder_engine.dependencies import get_provider_registry
from reminder_engine.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from reminder_engine.middleware.logging import LoggingMiddleware, configure_logging
from reminder_engine.services.notification_service import validate_notification_config
from reminder_engine.services.queue_worker import QueueWorker

# Configure logging
configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Validates the notification configuration, then starts the queue worker.
    An inconsistent configuration aborts startup.
    """
    # Startup
    logger.info(
        "application_startup",
        environment=settings.environment,
        delivery_mode=settings.delivery_mode,
    )

    if settings.is_live_delivery:
        try:
            initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
            logger.info("firebase_initialized")
        except Exception as e:
            logger.warning(
                "firebase_initialization_failed",
                error=str(e),
                note="Push delivery will fail. Set FIREBASE_CREDENTIALS_PATH env var.",
            )

    registry = get_provider_registry()
    validate_notification_config(settings, registry)
    logger.info(
        "notification_config_validated",
        channels=sorted(channel.value for channel in registry.channels),
    )

    if await check_database_connection():
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed")

    lock = None
    if settings.queue_use_redis_lock:
        if await check_redis_connection():
            logger.info("redis_connected")
        else:
            logger.error("redis_connection_failed", note="Queue ticks run without the lock")
        lock = TickLock(get_redis_client(), settings.queue_lock_key)

    app.state.queue_worker = None
    if settings.queue_worker_enabled:
        worker = QueueWorker(AsyncSessionLocal, registry, settings, lock=lock)
        worker.start()
        app.state.queue_worker = worker

    yield

    # Shutdown
    logger.info("application_shutdown")

    if app.state.queue_worker is not None:
        await app.state.queue_worker.stop()

    # Close database connections
    await engine.dispose()
    logger.info("database_connections_closed")

    # Close Redis connection
    close_redis_connection()
    logger.info("redis_connection_closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Appointment booking with scheduled multi-channel reminders",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Add exception handlers
app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

# Include API router
app.include_router(api_router, prefix=settings.api_v1_prefix)

# Setup Prometheus instrumentation
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """
    Root endpoint.

    Returns:
        Service name and version
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reminder_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
