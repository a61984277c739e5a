"""Structured logging setup and per-request logging."""

import logging
import sys
import time
from collections.abc import Callable
from uuid import uuid4

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from reminder_engine.config import Settings, settings

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by probes and scrapers, logged only when they fail
QUIET_PATHS = frozenset({"/metrics", "/api/v1/ping", "/api/v1/health"})


def select_renderer(config: Settings) -> structlog.types.Processor:
    """
    Pick the final log renderer.

    LOG_FORMAT wins when set; otherwise production logs JSON and every other
    environment gets the console renderer.
    """
    log_format = (config.log_format or "").lower()
    if log_format == "json" or (not log_format and config.is_production):
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def configure_logging(config: Settings | None = None) -> None:
    """Configure structlog on top of the standard library logger."""
    config = config or settings

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            select_renderer(config),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.log_level.upper()),
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log how it ended."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        logger = structlog.get_logger(__name__)
        start = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    "request_failed",
                    error=str(e),
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                raise

            if request.url.path not in QUIET_PATHS or response.status_code >= 500:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
