"""FastAPI application exposing the request security engine."""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from request_guard import __version__
from request_guard.api_errors import (
    APIException,
    api_exception_handler,
    security_exception_handler,
)
from request_guard.api_routes import security as security_routes
from request_guard.config import Settings, configure_logging, get_settings
from request_guard.security import (
    AuthSecurityContext,
    Clock,
    FanOutEventSink,
    InMemoryEventSink,
    LoggingEventSink,
    SecurityError,
    SecurityPolicyEngine,
    build_auth_context,
    build_policy_engine,
)

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing and a request ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "[%s] %s %s - 500 ERROR in %.1fms",
                request_id,
                method,
                path,
                duration_ms,
                extra={
                    "request_id": request_id,
                    "method": method,
                    "path": path,
                    "client_ip": client_ip,
                    "status_code": 500,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code
        logger.log(
            logging.WARNING if status_code >= 400 else logging.INFO,
            "[%s] %s %s - %d in %.1fms",
            request_id,
            method,
            path,
            status_code,
            duration_ms,
            extra={
                "request_id": request_id,
                "method": method,
                "path": path,
                "client_ip": client_ip,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response


def create_app(
    settings: Optional[Settings] = None,
    *,
    policy_engine: Optional[SecurityPolicyEngine] = None,
    auth_context: Optional[AuthSecurityContext] = None,
    event_store: Optional[InMemoryEventSink] = None,
    clock: Optional[Clock] = None,
    configure: bool = False,
) -> FastAPI:
    """Create the API application.

    Engines not passed in are built for ``settings.environment`` and share a
    single in-memory event store, which also forwards to the security log.

    Args:
        settings: Application settings; defaults to ``get_settings()``.
        policy_engine: Input policy engine.
        auth_context: Login security context.
        event_store: In-memory sink backing the events routes.
        clock: Time source for engines built here.
        configure: Configure logging from settings at startup.
    """
    settings = settings or get_settings()
    if event_store is None:
        event_store = InMemoryEventSink()
    sink = FanOutEventSink([event_store, LoggingEventSink()])

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure:
            configure_logging(
                level=settings.log_level,
                format=settings.log_format,
                sanitize_logs=settings.sanitize_logs,
            )
        logger.info("Request Guard API starting (environment=%s)", settings.environment)
        yield
        swept = app.state.auth_context.sweep()
        logger.info("Request Guard API stopped; final sweep %s", swept)

    app = FastAPI(title="Request Guard", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.event_store = event_store
    app.state.policy_engine = policy_engine or build_policy_engine(
        settings, clock=clock, event_sink=sink
    )
    app.state.auth_context = auth_context or build_auth_context(
        settings, clock=clock, event_sink=sink
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(SecurityError, security_exception_handler)
    app.add_exception_handler(APIException, api_exception_handler)

    v1_router = APIRouter(prefix="/v1")
    v1_router.include_router(security_routes.router)
    app.include_router(v1_router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "environment": settings.environment}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(configure=True), host="0.0.0.0", port=8000)
