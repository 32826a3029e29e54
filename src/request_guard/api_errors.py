"""Structured API errors and exception handlers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from request_guard.api_models import ErrorResponse
from request_guard.security.errors import SecurityError, http_status_for, public_details

logger = logging.getLogger(__name__)


class APIException(Exception):
    """Error raised by route handlers for non-security failures."""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.details = details or {}


def bad_request(message: str, details: Optional[Dict[str, Any]] = None) -> APIException:
    return APIException(400, "BAD_REQUEST", message, details)


def unauthorized(message: str = "Invalid or missing admin token") -> APIException:
    return APIException(401, "UNAUTHORIZED", message)


def not_found(resource: str, identifier: str) -> APIException:
    return APIException(404, "NOT_FOUND", f"{resource} not found: {identifier}")


def responses(*codes: int) -> Dict[int | str, Dict[str, Any]]:
    """OpenAPI ``responses`` entries for the given error status codes."""
    return {code: {"model": ErrorResponse} for code in codes}


def _envelope(request: Request, body: Dict[str, Any]) -> Dict[str, Any]:
    body = dict(body)
    body["request_id"] = request.headers.get("X-Request-ID")
    return ErrorResponse(error=body).model_dump()


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Render an ``APIException`` as a JSON error envelope."""
    content = _envelope(
        request,
        {"error": exc.error, "message": exc.message, "details": exc.details},
    )
    return JSONResponse(status_code=exc.status_code, content=content)


async def security_exception_handler(request: Request, exc: SecurityError) -> JSONResponse:
    """Render a ``SecurityError`` with a generic, client-safe message.

    The full error, including matched patterns, goes to the log only.
    """
    status_code = http_status_for(exc)
    logger.warning(
        "Security error on %s %s: %s",
        request.method,
        request.url.path,
        exc.to_dict(),
    )

    body = public_details(exc)
    details = {k: v for k, v in body.items() if k not in ("error", "error_class", "message")}
    content = _envelope(
        request,
        {
            "error": body["error"],
            "error_class": body["error_class"],
            "message": body["message"],
            "details": details,
        },
    )

    headers = {}
    if exc.retry_after_seconds is not None and status_code in (401, 429):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(status_code=status_code, content=content, headers=headers or None)
