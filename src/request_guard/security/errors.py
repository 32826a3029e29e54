"""Security error taxonomy.

A single exception type carries a closed ``ErrorKind`` tag. Everything the
transport needs (error class, HTTP status, the message that is safe to show a
client) is derived from the tag by the pure functions at the bottom of this
module, so there is no per-kind subclass to dispatch on.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from request_guard.security.models import Severity


class ErrorKind(str, Enum):
    """Closed set of security error variants."""

    THREAT_DETECTED = "THREAT_DETECTED"
    RATE_LIMITED = "RATE_LIMITED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    PERMISSION_DENIED = "PERMISSION_DENIED"


class ErrorClass(str, Enum):
    """Broad class of an error, as seen by the caller."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"


class SecurityError(Exception):
    """A fail-closed security decision.

    Attributes:
        kind: Which variant of the taxonomy this is.
        error_class: Authentication, validation, authorization or rate limit.
        severity: Severity of the underlying condition.
        metadata: Structured detail for server-side logs and for the caller
            to render a response (retry-after, remaining attempts, ...).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        severity: Severity = Severity.HIGH,
        error_class: Optional[ErrorClass] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.severity = severity
        self.error_class = error_class or error_class_for(kind)
        self.metadata = dict(metadata or {})

    @property
    def retry_after_seconds(self) -> Optional[int]:
        value = self.metadata.get("retry_after_seconds")
        return int(value) if value is not None else None

    def to_dict(self) -> dict:
        """Serialize for logs (includes internal detail)."""
        return {
            "kind": self.kind.value,
            "error_class": self.error_class.value,
            "severity": self.severity.value,
            "message": self.message,
            "metadata": self.metadata,
        }

    def __repr__(self) -> str:
        return f"SecurityError(kind={self.kind.value}, message={self.message!r})"


_DEFAULT_CLASS = {
    ErrorKind.THREAT_DETECTED: ErrorClass.VALIDATION,
    ErrorKind.RATE_LIMITED: ErrorClass.RATE_LIMIT,
    ErrorKind.ACCOUNT_LOCKED: ErrorClass.AUTHENTICATION,
    ErrorKind.AUTHENTICATION_FAILED: ErrorClass.AUTHENTICATION,
    ErrorKind.SUSPICIOUS_ACTIVITY: ErrorClass.AUTHENTICATION,
    ErrorKind.PERMISSION_DENIED: ErrorClass.AUTHORIZATION,
}

_HTTP_STATUS = {
    ErrorClass.AUTHENTICATION: 401,
    ErrorClass.AUTHORIZATION: 403,
    ErrorClass.VALIDATION: 400,
    ErrorClass.RATE_LIMIT: 429,
}

_PUBLIC_MESSAGES = {
    ErrorKind.THREAT_DETECTED: "Request blocked for security reasons.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorKind.ACCOUNT_LOCKED: "Account is temporarily locked. Please try again later.",
    ErrorKind.AUTHENTICATION_FAILED: "Invalid credentials.",
    ErrorKind.SUSPICIOUS_ACTIVITY: "Request blocked for security reasons.",
    ErrorKind.PERMISSION_DENIED: "You do not have permission to perform this action.",
}

# Metadata keys that may be echoed back to a client.
_PUBLIC_METADATA_KEYS = ("retry_after_seconds", "remaining_attempts", "lockout_until")


def error_class_for(kind: ErrorKind) -> ErrorClass:
    """Default error class for a kind."""
    return _DEFAULT_CLASS[kind]


def http_status_for(error: SecurityError) -> int:
    """HTTP status a transport should answer with.

    A CRITICAL threat is reported as an authentication-class error and maps to
    403 rather than 401, since re-authenticating will not help.
    """
    if error.kind is ErrorKind.THREAT_DETECTED and error.error_class is ErrorClass.AUTHENTICATION:
        return 403
    if error.kind is ErrorKind.SUSPICIOUS_ACTIVITY:
        return 403
    return _HTTP_STATUS[error.error_class]


def public_message(kind: ErrorKind) -> str:
    """Generic message that does not leak detection internals."""
    return _PUBLIC_MESSAGES[kind]


def public_details(error: SecurityError) -> dict:
    """Client-safe response body for an error."""
    body: dict[str, Any] = {
        "error": error.kind.value,
        "error_class": error.error_class.value,
        "message": public_message(error.kind),
    }
    for key in _PUBLIC_METADATA_KEYS:
        value = error.metadata.get(key)
        if value is None:
            continue
        body[key] = value.isoformat() if hasattr(value, "isoformat") else value
    return body
