"""Validation helpers shared by the logging layer and the API."""

import ipaddress
import re
from typing import Optional

# (pattern, replacement) pairs applied in order
_SECRET_PATTERNS = [
    (re.compile(r"(?i)\b(bearer)\s+[A-Za-z0-9._~+/=-]{8,}"), r"\1 [REDACTED]"),
    (
        re.compile(
            r"(?i)\b(password|passwd|pwd|secret|token|api[_-]?key|admin[_-]?token)"
            r"(['\"]?\s*[=:]\s*)(['\"]?)[^\s'\",;&]+\3"
        ),
        r"\1\2\3[REDACTED]\3",
    ),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{16,}"), "[REDACTED]"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}"), "[REDACTED]"),
]


def sanitize_log_message(message: str) -> str:
    """Redact credentials and tokens from a log message.

    Args:
        message: Raw message text

    Returns:
        Message with secrets replaced by ``[REDACTED]``
    """
    if not message:
        return message
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def normalize_client_ip(value: Optional[str]) -> str:
    """Return a canonical IP string, or ``"unknown"`` when it cannot be parsed.

    Proxy headers may carry a comma-separated chain; the first entry is the
    originating client.
    """
    if not value:
        return "unknown"
    candidate = value.split(",")[0].strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return "unknown"
