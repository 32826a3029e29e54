"""Request Guard utility modules."""

from request_guard.utils.validation import normalize_client_ip, sanitize_log_message

__all__ = [
    "normalize_client_ip",
    "sanitize_log_message",
]
