"""Configuration for Request Guard."""

from request_guard.config.logging import configure_logging
from request_guard.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "configure_logging"]
