"""Request Guard command line interface."""

from request_guard.cli.main import app

__all__ = ["app"]
