"""Build engines from application settings."""

from __future__ import annotations

import dataclasses
from typing import Optional

from request_guard.config.settings import Settings, get_settings
from request_guard.security.auth_context import (
    AuthSecurityConfig,
    AuthSecurityContext,
    development_auth_config,
    production_auth_config,
)
from request_guard.security.clock import Clock
from request_guard.security.events import EventSink
from request_guard.security.policy import (
    SecurityPolicyConfig,
    SecurityPolicyEngine,
    development_policy,
    production_policy,
)
from request_guard.security.state import AccountStore


def policy_config_for(settings: Settings) -> SecurityPolicyConfig:
    """Environment preset with any explicit overrides from settings applied."""
    config = production_policy() if settings.is_production else development_policy()
    if settings.max_input_length is not None:
        config.max_input_length = settings.max_input_length
    if settings.rate_limit_max_requests is not None:
        config.rate_limit = dataclasses.replace(
            config.rate_limit, max_requests=settings.rate_limit_max_requests
        )
    if settings.rate_limit_window_seconds is not None:
        config.rate_limit = dataclasses.replace(
            config.rate_limit, window_seconds=settings.rate_limit_window_seconds
        )
    return config


def auth_config_for(settings: Settings) -> AuthSecurityConfig:
    """Environment preset with any explicit overrides from settings applied."""
    config = production_auth_config() if settings.is_production else development_auth_config()
    if settings.max_failed_attempts is not None:
        config.max_failed_attempts = settings.max_failed_attempts
    if settings.lockout_duration_seconds is not None:
        config.lockout_duration = settings.lockout_duration_seconds
    return config


def build_policy_engine(
    settings: Optional[Settings] = None,
    *,
    clock: Optional[Clock] = None,
    event_sink: Optional[EventSink] = None,
) -> SecurityPolicyEngine:
    """Create a ``SecurityPolicyEngine`` for the configured environment."""
    settings = settings or get_settings()
    return SecurityPolicyEngine(
        policy_config_for(settings),
        clock=clock,
        event_sink=event_sink,
    )


def build_auth_context(
    settings: Optional[Settings] = None,
    *,
    store: Optional[AccountStore] = None,
    clock: Optional[Clock] = None,
    event_sink: Optional[EventSink] = None,
) -> AuthSecurityContext:
    """Create an ``AuthSecurityContext`` for the configured environment."""
    settings = settings or get_settings()
    return AuthSecurityContext(
        auth_config_for(settings),
        store=store,
        clock=clock,
        event_sink=event_sink,
    )
