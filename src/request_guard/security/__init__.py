"""Request input security and authentication risk.

Provides:
- Pattern-based threat detection (SQL/NoSQL/LDAP/command injection, XSS)
- Idempotent input sanitization
- Fixed-window rate limiting
- Account lockout, login risk scoring and permission checks
- Security event sinks
"""

from request_guard.security.account_lock import (
    AccountLockManager,
    FailureOutcome,
    LockState,
    LockStatus,
)
from request_guard.security.auth_context import (
    ROLE_RANKS,
    AuthSecurityConfig,
    AuthSecurityContext,
    SecurityStats,
    development_auth_config,
    production_auth_config,
)
from request_guard.security.clock import Clock, ManualClock, SystemClock
from request_guard.security.errors import (
    ErrorClass,
    ErrorKind,
    SecurityError,
    error_class_for,
    http_status_for,
    public_details,
    public_message,
)
from request_guard.security.events import (
    EventSink,
    FanOutEventSink,
    InMemoryEventSink,
    LoggingEventSink,
    SafeEventSink,
    default_event_sink,
)
from request_guard.security.factory import (
    auth_config_for,
    build_auth_context,
    build_policy_engine,
    policy_config_for,
)
from request_guard.security.models import (
    AccountSecurityState,
    LoginAttempt,
    SecurityEvent,
    SecurityEventType,
    Severity,
    ThreatFinding,
    ThreatType,
)
from request_guard.security.policy import (
    PolicyAction,
    PolicyDecision,
    RateLimitConfig,
    SecurityPolicyConfig,
    SecurityPolicyEngine,
    development_policy,
    production_policy,
)
from request_guard.security.rate_limiter import RateLimitBucket, RateLimiter, RateLimitResult
from request_guard.security.risk import (
    AuthRiskScorer,
    RiskBreakdown,
    RiskLevel,
    RiskThresholds,
    combine_signals,
)
from request_guard.security.sanitization import sanitize
from request_guard.security.state import AccountStore, StripedLock
from request_guard.security.threat_detection import DETECTOR_FAMILIES, ThreatDetector

__all__ = [
    # Detection and sanitization
    "DETECTOR_FAMILIES",
    "ThreatDetector",
    "ThreatFinding",
    "ThreatType",
    "Severity",
    "sanitize",
    # Rate limiting
    "RateLimiter",
    "RateLimitBucket",
    "RateLimitResult",
    # Input policy
    "PolicyAction",
    "PolicyDecision",
    "RateLimitConfig",
    "SecurityPolicyConfig",
    "SecurityPolicyEngine",
    "development_policy",
    "production_policy",
    # Accounts and login risk
    "AccountSecurityState",
    "AccountStore",
    "AccountLockManager",
    "AuthRiskScorer",
    "AuthSecurityConfig",
    "AuthSecurityContext",
    "FailureOutcome",
    "LockState",
    "LockStatus",
    "LoginAttempt",
    "ROLE_RANKS",
    "RiskBreakdown",
    "RiskLevel",
    "RiskThresholds",
    "SecurityStats",
    "StripedLock",
    "combine_signals",
    "development_auth_config",
    "production_auth_config",
    # Events
    "EventSink",
    "FanOutEventSink",
    "InMemoryEventSink",
    "LoggingEventSink",
    "SafeEventSink",
    "SecurityEvent",
    "SecurityEventType",
    "default_event_sink",
    # Errors
    "ErrorClass",
    "ErrorKind",
    "SecurityError",
    "error_class_for",
    "http_status_for",
    "public_details",
    "public_message",
    # Clock
    "Clock",
    "ManualClock",
    "SystemClock",
    # Factories
    "auth_config_for",
    "build_auth_context",
    "build_policy_engine",
    "policy_config_for",
]
