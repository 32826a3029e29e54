"""Value objects shared by the threat detector and the auth-risk engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

_EXCERPT_LENGTH = 100


class ThreatType(str, Enum):
    """Family a threat finding belongs to."""

    SQL_INJECTION = "SQL_INJECTION"
    XSS = "XSS"
    COMMAND_INJECTION = "COMMAND_INJECTION"
    NOSQL_INJECTION = "NOSQL_INJECTION"
    LDAP_INJECTION = "LDAP_INJECTION"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"
    MALFORMED_INPUT = "MALFORMED_INPUT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


class Severity(str, Enum):
    """Severity of a finding, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def excerpt(value: str, limit: int = _EXCERPT_LENGTH) -> str:
    """Truncate a value for logging, marking truncation with ``...``."""
    if len(value) <= limit:
        return value
    return f"{value[:limit]}..."


@dataclass(frozen=True)
class ThreatFinding:
    """A single rule hit produced by a scan."""

    type: ThreatType
    severity: Severity
    confidence: int
    matched_pattern: str
    message: str
    payload_excerpt: str = ""
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)
    field: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize for server-side logs."""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "matched_pattern": self.matched_pattern,
            "message": self.message,
            "field": self.field,
            "payload_excerpt": self.payload_excerpt,
        }


@dataclass(frozen=True)
class LoginAttempt:
    """One recorded login outcome for an identity."""

    client_ip: str
    user_agent: str
    success: bool
    timestamp: datetime
    failure_reason: Optional[str] = None


@dataclass
class AccountSecurityState:
    """Mutable per-identity security record, owned by ``AccountStore``."""

    identity: str
    failed_login_attempts: int = 0
    is_locked: bool = False
    lockout_until: Optional[datetime] = None
    last_successful_login: Optional[datetime] = None
    last_failed_login: Optional[datetime] = None
    login_attempt_history: list[LoginAttempt] = field(default_factory=list)

    def copy(self) -> AccountSecurityState:
        """Return a detached copy safe to hand to readers."""
        return AccountSecurityState(
            identity=self.identity,
            failed_login_attempts=self.failed_login_attempts,
            is_locked=self.is_locked,
            lockout_until=self.lockout_until,
            last_successful_login=self.last_successful_login,
            last_failed_login=self.last_failed_login,
            login_attempt_history=list(self.login_attempt_history),
        )


class SecurityEventType(str, Enum):
    """Kinds of security events emitted to the event sink."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    PRIVILEGE_ESCALATION_ATTEMPT = "PRIVILEGE_ESCALATION_ATTEMPT"


@dataclass(frozen=True)
class SecurityEvent:
    """A write-once security event."""

    type: SecurityEventType
    client_ip: str
    user_agent: str
    risk_score: int
    timestamp: datetime
    identity: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "event": "security_event",
            "type": self.type.value,
            "identity": self.identity,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent[:200] if self.user_agent else "",
            "risk_score": self.risk_score,
            "timestamp": self.timestamp.isoformat(),
            "metadata": _jsonable(self.metadata),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value
