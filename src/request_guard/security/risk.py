"""Login risk scoring.

The score is additive and capped at 100:

- 15 per failed attempt on the account (at most 60),
- 5 per failed attempt from the client IP in the last minute (at most 30),
- 20 when the (IP, user agent) pair never appears in the account's history,
- 10 for logins before 06:00 or after 22:00 on the clock's local time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from request_guard.security.clock import Clock, SystemClock
from request_guard.security.state import AccountStore

FAILED_ATTEMPT_WEIGHT = 15
FAILED_ATTEMPT_CAP = 60
IP_ATTEMPT_WEIGHT = 5
IP_ATTEMPT_CAP = 30
NEW_DEVICE_WEIGHT = 20
OFF_HOURS_WEIGHT = 10
MAX_SCORE = 100

_OFF_HOURS_START = 22  # after 22:00
_OFF_HOURS_END = 6  # before 06:00


class RiskLevel(str, Enum):
    """Bucketed risk level."""

    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RiskThresholds:
    """Score boundaries for each risk level."""

    low: int = 30
    medium: int = 60
    high: int = 80

    def __post_init__(self) -> None:
        if not 0 <= self.low <= self.medium <= self.high <= MAX_SCORE:
            raise ValueError("Risk thresholds must satisfy 0 <= low <= medium <= high <= 100")

    def level(self, score: int) -> RiskLevel:
        if score >= self.high:
            return RiskLevel.HIGH
        if score >= self.medium:
            return RiskLevel.MEDIUM
        if score >= self.low:
            return RiskLevel.LOW
        return RiskLevel.MINIMAL


@dataclass(frozen=True)
class RiskBreakdown:
    """Per-signal contributions to a risk score."""

    failed_attempts: int = 0
    ip_velocity: int = 0
    new_device: int = 0
    off_hours: int = 0

    @property
    def total(self) -> int:
        raw = self.failed_attempts + self.ip_velocity + self.new_device + self.off_hours
        return max(0, min(raw, MAX_SCORE))

    def to_dict(self) -> dict:
        return {
            "failed_attempts": self.failed_attempts,
            "ip_velocity": self.ip_velocity,
            "new_device": self.new_device,
            "off_hours": self.off_hours,
            "total": self.total,
        }


def combine_signals(
    failed_attempts: int,
    recent_ip_attempts: int,
    new_device: bool,
    off_hours: bool,
) -> RiskBreakdown:
    """Weight raw signal values into a breakdown. Pure."""
    return RiskBreakdown(
        failed_attempts=min(max(failed_attempts, 0) * FAILED_ATTEMPT_WEIGHT, FAILED_ATTEMPT_CAP),
        ip_velocity=min(max(recent_ip_attempts, 0) * IP_ATTEMPT_WEIGHT, IP_ATTEMPT_CAP),
        new_device=NEW_DEVICE_WEIGHT if new_device else 0,
        off_hours=OFF_HOURS_WEIGHT if off_hours else 0,
    )


def is_off_hours(hour: int) -> bool:
    return hour < _OFF_HOURS_END or hour > _OFF_HOURS_START


class AuthRiskScorer:
    """Computes a 0-100 risk score for a login attempt. Never mutates state."""

    def __init__(self, store: AccountStore, clock: Optional[Clock] = None) -> None:
        self.store = store
        self._clock = clock or SystemClock()

    def breakdown(self, identity: str, client_ip: str, user_agent: str) -> RiskBreakdown:
        """Score each signal separately."""
        now = self._clock.now()
        state = self.store.snapshot(identity)
        seen = any(
            a.client_ip == client_ip and a.user_agent == user_agent
            for a in state.login_attempt_history
        )
        return combine_signals(
            failed_attempts=state.failed_login_attempts,
            recent_ip_attempts=self.store.recent_ip_failures(client_ip, now),
            new_device=not seen,
            off_hours=is_off_hours(now.hour),
        )

    def score(self, identity: str, client_ip: str, user_agent: str) -> int:
        """Risk score in ``[0, 100]``."""
        return self.breakdown(identity, client_ip, user_agent).total
