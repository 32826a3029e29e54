"""Authentication security context.

Ties the lock manager, risk scorer, a per-IP login rate limiter and the
event sink together around a login:

    ctx.pre_login_check(identity, ip, ua)      # raises if the attempt is blocked
    if credentials_ok:
        ctx.on_login_success(identity, ip, ua)
    else:
        ctx.on_login_failure(identity, ip, ua, "bad_password")   # always raises

Every raising path emits a security event first.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import NoReturn, Optional

from request_guard.security.account_lock import AccountLockManager
from request_guard.security.clock import Clock, SystemClock
from request_guard.security.errors import ErrorKind, SecurityError
from request_guard.security.events import EventSink, SafeEventSink, default_event_sink
from request_guard.security.models import SecurityEvent, SecurityEventType, Severity
from request_guard.security.rate_limiter import RateLimiter
from request_guard.security.risk import AuthRiskScorer, RiskLevel, RiskThresholds
from request_guard.security.state import AccountStore

logger = logging.getLogger(__name__)

_RECENT_LOGIN_IPS = 10
_NEW_LOCATION_RISK_SCORE = 50
_LOCKED_RISK_SCORE = 100
_ESCALATION_RISK_SCORE = 70
_RATE_LIMIT_RISK_SCORE = 70

# Deterministic role ranking for permission checks.
ROLE_RANKS = {
    "viewer": 0,
    "member": 1,
    "admin": 2,
    "super_admin": 3,
}
_PRIVILEGED_ROLES = frozenset({"admin", "super_admin"})


@dataclass
class AuthSecurityConfig:
    """Configuration for ``AuthSecurityContext``.

    Args:
        max_failed_attempts: Consecutive failures that lock an account.
        lockout_duration: Lock length in seconds.
        history_retention: Seconds of login history kept per identity.
        ip_rate_limit: Login checks allowed per IP per window.
        ip_rate_window: IP rate limit window in seconds.
        risk_thresholds: Score boundaries; ``high`` blocks the login.
        enable_new_location_check: Report successful logins from new IPs.
    """

    max_failed_attempts: int = 5
    lockout_duration: float = 30 * 60
    history_retention: float = 30 * 24 * 3600
    ip_rate_limit: int = 10
    ip_rate_window: float = 60.0
    risk_thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    enable_new_location_check: bool = True


def development_auth_config() -> AuthSecurityConfig:
    """Lenient profile for local development."""
    return AuthSecurityConfig(
        max_failed_attempts=10,
        lockout_duration=5 * 60,
        risk_thresholds=RiskThresholds(low=50, medium=70, high=90),
        enable_new_location_check=False,
    )


def production_auth_config() -> AuthSecurityConfig:
    """Strict profile for production."""
    return AuthSecurityConfig(
        max_failed_attempts=5,
        lockout_duration=30 * 60,
        risk_thresholds=RiskThresholds(low=30, medium=60, high=80),
    )


@dataclass(frozen=True)
class SecurityStats:
    """Summary of an identity's security state."""

    failed_login_attempts: int
    is_locked: bool
    lockout_until: Optional[str] = None
    last_failed_login: Optional[str] = None
    last_successful_login: Optional[str] = None
    recent_login_ips: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "failed_login_attempts": self.failed_login_attempts,
            "is_locked": self.is_locked,
            "lockout_until": self.lockout_until,
            "last_failed_login": self.last_failed_login,
            "last_successful_login": self.last_successful_login,
            "recent_login_ips": list(self.recent_login_ips),
        }


class AuthSecurityContext:
    """Pre-login checks and post-login bookkeeping for one process."""

    def __init__(
        self,
        config: Optional[AuthSecurityConfig] = None,
        *,
        store: Optional[AccountStore] = None,
        clock: Optional[Clock] = None,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        """Initialize context.

        Args:
            config: Auth security configuration.
            store: Shared account store; a private one is created if omitted.
            clock: Time source for every component.
            event_sink: Receiver for security events.
        """
        self.config = config or AuthSecurityConfig()
        self._clock = clock or SystemClock()
        self._events = (
            SafeEventSink(event_sink) if event_sink is not None else default_event_sink()
        )
        self.store = store if store is not None else AccountStore()

        self.lock_manager = AccountLockManager(
            self.store,
            max_failed_attempts=self.config.max_failed_attempts,
            lockout_duration=self.config.lockout_duration,
            history_retention=self.config.history_retention,
            clock=self._clock,
            event_sink=self._events,
        )
        self.risk_scorer = AuthRiskScorer(self.store, clock=self._clock)
        self.ip_limiter = RateLimiter(
            max_requests=self.config.ip_rate_limit,
            window_seconds=self.config.ip_rate_window,
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Login flow
    # ------------------------------------------------------------------

    def pre_login_check(self, identity: str, client_ip: str, user_agent: str) -> int:
        """Decide whether a login attempt may proceed.

        Runs, in order, the lock check, the IP rate limit and the risk score.
        The first failing check raises.

        Returns:
            The attempt's risk score.

        Raises:
            SecurityError: ``ACCOUNT_LOCKED``, ``RATE_LIMITED`` or
                ``SUSPICIOUS_ACTIVITY``.
        """
        status = self.lock_manager.check_locked(identity)
        if status.locked:
            self._emit(
                SecurityEventType.ACCOUNT_LOCKED,
                identity,
                client_ip,
                user_agent,
                _LOCKED_RISK_SCORE,
                reason="login_while_locked",
                retry_after_seconds=status.retry_after_seconds,
            )
            minutes = math.ceil(status.retry_after_seconds / 60)
            raise SecurityError(
                ErrorKind.ACCOUNT_LOCKED,
                f"Account is locked. Try again in {minutes} minute(s).",
                severity=Severity.HIGH,
                metadata={
                    "identity": identity,
                    "lockout_until": status.lockout_until,
                    "retry_after_seconds": status.retry_after_seconds,
                },
            )

        limit = self.ip_limiter.check(client_ip)
        if not limit.allowed:
            self._emit(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                identity,
                client_ip,
                user_agent,
                _RATE_LIMIT_RISK_SCORE,
                reason="ip_rate_limit",
                attempts=limit.current_count,
            )
            raise SecurityError(
                ErrorKind.RATE_LIMITED,
                (
                    f"Too many login attempts: {limit.limit} allowed per "
                    f"{limit.window_seconds:g} seconds"
                ),
                severity=Severity.MEDIUM,
                metadata={
                    "client_ip": client_ip,
                    "limit": limit.limit,
                    "window_seconds": limit.window_seconds,
                    "retry_after_seconds": limit.retry_after_seconds,
                    "current_count": limit.current_count,
                },
            )

        breakdown = self.risk_scorer.breakdown(identity, client_ip, user_agent)
        score = breakdown.total
        level = self.config.risk_thresholds.level(score)
        if level is RiskLevel.HIGH:
            self._emit(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                identity,
                client_ip,
                user_agent,
                score,
                reason="high_risk_login",
                signals=breakdown.to_dict(),
            )
            raise SecurityError(
                ErrorKind.SUSPICIOUS_ACTIVITY,
                "Suspicious activity detected; access is restricted.",
                severity=Severity.HIGH,
                metadata={"risk_score": score, "signals": breakdown.to_dict()},
            )

        if level is not RiskLevel.MINIMAL:
            logger.info(
                "Login risk for %s from %s is %s (%d)",
                identity,
                client_ip,
                level.value,
                score,
            )
        return score

    def on_login_failure(
        self,
        identity: str,
        client_ip: str,
        user_agent: str,
        reason: str,
    ) -> NoReturn:
        """Record a failed login. Always raises ``AUTHENTICATION_FAILED``."""
        outcome = self.lock_manager.record_failure(identity, client_ip, user_agent, reason)
        score = self.risk_scorer.score(identity, client_ip, user_agent)
        self._emit(
            SecurityEventType.LOGIN_FAILURE,
            identity,
            client_ip,
            user_agent,
            score,
            failed_attempts=outcome.failed_attempts,
            failure_reason=reason,
        )

        if outcome.locked:
            minutes = math.ceil(self.config.lockout_duration / 60)
            raise SecurityError(
                ErrorKind.AUTHENTICATION_FAILED,
                (
                    "Account locked after repeated failed logins. "
                    f"Try again in {minutes} minute(s)."
                ),
                severity=Severity.HIGH,
                metadata={
                    "account_locked": True,
                    "failed_attempts": outcome.failed_attempts,
                    "remaining_attempts": 0,
                    "lockout_until": outcome.lockout_until,
                    "lockout_duration_seconds": self.config.lockout_duration,
                },
            )
        raise SecurityError(
            ErrorKind.AUTHENTICATION_FAILED,
            (
                f"Login failed. {outcome.remaining_attempts} attempt(s) remaining "
                "before the account is locked."
            ),
            severity=Severity.MEDIUM,
            metadata={
                "account_locked": False,
                "failed_attempts": outcome.failed_attempts,
                "remaining_attempts": outcome.remaining_attempts,
            },
        )

    def on_login_success(self, identity: str, client_ip: str, user_agent: str) -> int:
        """Record a successful login and report logins from new IPs.

        Returns:
            The risk score observed for this login.
        """
        now = self._clock.now()
        before = self.store.snapshot(identity)
        window_start = now - timedelta(seconds=self.config.history_retention)
        previous_ips = [
            a.client_ip
            for a in before.login_attempt_history
            if a.success and a.timestamp > window_start
        ]

        score = self.risk_scorer.score(identity, client_ip, user_agent)
        self.lock_manager.record_success(identity, client_ip, user_agent)
        self._emit(
            SecurityEventType.LOGIN_SUCCESS,
            identity,
            client_ip,
            user_agent,
            score,
            previous_failed_attempts=before.failed_login_attempts,
            last_login=before.last_successful_login,
        )

        if (
            self.config.enable_new_location_check
            and previous_ips
            and client_ip not in previous_ips
        ):
            self._emit(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                identity,
                client_ip,
                user_agent,
                _NEW_LOCATION_RISK_SCORE,
                reason="new_location_login",
                previous_ips=list(dict.fromkeys(reversed(previous_ips)))[:5],
            )
            logger.warning("New login location for %s: %s", identity, client_ip)

        return score

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def get_security_stats(self, identity: str) -> SecurityStats:
        """Current security summary for an identity (observes lock expiry)."""
        status = self.lock_manager.check_locked(identity)
        state = self.store.snapshot(identity)
        successes = [a for a in state.login_attempt_history if a.success][-_RECENT_LOGIN_IPS:]
        return SecurityStats(
            failed_login_attempts=state.failed_login_attempts,
            is_locked=status.locked,
            lockout_until=_iso(status.lockout_until),
            last_failed_login=_iso(state.last_failed_login),
            last_successful_login=_iso(state.last_successful_login),
            recent_login_ips=list(dict.fromkeys(a.client_ip for a in successes)),
        )

    def unlock_account(self, identity: str, actor: str = "system") -> bool:
        """Manually unlock an account. Returns True if it was locked."""
        return self.lock_manager.unlock(identity, actor=actor)

    def check_permission(
        self,
        identity: str,
        role: str,
        required_role: str,
        resource: Optional[str] = None,
        client_ip: str = "unknown",
        user_agent: str = "unknown",
    ) -> None:
        """Check that ``role`` is at least ``required_role``.

        Requests for privileged roles are always recorded as
        ``PRIVILEGE_ESCALATION_ATTEMPT`` events.

        Raises:
            SecurityError: ``PERMISSION_DENIED`` if the role ranks too low.
        """
        if required_role not in ROLE_RANKS:
            raise ValueError(f"Unknown role: {required_role}")

        if required_role in _PRIVILEGED_ROLES:
            self._emit(
                SecurityEventType.PRIVILEGE_ESCALATION_ATTEMPT,
                identity,
                client_ip,
                user_agent,
                _ESCALATION_RISK_SCORE,
                role=role,
                required_role=required_role,
                resource=resource,
            )

        if ROLE_RANKS.get(role, -1) < ROLE_RANKS[required_role]:
            logger.warning(
                "Permission denied for %s: role %s lacks %s on %s",
                identity,
                role,
                required_role,
                resource or "*",
            )
            raise SecurityError(
                ErrorKind.PERMISSION_DENIED,
                f"Role '{role}' lacks '{required_role}' permission for '{resource or '*'}'",
                severity=Severity.MEDIUM,
                metadata={
                    "identity": identity,
                    "role": role,
                    "required_role": required_role,
                    "resource": resource,
                },
            )

    def sweep(self) -> dict:
        """Evict stale rate-limit buckets, idle IP records and idle accounts."""
        now = self._clock.now()
        result = {
            "rate_limit_buckets": self.ip_limiter.evict_stale(),
            "ip_records": self.store.evict_idle_ips(now),
            "accounts": self.store.evict_idle_accounts(
                now, timedelta(seconds=self.config.history_retention)
            ),
        }
        if any(result.values()):
            logger.debug("Security state sweep evicted %s", result)
        return result

    def _emit(
        self,
        event_type: SecurityEventType,
        identity: Optional[str],
        client_ip: str,
        user_agent: str,
        risk_score: int,
        **metadata,
    ) -> None:
        self._events.emit(
            SecurityEvent(
                type=event_type,
                identity=identity,
                client_ip=client_ip,
                user_agent=user_agent,
                risk_score=max(0, min(int(risk_score), 100)),
                timestamp=self._clock.now(),
                metadata=metadata,
            )
        )


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None
