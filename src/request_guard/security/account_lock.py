"""Account lockout state machine.

Each identity is either UNLOCKED or LOCKED. Consecutive failures lock the
account once they reach ``max_failed_attempts``; the lock lasts
``lockout_duration`` seconds. Expiry is lazy: the first check or failure
after ``lockout_until`` unlocks the account and resets its failure count, so
no background timer is needed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from request_guard.security.clock import Clock, SystemClock
from request_guard.security.events import EventSink, SafeEventSink, default_event_sink
from request_guard.security.models import (
    AccountSecurityState,
    LoginAttempt,
    SecurityEvent,
    SecurityEventType,
)
from request_guard.security.state import AccountStore

logger = logging.getLogger(__name__)

_DEFAULT_MAX_FAILED_ATTEMPTS = 5
_DEFAULT_LOCKOUT_DURATION = 30 * 60  # 30 minutes
_DEFAULT_HISTORY_RETENTION = 30 * 24 * 3600  # 30 days
_LOCKED_RISK_SCORE = 90


class LockState(str, Enum):
    """Lock state of an account."""

    UNLOCKED = "unlocked"
    LOCKED = "locked"


@dataclass(frozen=True)
class LockStatus:
    """Result of ``AccountLockManager.check_locked``."""

    identity: str
    locked: bool
    lockout_until: Optional[datetime] = None
    retry_after_seconds: int = 0
    unlocked_now: bool = False

    @property
    def state(self) -> LockState:
        return LockState.LOCKED if self.locked else LockState.UNLOCKED


@dataclass(frozen=True)
class FailureOutcome:
    """Result of ``AccountLockManager.record_failure``."""

    identity: str
    failed_attempts: int
    locked: bool
    remaining_attempts: int
    lockout_until: Optional[datetime] = None


class AccountLockManager:
    """Tracks failed logins and locks accounts.

    Thread-safe: every transition runs under the identity's lock in the
    shared ``AccountStore``. Events are emitted after the lock is released.
    """

    def __init__(
        self,
        store: Optional[AccountStore] = None,
        *,
        max_failed_attempts: int = _DEFAULT_MAX_FAILED_ATTEMPTS,
        lockout_duration: float = _DEFAULT_LOCKOUT_DURATION,
        history_retention: float = _DEFAULT_HISTORY_RETENTION,
        clock: Optional[Clock] = None,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        """Initialize lock manager.

        Args:
            store: Shared account store; a private one is created if omitted.
            max_failed_attempts: Consecutive failures that lock an account.
            lockout_duration: Lock length in seconds.
            history_retention: Seconds of login history kept per identity.
            clock: Time source.
            event_sink: Receiver for lock/unlock events.
        """
        if max_failed_attempts < 1:
            raise ValueError("max_failed_attempts must be at least 1")
        self.store = store if store is not None else AccountStore()
        self.max_failed_attempts = max_failed_attempts
        self.lockout_duration = timedelta(seconds=lockout_duration)
        self.history_retention = timedelta(seconds=history_retention)
        self._clock = clock or SystemClock()
        self._events = (
            SafeEventSink(event_sink) if event_sink is not None else default_event_sink()
        )

    def check_locked(self, identity: str) -> LockStatus:
        """Report whether ``identity`` is locked, expiring stale locks.

        An expired lock is cleared here and an ``ACCOUNT_UNLOCKED`` event is
        emitted.
        """
        now = self._clock.now()

        def _check(state: AccountSecurityState) -> LockStatus:
            if self._expire_if_due(state, now):
                return LockStatus(identity=identity, locked=False, unlocked_now=True)
            if state.is_locked:
                remaining = (state.lockout_until - now).total_seconds()
                return LockStatus(
                    identity=identity,
                    locked=True,
                    lockout_until=state.lockout_until,
                    retry_after_seconds=max(1, math.ceil(remaining)),
                )
            return LockStatus(identity=identity, locked=False)

        status = self.store.update(identity, _check)
        if status.unlocked_now:
            self._emit_unlocked(identity, now, reason="lockout_expired")
        return status

    def record_failure(
        self,
        identity: str,
        client_ip: str = "unknown",
        user_agent: str = "unknown",
        reason: Optional[str] = None,
    ) -> FailureOutcome:
        """Record a failed login and lock the account at the threshold."""
        now = self._clock.now()
        expired = False
        transitioned = False

        def _fail(state: AccountSecurityState) -> FailureOutcome:
            nonlocal expired, transitioned
            expired = self._expire_if_due(state, now)
            state.failed_login_attempts += 1
            state.last_failed_login = now
            state.login_attempt_history.append(
                LoginAttempt(
                    client_ip=client_ip,
                    user_agent=user_agent,
                    success=False,
                    timestamp=now,
                    failure_reason=reason,
                )
            )
            # A failure while already locked does not extend the lock.
            if not state.is_locked and state.failed_login_attempts >= self.max_failed_attempts:
                state.is_locked = True
                transitioned = True
                state.lockout_until = now + self.lockout_duration
                return FailureOutcome(
                    identity=identity,
                    failed_attempts=state.failed_login_attempts,
                    locked=True,
                    remaining_attempts=0,
                    lockout_until=state.lockout_until,
                )
            return FailureOutcome(
                identity=identity,
                failed_attempts=state.failed_login_attempts,
                locked=state.is_locked,
                remaining_attempts=max(0, self.max_failed_attempts - state.failed_login_attempts),
                lockout_until=state.lockout_until,
            )

        outcome = self.store.update(identity, _fail)
        self.store.record_ip_failure(client_ip, now)

        if expired:
            self._emit_unlocked(identity, now, reason="lockout_expired")
        if transitioned:
            logger.warning(
                "Account %s locked after %d failed attempts (until %s)",
                identity,
                outcome.failed_attempts,
                outcome.lockout_until.isoformat(),
            )
            self._events.emit(
                SecurityEvent(
                    type=SecurityEventType.ACCOUNT_LOCKED,
                    identity=identity,
                    client_ip=client_ip,
                    user_agent=user_agent,
                    risk_score=_LOCKED_RISK_SCORE,
                    timestamp=now,
                    metadata={
                        "failed_attempts": outcome.failed_attempts,
                        "lockout_until": outcome.lockout_until,
                    },
                )
            )
        return outcome

    def record_success(
        self,
        identity: str,
        client_ip: str = "unknown",
        user_agent: str = "unknown",
    ) -> AccountSecurityState:
        """Record a successful login: reset failures, unlock and prune history.

        Returns:
            A snapshot of the updated state.
        """
        now = self._clock.now()
        cutoff = now - self.history_retention

        def _succeed(state: AccountSecurityState) -> AccountSecurityState:
            state.failed_login_attempts = 0
            state.is_locked = False
            state.lockout_until = None
            state.last_successful_login = now
            state.login_attempt_history.append(
                LoginAttempt(
                    client_ip=client_ip,
                    user_agent=user_agent,
                    success=True,
                    timestamp=now,
                )
            )
            state.login_attempt_history = [
                a for a in state.login_attempt_history if a.timestamp > cutoff
            ]
            return state.copy()

        return self.store.update(identity, _succeed)

    def unlock(self, identity: str, actor: str = "system") -> bool:
        """Manually unlock an account and reset its failure count.

        Returns:
            True if the account was locked.
        """
        now = self._clock.now()

        def _unlock(state: AccountSecurityState) -> bool:
            was_locked = state.is_locked
            state.is_locked = False
            state.lockout_until = None
            state.failed_login_attempts = 0
            return was_locked

        was_locked = self.store.update(identity, _unlock)
        if was_locked:
            logger.info("Account %s unlocked manually by %s", identity, actor)
            self._emit_unlocked(identity, now, reason="manual", actor=actor)
        return was_locked

    def snapshot(self, identity: str) -> AccountSecurityState:
        """Detached copy of the identity's current state."""
        return self.store.snapshot(identity)

    def _expire_if_due(self, state: AccountSecurityState, now: datetime) -> bool:
        """Clear an expired lock in place (caller holds the identity lock)."""
        if state.is_locked and state.lockout_until is not None and state.lockout_until <= now:
            state.is_locked = False
            state.lockout_until = None
            state.failed_login_attempts = 0
            return True
        return False

    def _emit_unlocked(self, identity: str, now: datetime, reason: str, actor: str = "system") -> None:
        logger.info("Account %s unlocked (%s)", identity, reason)
        self._events.emit(
            SecurityEvent(
                type=SecurityEventType.ACCOUNT_UNLOCKED,
                identity=identity,
                client_ip="system",
                user_agent="system",
                risk_score=0,
                timestamp=now,
                metadata={"reason": reason, "actor": actor},
            )
        )
