"""Explicit stores for per-identity and per-IP security state.

The engine never keeps state in module globals. An ``AccountStore`` is built
once per process and handed to the lock manager, risk scorer and auth
context, which all go through it for reads and writes.
"""

from __future__ import annotations

import threading
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, TypeVar

from request_guard.security.models import AccountSecurityState

T = TypeVar("T")

_DEFAULT_STRIPES = 64
_DEFAULT_MAX_HISTORY = 500
_DEFAULT_IP_WINDOW = 60.0  # seconds


class StripedLock:
    """A fixed pool of locks, one chosen per key by hash.

    Two operations on the same key always serialize; operations on different
    keys usually proceed in parallel.
    """

    def __init__(self, stripes: int = _DEFAULT_STRIPES) -> None:
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self.lock_for(key):
            yield


class AccountStore:
    """Owns ``AccountSecurityState`` records and recent failures per IP.

    All mutation goes through :meth:`update`, which runs the caller's function
    under the identity's lock, so read-modify-write sequences cannot race.
    """

    def __init__(
        self,
        stripes: int = _DEFAULT_STRIPES,
        max_history_entries: int = _DEFAULT_MAX_HISTORY,
        ip_window_seconds: float = _DEFAULT_IP_WINDOW,
    ) -> None:
        """Initialize store.

        Args:
            stripes: Number of lock stripes for identities and IPs.
            max_history_entries: Per-identity cap on login history.
            ip_window_seconds: How long a failed attempt counts against an IP.
        """
        self.max_history_entries = max_history_entries
        self.ip_window = timedelta(seconds=ip_window_seconds)

        self._accounts: dict[str, AccountSecurityState] = {}
        self._account_locks = StripedLock(stripes)
        self._map_lock = threading.Lock()

        self._ip_failures: dict[str, deque[datetime]] = {}
        self._ip_locks = StripedLock(stripes)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _get_or_create(self, identity: str) -> AccountSecurityState:
        with self._map_lock:
            state = self._accounts.get(identity)
            if state is None:
                state = AccountSecurityState(identity=identity)
                self._accounts[identity] = state
            return state

    def update(self, identity: str, fn: Callable[[AccountSecurityState], T]) -> T:
        """Apply ``fn`` to the identity's state atomically and return its result."""
        with self._account_locks.hold(identity):
            state = self._get_or_create(identity)
            result = fn(state)
            overflow = len(state.login_attempt_history) - self.max_history_entries
            if overflow > 0:
                del state.login_attempt_history[:overflow]
            return result

    def snapshot(self, identity: str) -> AccountSecurityState:
        """Return a detached copy of the identity's state."""
        with self._account_locks.hold(identity):
            with self._map_lock:
                state = self._accounts.get(identity)
            if state is None:
                return AccountSecurityState(identity=identity)
            return state.copy()

    def __contains__(self, identity: str) -> bool:
        with self._map_lock:
            return identity in self._accounts

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._accounts)

    def evict_idle_accounts(self, now: datetime, retention: timedelta) -> int:
        """Drop unlocked, failure-free accounts with no history inside ``retention``.

        Returns:
            Number of accounts evicted.
        """
        with self._map_lock:
            identities = list(self._accounts)

        evicted = 0
        cutoff = now - retention
        for identity in identities:
            with self._account_locks.hold(identity):
                with self._map_lock:
                    state = self._accounts.get(identity)
                if state is None or state.is_locked or state.failed_login_attempts:
                    continue
                if any(a.timestamp > cutoff for a in state.login_attempt_history):
                    continue
                with self._map_lock:
                    self._accounts.pop(identity, None)
                evicted += 1
        return evicted

    # ------------------------------------------------------------------
    # Per-IP failures
    # ------------------------------------------------------------------

    def record_ip_failure(self, client_ip: str, when: datetime) -> int:
        """Record a failed attempt from an IP and return its count inside the window."""
        with self._ip_locks.hold(client_ip):
            failures = self._ip_failures.setdefault(client_ip, deque())
            failures.append(when)
            self._prune(failures, when)
            return len(failures)

    def recent_ip_failures(self, client_ip: str, now: datetime) -> int:
        """Count failed attempts from an IP inside the window ending at ``now``."""
        with self._ip_locks.hold(client_ip):
            failures = self._ip_failures.get(client_ip)
            if not failures:
                return 0
            return sum(1 for ts in failures if now - ts < self.ip_window)

    def evict_idle_ips(self, now: datetime) -> int:
        """Drop IPs whose failures have all aged out of the window."""
        evicted = 0
        for client_ip in list(self._ip_failures):
            with self._ip_locks.hold(client_ip):
                failures = self._ip_failures.get(client_ip)
                if failures is None:
                    continue
                self._prune(failures, now)
                if not failures:
                    del self._ip_failures[client_ip]
                    evicted += 1
        return evicted

    def tracked_ips(self) -> int:
        return len(self._ip_failures)

    def _prune(self, failures: deque[datetime], now: datetime) -> None:
        while failures and now - failures[0] >= self.ip_window:
            failures.popleft()

