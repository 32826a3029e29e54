"""Tests for the account lockout state machine."""

import sys
import threading

import pytest

sys.path.insert(0, "src")

from request_guard.security.account_lock import AccountLockManager, LockState
from request_guard.security.models import SecurityEventType
from request_guard.security.state import AccountStore


@pytest.fixture
def manager(clock, events):
    return AccountLockManager(
        AccountStore(),
        max_failed_attempts=3,
        lockout_duration=600,
        clock=clock,
        event_sink=events,
    )


class TestLocking:
    """Tests for failure counting and locking."""

    def test_locks_at_threshold(self, manager):
        """Exactly max_failed_attempts failures lock the account."""
        first = manager.record_failure("alice")
        assert not first.locked
        assert first.remaining_attempts == 2

        manager.record_failure("alice")
        assert not manager.check_locked("alice").locked

        outcome = manager.record_failure("alice")
        assert outcome.locked
        assert outcome.remaining_attempts == 0

        status = manager.check_locked("alice")
        assert status.locked
        assert status.state is LockState.LOCKED
        assert status.retry_after_seconds == 600

    def test_lock_emits_event_once(self, manager, events):
        for _ in range(5):
            manager.record_failure("alice", client_ip="1.1.1.1", user_agent="ua")
        locked = events.of_type(SecurityEventType.ACCOUNT_LOCKED)
        assert len(locked) == 1
        assert locked[0].identity == "alice"
        assert locked[0].risk_score == 90

    def test_failure_while_locked_does_not_extend(self, manager, clock):
        for _ in range(3):
            manager.record_failure("alice")
        until = manager.check_locked("alice").lockout_until
        clock.advance(60)
        outcome = manager.record_failure("alice")
        assert outcome.locked
        assert outcome.lockout_until == until

    def test_success_resets(self, manager):
        """A successful login clears failures and unlocks."""
        for _ in range(3):
            manager.record_failure("alice")
        state = manager.record_success("alice")
        assert state.failed_login_attempts == 0
        assert not state.is_locked
        assert not manager.check_locked("alice").locked

    def test_identities_are_independent(self, manager):
        for _ in range(3):
            manager.record_failure("alice")
        assert not manager.check_locked("bob").locked

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            AccountLockManager(max_failed_attempts=0)


class TestExpiry:
    """Tests for lazy lock expiry."""

    def test_check_after_expiry_unlocks(self, manager, clock, events):
        """The first check after lockout_until unlocks without an explicit call."""
        for _ in range(3):
            manager.record_failure("alice")
        clock.advance(599)
        assert manager.check_locked("alice").locked

        clock.advance(1)
        status = manager.check_locked("alice")
        assert not status.locked
        assert status.unlocked_now
        assert manager.snapshot("alice").failed_login_attempts == 0

        unlocked = events.of_type(SecurityEventType.ACCOUNT_UNLOCKED)
        assert unlocked[-1].metadata["reason"] == "lockout_expired"

    def test_failure_after_expiry_starts_fresh(self, manager, clock):
        """A failure after expiry counts from zero."""
        for _ in range(3):
            manager.record_failure("alice")
        clock.advance(601)
        outcome = manager.record_failure("alice")
        assert not outcome.locked
        assert outcome.failed_attempts == 1


class TestManualUnlock:
    """Tests for unlock."""

    def test_unlock(self, manager, events):
        for _ in range(3):
            manager.record_failure("alice")
        assert manager.unlock("alice", actor="ops") is True
        assert not manager.check_locked("alice").locked

        event = events.of_type(SecurityEventType.ACCOUNT_UNLOCKED)[-1]
        assert event.metadata == {"reason": "manual", "actor": "ops"}

    def test_unlock_unlocked_account(self, manager, events):
        assert manager.unlock("alice") is False
        assert events.of_type(SecurityEventType.ACCOUNT_UNLOCKED) == []


class TestHistory:
    """Tests for login history bookkeeping."""

    def test_history_capped(self, clock):
        manager = AccountLockManager(
            AccountStore(max_history_entries=4), max_failed_attempts=100, clock=clock
        )
        for _ in range(10):
            manager.record_failure("alice")
        assert len(manager.snapshot("alice").login_attempt_history) == 4

    def test_success_prunes_old_history(self, clock):
        manager = AccountLockManager(history_retention=3600, clock=clock)
        manager.record_failure("alice")
        clock.advance(hours=2)
        state = manager.record_success("alice")
        assert len(state.login_attempt_history) == 1
        assert state.login_attempt_history[0].success

    def test_snapshot_is_detached(self, manager):
        manager.record_failure("alice")
        snap = manager.snapshot("alice")
        snap.failed_login_attempts = 99
        snap.login_attempt_history.clear()
        fresh = manager.snapshot("alice")
        assert fresh.failed_login_attempts == 1
        assert len(fresh.login_attempt_history) == 1


class TestConcurrency:
    """Concurrent failures never lose counts."""

    def test_concurrent_failures_counted_exactly(self, clock, events):
        manager = AccountLockManager(
            max_failed_attempts=10_000, clock=clock, event_sink=events
        )

        def worker():
            for _ in range(100):
                manager.record_failure("alice")

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert manager.snapshot("alice").failed_login_attempts == 1000

    def test_concurrent_lock_transition_emitted_once(self, clock, events):
        manager = AccountLockManager(max_failed_attempts=5, clock=clock, event_sink=events)

        threads = [
            threading.Thread(target=manager.record_failure, args=("alice",))
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(events.of_type(SecurityEventType.ACCOUNT_LOCKED)) == 1


class TestStore:
    """Tests for store ownership."""

    def test_uses_given_empty_store(self, clock):
        store = AccountStore()
        manager = AccountLockManager(store, clock=clock)
        assert manager.store is store

        manager.record_failure("alice")
        assert store.snapshot("alice").failed_login_attempts == 1
