"""Tests for login risk scoring."""

import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, "src")

from request_guard.security.account_lock import AccountLockManager
from request_guard.security.clock import ManualClock
from request_guard.security.risk import (
    AuthRiskScorer,
    RiskLevel,
    RiskThresholds,
    combine_signals,
    is_off_hours,
)
from request_guard.security.state import AccountStore


class TestCombineSignals:
    """Tests for the pure signal weighting."""

    def test_no_signals(self):
        assert combine_signals(0, 0, False, False).total == 0

    def test_weights(self):
        breakdown = combine_signals(2, 3, True, True)
        assert breakdown.failed_attempts == 30
        assert breakdown.ip_velocity == 15
        assert breakdown.new_device == 20
        assert breakdown.off_hours == 10
        assert breakdown.total == 75

    def test_caps(self):
        """Each signal is capped and the total never exceeds 100."""
        breakdown = combine_signals(50, 50, True, True)
        assert breakdown.failed_attempts == 60
        assert breakdown.ip_velocity == 30
        assert breakdown.total == 100

    @pytest.mark.parametrize("failed", range(0, 8))
    @pytest.mark.parametrize("ip_attempts", [0, 1, 4, 10])
    def test_adding_a_signal_never_lowers_score(self, failed, ip_attempts):
        base = combine_signals(failed, ip_attempts, False, False).total
        with_device = combine_signals(failed, ip_attempts, True, False).total
        with_both = combine_signals(failed, ip_attempts, True, True).total
        more_failures = combine_signals(failed + 1, ip_attempts, False, False).total
        assert base <= with_device <= with_both <= 100
        assert base <= more_failures <= 100

    def test_negative_counts_clamped(self):
        assert combine_signals(-3, -1, False, False).total == 0


class TestOffHours:
    @pytest.mark.parametrize("hour,expected", [(0, True), (5, True), (6, False), (12, False), (22, False), (23, True)])
    def test_boundaries(self, hour, expected):
        assert is_off_hours(hour) is expected


class TestThresholds:
    """Tests for RiskThresholds."""

    def test_levels(self):
        thresholds = RiskThresholds(low=30, medium=60, high=80)
        assert thresholds.level(0) is RiskLevel.MINIMAL
        assert thresholds.level(30) is RiskLevel.LOW
        assert thresholds.level(60) is RiskLevel.MEDIUM
        assert thresholds.level(80) is RiskLevel.HIGH
        assert thresholds.level(100) is RiskLevel.HIGH

    def test_invalid_order(self):
        with pytest.raises(ValueError):
            RiskThresholds(low=70, medium=60, high=80)


class TestAuthRiskScorer:
    """Tests for AuthRiskScorer against live state."""

    @pytest.fixture
    def store(self):
        return AccountStore()

    def test_unknown_identity_is_new_device(self, store, clock):
        scorer = AuthRiskScorer(store, clock=clock)
        breakdown = scorer.breakdown("alice", "1.1.1.1", "ua")
        assert breakdown.new_device == 20
        assert breakdown.off_hours == 0
        assert scorer.score("alice", "1.1.1.1", "ua") == 20

    def test_failures_and_ip_velocity(self, store, clock):
        locks = AccountLockManager(store, max_failed_attempts=100, clock=clock)
        scorer = AuthRiskScorer(store, clock=clock)
        for _ in range(3):
            locks.record_failure("alice", "1.1.1.1", "ua")

        breakdown = scorer.breakdown("alice", "1.1.1.1", "ua")
        assert breakdown.failed_attempts == 45
        assert breakdown.ip_velocity == 15
        assert breakdown.new_device == 0

        clock.advance(60)
        assert scorer.breakdown("alice", "1.1.1.1", "ua").ip_velocity == 0

    def test_ip_velocity_spans_identities(self, store, clock):
        """Failures against other accounts count against the IP."""
        locks = AccountLockManager(store, clock=clock)
        for name in ("a", "b", "c", "d"):
            locks.record_failure(name, "6.6.6.6", "ua")
        scorer = AuthRiskScorer(store, clock=clock)
        assert scorer.breakdown("alice", "6.6.6.6", "ua").ip_velocity == 20

    def test_off_hours_uses_clock(self, store):
        night = ManualClock(datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc))
        scorer = AuthRiskScorer(store, clock=night)
        assert scorer.breakdown("alice", "1.1.1.1", "ua").off_hours == 10

    def test_score_does_not_mutate(self, store, clock):
        scorer = AuthRiskScorer(store, clock=clock)
        scorer.score("alice", "1.1.1.1", "ua")
        assert "alice" not in store
