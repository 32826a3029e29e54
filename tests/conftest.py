"""Shared fixtures."""

import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, "src")

from request_guard.security.clock import ManualClock
from request_guard.security.events import InMemoryEventSink

# Noon keeps the off-hours risk signal out of scores.
START = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def events():
    return InMemoryEventSink()
