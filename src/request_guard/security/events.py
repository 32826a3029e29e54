"""Security event sinks.

Events are logged to the ``request_guard.security`` logger as JSON lines for
SIEM integration. ``InMemoryEventSink`` keeps a bounded tail for the admin
API, and ``SafeEventSink`` guarantees a failing sink never breaks the request
that emitted the event.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict, deque
from typing import Iterable, Optional, Protocol

from request_guard.security.models import SecurityEvent, SecurityEventType

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("request_guard.security")

_HIGH_RISK_SCORE = 70
_DEFAULT_MAX_EVENTS = 10_000


class EventSink(Protocol):
    """Receives security events. Must be fire-and-forget."""

    def emit(self, event: SecurityEvent) -> None: ...


class LoggingEventSink:
    """Writes each event to the security logger as one JSON line."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or security_logger

    def emit(self, event: SecurityEvent) -> None:
        entry = json.dumps(event.to_dict())
        extra = {
            "event_type": event.type.value,
            "identity": event.identity,
            "client_ip": event.client_ip,
            "risk_score": event.risk_score,
        }
        if event.risk_score >= _HIGH_RISK_SCORE:
            self._log.warning(entry, extra=extra)
        else:
            self._log.info(entry, extra=extra)


class InMemoryEventSink:
    """Keeps the most recent events in a bounded buffer."""

    def __init__(self, max_events: int = _DEFAULT_MAX_EVENTS) -> None:
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def emit(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[SecurityEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: SecurityEventType) -> list[SecurityEvent]:
        return [e for e in self.events if e.type is event_type]

    def get_recent_events(
        self,
        limit: int = 100,
        event_type: Optional[SecurityEventType] = None,
        identity: Optional[str] = None,
    ) -> list[dict]:
        """Get recent events, newest first.

        Args:
            limit: Maximum events to return.
            event_type: Filter by event type.
            identity: Filter by identity.

        Returns:
            List of serialized events.
        """
        events = list(reversed(self.events))
        if event_type:
            events = [e for e in events if e.type is event_type]
        if identity:
            events = [e for e in events if e.identity == identity]
        return [e.to_dict() for e in events[:limit]]

    def get_stats(self) -> dict:
        """Event counts by type."""
        by_type: dict[str, int] = defaultdict(int)
        identities = set()
        events = self.events
        for event in events:
            by_type[event.type.value] += 1
            if event.identity:
                identities.add(event.identity)
        return {
            "total_events": len(events),
            "distinct_identities": len(identities),
            "by_type": dict(by_type),
        }

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class FanOutEventSink:
    """Delivers each event to several sinks."""

    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self.sinks = tuple(SafeEventSink(s) for s in sinks)

    def emit(self, event: SecurityEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)


class SafeEventSink:
    """Wraps a sink so delivery failures are logged instead of raised."""

    def __init__(self, sink: EventSink) -> None:
        self.sink = sink.sink if isinstance(sink, SafeEventSink) else sink

    def emit(self, event: SecurityEvent) -> None:
        try:
            self.sink.emit(event)
        except Exception:
            logger.exception(
                "Security event sink %s failed to deliver %s event",
                type(self.sink).__name__,
                event.type.value,
            )


def default_event_sink() -> SafeEventSink:
    """A sink that only writes to the security logger."""
    return SafeEventSink(LoggingEventSink())
