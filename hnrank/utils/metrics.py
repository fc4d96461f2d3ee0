"""In-memory metrics recorder for scheduler and service events.

Every event is kept in a bounded ring (newest first) so an operator can
inspect recent activity through :meth:`MetricsRecorder.get_events` and
:meth:`MetricsRecorder.get_stats`, and is also emitted through structlog.
Nothing is persisted.
"""

from __future__ import annotations

from collections import Counter, deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import structlog

from hnrank.utils.logging import get_logger

_SENSITIVE_KEYS = ("password", "token", "key", "secret", "auth")

EVENT = "system_event"
ERROR = "system_error"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _sanitize(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *data* with credential-like keys redacted."""
    sanitized = dict(data)
    for field in sanitized:
        lowered = field.lower()
        if any(marker in lowered for marker in _SENSITIVE_KEYS):
            sanitized[field] = "[REDACTED]"
    return sanitized


class MetricsRecorder:
    """Bounded, newest-first log of structured metric events.

    Parameters
    ----------
    max_events:
        Ring capacity; the oldest events drop off once it is full.
    clock:
        Returns the current aware UTC time.  Injectable for tests.
    """

    def __init__(
        self,
        max_events: int = 1000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._counts: Counter[str] = Counter()
        self._clock = clock or _utcnow
        self._logger: structlog.BoundLogger = get_logger(__name__)

    def record_event(self, name: str, level: str = "info", **data: Any) -> dict[str, Any]:
        """Record a named system event and log it at *level*."""
        return self._record(EVENT, name, level, data)

    def record_error(self, name: str, **data: Any) -> dict[str, Any]:
        """Record a named system error and log it at ``error`` level."""
        return self._record(ERROR, name, "error", data)

    def _record(self, kind: str, name: str, level: str, data: dict[str, Any]) -> dict[str, Any]:
        clean = _sanitize(data)
        entry = {
            "id": f"metric-{uuid4().hex[:12]}",
            "timestamp": self._clock(),
            "kind": kind,
            "name": name,
            "level": level,
            "data": clean,
        }
        self._events.appendleft(entry)
        self._counts[name] += 1

        log_method = getattr(self._logger, level, self._logger.info)
        log_method(name, metric_kind=kind, **clean)
        return entry

    def get_events(
        self,
        kind: str | None = None,
        level: str | None = None,
        name: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return recorded events, newest first, optionally filtered."""
        events = list(self._events)
        if kind:
            events = [e for e in events if e["kind"] == kind]
        if level:
            events = [e for e in events if e["level"] == level]
        if name:
            events = [e for e in events if e["name"] == name]
        if since is not None:
            events = [e for e in events if e["timestamp"] >= since]
        if limit is not None:
            events = events[:limit]
        return events

    def count(self, name: str) -> int:
        """Total number of times *name* was recorded (not bounded by the ring)."""
        return self._counts[name]

    def get_stats(self) -> dict[str, Any]:
        """Summarise the ring: totals by kind and level, errors in the last hour."""
        by_kind: Counter[str] = Counter()
        by_level: Counter[str] = Counter()
        recent_errors = 0
        hour_ago = self._clock() - timedelta(hours=1)

        for event in self._events:
            by_kind[event["kind"]] += 1
            by_level[event["level"]] += 1
            if event["level"] == "error" and event["timestamp"] >= hour_ago:
                recent_errors += 1

        return {
            "total_events": len(self._events),
            "by_kind": dict(by_kind),
            "by_level": dict(by_level),
            "by_name": dict(self._counts),
            "recent_errors": recent_errors,
            "newest": self._events[0]["timestamp"] if self._events else None,
            "oldest": self._events[-1]["timestamp"] if self._events else None,
        }

    def clear_older_than(self, max_age: timedelta) -> int:
        """Drop events older than *max_age*; return how many were removed."""
        cutoff = self._clock() - max_age
        kept = [e for e in self._events if e["timestamp"] >= cutoff]
        removed = len(self._events) - len(kept)
        self._events = deque(kept, maxlen=self._events.maxlen)
        return removed
