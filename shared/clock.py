from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol

from shared.datetime_utils import ensure_utc


class Clock(Protocol):
    def now(self) -> datetime: ...
    def observe(self, ts: datetime) -> None: ...


class WallClock:
    """Real UTC time; observe() is ignored."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def observe(self, ts: datetime) -> None:
        pass


class EventClock:
    """
    Event time: 'now' is the latest event timestamp seen so far.

    Replayed history is years behind the wall clock, so windows and maturation
    ages are measured against the stream itself. Before the first event the
    clock reads wall time.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._latest: Optional[datetime] = ensure_utc(start) if start else None

    def now(self) -> datetime:
        if self._latest is None:
            return datetime.now(timezone.utc)
        return self._latest

    def observe(self, ts: datetime) -> None:
        ts = ensure_utc(ts)
        if self._latest is None or ts > self._latest:
            self._latest = ts


class FixedClock:
    """Manually advanced clock for tests and deterministic runs."""

    def __init__(self, now: datetime) -> None:
        self._now = ensure_utc(now)

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = ensure_utc(now)

    def observe(self, ts: datetime) -> None:
        pass


def make_clock(kind: str) -> Clock:
    if kind == "wall":
        return WallClock()
    return EventClock()
