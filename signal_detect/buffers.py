# signal_detect/buffers.py
"""
Bounded FIFO event buffers and time-window selection.

A window of width W at time `now` holds events with  now - ts < W.
An event exactly W old is out; events stamped after `now` are in.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Generic, Iterable, List, Optional, TypeVar

MARKET = "MARKET"

E = TypeVar("E")


def select_window(events: Iterable[E], now: datetime, width: timedelta) -> List[E]:
    return [ev for ev in events if now - ev.timestamp < width]


class WindowedBuffer(Generic[E]):
    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: Deque[E] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def append(self, event: E) -> Optional[E]:
        """Append, evicting the oldest when full. Returns the evicted event."""
        evicted = None
        if len(self._items) >= self.capacity:
            evicted = self._items.popleft()
        self._items.append(event)
        return evicted

    def snapshot(self) -> List[E]:
        return list(self._items)

    def latest(self) -> Optional[E]:
        return self._items[-1] if self._items else None

    def window(self, now: datetime, width: timedelta) -> List[E]:
        return select_window(self._items, now, width)

    def clear(self) -> None:
        self._items.clear()


class SymbolBuffers(Generic[E]):
    """One WindowedBuffer per symbol; events without a symbol share the MARKET bucket."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._buffers: Dict[str, WindowedBuffer[E]] = {}

    @staticmethod
    def bucket(symbol: Optional[str]) -> str:
        return symbol or MARKET

    def append(self, event: E) -> Optional[E]:
        key = self.bucket(getattr(event, "symbol", None))
        buf = self._buffers.get(key)
        if buf is None:
            buf = self._buffers[key] = WindowedBuffer(self.capacity)
        return buf.append(event)

    def latest(self, symbol: Optional[str]) -> Optional[E]:
        buf = self._buffers.get(self.bucket(symbol))
        return buf.latest() if buf else None

    def window(self, now: datetime, width: timedelta) -> List[E]:
        out: List[E] = []
        for buf in self._buffers.values():
            out.extend(buf.window(now, width))
        out.sort(key=lambda ev: ev.timestamp)
        return out

    def symbols(self) -> List[str]:
        return sorted(self._buffers)

    def sizes(self) -> Dict[str, int]:
        return {k: len(v) for k, v in sorted(self._buffers.items())}

    def __len__(self) -> int:
        return sum(len(b) for b in self._buffers.values())

    def clear(self) -> None:
        self._buffers.clear()
