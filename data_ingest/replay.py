# data_ingest/replay.py
"""
Historical replay: merge every source into one timestamp-ordered stream and
publish it to the bus in fixed-size batches, throttled by a speed multiplier.

Ordering: (timestamp, declared source index, row index). Equal timestamps
therefore keep declared source order, then file order.
"""

from __future__ import annotations

import asyncio
import heapq
from dataclasses import dataclass
from itertools import islice
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from common.errors import AlreadyRunningError, MalformedRecordError
from common.logging import get_logger
from data_ingest.sources import Event, ReplaySource
from shared.datetime_utils import matches_date_prefix

log = get_logger("data_ingest")

PROGRESS_EVERY = 1000

IDLE = "idle"
RUNNING = "running"
STOPPING = "stopping"


@dataclass
class ReplayResult:
    published: int = 0
    batches: int = 0
    news: int = 0
    prices: int = 0
    stopped: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "published": self.published,
            "batches": self.batches,
            "news": self.news,
            "prices": self.prices,
            "stopped": self.stopped,
        }


def _keyed(source: ReplaySource, idx: int) -> Iterator[Tuple[Tuple[Any, int, int], Event]]:
    if source.presorted:
        last = None
        for row, ev in enumerate(source.open()):
            if last is not None and ev.timestamp < last:
                raise MalformedRecordError(
                    f"source {source.name} declared presorted but row {row} goes back in time "
                    f"({ev.timestamp.isoformat()} < {last.isoformat()})"
                )
            last = ev.timestamp
            yield (ev.timestamp, idx, row), ev
        return
    # sorted() is stable, so rows with equal timestamps keep file order
    raw = list(enumerate(source.open()))
    rows = sorted(raw, key=lambda p: p[1].timestamp)
    if rows == raw:
        log.info("source %s: %d rows already in time order; REPLAY_PRESORTED=1 streams them", source.name, len(rows))
    else:
        log.info("source %s: sorted %d rows in memory", source.name, len(rows))
    del raw
    for row, ev in rows:
        yield (ev.timestamp, idx, row), ev


def merge_sources(sources: Sequence[ReplaySource]) -> Iterator[Event]:
    streams = [_keyed(src, i) for i, src in enumerate(sources)]
    for _key, ev in heapq.merge(*streams, key=lambda p: p[0]):
        yield ev


def filter_by_date(events: Iterable[Event], date_prefix: Optional[str]) -> Iterator[Event]:
    if not date_prefix:
        yield from events
        return
    for ev in events:
        if matches_date_prefix(ev.timestamp, date_prefix):
            yield ev


def chunked(events: Iterable[Event], size: int) -> Iterator[List[Event]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    it = iter(events)
    while True:
        batch = list(islice(it, size))
        if not batch:
            return
        yield batch


class HistoricalReplayProducer:
    def __init__(
        self,
        producer,
        *,
        batch_size: int = 100,
        base_delay: float = 0.01,
        max_speed: float = 100.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.producer = producer
        self.batch_size = max(1, int(batch_size))
        self.base_delay = base_delay
        self.max_speed = max_speed
        self._sleep = sleep or asyncio.sleep
        self._state = IDLE
        self._stop_requested = False
        self._progress = ReplayResult()
        self.last_result: Optional[ReplayResult] = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state != IDLE

    def stop(self) -> None:
        if self._state == RUNNING:
            log.info("replay stop requested")
            self._stop_requested = True
            self._state = STOPPING

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state,
            "published": self._progress.published,
            "last_result": self.last_result.as_dict() if self.last_result else None,
            "last_error": self.last_error,
        }

    def _begin(self, speed: float) -> None:
        if self._state != IDLE:
            raise AlreadyRunningError(f"replay already {self._state}")
        if speed < 1:
            raise ValueError(f"speed must be >= 1 (got {speed})")
        self._state = RUNNING

    async def run(
        self,
        sources: Sequence[ReplaySource],
        *,
        date_filter: Optional[str] = None,
        speed: float = 1.0,
    ) -> Optional[ReplayResult]:
        try:
            self._begin(speed)
        except AlreadyRunningError as e:
            log.warning("%s; ignoring start", e)
            return None
        self._stop_requested = False
        self._progress = result = ReplayResult()
        self.last_error = None
        log.info(
            "replay starting: sources=%d date=%s speed=%sx batch=%d",
            len(sources), date_filter or "all", speed, self.batch_size,
        )
        try:
            events = filter_by_date(merge_sources(sources), date_filter)
            for batch in chunked(events, self.batch_size):
                if self._stop_requested:
                    result.stopped = True
                    log.info("replay stopped after %d event(s)", result.published)
                    break
                before = result.published
                await self.producer.publish_batch(batch)
                result.batches += 1
                result.published += len(batch)
                for ev in batch:
                    if ev.kind == "news":
                        result.news += 1
                    else:
                        result.prices += 1
                if result.published // PROGRESS_EVERY > before // PROGRESS_EVERY:
                    log.info("replay published %d event(s)...", result.published)
                if speed < self.max_speed:
                    await self._sleep(self.base_delay / speed)
            self.last_result = result
            log.info(
                "replay complete: published=%d (news=%d prices=%d) batches=%d stopped=%s",
                result.published, result.news, result.prices, result.batches, result.stopped,
            )
            return result
        except Exception as e:
            self.last_error = str(e)
            log.error("replay failed after %d event(s): %s", result.published, e)
            raise
        finally:
            self._state = IDLE
            self._stop_requested = False
