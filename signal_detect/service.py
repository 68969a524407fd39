# signal_detect/service.py
"""
Reasoning stage: buffers news and prices from the bus and runs one prediction
cycle over the recent window every `interval` seconds (plus once at start).
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

from common.logging import get_logger
from common.periodic import run_periodic
from common.queue import TopicConfig
from common.schemas import NewsEvent, PriceEvent, is_prediction_event
from shared.clock import Clock, EventClock
from signal_detect.buffers import SymbolBuffers, WindowedBuffer

log = get_logger("signal_detect")


class ReasoningService:
    def __init__(
        self,
        consumer,
        coordinator,
        topics: Optional[TopicConfig] = None,
        *,
        buffer_size: int = 50,
        interval: float = 60.0,
        window: timedelta = timedelta(hours=1),
        clock: Optional[Clock] = None,
    ) -> None:
        self.consumer = consumer
        self.coordinator = coordinator
        self.topics = topics or TopicConfig()
        self.interval = interval
        self.window = window
        # share the coordinator's clock so predictions are stamped in the same time base
        self.clock = clock if clock is not None else (getattr(coordinator, "clock", None) or EventClock())
        self.news: WindowedBuffer[NewsEvent] = WindowedBuffer(buffer_size)
        self.prices: SymbolBuffers[PriceEvent] = SymbolBuffers(buffer_size)
        # bumped per buffered event; a cycle runs only when it moved since the last one
        self._generation = 0
        self._analyzed_generation = 0
        self._consumer_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._running = False
        self.cycles = 0
        self.skipped = 0
        self.predictions = 0

    @property
    def running(self) -> bool:
        return self._running

    def handle_news(self, event: NewsEvent) -> None:
        if event.kind != "news" or is_prediction_event(event):
            return
        self.news.append(event)
        self._generation += 1
        self.clock.observe(event.timestamp)
        log.debug("news: %s", event.headline[:60])

    def handle_price(self, event: PriceEvent) -> None:
        if event.kind != "price":
            return
        self.prices.append(event)
        self._generation += 1
        self.clock.observe(event.timestamp)
        log.debug("price: %s = %.2f", event.symbol, event.price)

    async def analyze_once(self):
        """Never raises; returns the coordinator's CycleResult or None."""
        self.cycles += 1
        try:
            if self._generation == self._analyzed_generation:
                self.skipped += 1
                log.info("analysis skipped: no new events since the last cycle")
                return None
            now = self.clock.now()
            news: List[NewsEvent] = self.news.window(now, self.window)
            prices: List[PriceEvent] = self.prices.window(now, self.window)
            if not news and not prices:
                self.skipped += 1
                log.info("analysis skipped: no events in the last %s", self.window)
                return None
            self._analyzed_generation = self._generation
            log.info("analyzing window: news=%d prices=%d", len(news), len(prices))
            result = await self.coordinator.run_cycle(news, prices)
            if result is not None:
                self.predictions += 1
            return result
        except Exception as e:
            log.exception("analysis cycle failed: %s", e)
            return None

    async def start(self) -> bool:
        if self._running:
            log.warning("reasoning service already running")
            return False
        await self.consumer.connect()
        await self.consumer.subscribe([self.topics.news, self.topics.prices])
        self.consumer.register_handler(self.topics.news, self.handle_news)
        self.consumer.register_handler(self.topics.prices, self.handle_price)
        self._consumer_task = asyncio.create_task(self.consumer.run(), name="reasoning-consumer")
        self._timer_task = asyncio.create_task(
            run_periodic(self.analyze_once, self.interval, log=log, name="analysis"),
            name="reasoning-timer",
        )
        self._running = True
        log.info("reasoning service started (interval=%ss window=%s)", self.interval, self.window)
        return True

    async def stop(self) -> None:
        if not self._running:
            return
        timer, self._timer_task = self._timer_task, None
        if timer is not None:
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
        self.consumer.stop()
        task, self._consumer_task = self._consumer_task, None
        if task is not None:
            results = await asyncio.gather(task, return_exceptions=True)
            if results and isinstance(results[0], Exception):
                log.error("reasoning consumer ended with error: %s", results[0])
        await self.consumer.disconnect()
        self._running = False
        log.info("reasoning service stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "buffers": {"news": len(self.news), "prices": self.prices.sizes()},
            "cycles": self.cycles,
            "skipped": self.skipped,
            "predictions": self.predictions,
            "consumer": dict(getattr(self.consumer, "stats", {})),
        }
