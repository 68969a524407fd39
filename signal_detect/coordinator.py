# signal_detect/coordinator.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from common.errors import CollaboratorUnavailable, PipelineError
from common.logging import get_logger
from common.schemas import NewsEvent, PriceEvent, Prediction, prediction_event
from shared.clock import Clock, EventClock
from signal_detect.heuristic import fallback_prediction, latest_price

log = get_logger("signal_detect")


@dataclass
class CycleResult:
    prediction: Prediction
    prediction_id: str
    published: bool
    used_fallback: bool
    notified: bool = False


class PredictionCoordinator:
    """
    One analysis cycle: reason (or fall back), store, publish, notify.

    reasoner.analyze(news, prices, now=...) and store.store(prediction) are
    blocking and run in worker threads; everything else stays on the loop.
    """

    def __init__(self, reasoner, store, producer, *, notifier=None, clock: Optional[Clock] = None) -> None:
        self.reasoner = reasoner
        self.store = store
        self.producer = producer
        self.notifier = notifier
        self.clock = clock or EventClock()
        self.cycles = 0
        self.predictions = 0
        self.fallbacks = 0
        self.publish_failures = 0

    async def _predict(self, news, prices, now) -> tuple[Optional[Prediction], bool]:
        try:
            return await asyncio.to_thread(self.reasoner.analyze, list(news), list(prices), now=now), False
        except CollaboratorUnavailable as e:
            log.warning("reasoning unavailable (%s); using sentiment fallback", e)
        except Exception as e:
            log.error("reasoning failed (%s); using sentiment fallback", e)
        return fallback_prediction(news, prices, now), True

    async def run_cycle(
        self,
        news: Sequence[NewsEvent],
        prices: Sequence[PriceEvent],
    ) -> Optional[CycleResult]:
        self.cycles += 1
        now = self.clock.now()
        prediction, used_fallback = await self._predict(news, prices, now)
        if used_fallback:
            self.fallbacks += 1
        if prediction is None:
            log.info("no prediction this cycle (news=%d prices=%d)", len(news), len(prices))
            return None

        self.predictions += 1
        log.info(
            "prediction: %s %s confidence=%.1f%% model=%s",
            prediction.symbol or "MARKET", prediction.direction.upper(),
            prediction.confidence * 100, prediction.model,
        )

        prediction_id = await asyncio.to_thread(self.store.store, prediction)

        baseline = None
        ref = latest_price([p for p in prices if p.symbol == prediction.symbol])
        if ref is not None:
            baseline = ref.price

        published = False
        try:
            await self.producer.publish(prediction_event(prediction, prediction_id, baseline_price=baseline))
            published = True
        except PipelineError as e:
            self.publish_failures += 1
            log.error("failed to publish prediction %s: %s", prediction_id, e)

        result = CycleResult(
            prediction=prediction,
            prediction_id=prediction_id,
            published=published,
            used_fallback=used_fallback,
        )

        if self.notifier is not None:
            try:
                result.notified = bool(await asyncio.to_thread(self.notifier.notify, prediction, prediction_id))
            except Exception as e:
                log.error("notifier failed for %s: %s", prediction_id, e)
        return result

    def status(self) -> dict:
        return {
            "cycles": self.cycles,
            "predictions": self.predictions,
            "fallbacks": self.fallbacks,
            "publish_failures": self.publish_failures,
        }
