# outcome_eval/service.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from common.logging import get_logger
from common.periodic import run_periodic
from common.queue import TopicConfig
from outcome_eval.evaluator import OutcomeEvaluator

log = get_logger("outcome_eval")


class EvaluationService:
    """Feeds prices and prediction events into an OutcomeEvaluator and evaluates on a timer."""

    def __init__(
        self,
        consumer,
        evaluator: OutcomeEvaluator,
        topics: Optional[TopicConfig] = None,
        *,
        interval: float = 300.0,
        warmup: float = 60.0,
    ) -> None:
        self.consumer = consumer
        self.evaluator = evaluator
        self.topics = topics or TopicConfig()
        self.interval = interval
        self.warmup = warmup
        self._consumer_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._running = False
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._running

    async def evaluate_once(self):
        self.runs += 1
        return await self.evaluator.evaluate_once()

    async def start(self) -> bool:
        if self._running:
            log.warning("evaluation service already running")
            return False
        await self.consumer.connect()
        await self.consumer.subscribe([self.topics.prices, self.topics.news])
        self.consumer.register_handler(self.topics.prices, self.evaluator.handle_price)
        self.consumer.register_handler(self.topics.news, self.evaluator.handle_prediction)
        self._consumer_task = asyncio.create_task(self.consumer.run(), name="evaluation-consumer")
        self._timer_task = asyncio.create_task(
            run_periodic(self.evaluate_once, self.interval, first_delay=self.warmup, log=log, name="evaluation"),
            name="evaluation-timer",
        )
        self._running = True
        log.info(
            "evaluation service started (maturation=%s interval=%ss warmup=%ss)",
            self.evaluator.maturation, self.interval, self.warmup,
        )
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
                log.error("evaluation consumer ended with error: %s", results[0])
        await self.consumer.disconnect()
        self._running = False
        log.info("evaluation service stopped")

    def status(self) -> Dict[str, Any]:
        out = {"running": self._running, "runs": self.runs}
        out.update(self.evaluator.status())
        out["consumer"] = dict(getattr(self.consumer, "stats", {}))
        return out
