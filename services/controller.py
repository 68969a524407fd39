# services/controller.py
"""
In-process control surface for the whole pipeline.

Every method returns a JSON-ready dict right away; long-running work (the
replay, the consumer loops, the timers) runs as tasks on the current event
loop. Failures come back as {"error": <code>, "message": <text>}.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from alert_engine.notifier import PredictionNotifier
from common.config import Settings
from common.errors import PipelineError
from common.logging import get_logger
from common.queue import StreamConsumer, StreamProducer, TopicConfig, consumer_name, redis_client_factory
from common.retry import RetryPolicy
from data_ingest.replay import HistoricalReplayProducer
from data_ingest.sources import ReplaySource, default_sources
from outcome_eval.evaluator import OutcomeEvaluator
from outcome_eval.service import EvaluationService
from outcome_eval.store import PredictionStore
from shared.clock import Clock, make_clock
from shared.dedupe import SeenWindow
from signal_detect.coordinator import PredictionCoordinator
from signal_detect.reasoning_client import reasoner_from_settings
from signal_detect.service import ReasoningService

log = get_logger("pipeline")

REASONING_GROUP = "reasoning-service"
EVALUATION_GROUP = "evaluation-service"
MODES = ("historical", "live")


def _error(code: str, message: str) -> Dict[str, Any]:
    return {"error": code, "message": message}


class PipelineController:
    def __init__(
        self,
        settings: Settings,
        *,
        client_factory=None,
        sources: Optional[Callable[[], List[ReplaySource]]] = None,
        reasoner=None,
        store: Optional[PredictionStore] = None,
        notifier: Optional[PredictionNotifier] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings
        bus = settings.bus
        client_factory = client_factory or redis_client_factory(bus.redis_url)
        retry = RetryPolicy.from_settings(bus)
        self.topics = TopicConfig.from_settings(bus)
        self.clock = clock or make_clock(settings.clock)
        self._sources = sources or (lambda: default_sources(settings.replay))

        def make_consumer(group: str) -> StreamConsumer:
            return StreamConsumer(
                group,
                consumer_name(group),
                client_factory,
                retry,
                block_ms=bus.block_ms,
                count=bus.read_count,
                dedupe=SeenWindow(bus.dedupe_window),
            )

        self.producer = StreamProducer(client_factory, self.topics, retry)
        self.replay = HistoricalReplayProducer(
            self.producer,
            batch_size=settings.replay.batch_size,
            base_delay=settings.replay.base_delay_secs,
            max_speed=settings.replay.max_speed,
        )
        self.store = store or PredictionStore.from_settings(settings.evaluation)
        self.notifier = notifier or PredictionNotifier.from_settings(settings.alerts)
        self.coordinator = PredictionCoordinator(
            reasoner or reasoner_from_settings(settings.reasoning),
            self.store,
            self.producer,
            notifier=self.notifier,
            clock=self.clock,
        )
        rs = settings.reasoning
        self.reasoning = ReasoningService(
            make_consumer(REASONING_GROUP),
            self.coordinator,
            self.topics,
            buffer_size=rs.buffer_size,
            interval=rs.interval_secs,
            window=timedelta(seconds=rs.window_secs),
            clock=self.clock,
        )
        es = settings.evaluation
        self.evaluator = OutcomeEvaluator(
            self.store,
            buffer_size=es.buffer_size,
            maturation=timedelta(seconds=es.maturation_secs),
            expiry=timedelta(seconds=es.expiry_secs),
            clock=self.clock,
        )
        self.evaluation = EvaluationService(
            make_consumer(EVALUATION_GROUP),
            self.evaluator,
            self.topics,
            interval=es.interval_secs,
            warmup=es.warmup_secs,
        )
        self._replay_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Connect the shared producer; raises BusConnectionError if the bus is unreachable."""
        await self.producer.connect()

    # --- stream ---

    async def _run_replay(self, date: Optional[str], speed: float) -> None:
        try:
            await self.replay.run(self._sources(), date_filter=date, speed=speed)
        except Exception as e:
            # already logged by the replay; keep it out of the loop's exception handler
            log.debug("replay task ended with %s", e)

    async def start_stream(self, mode: str = "historical", date: Optional[str] = None, speed: float = 1.0) -> Dict[str, Any]:
        mode = (mode or "historical").lower()
        if mode == "live":
            return _error("not_available", "live streaming is not available; use mode 'historical'")
        if mode not in MODES:
            return _error("invalid_mode", f"unknown mode {mode!r}; expected one of {', '.join(MODES)}")
        try:
            speed = float(speed)
        except (TypeError, ValueError):
            return _error("invalid_speed", f"speed must be a number, got {speed!r}")
        if speed < 1:
            return _error("invalid_speed", "speed must be >= 1")
        if self._stream_active():
            return {"status": "already_running", "replay": self.replay.status()}
        try:
            await self.producer.connect()
        except PipelineError as e:
            return _error("bus_unavailable", str(e))
        self._replay_task = asyncio.create_task(self._run_replay(date, speed), name="replay")
        log.info("stream started: mode=%s date=%s speed=%sx", mode, date or "all", speed)
        return {"status": "started", "mode": mode, "date": date, "speed": speed}

    def _stream_active(self) -> bool:
        # the task may be scheduled but not yet inside run()
        return self.replay.is_running or (self._replay_task is not None and not self._replay_task.done())

    async def stop_stream(self) -> Dict[str, Any]:
        if not self._stream_active():
            return {"status": "not_running"}
        if not self.replay.is_running:
            self._replay_task.cancel()
            return {"status": "stopping"}
        self.replay.stop()
        return {"status": "stopping"}

    # --- reasoning ---

    async def start_reasoning(self) -> Dict[str, Any]:
        if self.reasoning.running:
            return {"status": "already_running"}
        try:
            await self.producer.connect()
            await self.reasoning.start()
        except PipelineError as e:
            return _error("start_failed", f"reasoning service: {e}")
        return {"status": "started"}

    async def stop_reasoning(self) -> Dict[str, Any]:
        if not self.reasoning.running:
            return {"status": "not_running"}
        await self.reasoning.stop()
        return {"status": "stopped"}

    # --- evaluation ---

    async def start_evaluation(self) -> Dict[str, Any]:
        if self.evaluation.running:
            return {"status": "already_running"}
        try:
            await self.evaluation.start()
        except PipelineError as e:
            return _error("start_failed", f"evaluation service: {e}")
        return {"status": "started"}

    async def stop_evaluation(self) -> Dict[str, Any]:
        if not self.evaluation.running:
            return {"status": "not_running"}
        await self.evaluation.stop()
        return {"status": "stopped"}

    # --- introspection ---

    def status(self) -> Dict[str, Any]:
        metrics = self.store.get_metrics()
        return {
            "stream": {
                **self.replay.status(),
                "data_range": {"start": self.settings.replay.data_start_date, "end": self.settings.replay.data_end_date},
            },
            "reasoning": {**self.reasoning.status(), **self.coordinator.status()},
            "evaluation": self.evaluation.status(),
            "metrics": metrics.model_dump(),
            "recommended_threshold": metrics.recommended_threshold,
            "notifications": self.notifier.metrics(),
            "clock": self.clock.now().isoformat(),
        }

    async def health(self) -> Dict[str, Any]:
        bus_ok = await self.producer.ping()
        return {
            "status": "ok" if bus_ok else "degraded",
            "bus": "up" if bus_ok else "down",
            "stream": self.replay.state,
            "reasoning": self.reasoning.running,
            "evaluation": self.evaluation.running,
        }

    async def shutdown(self) -> None:
        self.replay.stop()
        if self._replay_task is not None:
            await asyncio.gather(self._replay_task, return_exceptions=True)
            self._replay_task = None
        await self.reasoning.stop()
        await self.evaluation.stop()
        await self.producer.disconnect()
        log.info("pipeline shut down")
