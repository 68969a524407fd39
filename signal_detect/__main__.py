"""
market-pulse: reasoning stage

    python -m signal_detect

Consumes news and prices, runs a prediction cycle every
REASONING_INTERVAL_SECS and publishes predictions until interrupted.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta

from alert_engine.notifier import PredictionNotifier
from common.config import Settings
from common.errors import BusConnectionError
from common.logging import configure, get_logger
from common.queue import StreamConsumer, StreamProducer, TopicConfig, consumer_name, redis_client_factory
from common.retry import RetryPolicy
from outcome_eval.store import PredictionStore
from shared.clock import make_clock
from shared.dedupe import SeenWindow
from signal_detect.coordinator import PredictionCoordinator
from signal_detect.reasoning_client import reasoner_from_settings
from signal_detect.service import ReasoningService

log = get_logger("signal_detect")
GROUP = "reasoning-service"


async def _run(settings: Settings) -> int:
    bus = settings.bus
    factory = redis_client_factory(bus.redis_url)
    retry = RetryPolicy.from_settings(bus)
    topics = TopicConfig.from_settings(bus)
    clock = make_clock(settings.clock)

    producer = StreamProducer(factory, topics, retry)
    consumer = StreamConsumer(GROUP, consumer_name(GROUP), factory, retry,
                              block_ms=bus.block_ms, count=bus.read_count, dedupe=SeenWindow(bus.dedupe_window))
    coordinator = PredictionCoordinator(
        reasoner_from_settings(settings.reasoning),
        PredictionStore.from_settings(settings.evaluation),
        producer,
        notifier=PredictionNotifier.from_settings(settings.alerts),
        clock=clock,
    )
    rs = settings.reasoning
    service = ReasoningService(consumer, coordinator, topics, buffer_size=rs.buffer_size,
                               interval=rs.interval_secs, window=timedelta(seconds=rs.window_secs), clock=clock)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await producer.connect()
        await service.start()
    except BusConnectionError as e:
        log.error("bus unreachable: %s", e)
        return 1
    log.info("signal_detect running...")
    try:
        await stop.wait()
    finally:
        await service.stop()
        await producer.disconnect()
    return 0


def main() -> int:
    settings = Settings.from_env()
    configure(settings.log_level)
    return asyncio.run(_run(settings))


if __name__ == "__main__":
    raise SystemExit(main())
