"""
market-pulse: outcome evaluation stage

    python -m outcome_eval

Tracks prediction events and scores them against later prices until
interrupted. Uses its own in-memory record store (plus the remote store when
PREDICTION_STORE_* is configured).
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta

from common.config import Settings
from common.errors import BusConnectionError
from common.logging import configure, get_logger
from common.queue import StreamConsumer, TopicConfig, consumer_name, redis_client_factory
from common.retry import RetryPolicy
from outcome_eval.evaluator import OutcomeEvaluator
from outcome_eval.service import EvaluationService
from outcome_eval.store import PredictionStore
from shared.clock import make_clock
from shared.dedupe import SeenWindow

log = get_logger("outcome_eval")
GROUP = "evaluation-service"


async def _run(settings: Settings) -> int:
    bus = settings.bus
    es = settings.evaluation
    consumer = StreamConsumer(GROUP, consumer_name(GROUP), redis_client_factory(bus.redis_url), RetryPolicy.from_settings(bus),
                              block_ms=bus.block_ms, count=bus.read_count, dedupe=SeenWindow(bus.dedupe_window))
    evaluator = OutcomeEvaluator(
        PredictionStore.from_settings(es),
        buffer_size=es.buffer_size,
        maturation=timedelta(seconds=es.maturation_secs),
        expiry=timedelta(seconds=es.expiry_secs),
        clock=make_clock(settings.clock),
    )
    service = EvaluationService(consumer, evaluator, TopicConfig.from_settings(bus),
                                interval=es.interval_secs, warmup=es.warmup_secs)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await service.start()
    except BusConnectionError as e:
        log.error("bus unreachable: %s", e)
        return 1
    log.info("outcome_eval running...")
    try:
        await stop.wait()
    finally:
        await service.stop()
    return 0


def main() -> int:
    settings = Settings.from_env()
    configure(settings.log_level)
    return asyncio.run(_run(settings))


if __name__ == "__main__":
    raise SystemExit(main())
