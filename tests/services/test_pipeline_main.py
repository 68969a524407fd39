import argparse
import asyncio

from common.config import Settings
from conftest import FakeRedis
from outcome_eval.store import PredictionStore
from services.controller import PipelineController
from services.pipeline.main import main, run
from signal_detect.reasoning_client import DisabledReasoner
from alert_engine.notifier import PredictionNotifier


def _controller(redis_client):
    s = Settings()
    s.bus.max_retries = 2
    s.bus.backoff_base_secs = 0.0
    s.bus.backoff_cap_secs = 0.0
    s.bus.block_ms = 10
    return s, PipelineController(
        s,
        client_factory=lambda: redis_client,
        sources=lambda: [],
        reasoner=DisabledReasoner("off"),
        store=PredictionStore(),
        notifier=PredictionNotifier([]),
    )


ARGS = argparse.Namespace(date=None, speed=1.0, no_replay=True)


def test_bus_down_at_boot_exits_1():
    settings, controller = _controller(FakeRedis(fail_ping=True))
    assert asyncio.run(run(ARGS, settings, controller)) == 1


def test_runs_until_stopped():
    async def scenario():
        settings, controller = _controller(FakeRedis())
        stop = asyncio.Event()
        stop.set()
        rc = await run(ARGS, settings, controller, stop)
        return rc, controller

    rc, controller = asyncio.run(scenario())
    assert rc == 0
    assert not controller.reasoning.running
    assert not controller.evaluation.running


def test_speed_below_one_is_rejected():
    assert main(["--speed", "0.5"]) == 2
