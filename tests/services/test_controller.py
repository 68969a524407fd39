import asyncio

from alert_engine.notifier import PredictionNotifier
from common.config import Settings
from conftest import FakeRedis, at, news, price
from data_ingest.sources import ReplaySource
from outcome_eval.store import PredictionStore
from services.controller import PipelineController
from shared.clock import FixedClock
from signal_detect.reasoning_client import DisabledReasoner


def _settings():
    s = Settings()
    s.bus.max_retries = 2
    s.bus.backoff_base_secs = 0.0
    s.bus.backoff_cap_secs = 0.0
    s.bus.block_ms = 10
    s.replay.base_delay_secs = 0.0
    s.replay.batch_size = 2
    return s


def _sources():
    return [
        ReplaySource.from_events("news.csv", [
            news(at(), headline="Apple beats estimates", score=0.9, symbol="AAPL"),
            news(at(minutes=5), headline="iPhone demand strong", score=0.8, symbol="AAPL"),
        ]),
        ReplaySource.from_events("prices.csv", [price(at(), 100.0), price(at(minutes=10), 101.0)]),
    ]


def _controller(redis_client, clock=None):
    return PipelineController(
        _settings(),
        client_factory=lambda: redis_client,
        sources=_sources,
        reasoner=DisabledReasoner("not configured"),
        store=PredictionStore(),
        notifier=PredictionNotifier([]),
        clock=clock or FixedClock(at(minutes=30)),
    )


async def _wait_for(cond, tries=300):
    for _ in range(tries):
        if cond():
            return True
        await asyncio.sleep(0.01)
    return False


def test_stream_request_validation():
    async def scenario():
        c = _controller(FakeRedis())
        out = [
            await c.start_stream("live"),
            await c.start_stream("realtime"),
            await c.start_stream("historical", speed=0.5),
            await c.start_stream("historical", speed="fast"),
            await c.stop_stream(),
        ]
        await c.shutdown()
        return out

    live, bad_mode, slow, nan, stop = asyncio.run(scenario())
    assert live["error"] == "not_available"
    assert bad_mode["error"] == "invalid_mode"
    assert slow["error"] == "invalid_speed"
    assert nan["error"] == "invalid_speed"
    assert stop == {"status": "not_running"}


def test_second_start_reports_already_running():
    async def scenario():
        c = _controller(FakeRedis())
        first = await c.start_stream("historical", speed=100)
        second = await c.start_stream("historical", speed=100)
        await _wait_for(lambda: c.replay.last_result is not None)
        status = c.status()
        await c.shutdown()
        return first, second, status

    first, second, status = asyncio.run(scenario())
    assert first["status"] == "started"
    assert second["status"] == "already_running"
    assert status["stream"]["last_result"]["published"] == 4


def test_unreachable_bus_is_reported():
    async def scenario():
        c = _controller(FakeRedis(fail_ping=True))
        stream = await c.start_stream("historical")
        reasoning = await c.start_reasoning()
        health = await c.health()
        await c.shutdown()
        return stream, reasoning, health

    stream, reasoning, health = asyncio.run(scenario())
    assert stream["error"] == "bus_unavailable"
    assert reasoning["error"] == "start_failed"
    assert health["status"] == "degraded"
    assert health["bus"] == "down"


def test_services_start_stop_idempotently():
    async def scenario():
        c = _controller(FakeRedis())
        out = [
            await c.start_evaluation(),
            await c.start_evaluation(),
            await c.start_reasoning(),
            await c.start_reasoning(),
            (await c.health())["status"],
            await c.stop_reasoning(),
            await c.stop_reasoning(),
            await c.stop_evaluation(),
            await c.stop_evaluation(),
        ]
        await c.shutdown()
        return out

    out = asyncio.run(scenario())
    assert [r if isinstance(r, str) else r["status"] for r in out] == [
        "started", "already_running", "started", "already_running", "ok",
        "stopped", "not_running", "stopped", "not_running",
    ]


def test_replay_to_prediction_to_outcome():
    async def scenario():
        clock = FixedClock(at(minutes=30))
        c = _controller(FakeRedis(), clock)
        assert (await c.start_evaluation())["status"] == "started"
        assert (await c.start_reasoning())["status"] == "started"
        assert (await c.start_stream("historical", speed=100))["status"] == "started"
        await _wait_for(lambda: len(c.reasoning.news) == 2 and len(c.reasoning.prices) == 2)

        result = await c.reasoning.analyze_once()
        await _wait_for(lambda: result.prediction_id in c.evaluator.pending)

        clock.set(at(days=2))
        records = await c.evaluation.evaluate_once()
        status = c.status()
        await c.shutdown()
        return result, records, status

    result, records, status = asyncio.run(scenario())
    assert result.used_fallback
    assert result.prediction.direction == "bullish"
    assert result.published
    assert len(records) == 1
    assert records[0].prediction_id == result.prediction_id
    # baseline is the latest AAPL price, and nothing moved since
    assert records[0].actual_movement == "neutral"
    assert not records[0].correct
    assert status["metrics"]["total_predictions"] == 1
    assert status["recommended_threshold"] == 0.8
    assert status["reasoning"]["fallbacks"] == 1
    assert status["clock"].startswith("2012-03-03")
