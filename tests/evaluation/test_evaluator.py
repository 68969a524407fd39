import asyncio
from datetime import timedelta

from common.schemas import Prediction, prediction_event
from conftest import at, news, price
from outcome_eval.evaluator import OutcomeEvaluator
from outcome_eval.store import PredictionStore
from shared.clock import FixedClock


def _prediction_event(pid, direction="bullish", symbol="AAPL", ts=None, confidence=0.8, baseline=None):
    p = Prediction(timestamp=ts or at(), symbol=symbol, direction=direction,
                   confidence=confidence, reasoning="r")
    return prediction_event(p, pid, baseline_price=baseline)


def _evaluator(clock):
    return OutcomeEvaluator(PredictionStore(), maturation=timedelta(hours=24),
                            expiry=timedelta(days=7), clock=clock)


def test_prediction_resolves_after_maturation_against_same_symbol():
    clock = FixedClock(at())
    ev = _evaluator(clock)
    ev.handle_price(price(at(), 100.0, "AAPL"))
    ev.handle_price(price(at(), 30.0, "MSFT"))
    pending = ev.handle_prediction(_prediction_event("p1"))
    assert pending.baseline_price == 100.0
    assert pending.baseline_symbol == "AAPL"

    clock.set(at(hours=23))
    ev.handle_price(price(at(hours=23), 105.0, "AAPL"))
    assert asyncio.run(ev.evaluate_once()) == []

    clock.set(at(hours=24))
    ev.handle_price(price(at(hours=24), 90.0, "MSFT"))
    records = asyncio.run(ev.evaluate_once())
    assert len(records) == 1
    r = records[0]
    assert r.latest_price == 105.0
    assert r.actual_movement == "up"
    assert r.correct
    assert ev.pending == {}
    assert ev.last_metrics.accuracy == 1.0
    assert ev.store.outcomes() == [r]


def test_embedded_baseline_used_when_no_price_seen():
    ev = _evaluator(FixedClock(at()))
    pending = ev.handle_prediction(_prediction_event("p1", baseline=54.6))
    assert pending.baseline_price == 54.6


def test_prediction_without_baseline_is_untracked():
    ev = _evaluator(FixedClock(at()))
    assert ev.handle_prediction(_prediction_event("p1")) is None
    assert ev.status()["untracked"] == 1


def test_plain_news_and_duplicates_are_ignored():
    ev = _evaluator(FixedClock(at()))
    assert ev.handle_prediction(news(at(), score=0.9)) is None
    assert ev.handle_prediction(_prediction_event("p1", baseline=10.0)) is not None
    assert ev.handle_prediction(_prediction_event("p1", baseline=10.0)) is None
    assert len(ev.pending) == 1


def test_matured_prediction_without_price_waits_then_expires():
    clock = FixedClock(at())
    ev = _evaluator(clock)
    ev.handle_prediction(_prediction_event("p1", symbol="IBM", baseline=180.0))
    clock.set(at(days=2))
    assert asyncio.run(ev.evaluate_once()) == []
    assert "p1" in ev.pending
    clock.set(at(days=7))
    asyncio.run(ev.evaluate_once())
    assert ev.pending == {}
    assert ev.status()["expired"] == 1


def test_market_level_prediction_uses_market_bucket():
    clock = FixedClock(at())
    ev = _evaluator(clock)
    ev.handle_price(price(at(), 1300.0, symbol=None))
    pending = ev.handle_prediction(_prediction_event("p1", direction="neutral", symbol=None))
    assert pending.baseline_symbol == "MARKET"
    clock.set(at(days=1))
    ev.handle_price(price(at(days=1), 1305.0, symbol=None))
    (r,) = asyncio.run(ev.evaluate_once())
    assert r.actual_movement == "neutral"
    assert r.correct


def test_finished_ids_are_remembered_within_a_bound():
    clock = FixedClock(at())
    ev = OutcomeEvaluator(PredictionStore(), maturation=timedelta(hours=24), clock=clock, max_done=2)
    ev.handle_price(price(at(), 100.0, "AAPL"))
    for pid in ("p1", "p2", "p3"):
        ev.handle_prediction(_prediction_event(pid))
    clock.set(at(hours=24))
    ev.handle_price(price(at(hours=24), 101.0, "AAPL"))
    assert len(asyncio.run(ev.evaluate_once())) == 3

    assert len(ev._done) == 2
    assert ev.handle_prediction(_prediction_event("p3")) is None
    assert ev.handle_prediction(_prediction_event("p1")) is not None
    assert len(ev.pending) == 1
