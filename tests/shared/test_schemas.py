import json

import pytest
from pydantic import ValidationError

from common.errors import MalformedRecordError
from common.schemas import (
    PREDICTION_SOURCE,
    NewsEvent,
    PriceEvent,
    Prediction,
    is_prediction_event,
    parse_event,
    prediction_event,
)
from conftest import at, news, price


def test_parse_event_dispatches_on_kind():
    n = parse_event({"kind": "news", "timestamp": "2012-03-01T14:00:00Z", "source": "Bloomberg",
                     "headline": "Stocks rally", "sentiment_score": 0.4})
    p = parse_event({"kind": "price", "timestamp": "2012-03-01", "source": "Kaggle",
                     "symbol": "aapl", "price": 54.1})
    assert isinstance(n, NewsEvent)
    assert isinstance(p, PriceEvent)
    assert p.symbol == "AAPL"


def test_round_trip_through_json():
    ev = price(at(), 54.1)
    assert parse_event(ev.model_dump_json()) == ev


@pytest.mark.parametrize("payload", [
    {"kind": "news", "timestamp": "garbage", "source": "x", "headline": "h"},
    {"kind": "news", "source": "x", "headline": "h"},
    {"kind": "news", "timestamp": "2012-03-01", "source": "x", "headline": ""},
    {"kind": "news", "timestamp": "2012-03-01", "source": "x", "headline": "h", "sentiment_score": 1.5},
    {"kind": "price", "timestamp": "2012-03-01", "source": "x", "price": 0},
    {"kind": "price", "timestamp": "2012-03-01", "source": "x", "price": 10, "headline": "mixed"},
    {"kind": "quote", "timestamp": "2012-03-01", "source": "x", "price": 10},
])
def test_malformed_payloads_rejected(payload):
    with pytest.raises(MalformedRecordError):
        parse_event(payload)


def test_malformed_json_rejected():
    with pytest.raises(MalformedRecordError):
        parse_event("{not json")


def test_events_are_immutable():
    ev = news(at(), headline="h")
    with pytest.raises(ValidationError):
        ev.headline = "changed"


def test_prediction_event_carries_prediction_and_baseline():
    pred = Prediction(timestamp=at(), symbol="AAPL", direction="bullish", confidence=0.8,
                      reasoning="because", correlated_headlines=("a", "b"))
    ev = prediction_event(pred, "local_1", baseline_price=54.1)
    assert ev.source == PREDICTION_SOURCE
    assert ev.symbol == "AAPL"
    assert ev.meta["prediction_id"] == "local_1"
    assert ev.meta["baseline_price"] == 54.1
    assert is_prediction_event(ev)
    # survives the bus encoding
    back = parse_event(json.loads(ev.model_dump_json()))
    assert is_prediction_event(back)
    assert back.meta["direction"] == "bullish"


def test_plain_news_is_not_a_prediction():
    assert not is_prediction_event(news(at()))
    assert not is_prediction_event(price(at(), 1.0))
