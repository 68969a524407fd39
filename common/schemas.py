from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from common.errors import MalformedRecordError
from shared.datetime_utils import ensure_utc, parse_to_utc

Kind = Literal["news", "price"]
Direction = Literal["bullish", "bearish", "neutral"]
Movement = Literal["up", "down", "neutral"]

DIRECTIONS: Tuple[str, ...] = ("bullish", "bearish", "neutral")

# Prediction events ride the news topic; this source marks them.
PREDICTION_SOURCE = "reasoning-engine"


def _coerce_timestamp(v: Any) -> datetime:
    if isinstance(v, datetime):
        return ensure_utc(v)
    if isinstance(v, str):
        return parse_to_utc(v)
    raise ValueError("timestamp must be an ISO-8601 string or datetime")


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: datetime
    source: str = Field(min_length=1)
    symbol: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _validate_timestamp(cls, v: Any) -> datetime:
        return _coerce_timestamp(v)

    @field_validator("symbol", mode="before")
    @classmethod
    def _canon_symbol(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        s = str(v).strip().upper()
        return s or None


class NewsEvent(_EventBase):
    kind: Literal["news"] = "news"
    headline: str = Field(min_length=1)
    sentiment_score: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    sentiment_label: Optional[str] = None


class PriceEvent(_EventBase):
    kind: Literal["price"] = "price"
    price: float = Field(gt=0)
    open: Optional[float] = Field(default=None, ge=0)
    high: Optional[float] = Field(default=None, ge=0)
    low: Optional[float] = Field(default=None, ge=0)
    close: Optional[float] = Field(default=None, ge=0)
    volume: Optional[float] = Field(default=None, ge=0)


MarketEvent = Annotated[Union[NewsEvent, PriceEvent], Field(discriminator="kind")]
_EVENT_ADAPTER: TypeAdapter = TypeAdapter(MarketEvent)


def parse_event(payload: Union[Mapping[str, Any], str, bytes]) -> Union[NewsEvent, PriceEvent]:
    """Validate a mapping (or its JSON text) into NewsEvent/PriceEvent.

    Raises MalformedRecordError; never returns a partially valid event.
    """
    try:
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        return _EVENT_ADAPTER.validate_python(payload)
    except (ValidationError, ValueError, TypeError) as e:
        raise MalformedRecordError(f"invalid market event: {e}") from e


class Prediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    symbol: Optional[str] = None
    direction: Direction
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = Field(min_length=1)
    time_horizon: str = "24h"
    correlated_headlines: Tuple[str, ...] = ()
    price_target: Optional[float] = None
    model: str = "unknown"

    @field_validator("timestamp", mode="before")
    @classmethod
    def _validate_timestamp(cls, v: Any) -> datetime:
        return _coerce_timestamp(v)


class PendingPrediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    prediction_id: str
    baseline_symbol: str
    baseline_price: float = Field(gt=0)
    created_at: datetime
    direction: Direction
    confidence: float = Field(ge=0.0, le=1.0)


class OutcomeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    prediction_id: str
    symbol: str
    direction: Direction
    confidence: float
    baseline_price: float
    latest_price: float
    actual_movement: Movement
    price_delta: float
    percent_delta: float
    correct: bool
    recorded_at: datetime


class DirectionStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    correct: int = 0
    accuracy: float = 0.0


class PerformanceMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_predictions: int = 0
    correct_predictions: int = 0
    accuracy: float = 0.0
    average_confidence: float = 0.0
    by_direction: Dict[str, DirectionStats] = Field(
        default_factory=lambda: {d: DirectionStats() for d in DIRECTIONS}
    )
    recommended_threshold: float = 0.8


def is_prediction_event(event: Any) -> bool:
    return (
        isinstance(event, NewsEvent)
        and event.source == PREDICTION_SOURCE
        and bool(event.meta.get("prediction_id"))
    )


def prediction_event(
    prediction: Prediction,
    prediction_id: str,
    *,
    baseline_price: Optional[float] = None,
) -> NewsEvent:
    """Wrap a prediction as a news-kind event for the bus."""
    headline = f"{prediction.direction.upper()} prediction ({prediction.confidence:.0%} confidence)"
    if prediction.symbol:
        headline = f"{prediction.symbol}: {headline}"
    return NewsEvent(
        timestamp=prediction.timestamp,
        symbol=prediction.symbol,
        source=PREDICTION_SOURCE,
        headline=headline,
        meta={
            "prediction_id": prediction_id,
            "direction": prediction.direction,
            "confidence": prediction.confidence,
            "reasoning": prediction.reasoning,
            "time_horizon": prediction.time_horizon,
            "correlated_headlines": list(prediction.correlated_headlines),
            "price_target": prediction.price_target,
            "model": prediction.model,
            "baseline_symbol": prediction.symbol,
            "baseline_price": baseline_price,
        },
    )
