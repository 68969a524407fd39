# signal_detect/heuristic.py
"""
Deterministic sentiment fallback used when the reasoning service is down.

    avg > 0.6 -> bullish     confidence = min(0.5 + |avg - 0.5|, 0.9)
    avg < 0.4 -> bearish     confidence = min(0.5 + |avg - 0.5|, 0.9)
    otherwise -> neutral     confidence = 0.6
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from common.schemas import NewsEvent, PriceEvent, Prediction

BULLISH_ABOVE = 0.6
BEARISH_BELOW = 0.4
NEUTRAL_CONFIDENCE = 0.6
MAX_CONFIDENCE = 0.9
TOP_HEADLINES = 3
FALLBACK_MODEL = "sentiment-fallback"


def average_sentiment(news: Sequence[NewsEvent]) -> Optional[float]:
    scores = [ev.sentiment_score for ev in news if ev.sentiment_score is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def classify_sentiment(avg: float) -> str:
    if avg > BULLISH_ABOVE:
        return "bullish"
    if avg < BEARISH_BELOW:
        return "bearish"
    return "neutral"


def fallback_confidence(avg: float, direction: str) -> float:
    if direction == "neutral":
        return NEUTRAL_CONFIDENCE
    return min(0.5 + abs(avg - 0.5), MAX_CONFIDENCE)


def top_headlines(news: Sequence[NewsEvent], n: int = TOP_HEADLINES) -> List[str]:
    return [ev.headline for ev in news[:n] if ev.headline]


def latest_price(prices: Sequence[PriceEvent]) -> Optional[PriceEvent]:
    if not prices:
        return None
    return max(prices, key=lambda ev: ev.timestamp)


def fallback_prediction(
    news: Sequence[NewsEvent],
    prices: Sequence[PriceEvent],
    now: datetime,
) -> Optional[Prediction]:
    """None when no news item in the window carries a numeric sentiment."""
    avg = average_sentiment(news)
    if avg is None:
        return None

    direction = classify_sentiment(avg)
    confidence = fallback_confidence(avg, direction)
    headlines = top_headlines(news)
    reasoning = (
        f"Sentiment fallback over {len(news)} news article(s) "
        f"(average sentiment {avg:.3f}) indicates {direction} conditions."
    )
    if headlines:
        reasoning += " Key headlines: " + "; ".join(headlines)

    ref = latest_price(prices)
    return Prediction(
        timestamp=now,
        symbol=ref.symbol if ref else None,
        direction=direction,
        confidence=confidence,
        reasoning=reasoning,
        correlated_headlines=tuple(headlines),
        price_target=ref.price if ref else None,
        model=FALLBACK_MODEL,
    )
