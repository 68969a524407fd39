# signal_detect/reasoning_client.py
"""
Client for an OpenAI-compatible chat completions endpoint that turns a window
of news and prices into a directional prediction.

Blocking (requests); callers on the event loop run it via asyncio.to_thread.
Every failure surfaces as CollaboratorUnavailable so the caller can fall back.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

import requests
from pydantic import ValidationError

from common.config import ReasoningSettings
from common.errors import CollaboratorUnavailable, ConfigurationError
from common.logging import get_logger
from common.schemas import DIRECTIONS, NewsEvent, PriceEvent, Prediction
from signal_detect.heuristic import latest_price

log = get_logger("signal_detect")

SYSTEM_PROMPT = (
    "You are an expert financial analyst. Analyze market news and price data to predict "
    "short-term trends. Respond in JSON format with: prediction (bullish/bearish/neutral), "
    "confidence (0-1), reasoning, timeHorizon, and optional priceTarget."
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_BULLISH_WORDS = ("bullish", "positive", "upward")
_BEARISH_WORDS = ("bearish", "negative", "downward")
TEXT_CONFIDENCE = 0.5


def build_prompt(news: Sequence[NewsEvent], prices: Sequence[PriceEvent]) -> str:
    headlines = "\n".join(
        f"- {ev.headline} (Sentiment: {ev.sentiment_label or 'n/a'}, "
        f"Score: {'n/a' if ev.sentiment_score is None else f'{ev.sentiment_score:.2f}'})"
        for ev in news
    )
    quotes = "\n".join(f"- {ev.symbol or 'MARKET'}: ${ev.price:.2f}" for ev in prices)
    return (
        "Analyze the following market data:\n\n"
        f"**Recent News:**\n{headlines or 'No news'}\n\n"
        f"**Current Prices:**\n{quotes or 'No price data'}\n\n"
        "Provide a prediction for the next 24-48 hours."
    )


def _classify_text(content: str) -> str:
    low = content.lower()
    if any(w in low for w in _BULLISH_WORDS):
        return "bullish"
    if any(w in low for w in _BEARISH_WORDS):
        return "bearish"
    return "neutral"


def parse_prediction(
    content: str,
    news: Sequence[NewsEvent],
    prices: Sequence[PriceEvent],
    *,
    now: datetime,
    model: str,
) -> Prediction:
    """
    Turn a model reply into a Prediction. A JSON object in the reply wins;
    otherwise the text is keyword-classified at confidence 0.5.
    Out-of-contract values raise CollaboratorUnavailable.
    """
    content = (content or "").strip()
    if not content:
        raise CollaboratorUnavailable("empty reasoning response")

    ref = latest_price(prices)
    headlines = tuple(ev.headline for ev in news if ev.headline)
    fields: Dict[str, Any] = {
        "timestamp": now,
        "symbol": ref.symbol if ref else None,
        "correlated_headlines": headlines,
        "model": model,
    }

    parsed: Optional[Dict[str, Any]] = None
    m = _JSON_OBJECT.search(content)
    if m:
        try:
            obj = json.loads(m.group(0))
            if isinstance(obj, dict):
                parsed = obj
        except ValueError:
            parsed = None

    if parsed is not None:
        direction = str(parsed.get("prediction") or parsed.get("direction") or "neutral").strip().lower()
        if direction not in DIRECTIONS:
            raise CollaboratorUnavailable(f"unclassifiable direction {direction!r}")
        raw_conf = parsed.get("confidence", TEXT_CONFIDENCE)
        try:
            confidence = float(raw_conf)
        except (TypeError, ValueError):
            raise CollaboratorUnavailable(f"non-numeric confidence {raw_conf!r}") from None
        if not 0.0 <= confidence <= 1.0:
            raise CollaboratorUnavailable(f"confidence {confidence} outside [0, 1]")
        target = parsed.get("priceTarget", parsed.get("price_target"))
        try:
            target = float(target) if target is not None else None
        except (TypeError, ValueError):
            target = None
        fields.update(
            direction=direction,
            confidence=confidence,
            reasoning=str(parsed.get("reasoning") or content),
            time_horizon=str(parsed.get("timeHorizon") or parsed.get("time_horizon") or "24h"),
            price_target=target,
        )
    else:
        fields.update(direction=_classify_text(content), confidence=TEXT_CONFIDENCE, reasoning=content)

    try:
        return Prediction(**fields)
    except ValidationError as e:
        raise CollaboratorUnavailable(f"invalid prediction: {e}") from e


class ReasoningClient:
    def __init__(
        self,
        api_url: Optional[str],
        api_key: Optional[str],
        *,
        model: str = "gpt-4o-mini",
        timeout_secs: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_url or not api_key:
            raise ConfigurationError("reasoning service needs REASONING_API_URL and REASONING_API_KEY")
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_secs = timeout_secs
        self.session = session or requests.Session()

    def analyze(
        self,
        news: Sequence[NewsEvent],
        prices: Sequence[PriceEvent],
        *,
        now: datetime,
    ) -> Prediction:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(news, prices)},
            ],
            "temperature": 0.3,
            "max_tokens": 500,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            resp = self.session.post(
                f"{self.api_url}/chat/completions", json=body, headers=headers, timeout=self.timeout_secs
            )
        except requests.RequestException as e:
            raise CollaboratorUnavailable(f"reasoning request failed: {e}") from e
        if resp.status_code != 200:
            raise CollaboratorUnavailable(f"reasoning service HTTP {resp.status_code}")
        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CollaboratorUnavailable(f"unexpected reasoning response shape: {e}") from e
        return parse_prediction(content, news, prices, now=now, model=self.model)


class DisabledReasoner:
    """Stand-in used when the reasoning service is not configured."""
    model = "disabled"

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def analyze(self, news, prices, *, now: datetime) -> Prediction:
        raise CollaboratorUnavailable(self.reason)


def reasoner_from_settings(settings: ReasoningSettings):
    try:
        return ReasoningClient(
            settings.api_url,
            settings.api_key,
            model=settings.model,
            timeout_secs=settings.timeout_secs,
        )
    except ConfigurationError as e:
        log.warning("reasoning collaborator disabled: %s; using sentiment fallback", e)
        return DisabledReasoner(str(e))
