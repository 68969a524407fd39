"""
Runtime settings for every market-pulse stage.

All values come from environment variables and are resolved when `from_env()`
is called, never at import time, so tests can monkeypatch the environment
before building a stage. Malformed numbers fall back to the default with a
warning instead of stopping the process.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

_LOG = logging.getLogger(__name__)

Env = Mapping[str, str]


def _str(env: Env, name: str, default: Optional[str] = None) -> Optional[str]:
    v = env.get(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _int(env: Env, name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        _LOG.warning("config: %s=%r is not an integer; using %s", name, raw, default)
        return default


def _float(env: Env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        _LOG.warning("config: %s=%r is not a number; using %s", name, raw, default)
        return default


def _bool(env: Env, name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BusSettings:
    redis_url: str = "redis://localhost:6379/0"
    topic_news: str = "market.news"
    topic_prices: str = "market.prices"
    max_retries: int = 8
    backoff_base_secs: float = 0.1
    backoff_cap_secs: float = 5.0
    block_ms: int = 1000
    read_count: int = 50
    dedupe_window: int = 10_000

    @classmethod
    def from_env(cls, env: Optional[Env] = None) -> "BusSettings":
        env = os.environ if env is None else env
        return cls(
            redis_url=_str(env, "REDIS_URL", cls.redis_url),
            topic_news=_str(env, "TOPIC_NEWS", cls.topic_news),
            topic_prices=_str(env, "TOPIC_PRICES", cls.topic_prices),
            max_retries=_int(env, "BUS_MAX_RETRIES", cls.max_retries),
            backoff_base_secs=_float(env, "BUS_BACKOFF_BASE_SECS", cls.backoff_base_secs),
            backoff_cap_secs=_float(env, "BUS_BACKOFF_CAP_SECS", cls.backoff_cap_secs),
            block_ms=_int(env, "BUS_BLOCK_MS", cls.block_ms),
            read_count=_int(env, "BUS_READ_COUNT", cls.read_count),
            dedupe_window=_int(env, "BUS_DEDUPE_WINDOW", cls.dedupe_window),
        )


@dataclass
class ReplaySettings:
    news_dir: str = "data/news"
    stocks_file: str = "data/stocks/prices.csv"
    batch_size: int = 100
    base_delay_secs: float = 0.01
    max_speed: float = 100.0
    presorted: bool = False
    data_start_date: str = "2010-01-04"
    data_end_date: str = "2013-11-26"

    @classmethod
    def from_env(cls, env: Optional[Env] = None) -> "ReplaySettings":
        env = os.environ if env is None else env
        return cls(
            news_dir=_str(env, "DATA_NEWS_DIR", cls.news_dir),
            stocks_file=_str(env, "DATA_STOCKS_FILE", cls.stocks_file),
            batch_size=max(1, _int(env, "REPLAY_BATCH_SIZE", cls.batch_size)),
            base_delay_secs=_float(env, "REPLAY_BASE_DELAY_SECS", cls.base_delay_secs),
            max_speed=_float(env, "REPLAY_MAX_SPEED", cls.max_speed),
            presorted=_bool(env, "REPLAY_PRESORTED", cls.presorted),
            data_start_date=_str(env, "DATA_START_DATE", cls.data_start_date),
            data_end_date=_str(env, "DATA_END_DATE", cls.data_end_date),
        )


@dataclass
class ReasoningSettings:
    buffer_size: int = 50
    interval_secs: float = 60.0
    window_secs: float = 3600.0
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout_secs: float = 30.0

    @classmethod
    def from_env(cls, env: Optional[Env] = None) -> "ReasoningSettings":
        env = os.environ if env is None else env
        return cls(
            buffer_size=_int(env, "REASONING_BUFFER_SIZE", cls.buffer_size),
            interval_secs=_float(env, "REASONING_INTERVAL_SECS", cls.interval_secs),
            window_secs=_float(env, "CORRELATION_WINDOW_SECS", cls.window_secs),
            api_url=_str(env, "REASONING_API_URL"),
            api_key=_str(env, "REASONING_API_KEY"),
            model=_str(env, "REASONING_MODEL", cls.model),
            timeout_secs=_float(env, "REASONING_TIMEOUT_SECS", cls.timeout_secs),
        )


@dataclass
class EvaluationSettings:
    buffer_size: int = 100
    interval_secs: float = 300.0
    warmup_secs: float = 60.0
    maturation_secs: float = 86_400.0
    expiry_secs: float = 604_800.0
    store_url: Optional[str] = None
    store_api_key: Optional[str] = None
    store_org_id: Optional[str] = None
    store_timeout_secs: float = 10.0

    @classmethod
    def from_env(cls, env: Optional[Env] = None) -> "EvaluationSettings":
        env = os.environ if env is None else env
        return cls(
            buffer_size=_int(env, "EVAL_BUFFER_SIZE", cls.buffer_size),
            interval_secs=_float(env, "EVAL_INTERVAL_SECS", cls.interval_secs),
            warmup_secs=_float(env, "EVAL_WARMUP_SECS", cls.warmup_secs),
            maturation_secs=_float(env, "EVAL_MATURATION_SECS", cls.maturation_secs),
            expiry_secs=_float(env, "EVAL_EXPIRY_SECS", cls.expiry_secs),
            store_url=_str(env, "PREDICTION_STORE_URL"),
            store_api_key=_str(env, "PREDICTION_STORE_API_KEY"),
            store_org_id=_str(env, "PREDICTION_STORE_ORG_ID"),
            store_timeout_secs=_float(env, "PREDICTION_STORE_TIMEOUT_SECS", cls.store_timeout_secs),
        )


@dataclass
class AlertSettings:
    slack_webhook_url: Optional[str] = None
    slack_min_confidence: float = 0.7
    slack_timeout_secs: float = 5.0
    slack_rate_per_sec: float = 0.0
    slack_mention: Optional[str] = None
    sinks_live: bool = False

    @classmethod
    def from_env(cls, env: Optional[Env] = None) -> "AlertSettings":
        env = os.environ if env is None else env
        return cls(
            slack_webhook_url=_str(env, "SLACK_WEBHOOK_URL"),
            slack_min_confidence=_float(env, "SLACK_MIN_CONFIDENCE", cls.slack_min_confidence),
            slack_timeout_secs=_float(env, "SLACK_TIMEOUT_SECS", cls.slack_timeout_secs),
            slack_rate_per_sec=_float(env, "SLACK_RATE_PER_SEC", cls.slack_rate_per_sec),
            slack_mention=_str(env, "SLACK_MENTION"),
            sinks_live=_bool(env, "ALERT_SINKS_LIVE"),
        )


@dataclass
class Settings:
    bus: BusSettings = field(default_factory=BusSettings)
    replay: ReplaySettings = field(default_factory=ReplaySettings)
    reasoning: ReasoningSettings = field(default_factory=ReasoningSettings)
    evaluation: EvaluationSettings = field(default_factory=EvaluationSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    clock: str = "event"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Env] = None) -> "Settings":
        env = os.environ if env is None else env
        clock = (_str(env, "PIPELINE_CLOCK", "event") or "event").lower()
        if clock not in ("event", "wall"):
            _LOG.warning("config: PIPELINE_CLOCK=%r unknown; using 'event'", clock)
            clock = "event"
        return cls(
            bus=BusSettings.from_env(env),
            replay=ReplaySettings.from_env(env),
            reasoning=ReasoningSettings.from_env(env),
            evaluation=EvaluationSettings.from_env(env),
            alerts=AlertSettings.from_env(env),
            clock=clock,
            log_level=_str(env, "LOG_LEVEL", "INFO"),
        )
