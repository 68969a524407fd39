# alert_engine/sinks/slack.py
from __future__ import annotations

import json
import random
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from common.config import AlertSettings
from common.logging import get_logger

from .base import Alert, BaseSink

log = get_logger("alert_engine")

_EMOJI = {"bullish": ":ox:", "bearish": ":bear:", "neutral": ":arrow_right:"}
REASONING_PREVIEW = 200


class SlackSink(BaseSink):
    """
    Slack incoming-webhook sink for predictions.

    DRY-RUN (default) prints what would be posted. Live mode POSTs with retries
    on 5xx/transport errors and optional rate limiting. Errors are counted in
    metrics, never raised.
    """
    name = "slack"

    def __init__(
        self,
        *,
        webhook_url: Optional[str],
        mention: Optional[str] = None,
        timeout_secs: float = 5.0,
        rate_per_sec: float = 0.0,
        dry_run: bool = True,
        attempts: int = 3,
        backoff_base: float = 0.5,
        sleep=time.sleep,
    ) -> None:
        super().__init__(dry_run=dry_run)
        self.webhook_url = webhook_url
        self.mention = mention
        self.timeout_secs = timeout_secs
        self.rate_per_sec = rate_per_sec
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self._sleep = sleep

        # Rate limiter state
        self._min_interval = 1.0 / rate_per_sec if rate_per_sec and rate_per_sec > 0 else 0.0
        self._next_post_time = 0.0

    @classmethod
    def from_settings(cls, settings: AlertSettings, *, webhook_url: Optional[str] = None,
                      live: Optional[bool] = None) -> "SlackSink":
        return cls(
            webhook_url=webhook_url or settings.slack_webhook_url,
            mention=settings.slack_mention,
            timeout_secs=settings.slack_timeout_secs,
            rate_per_sec=settings.slack_rate_per_sec,
            dry_run=not (settings.sinks_live if live is None else live),
        )

    # --- Formatting helpers ---

    @staticmethod
    def _headline(alert: Alert) -> str:
        direction = str(alert.get("direction") or "neutral")
        conf = float(alert.get("confidence") or 0.0)
        return f"{_EMOJI.get(direction, '')} *{direction.upper()}* signal ({conf * 100:.1f}% confidence)".strip()

    def _format_preview(self, alert: Alert) -> str:
        symbol = alert.get("symbol") or "Market"
        horizon = alert.get("time_horizon") or "24h"
        reasoning = str(alert.get("reasoning") or "")[:REASONING_PREVIEW]
        pid = alert.get("prediction_id") or "(unstored)"
        mention_s = f" mention={self.mention}" if self.mention else ""
        return f"{self._headline(alert)}\n  symbol={symbol} horizon={horizon} id={pid}\n  {reasoning}{mention_s}"

    def _build_payload(self, alert: Alert) -> Dict[str, Any]:
        direction = str(alert.get("direction") or "neutral")
        conf = float(alert.get("confidence") or 0.0)
        symbol = alert.get("symbol") or "Market"
        horizon = alert.get("time_horizon") or "24h"
        reasoning = str(alert.get("reasoning") or "")
        if len(reasoning) > REASONING_PREVIEW:
            reasoning = reasoning[:REASONING_PREVIEW] + "..."
        mention = f"\n{self.mention}" if self.mention else ""

        blocks = [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*{_EMOJI.get(direction, '')} {direction.upper()} Prediction*\n\n"
                        f"*Confidence:* {conf * 100:.1f}%\n*Symbol:* {symbol}\n*Horizon:* {horizon}\n\n"
                        f"*Reasoning:* {reasoning}{mention}"
                    ),
                },
            },
        ]
        headlines = alert.get("correlated_headlines")
        if isinstance(headlines, list) and headlines:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": "headlines: " + "; ".join(map(str, headlines[:3]))}],
            })
        return {"text": self._headline(alert), "blocks": blocks}

    # --- HTTP utilities ---

    def _rate_sleep_if_needed(self) -> None:
        if self._min_interval <= 0:
            return
        now = time.monotonic()
        if now < self._next_post_time:
            self._sleep(self._next_post_time - now)
        self._next_post_time = max(now, self._next_post_time) + self._min_interval

    def _post_json(self, url: str, payload: Dict[str, Any]) -> tuple[int, str]:
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(url, data=data, headers={"Content-Type": "application/json"})
        with urllib.request.urlopen(req, timeout=self.timeout_secs) as resp:
            body = resp.read().decode("utf-8", "ignore")
            return resp.getcode() or 0, body

    def _backoff(self, i: int) -> float:
        return self.backoff_base * (2 ** (i - 1)) + random.uniform(0, 0.2)

    # --- Main ---

    def emit(self, alert: Alert) -> bool:
        self._on_attempt()

        if not self.webhook_url:
            self._on_skip()
            print("[Slack]" + ("[DRY-RUN]" if self.dry_run else "") + " SKIP (no webhook configured)")
            return False

        if self.dry_run:
            print(f"[Slack][DRY-RUN] Would POST to {self.webhook_url}:\n{self._format_preview(alert)}\n")
            self._on_sent()
            return True

        payload = self._build_payload(alert)
        for i in range(1, self.attempts + 1):
            try:
                self._rate_sleep_if_needed()
                status, body = self._post_json(self.webhook_url, payload)
                if 200 <= status < 300:
                    self._on_sent()
                    return True
                if 500 <= status < 600:
                    raise RuntimeError(f"HTTP {status}: {body}")
                log.error("slack: non-retriable HTTP %s: %s", status, body)
                self._on_error()
                return False
            except urllib.error.HTTPError as e:
                if e.code >= 500 and i < self.attempts:
                    backoff = self._backoff(i)
                    log.warning("slack: HTTP %s; retry %d/%d in %.2fs", e.code, i, self.attempts - 1, backoff)
                    self._sleep(backoff)
                    continue
                log.error("slack: HTTP %s: %s", e.code, getattr(e, "reason", ""))
                self._on_error()
                return False
            except (urllib.error.URLError, OSError, RuntimeError) as e:
                if i < self.attempts:
                    backoff = self._backoff(i)
                    log.warning("slack: %s; retry %d/%d in %.2fs", e, i, self.attempts - 1, backoff)
                    self._sleep(backoff)
                    continue
                log.error("slack: %s", e)
                self._on_error()
                return False
        return False
