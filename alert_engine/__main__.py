# alert_engine/__main__.py
"""
market-pulse: alert_engine notification harness

Sends one prediction through the configured sinks and prints sink metrics.
Useful to check a Slack webhook before running the pipeline.

- DRY-RUN by default; --sinks-live enables real Slack POSTs.
- Live mode preflight exits 2 when no webhook is configured.
- --sample-json reads the prediction from a JSON file instead of the built-in sample.
- --fail-on-sink-error exits 2 if any sink counted an error.
"""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from pydantic import ValidationError

from alert_engine.notifier import PredictionNotifier
from alert_engine.sinks import SlackSink
from common.config import AlertSettings
from common.schemas import Prediction

SAMPLE_PREDICTION = {
    "symbol": "AAPL",
    "direction": "bullish",
    "confidence": 0.82,
    "reasoning": "Sample alert from the alert_engine harness: positive earnings coverage "
                 "outweighs supply-chain concerns.",
    "time_horizon": "24h",
    "correlated_headlines": ["Apple beats earnings estimates", "iPhone demand stays strong"],
    "model": "harness-sample",
}


def add_sink_args(parser: argparse.ArgumentParser) -> None:
    g = parser.add_argument_group("Slack sink")
    g.add_argument("--slack-webhook", dest="slack_webhook", help="Slack Incoming Webhook URL (or env SLACK_WEBHOOK_URL)")
    g.add_argument("--slack-timeout", dest="slack_timeout", type=float, help="Timeout secs (env SLACK_TIMEOUT_SECS)")
    g.add_argument("--slack-mention", dest="slack_mention", help="Optional @mention text (env SLACK_MENTION)")
    g.add_argument("--min-confidence", dest="min_confidence", type=float,
                   help="Only notify at or above this confidence (env SLACK_MIN_CONFIDENCE)")

    parser.add_argument(
        "--sinks-live",
        action="store_true",
        help="Enable LIVE sends (Slack POST). Default is DRY-RUN without this flag.",
    )
    parser.add_argument(
        "--fail-on-sink-error",
        action="store_true",
        help="Exit non-zero if any sink errors during send.",
    )


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="python -m alert_engine",
        description="market-pulse notification harness (Slack sink, DRY-RUN by default).",
    )
    p.add_argument("--sample-json", help="Path to a JSON prediction to send instead of the built-in sample")
    add_sink_args(p)
    return p.parse_args(argv)


def _load_prediction(path: str | None) -> Prediction:
    data = dict(SAMPLE_PREDICTION)
    if path:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    data.setdefault("timestamp", datetime.now(timezone.utc))
    return Prediction(**data)


def _settings_from_args(args) -> AlertSettings:
    s = AlertSettings.from_env()
    if args.slack_webhook:
        s.slack_webhook_url = args.slack_webhook
    if args.slack_timeout is not None:
        s.slack_timeout_secs = args.slack_timeout
    if args.slack_mention:
        s.slack_mention = args.slack_mention
    if args.min_confidence is not None:
        s.slack_min_confidence = args.min_confidence
    s.sinks_live = bool(args.sinks_live)
    return s


def _preflight_live_or_die(settings: AlertSettings) -> None:
    if not settings.sinks_live:
        return
    if not settings.slack_webhook_url:
        print("[alert_engine] LIVE mode preflight failed:")
        print(" - Slack: missing webhook URL (use --slack-webhook or SLACK_WEBHOOK_URL).")
        raise SystemExit(2)


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    settings = _settings_from_args(args)
    _preflight_live_or_die(settings)

    try:
        prediction = _load_prediction(args.sample_json)
    except (OSError, ValueError, ValidationError) as e:
        print(f"[alert_engine] ERROR: cannot load prediction: {e}")
        return 2

    notifier = PredictionNotifier([SlackSink.from_settings(settings)], min_confidence=settings.slack_min_confidence)
    print("[alert_engine] " + ("LIVE sink mode enabled." if settings.sinks_live else "DRY-RUN sink mode (no network)."))

    delivered = notifier.notify(prediction, "harness_sample")
    if not delivered and prediction.confidence < notifier.min_confidence:
        print(f"[alert_engine] Prediction confidence {prediction.confidence:.2f} "
              f"below threshold {notifier.min_confidence:.2f}; nothing sent.")

    any_errors = False
    print("\n=== Sink metrics ===")
    for s in notifier.sinks:
        m = s.metrics
        print(f"{s.name}: attempted={m.attempted} sent={m.sent} skipped={m.skipped} errors={m.errors}")
        if m.errors > 0:
            any_errors = True

    if any_errors and args.fail_on_sink_error:
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
