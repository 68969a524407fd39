import urllib.error

from alert_engine.sinks import SlackSink, prediction_alert
from common.config import AlertSettings
from common.schemas import Prediction
from conftest import at

PRED = Prediction(timestamp=at(), symbol="AAPL", direction="bearish", confidence=0.85,
                  reasoning="x" * 300, correlated_headlines=("a", "b", "c", "d"))
ALERT = prediction_alert(PRED, "local_1")


def _live(responses, attempts=3):
    sink = SlackSink(webhook_url="https://hooks.slack.example/T/B/X", dry_run=False,
                     attempts=attempts, sleep=lambda s: None)
    calls = []

    def fake_post(url, payload):
        calls.append(payload)
        r = responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    sink._post_json = fake_post
    return sink, calls


def test_dry_run_prints_preview(capsys):
    sink = SlackSink(webhook_url="https://hooks.slack.example/T/B/X", mention="@oncall")
    assert sink.emit(ALERT)
    out = capsys.readouterr().out
    assert "[Slack][DRY-RUN] Would POST to https://hooks.slack.example/T/B/X" in out
    assert "*BEARISH* signal (85.0% confidence)" in out
    assert "id=local_1" in out
    assert "mention=@oncall" in out
    assert sink.metrics.as_dict() == {"attempted": 1, "sent": 1, "skipped": 0, "errors": 0}


def test_missing_webhook_is_a_skip(capsys):
    sink = SlackSink(webhook_url=None, dry_run=False)
    assert not sink.emit(ALERT)
    assert "SKIP (no webhook configured)" in capsys.readouterr().out
    assert sink.metrics.skipped == 1


def test_live_retries_server_errors_then_sends():
    sink, calls = _live([(503, "busy"), urllib.error.URLError("reset"), (200, "ok")])
    assert sink.emit(ALERT)
    assert len(calls) == 3
    assert sink.metrics.sent == 1
    assert sink.metrics.errors == 0
    payload = calls[0]
    assert payload["text"].startswith(":bear: *BEARISH*")
    section = payload["blocks"][0]["text"]["text"]
    assert "*Symbol:* AAPL" in section
    assert section.endswith("x" * 200 + "...")
    assert payload["blocks"][1]["elements"][0]["text"] == "headlines: a; b; c"


def test_live_client_error_is_not_retried():
    sink, calls = _live([(400, "invalid_payload")])
    assert not sink.emit(ALERT)
    assert len(calls) == 1
    assert sink.metrics.errors == 1


def test_live_gives_up_after_attempts():
    sink, calls = _live([(500, "a"), (502, "b")], attempts=2)
    assert not sink.emit(ALERT)
    assert len(calls) == 2
    assert sink.metrics.errors == 1


def test_from_settings_defaults_to_dry_run():
    s = AlertSettings(slack_webhook_url="https://hooks.slack.example/x", slack_mention="@here")
    sink = SlackSink.from_settings(s)
    assert sink.dry_run
    assert sink.mention == "@here"
    assert not SlackSink.from_settings(s, live=True).dry_run
