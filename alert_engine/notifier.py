# alert_engine/notifier.py
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set

from common.config import AlertSettings
from common.logging import get_logger
from common.schemas import Prediction

from alert_engine.sinks import AlertSink, SlackSink, prediction_alert

log = get_logger("alert_engine")


class PredictionNotifier:
    """
    Fans a prediction out to every sink when its confidence reaches
    `min_confidence`. Sink failures are counted and logged, never raised,
    so alerting can't affect the pipeline.
    """

    def __init__(self, sinks: Sequence[AlertSink], *, min_confidence: float = 0.7) -> None:
        self.sinks: List[AlertSink] = list(sinks)
        self.min_confidence = min_confidence
        self.below_threshold = 0
        self._seen: Set[str] = set()

    @classmethod
    def from_settings(cls, settings: AlertSettings) -> "PredictionNotifier":
        sinks: List[AlertSink] = []
        if settings.slack_webhook_url:
            sinks.append(SlackSink.from_settings(settings))
        else:
            log.info("no SLACK_WEBHOOK_URL; notifications disabled")
        return cls(sinks, min_confidence=settings.slack_min_confidence)

    def notify(self, prediction: Prediction, prediction_id: Optional[str] = None) -> bool:
        """True if at least one sink accepted the alert."""
        if prediction.confidence < self.min_confidence:
            self.below_threshold += 1
            log.debug("prediction %s below notify threshold (%.2f < %.2f)",
                      prediction_id, prediction.confidence, self.min_confidence)
            return False
        if prediction_id:
            if prediction_id in self._seen:
                for s in self.sinks:
                    s.metrics.skipped += 1
                return False
            self._seen.add(prediction_id)

        alert = prediction_alert(prediction, prediction_id)
        delivered = False
        for s in self.sinks:
            try:
                delivered = bool(s.emit(alert)) or delivered
            except Exception as e:
                s.metrics.errors += 1
                log.error("[%s] ERROR: %s", getattr(s, "name", "sink"), e)
        if delivered:
            log.info("notification sent for %s (%s)", prediction_id, prediction.direction)
        return delivered

    def metrics(self) -> Dict[str, Dict[str, int]]:
        return {s.name: s.metrics.as_dict() for s in self.sinks}
