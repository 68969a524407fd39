# outcome_eval/store.py
"""
Prediction record store.

Always keeps an in-memory copy of predictions and outcome records. When a
remote REST store is configured, predictions are POSTed to /predictions and
outcomes PATCHed to /predictions/{id}; remote failures degrade to local-only
and are logged, never raised.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from common.config import EvaluationSettings
from common.logging import get_logger
from common.schemas import OutcomeRecord, PerformanceMetrics, Prediction
from outcome_eval.metrics import compute_metrics

log = get_logger("outcome_eval")

SERVICE_NAME = "market-pulse"


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class PredictionStore:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        org_id: Optional[str] = None,
        *,
        timeout_secs: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.org_id = org_id
        self.timeout_secs = timeout_secs
        self.remote_enabled = bool(self.base_url and api_key and org_id)
        self.session = session or (requests.Session() if self.remote_enabled else None)
        self._predictions: Dict[str, Prediction] = {}
        self._outcomes: Dict[str, OutcomeRecord] = {}
        if base_url and not self.remote_enabled:
            log.warning("prediction store: PREDICTION_STORE_API_KEY/ORG_ID missing; storing locally only")

    @classmethod
    def from_settings(cls, settings: EvaluationSettings) -> "PredictionStore":
        return cls(
            settings.store_url,
            settings.store_api_key,
            settings.store_org_id,
            timeout_secs=settings.store_timeout_secs,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-Org-ID": self.org_id or "",
            "Content-Type": "application/json",
        }

    def _send(self, method: str, path: str, payload: Dict[str, Any]) -> None:
        resp = self.session.request(
            method, f"{self.base_url}{path}", json=payload, headers=self._headers(), timeout=self.timeout_secs
        )
        resp.raise_for_status()

    def store(self, prediction: Prediction) -> str:
        if self.remote_enabled:
            pid = _new_id("pred")
            payload = {
                "id": pid,
                "prediction": prediction.model_dump(mode="json"),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "context": {"service": SERVICE_NAME, "model": prediction.model},
            }
            try:
                self._send("POST", "/predictions", payload)
                self._predictions[pid] = prediction
                log.info("prediction stored remotely: %s", pid)
                return pid
            except requests.RequestException as e:
                log.error("prediction store POST failed (%s); storing locally", e)

        pid = _new_id("local")
        self._predictions[pid] = prediction
        log.info("prediction stored locally: %s", pid)
        return pid

    def record_outcome(self, record: OutcomeRecord) -> bool:
        """Append an outcome; a second record for the same prediction is ignored."""
        if record.prediction_id in self._outcomes:
            log.warning("outcome for %s already recorded; ignoring", record.prediction_id)
            return False
        self._outcomes[record.prediction_id] = record

        if self.remote_enabled:
            payload = {
                "outcome": {
                    "actualMovement": record.actual_movement,
                    "priceChange": record.price_delta,
                    "percentChange": record.percent_delta,
                    "recordedAt": record.recorded_at.isoformat(),
                },
                "accuracy": {"correct": record.correct, "confidence": record.confidence},
            }
            try:
                self._send("PATCH", f"/predictions/{record.prediction_id}", payload)
            except requests.RequestException as e:
                log.error("prediction store PATCH %s failed: %s", record.prediction_id, e)
        log.info("outcome recorded: %s %s", record.prediction_id, "CORRECT" if record.correct else "INCORRECT")
        return True

    def get(self, prediction_id: str) -> Optional[Prediction]:
        return self._predictions.get(prediction_id)

    def outcomes(self) -> List[OutcomeRecord]:
        return list(self._outcomes.values())

    def get_metrics(self) -> PerformanceMetrics:
        return compute_metrics(self._outcomes.values())

    def recommended_threshold(self) -> float:
        return self.get_metrics().recommended_threshold

    def clear(self) -> None:
        self._predictions.clear()
        self._outcomes.clear()
