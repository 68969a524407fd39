# alert_engine/sinks/base.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol

from common.schemas import Prediction

Alert = Dict[str, Any]


def prediction_alert(prediction: Prediction, prediction_id: Optional[str] = None) -> Alert:
    """Flatten a prediction into the dict every sink formats from."""
    alert = prediction.model_dump(mode="json")
    alert["prediction_id"] = prediction_id
    return alert


@dataclass
class SinkMetrics:
    """Per-sink counters for one process run."""
    attempted: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class AlertSink(Protocol):
    """Protocol for all sinks. Concrete sinks should update self.metrics."""
    name: str
    dry_run: bool
    metrics: SinkMetrics

    def emit(self, alert: Alert) -> bool: ...
    def flush(self) -> None: ...


class BaseSink:
    name: str = "base"

    def __init__(self, *, dry_run: bool = True) -> None:
        self.dry_run = dry_run
        self.metrics = SinkMetrics()

    def emit(self, alert: Alert) -> bool:  # pragma: no cover (interface)
        raise NotImplementedError

    def flush(self) -> None:
        pass

    def _on_attempt(self) -> None:
        self.metrics.attempted += 1

    def _on_sent(self) -> None:
        self.metrics.sent += 1

    def _on_skip(self) -> None:
        self.metrics.skipped += 1

    def _on_error(self) -> None:
        self.metrics.errors += 1
