# alert_engine/sinks/__init__.py
from .base import Alert, AlertSink, BaseSink, SinkMetrics, prediction_alert  # re-export
from .slack import SlackSink

__all__ = [
    "Alert",
    "AlertSink",
    "BaseSink",
    "SinkMetrics",
    "SlackSink",
    "prediction_alert",
]
