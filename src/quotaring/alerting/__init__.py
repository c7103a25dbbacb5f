from quotaring.alerting.models import AlertSeverity, UsageAlert
from quotaring.alerting.sinks import AlertSink, CallbackAlertSink, LogAlertSink, WebhookAlertSink
from quotaring.alerting.thresholds import ThresholdAlerter

__all__ = [
    "AlertSeverity",
    "AlertSink",
    "CallbackAlertSink",
    "LogAlertSink",
    "ThresholdAlerter",
    "UsageAlert",
    "WebhookAlertSink",
]
