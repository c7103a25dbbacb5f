"""quotaring: quota usage monitor with a dual-ring status icon."""

from quotaring.__version__ import __version__
from quotaring.alerting import (
    AlertSeverity,
    AlertSink,
    CallbackAlertSink,
    LogAlertSink,
    ThresholdAlerter,
    UsageAlert,
    WebhookAlertSink,
)
from quotaring.core.config import ColorBand, MonitorConfig, NotificationSettings, Settings
from quotaring.core.constants import AnimationState, FetchSource, UsageError
from quotaring.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotConnectedError,
    ParseFailureError,
    QuotaRingError,
    ScrapeTimeoutError,
    StorageError,
    TransientNetworkError,
)
from quotaring.core.types import (
    DeferredOutcome,
    ModelQuota,
    OrganizationIdentity,
    StrategyResult,
    UsageSnapshot,
    UsageView,
)
from quotaring.events import EventBus, FetchDeferred, FetchStarted, UsageDataUpdated
from quotaring.events.messages import MessageRouter
from quotaring.fetch import (
    ContentRenderer,
    FetchStrategyChain,
    QuotaApiClient,
    ResponseNormalizer,
    ScrapeBridge,
    normalize,
)
from quotaring.monitor import UsageMonitor
from quotaring.render import AnimationController, IconRenderer, MemoryIconSink, PngDirectorySink
from quotaring.scheduling import RefreshScheduler
from quotaring.storage import InMemoryStore, JsonFileStore, UsageStore
from quotaring.utils.logging import configure_logging

__all__ = [
    "__version__",
    # Core
    "UsageMonitor",
    "MonitorConfig",
    "Settings",
    "ColorBand",
    "NotificationSettings",
    "UsageSnapshot",
    "ModelQuota",
    "OrganizationIdentity",
    "StrategyResult",
    "DeferredOutcome",
    "UsageView",
    "FetchSource",
    "UsageError",
    "AnimationState",
    # Errors
    "QuotaRingError",
    "ConfigurationError",
    "StorageError",
    "NotConnectedError",
    "AuthenticationError",
    "TransientNetworkError",
    "ParseFailureError",
    "ScrapeTimeoutError",
    # Acquisition
    "FetchStrategyChain",
    "QuotaApiClient",
    "ResponseNormalizer",
    "ScrapeBridge",
    "ContentRenderer",
    "normalize",
    # Storage
    "UsageStore",
    "InMemoryStore",
    "JsonFileStore",
    # Events
    "EventBus",
    "FetchStarted",
    "FetchDeferred",
    "UsageDataUpdated",
    "MessageRouter",
    # Rendering
    "IconRenderer",
    "AnimationController",
    "MemoryIconSink",
    "PngDirectorySink",
    # Alerting
    "ThresholdAlerter",
    "UsageAlert",
    "AlertSeverity",
    "AlertSink",
    "LogAlertSink",
    "CallbackAlertSink",
    "WebhookAlertSink",
    # Scheduling
    "RefreshScheduler",
    # Utilities
    "configure_logging",
]
