from quotaring.events.bus import EventBus
from quotaring.events.models import FetchDeferred, FetchStarted, UsageDataUpdated

__all__ = ["EventBus", "FetchDeferred", "FetchStarted", "UsageDataUpdated"]
