"""Cache/throttle store for usage snapshots, settings and identity."""

from quotaring.storage.base import InMemoryStore, JsonFileStore, KeyValueStore, StoreTransaction
from quotaring.storage.usage_store import UsageStore

__all__ = [
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "StoreTransaction",
    "UsageStore",
]
