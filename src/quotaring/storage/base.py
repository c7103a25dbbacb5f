"""Asynchronous key-value persistence.

Provides :class:`KeyValueStore` (abstract base), :class:`InMemoryStore` and
:class:`JsonFileStore`.  Every mutation goes through a
:meth:`KeyValueStore.transaction`: staged writes are applied together when
the block exits cleanly and discarded when it raises, so a reader never
observes half of a write.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog

from quotaring.core.exceptions import StorageError

logger = structlog.get_logger(__name__)


class StoreTransaction:
    """Staged view of the store inside a :meth:`KeyValueStore.transaction` block."""

    def __init__(self, data: dict[str, Any]) -> None:
        self._data = data
        self.dirty = False

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._data.get(key, default))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self.dirty = True

    def merge(self, key: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Overlay *patch* onto the dict stored at *key*; omitted fields are kept."""
        current = self._data.get(key)
        merged = dict(current) if isinstance(current, dict) else {}
        merged.update(copy.deepcopy(patch))
        self._data[key] = merged
        self.dirty = True
        return copy.deepcopy(merged)

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self.dirty = True

    def clear(self) -> None:
        if self._data:
            self._data.clear()
            self.dirty = True

    @property
    def data(self) -> dict[str, Any]:
        return self._data


class KeyValueStore(ABC):
    """Abstract async key-value store.

    Subclasses provide :meth:`_load` and :meth:`_persist`; the base class
    owns the lock, the in-memory image and the transaction semantics.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._data: dict[str, Any] | None = None

    @abstractmethod
    async def _load(self) -> dict[str, Any]:
        """Return the persisted image (called once, lazily)."""

    @abstractmethod
    async def _persist(self, data: dict[str, Any]) -> None:
        """Durably replace the persisted image with *data*."""

    async def _image(self) -> dict[str, Any]:
        if self._data is None:
            self._data = await self._load()
        return self._data

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """Scoped acquisition: all staged writes land together or not at all."""
        async with self._lock:
            image = await self._image()
            txn = StoreTransaction(copy.deepcopy(image))
            yield txn
            if txn.dirty:
                await self._persist(txn.data)
                self._data = txn.data

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            image = await self._image()
            return copy.deepcopy(image.get(key, default))

    async def set(self, key: str, value: Any) -> None:
        async with self.transaction() as txn:
            txn.set(key, value)

    async def merge(self, key: str, patch: dict[str, Any]) -> dict[str, Any]:
        async with self.transaction() as txn:
            return txn.merge(key, patch)

    async def remove(self, key: str) -> None:
        async with self.transaction() as txn:
            txn.remove(key)

    async def clear(self) -> None:
        async with self.transaction() as txn:
            txn.clear()


class InMemoryStore(KeyValueStore):
    """Process-local store; state is lost on exit."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._initial = copy.deepcopy(initial or {})
        self.commits = 0

    async def _load(self) -> dict[str, Any]:
        return self._initial

    async def _persist(self, data: dict[str, Any]) -> None:
        self.commits += 1


class JsonFileStore(KeyValueStore):
    """Store backed by a single JSON file.

    Writes go to a temporary file in the same directory followed by
    :func:`os.replace`, so the file on disk is always a complete image.

    Args:
        path: Location of the JSON file.  Parent directories are created on
            first write.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def _load(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._read)

    async def _persist(self, data: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, data)

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            loaded = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(
                f"Cannot read state file {self._path}: {exc}",
                code="STATE_UNREADABLE",
            ) from exc
        if not isinstance(loaded, dict):
            raise StorageError(
                f"State file {self._path} does not contain a JSON object",
                code="STATE_UNREADABLE",
            )
        logger.debug("state_loaded", path=str(self._path), keys=sorted(loaded))
        return loaded

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2, sort_keys=True)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(
                f"Cannot write state file {self._path}: {exc}",
                code="STATE_UNWRITABLE",
            ) from exc
