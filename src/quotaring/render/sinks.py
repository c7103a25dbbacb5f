"""Destinations for rendered icon sets."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog
from PIL import Image

logger = structlog.get_logger(__name__)


@runtime_checkable
class IconSink(Protocol):
    """Receives one complete icon set (size → image) per draw."""

    def set_icon(self, images: dict[int, Image.Image]) -> None: ...


class MemoryIconSink:
    """Keeps every icon set it receives; used in tests and when embedding."""

    def __init__(self, keep: int | None = None) -> None:
        self._keep = keep
        self.history: list[dict[int, Image.Image]] = []
        self.calls = 0

    def set_icon(self, images: dict[int, Image.Image]) -> None:
        self.calls += 1
        self.history.append(images)
        if self._keep is not None and len(self.history) > self._keep:
            del self.history[: len(self.history) - self._keep]

    @property
    def latest(self) -> dict[int, Image.Image] | None:
        return self.history[-1] if self.history else None


class PngDirectorySink:
    """Writes ``icon-<size>.png`` files into a directory, replacing the previous set."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def set_icon(self, images: dict[int, Image.Image]) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        for size, image in images.items():
            path = self._directory / f"icon-{size}.png"
            tmp = path.with_suffix(".png.tmp")
            image.save(tmp, format="PNG")
            tmp.replace(path)
        logger.debug("icons_written", directory=str(self._directory), sizes=sorted(images))
