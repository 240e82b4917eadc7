"""
Presentation surface adapters.

The pipeline never draws to a display itself. It hands a batch of overlay
patches to whatever surface is attached, or drops the batch when none is.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import numpy as np

from shade.domains.visualization.entities.pixelated_region import OverlayPatch
from shade.shared.types import Size

logger = logging.getLogger(__name__)


class OverlaySurface(ABC):
    """Something that can show a batch of overlay patches."""

    @property
    @abstractmethod
    def size(self) -> Size:
        """(width, height) of the view in pixels."""
        pass

    @abstractmethod
    def render(self, patches: List[OverlayPatch]) -> None:
        """Replace what is shown with `patches`. Must not keep references to patch content."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryOverlaySurface(OverlaySurface):
    """Keeps a copy of the last rendered batch; backs the HTTP overlay endpoint."""

    def __init__(self, width: int, height: int):
        self._size = (width, height)
        self._patches: List[OverlayPatch] = []
        self._lock = threading.Lock()
        self._resize_listeners: List[Callable[[int, int], None]] = []
        self.render_count = 0

    @property
    def size(self) -> Size:
        return self._size

    def render(self, patches: List[OverlayPatch]) -> None:
        copies = [OverlayPatch(np.array(p.content, copy=True), tuple(p.bounds), p.opacity) for p in patches]
        with self._lock:
            self._patches = copies
            self.render_count += 1

    def clear(self) -> None:
        with self._lock:
            self._patches = []

    def snapshot(self) -> List[OverlayPatch]:
        with self._lock:
            return list(self._patches)

    def add_resize_listener(self, listener: Callable[[int, int], None]) -> None:
        self._resize_listeners.append(listener)

    def resize(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid surface size {width}x{height}")
        if (width, height) == self._size:
            return
        self._size = (width, height)
        logger.info(f"Overlay surface resized to {width}x{height}")
        for listener in list(self._resize_listeners):
            listener(width, height)


class OverlaySurfaceHandle:
    """Optional reference to the current surface; the surface may come and go independently."""

    def __init__(self, surface: Optional[OverlaySurface] = None):
        self._surface = surface

    def attach(self, surface: OverlaySurface) -> None:
        self._surface = surface
        logger.info(f"Overlay surface attached: {type(surface).__name__} {surface.size}")

    def detach(self) -> Optional[OverlaySurface]:
        surface, self._surface = self._surface, None
        if surface is not None:
            logger.info("Overlay surface detached")
        return surface

    def get(self) -> Optional[OverlaySurface]:
        return self._surface

    @property
    def attached(self) -> bool:
        return self._surface is not None
