"""
Overlay presenter application service.

Owns the region cache for the currently attached surface and remembers the
last opacity and pixelation level so a surface attached later starts with
them. Every method runs on the presentation context.
"""
import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np

from shade.core.config import settings
from shade.domains.detection.entities.detection import DetectionBox
from shade.domains.visualization.services.overlay_region_cache import OverlayRegionCache
from shade.infrastructure.presentation.overlay_surface import OverlaySurface, OverlaySurfaceHandle
from shade.utils.error_handler import ComponentType, pipeline_error_handler

logger = logging.getLogger(__name__)


class OverlayPresenter:
    """Bridges pipeline results to whichever overlay surface is attached."""

    def __init__(self, handle: Optional[OverlaySurfaceHandle] = None):
        self.handle = handle or OverlaySurfaceHandle()
        self.cache: Optional[OverlayRegionCache] = None
        self.pending_opacity = settings.DEFAULT_OVERLAY_OPACITY
        self.pending_pixelation = settings.DEFAULT_DOWNSAMPLE_FACTOR
        self.updates_presented = 0

        if self.handle.attached:
            self._build_cache()

    def _build_cache(self) -> None:
        self.cache = OverlayRegionCache()
        self.cache.set_opacity(self.pending_opacity)
        self.cache.set_pixelation_level(self.pending_pixelation)

    def attach(self, surface: OverlaySurface) -> None:
        if self.handle.attached:
            self.detach()
        self.handle.attach(surface)
        self._build_cache()

    def detach(self) -> None:
        if self.cache is not None:
            self.cache.release()
            self.cache = None
        self.handle.detach()

    @pipeline_error_handler.guard(ComponentType.OVERLAY, operation="update_detections")
    def update_detections(self, boxes: Sequence[DetectionBox], frame: np.ndarray) -> None:
        """Rebuild regions for `boxes` on `frame` and render them. No-op without a surface."""
        surface = self.handle.get()
        if surface is None or self.cache is None:
            return

        self.cache.update(boxes, frame, surface.size)
        surface.render(self.cache.patches())
        self.updates_presented += 1

    @pipeline_error_handler.guard(ComponentType.OVERLAY, operation="clear")
    def clear(self) -> None:
        surface = self.handle.get()
        if self.cache is not None:
            self.cache.clear()
        if surface is not None:
            surface.clear()

    def set_opacity(self, percent: float) -> None:
        self.pending_opacity = min(max(float(percent), 0.0), 100.0)
        surface = self.handle.get()
        if self.cache is None or surface is None:
            return
        self.cache.set_opacity(self.pending_opacity)
        if self.cache.regions:
            surface.render(self.cache.patches())

    def set_pixelation_level(self, level: int) -> None:
        self.pending_pixelation = int(level)
        if self.cache is not None:
            self.cache.set_pixelation_level(self.pending_pixelation)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "surface_attached": self.handle.attached,
            "updates_presented": self.updates_presented,
            "opacity_percent": self.pending_opacity,
            "pixelation_level": self.pending_pixelation,
            "cache": self.cache.get_statistics() if self.cache is not None else None
        }
