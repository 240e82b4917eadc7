"""
Overlay Region Cache

Turns detection boxes into pixelated regions, reusing regions whose boxes
barely moved and recycling content buffers through a bounded pool.

Not thread-safe: all calls are expected on the presentation context.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from shade.core.config import settings
from shade.domains.detection.entities.detection import DetectionBox
from shade.domains.visualization.entities.pixelated_region import OverlayPatch, PixelatedRegion
from shade.domains.visualization.models.bitmap_pool import BitmapPool, next_power_of_two
from shade.domains.visualization.models.image_processor import ImageProcessor
from shade.shared.types import Size

logger = logging.getLogger(__name__)


class OverlayRegionCache:
    """Service for building and caching pixelated overlay regions."""

    def __init__(self, pool: Optional[BitmapPool] = None, image_processor: Optional[ImageProcessor] = None):
        self.pool = pool or BitmapPool(capacity=settings.MAX_BITMAP_POOL_SIZE)
        self.image_processor = image_processor or ImageProcessor()

        self.min_downsample = settings.MIN_DOWNSAMPLE_FACTOR
        self.max_downsample = settings.MAX_DOWNSAMPLE_FACTOR
        self.min_dimension = settings.MIN_BITMAP_DIMENSION
        self.box_tolerance = settings.BOX_SIMILARITY_THRESHOLD

        self.downsample_factor = settings.DEFAULT_DOWNSAMPLE_FACTOR
        self.opacity = 255
        self.set_opacity(settings.DEFAULT_OVERLAY_OPACITY)

        self._regions: List[PixelatedRegion] = []

        # Cache statistics
        self.cache_hits = 0
        self.cache_misses = 0
        self.synthesis_failures = 0

        logger.info("OverlayRegionCache initialized")

    @property
    def regions(self) -> List[PixelatedRegion]:
        return list(self._regions)

    def update(self, boxes: Sequence[DetectionBox], source_frame: np.ndarray, view_size: Size) -> List[PixelatedRegion]:
        """
        Replace the active region set with one region per box.

        A box reuses an unclaimed cached region when all four coordinates are
        within tolerance; each cached region is claimed at most once. Regions
        left unclaimed give their buffers back to the pool.

        Args:
            boxes: Boxes to cover, normalized
            source_frame: RGBA frame the boxes were detected on
            view_size: (width, height) of the presentation surface

        Returns:
            The new active region list
        """
        new_regions: List[PixelatedRegion] = []
        claimed = set()

        for box in boxes:
            cached = next(
                (r for r in self._regions if id(r) not in claimed and r.matches(box, self.box_tolerance)),
                None
            )
            if cached is not None:
                logger.debug("CACHE HIT: reusing pixelated region")
                self.cache_hits += 1
                claimed.add(id(cached))
                new_regions.append(cached)
                continue

            logger.debug("CACHE MISS: creating pixelated region")
            self.cache_misses += 1
            region = self._create_region(box, source_frame, view_size)
            if region is not None:
                new_regions.append(region)

        for old in self._regions:
            if id(old) not in claimed:
                self.pool.release(old.content)

        self._regions = new_regions
        return list(new_regions)

    def _create_region(self, box: DetectionBox, frame: np.ndarray, view_size: Size) -> Optional[PixelatedRegion]:
        try:
            frame_height, frame_width = frame.shape[:2]
            left, top, right, bottom = self.image_processor.source_rect(box, frame_width, frame_height)
            region_width = right - left
            region_height = bottom - top
            if region_width <= 0 or region_height <= 0:
                return None

            content_width, content_height = self.image_processor.content_size(
                region_width, region_height, self.downsample_factor
            )
            buffer = self.pool.obtain(
                next_power_of_two(content_width, self.min_dimension),
                next_power_of_two(content_height, self.min_dimension)
            )
            try:
                self.image_processor.pixelate_into(
                    frame, (left, top, right, bottom), buffer, content_width, content_height
                )
            except Exception:
                self.pool.release(buffer)
                raise

            view_width, view_height = view_size
            return PixelatedRegion(
                content=buffer,
                bounds=(box.x1 * view_width, box.y1 * view_height, box.x2 * view_width, box.y2 * view_height),
                source_box=box,
                content_width=content_width,
                content_height=content_height
            )
        except Exception as e:
            self.synthesis_failures += 1
            logger.warning(f"Skipping region for {box}: {e}")
            return None

    def set_pixelation_level(self, level: int) -> int:
        """Clamp and apply a downsample factor; cached content is dropped since it no longer matches."""
        self.downsample_factor = min(max(int(level), self.min_downsample), self.max_downsample)
        for region in self._regions:
            self.pool.release(region.content)
        self._regions = []
        logger.debug(f"Pixelation level set to {self.downsample_factor}")
        return self.downsample_factor

    def set_opacity(self, percent: float) -> int:
        """Clamp a 0-100 percentage and store it as a 0-255 alpha."""
        percent = min(max(float(percent), 0.0), 100.0)
        self.opacity = int(percent / 100.0 * 255)
        return self.opacity

    def patches(self) -> List[OverlayPatch]:
        """Current render batch."""
        return [OverlayPatch(r.content_view, r.bounds, self.opacity) for r in self._regions]

    def clear(self) -> None:
        """Return every held buffer to the pool and forget all regions."""
        if not self._regions:
            return
        for region in self._regions:
            self.pool.release(region.content)
        self._regions = []

    def release(self) -> None:
        """Clear and drop the pool; used when the surface goes away."""
        self.clear()
        self.pool.drain()

    def get_statistics(self) -> Dict[str, Any]:
        lookups = self.cache_hits + self.cache_misses
        return {
            "active_regions": len(self._regions),
            "downsample_factor": self.downsample_factor,
            "opacity": self.opacity,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": self.cache_hits / lookups if lookups else 0.0,
            "synthesis_failures": self.synthesis_failures,
            "pool": self.pool.get_statistics()
        }
