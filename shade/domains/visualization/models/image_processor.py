"""
Image Processor

Pixel-level operations for overlay synthesis: mapping normalized boxes onto a
source frame, downsampling a region into a pooled buffer, and encoding
patch content for inspection.
"""

import logging
from typing import Tuple

import cv2
import numpy as np

from shade.domains.detection.entities.detection import DetectionBox

logger = logging.getLogger(__name__)


class ImageProcessor:
    """Handles image processing operations for overlay regions."""

    def source_rect(self, box: DetectionBox, frame_width: int, frame_height: int) -> Tuple[int, int, int, int]:
        """
        Pixel rectangle `(left, top, right, bottom)` of a box on a frame.

        Left/top are truncated and clamped into the frame; right/bottom are
        clamped so the rectangle is always at least one pixel wide and tall.
        """
        left = min(max(int(box.x1 * frame_width), 0), frame_width - 1)
        top = min(max(int(box.y1 * frame_height), 0), frame_height - 1)
        right = min(max(int(box.x2 * frame_width), left + 1), frame_width)
        bottom = min(max(int(box.y2 * frame_height), top + 1), frame_height)
        return left, top, right, bottom

    def content_size(self, region_width: int, region_height: int, downsample_factor: int) -> Tuple[int, int]:
        """Downsampled size of a region, never below one pixel."""
        return max(1, region_width // downsample_factor), max(1, region_height // downsample_factor)

    def pixelate_into(
        self,
        frame: np.ndarray,
        rect: Tuple[int, int, int, int],
        buffer: np.ndarray,
        content_width: int,
        content_height: int
    ) -> np.ndarray:
        """
        Downsample `frame[rect]` into the top-left `content` window of `buffer`.

        Returns the written window. Scaling it back up with nearest-neighbour
        sampling produces the pixelated look.
        """
        left, top, right, bottom = rect
        region = frame[top:bottom, left:right]
        if region.size == 0:
            raise ValueError(f"Empty source region {rect}")
        if content_width > buffer.shape[1] or content_height > buffer.shape[0]:
            raise ValueError(
                f"Content {content_width}x{content_height} exceeds buffer {buffer.shape[1]}x{buffer.shape[0]}"
            )

        window = buffer[:content_height, :content_width]
        window[...] = cv2.resize(region, (content_width, content_height), interpolation=cv2.INTER_AREA)
        return window

    def encode_png(self, image: np.ndarray) -> bytes:
        """Encode an RGBA array as PNG bytes."""
        try:
            bgra = cv2.cvtColor(np.ascontiguousarray(image), cv2.COLOR_RGBA2BGRA)
            success, encoded = cv2.imencode(".png", bgra)
            if not success:
                raise ValueError("Failed to encode image as png")
            return encoded.tobytes()
        except Exception as e:
            logger.error(f"Error encoding image: {e}")
            raise
