"""
Frame similarity heuristic for full-scene mode.

When the detector sees its own pixelated overlay instead of the target it
reports nothing. This checker compares the scene outside the last known
boxes against the frame captured at the last successful detection and
decides whether the overlay should stay.
"""
import logging
import threading
from typing import List, Optional, Sequence, Tuple

import numpy as np

from shade.core.config import settings
from shade.domains.detection.entities.detection import DetectionBox

logger = logging.getLogger(__name__)

# High nibble of R, G and B; equal nibbles bound each channel difference at 15.
_HIGH_NIBBLE = np.uint8(0xF0)


def pixels_similar(p1: Sequence[int], p2: Sequence[int], pixel_threshold: int = 75) -> bool:
    """
    Two-tier similarity test for one RGBA pixel pair. Alpha is ignored.

    Fast path: every RGB channel agrees in its upper four bits. Otherwise the
    Manhattan distance over RGB must be at most `pixel_threshold`.
    """
    a = np.asarray(p1[:3], dtype=np.int16)
    b = np.asarray(p2[:3], dtype=np.int16)
    if not np.any((a ^ b) & 0xF0):
        return True
    return int(np.abs(a - b).sum()) <= pixel_threshold


def _row_similar(prev_row: np.ndarray, curr_row: np.ndarray, pixel_threshold: int) -> np.ndarray:
    """Vectorized `pixels_similar` over two `(n, 4)` pixel rows."""
    prev_rgb = prev_row[:, :3]
    curr_rgb = curr_row[:, :3]
    fast = ~np.any((prev_rgb ^ curr_rgb) & _HIGH_NIBBLE, axis=1)
    distance = np.abs(prev_rgb.astype(np.int16) - curr_rgb.astype(np.int16)).sum(axis=1)
    return fast | (distance <= pixel_threshold)


class FrameSimilarityChecker:
    """
    Keeps a private copy of the last detected frame and a short box history.

    All public methods are serialized by one lock; the coordinator calls them
    from the inference worker while settings changes may call `clear` from the
    event loop.
    """

    def __init__(
        self,
        grid_size: int = None,
        similarity_threshold: float = None,
        pixel_threshold: int = None,
        box_margin: float = None,
        max_box_coverage: float = None,
        min_samples: int = None,
        box_history: int = None
    ):
        self.grid_size = grid_size or settings.SIMILARITY_GRID_SIZE
        self.similarity_threshold = (
            similarity_threshold if similarity_threshold is not None else settings.SIMILARITY_THRESHOLD
        )
        self.pixel_threshold = pixel_threshold if pixel_threshold is not None else settings.SIMILARITY_PIXEL_THRESHOLD
        self.box_margin = box_margin if box_margin is not None else settings.SIMILARITY_BOX_MARGIN
        self.max_box_coverage = max_box_coverage if max_box_coverage is not None else settings.SIMILARITY_MAX_BOX_COVERAGE
        self.min_samples = (
            min_samples if min_samples is not None
            else int(self.grid_size * self.grid_size * settings.SIMILARITY_MIN_SAMPLE_FRACTION)
        )
        self.box_history = box_history or settings.SIMILARITY_BOX_HISTORY

        self._lock = threading.Lock()
        self._previous_frame: Optional[np.ndarray] = None
        self._previous_boxes: Tuple[DetectionBox, ...] = ()

    @property
    def max_mismatches(self) -> int:
        return int((1 - self.similarity_threshold) * self.grid_size * self.grid_size)

    @property
    def previous_boxes(self) -> Tuple[DetectionBox, ...]:
        with self._lock:
            return self._previous_boxes

    def has_reference(self) -> bool:
        with self._lock:
            return self._previous_frame is not None and bool(self._previous_boxes)

    def on_detection_success(self, frame: np.ndarray, boxes: Sequence[DetectionBox]) -> List[DetectionBox]:
        """
        Record a successful detection and return the merged box history.

        The merged list is the previous boxes followed by the new ones, keeping
        only the most recent `box_history` entries. Boxes are not deduplicated.
        """
        with self._lock:
            merged = (tuple(self._previous_boxes) + tuple(boxes))[-self.box_history:]

            if self._previous_frame is not None and self._previous_frame.shape == frame.shape:
                np.copyto(self._previous_frame, frame)
            else:
                self._previous_frame = frame.copy()
            self._previous_boxes = merged

            return list(merged)

    def should_keep_overlay(self, current_frame: np.ndarray) -> bool:
        """True when the scene outside the remembered boxes is essentially unchanged."""
        with self._lock:
            previous = self._previous_frame
            boxes = self._previous_boxes
            if previous is None or not boxes:
                return False
            if previous.shape[:2] != current_frame.shape[:2]:
                return False
            return self._compare(previous, current_frame, boxes)

    def _compare(self, previous: np.ndarray, current: np.ndarray, boxes: Tuple[DetectionBox, ...]) -> bool:
        h, w = previous.shape[:2]
        step_x = max(w // self.grid_size, 1)
        step_y = max(h // self.grid_size, 1)
        margin = self.box_margin

        xs = np.arange(step_x // 2, w, step_x)
        norm_x = xs.astype(np.float32) / np.float32(w)

        box_arr = np.array([b.to_xyxy() for b in boxes], dtype=np.float32)
        left = (box_arr[:, 0] - margin)[:, None]
        right = (box_arr[:, 2] + margin)[:, None]
        top = box_arr[:, 1] - margin
        bottom = box_arr[:, 3] + margin
        # (boxes, columns): sampled column lies within the expanded horizontal extent
        x_inside = (norm_x[None, :] >= left) & (norm_x[None, :] <= right)

        max_mismatches = self.max_mismatches
        matches = 0
        outside = 0
        inside = 0

        for y in range(step_y // 2, h, step_y):
            norm_y = np.float32(y) / np.float32(h)
            y_inside = (norm_y >= top) & (norm_y <= bottom)
            in_box = np.any(x_inside & y_inside[:, None], axis=0)

            inside += int(in_box.sum())
            outside_cols = xs[~in_box]
            outside += outside_cols.size
            if outside_cols.size:
                similar = _row_similar(previous[y, outside_cols], current[y, outside_cols], self.pixel_threshold)
                matches += int(similar.sum())

            # Too many mismatches already; similarity can only fail from here.
            if outside - matches > max_mismatches:
                break

        total = inside + outside
        coverage = inside / total if total > 0 else 0.0
        if coverage > self.max_box_coverage:
            logger.debug(f"Similarity skipped: boxes cover {coverage:.2f} of samples")
            return False
        if outside < self.min_samples:
            return False

        similarity = matches / outside
        logger.debug(f"Frame similarity {similarity:.3f} over {outside} samples")
        return similarity >= self.similarity_threshold

    def clear(self) -> None:
        with self._lock:
            self._previous_frame = None
            self._previous_boxes = ()
