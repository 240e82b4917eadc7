"""
Box extraction for end-to-end detection models.

The model emits a flat `[N, C]` block per image where each row is
`(x1, y1, x2, y2, confidence, class_id, ...)`. Coordinates are already
normalized and NMS has already been applied by the model, and rows are
sorted by confidence, highest first.
"""
import logging
from typing import List, Optional, Tuple

import numpy as np

from shade.domains.detection.entities.detection import DetectionBox

logger = logging.getLogger(__name__)

X1, Y1, X2, Y2, CONFIDENCE, CLASS_ID = range(6)
MIN_CHANNELS = 6


class BoxExtractor:
    """
    Turns the raw output block into a bounded tuple of DetectionBox.

    Holds a scratch list that is reused on every call, so one instance must not
    be shared between concurrent callers. The pipeline serializes calls.
    """

    def __init__(self, num_channels: int = MIN_CHANNELS, max_boxes: int = 15, target_class_id: int = 0):
        if num_channels < MIN_CHANNELS:
            raise ValueError(f"Output needs at least {MIN_CHANNELS} channels, got {num_channels}")
        if max_boxes <= 0:
            raise ValueError("max_boxes must be positive")

        self.num_channels = num_channels
        self.max_boxes = max_boxes
        self.target_class_id = target_class_id
        self._boxes: List[DetectionBox] = []

    def extract(self, output: np.ndarray, threshold: float) -> Optional[Tuple[DetectionBox, ...]]:
        """
        Extract boxes above `threshold`.

        Args:
            output: Flat or `[1, N, C]` model output, confidence-descending
            threshold: Candidates at or below this confidence end the scan

        Returns:
            Tuple of boxes in model order, or None when nothing survives
        """
        rows = np.asarray(output, dtype=np.float32).reshape(-1, self.num_channels)

        # Rows are confidence-descending, so the first row at or below the
        # threshold ends the scan. Compared in float32 like the model output.
        below = np.flatnonzero(rows[:, CONFIDENCE] <= np.float32(threshold))
        cutoff = int(below[0]) if below.size else rows.shape[0]
        candidates = rows[:cutoff]

        coords = np.clip(candidates[:, X1:Y2 + 1], 0.0, 1.0)
        keep = (
            (candidates[:, CLASS_ID] == self.target_class_id) &
            (candidates[:, X2] > candidates[:, X1]) &
            (candidates[:, Y2] > candidates[:, Y1]) &
            (coords[:, 2] > coords[:, 0]) &
            (coords[:, 3] > coords[:, 1])
        )

        self._boxes.clear()
        for index in np.flatnonzero(keep)[:self.max_boxes]:
            x1, y1, x2, y2 = coords[index].tolist()
            self._boxes.append(DetectionBox(x1, y1, x2, y2))

        if not self._boxes:
            return None
        return tuple(self._boxes)


def extract_boxes(
    output: np.ndarray,
    threshold: float,
    num_channels: int = MIN_CHANNELS,
    max_boxes: int = 15,
    target_class_id: int = 0
) -> Optional[Tuple[DetectionBox, ...]]:
    """One-shot extraction with a throwaway extractor."""
    extractor = BoxExtractor(num_channels=num_channels, max_boxes=max_boxes, target_class_id=target_class_id)
    return extractor.extract(output, threshold)
