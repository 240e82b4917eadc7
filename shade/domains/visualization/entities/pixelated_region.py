"""
Pixelated overlay region entities.
"""

from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np

from shade.domains.detection.entities.detection import DetectionBox
from shade.shared.types import PixelBuffer, RectF


@dataclass(eq=False)
class PixelatedRegion:
    """
    A pre-pixelated buffer plus where to draw it.

    `content` is a pooled buffer whose allocated size may exceed the used
    `content_width` x `content_height` window. Two regions are equal when
    they were built from the same source box.
    """
    content: PixelBuffer = field(repr=False)
    bounds: RectF
    source_box: DetectionBox
    content_width: int
    content_height: int

    def __eq__(self, other) -> bool:
        if self is other:
            return True
        if not isinstance(other, PixelatedRegion):
            return NotImplemented
        return self.source_box == other.source_box

    def __hash__(self) -> int:
        return hash(self.source_box)

    @property
    def content_view(self) -> np.ndarray:
        """The used window of the content buffer."""
        return self.content[:self.content_height, :self.content_width]

    def matches(self, box: DetectionBox, tolerance: float) -> bool:
        return self.source_box.is_close_to(box, tolerance)


class OverlayPatch(NamedTuple):
    """One item of a render batch handed to the presentation surface."""
    content: np.ndarray
    bounds: RectF
    opacity: int
