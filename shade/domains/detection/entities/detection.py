"""
Detection domain entities.

Contains the normalized detection box value object and the two-variant
outcome returned by a detection model session for one frame.
"""

from dataclasses import dataclass
from typing import Tuple, Union

from shade.shared.types import FrameImage


@dataclass(frozen=True)
class DetectionBox:
    """Normalized bounding box value object, coordinates in [0, 1]."""
    x1: float
    y1: float
    x2: float
    y2: float

    def __post_init__(self):
        """Validate box geometry."""
        if not (0.0 <= self.x1 < self.x2 <= 1.0):
            raise ValueError(f"Invalid horizontal extent: x1={self.x1}, x2={self.x2}")
        if not (0.0 <= self.y1 < self.y2 <= 1.0):
            raise ValueError(f"Invalid vertical extent: y1={self.y1}, y2={self.y2}")

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        """Convert to (x1, y1, x2, y2) format."""
        return (self.x1, self.y1, self.x2, self.y2)

    def is_close_to(self, other: "DetectionBox", tolerance: float) -> bool:
        """True when every coordinate differs from `other` by less than `tolerance`."""
        return (
            abs(self.x1 - other.x1) < tolerance and
            abs(self.y1 - other.y1) < tolerance and
            abs(self.x2 - other.x2) < tolerance and
            abs(self.y2 - other.y2) < tolerance
        )

    def contains_point(self, x: float, y: float, margin: float = 0.0) -> bool:
        """Check a normalized point against the box expanded by `margin`."""
        return (
            self.x1 - margin <= x <= self.x2 + margin and
            self.y1 - margin <= y <= self.y2 + margin
        )


@dataclass(frozen=True)
class BoxesFound:
    """At least one box survived extraction. `boxes` is confidence-descending."""
    boxes: Tuple[DetectionBox, ...]
    frame: FrameImage

    def __post_init__(self):
        if not self.boxes:
            raise ValueError("BoxesFound requires at least one box")


@dataclass(frozen=True)
class EmptyDetection:
    """Nothing survived extraction; the frame is handed back for similarity checks."""
    frame: FrameImage


DetectionOutcome = Union[BoxesFound, EmptyDetection]
