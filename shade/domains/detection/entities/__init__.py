from .detection import BoxesFound, DetectionBox, DetectionOutcome, EmptyDetection

__all__ = ["BoxesFound", "DetectionBox", "DetectionOutcome", "EmptyDetection"]
