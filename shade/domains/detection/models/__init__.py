"""Detection model sessions and output decoding."""
from .base_detector import AbstractDetector, DetectorFactory
from .box_extractor import BoxExtractor, extract_boxes
from .onnx_detector import OnnxDetector

__all__ = [
    "AbstractDetector",
    "DetectorFactory",
    "BoxExtractor",
    "extract_boxes",
    "OnnxDetector",
]
