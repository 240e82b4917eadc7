"""
Abstract base detector interface.

Defines the contract for detection model sessions.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import numpy as np

from shade.domains.detection.entities.detection import DetectionOutcome


class AbstractDetector(ABC):
    """Abstract base class for detection model sessions."""

    @abstractmethod
    def setup(self, threshold: float) -> bool:
        """
        Load the model and derive tensor and output geometry.

        Returns:
            True when the session is ready, False if loading or shape checks failed
        """
        pass

    @abstractmethod
    def detect(self, image: np.ndarray) -> Optional[DetectionOutcome]:
        """
        Run detection on one RGBA frame.

        Args:
            image: Input frame as numpy array (H, W, 4)

        Returns:
            BoxesFound or EmptyDetection carrying `image` back to the caller,
            or None when the session is not ready
        """
        pass

    @abstractmethod
    def is_ready(self) -> bool:
        """Check if the session can run detection."""
        pass

    @abstractmethod
    def update_threshold(self, threshold: float) -> None:
        """Change extraction sensitivity without reloading the model."""
        pass

    @abstractmethod
    def get_confidence_threshold(self) -> float:
        """Get current confidence threshold."""
        pass

    @abstractmethod
    def preprocess_image(self, image: np.ndarray) -> np.ndarray:
        """Convert a frame into the model input tensor."""
        pass

    @abstractmethod
    def get_model_info(self) -> Dict[str, Any]:
        """Get model information."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Release model resources. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def tensor_width(self) -> int:
        pass

    @property
    @abstractmethod
    def tensor_height(self) -> int:
        pass


class DetectorFactory:
    """Factory for creating detector instances."""

    _detectors = {}

    @classmethod
    def register_detector(cls, name: str, detector_class: type):
        """Register a detector class."""
        cls._detectors[name] = detector_class

    @classmethod
    def create_detector(cls, name: str, **kwargs) -> AbstractDetector:
        """Create a detector instance."""
        if name not in cls._detectors:
            raise ValueError(f"Unknown detector type: {name}")

        return cls._detectors[name](**kwargs)

    @classmethod
    def get_available_detectors(cls) -> List[str]:
        """Get list of available detector types."""
        return list(cls._detectors.keys())
