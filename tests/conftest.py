"""
Global fixtures for the Shade backend test suite.
"""
import threading
from collections import deque
from typing import Any, Dict, List, Optional, Sequence, Tuple
from unittest.mock import MagicMock, PropertyMock

import numpy as np
import pytest

from shade.core.config import Settings
from shade.domains.detection.entities.detection import BoxesFound, DetectionBox, EmptyDetection
from shade.domains.detection.models.base_detector import AbstractDetector
from shade.infrastructure.capture.frame_source import Frame, FrameSource


@pytest.fixture(scope="session")
def mock_settings_base_values() -> Dict[str, Any]:
    """
    Provides a dictionary of base values for a mocked Settings object.
    Tests can override these by providing their own dictionary to mock_settings.
    """
    return {
        "APP_NAME": "Shade Test Backend",
        "API_V1_PREFIX": "/api/v1",
        "DEBUG": True,
        "DETECTOR_TYPE": "onnx",
        "WEIGHTS_DIR": "./test_weights",
        "DETECTION_NUM_THREADS": 4,
        "DETECTION_USE_GPU": False,
        "TARGET_CLASS_ID": 0,
        "MAX_DETECTIONS": 15,
        "EMPTY_FRAMES_THRESHOLD": 3,
        "FULLSCREEN_EMPTY_FRAMES_THRESHOLD": 4,
        "CONFIDENCE_DEBOUNCE_MS": 20,
        "OPACITY_DEBOUNCE_MS": 20,
        "PIXELATION_DEBOUNCE_MS": 20,
        "INPUT_BUFFER_POOL_SIZE": 2,
        "surface_size": (1080, 2400),
        "default_confidence_threshold": 0.6,
    }


@pytest.fixture
def mock_settings(mocker, mock_settings_base_values: Dict[str, Any]) -> MagicMock:
    """
    Provides a MagicMock instance of the application Settings.
    """
    mocked_settings = MagicMock(spec=Settings)

    for key, value in mock_settings_base_values.items():
        # For properties, mock them on the type of the mock
        if key in ["surface_size", "default_confidence_threshold"]:
            setattr(type(mocked_settings), key, PropertyMock(return_value=value))
        else:
            setattr(mocked_settings, key, value)

    mocked_settings.model_config = {"extra": "ignore"}
    return mocked_settings


# --- Frames and model outputs ---

def solid_frame(width: int, height: int, rgb: Tuple[int, int, int] = (0, 0, 0)) -> np.ndarray:
    frame = np.empty((height, width, 4), dtype=np.uint8)
    frame[..., 0] = rgb[0]
    frame[..., 1] = rgb[1]
    frame[..., 2] = rgb[2]
    frame[..., 3] = 255
    return frame


def noise_frame(width: int, height: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    frame = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    frame[..., 3] = 255
    return frame


def build_model_output(rows: Sequence[Sequence[float]], num_candidates: int = 20, num_channels: int = 6) -> np.ndarray:
    """A `[1, N, C]` output block; unused candidates have zero confidence."""
    output = np.zeros((1, num_candidates, num_channels), dtype=np.float32)
    for index, row in enumerate(rows):
        output[0, index, :len(row)] = row
    return output


@pytest.fixture
def make_frame():
    return solid_frame


# --- Fakes for pipeline collaborators ---

class FakeDetector(AbstractDetector):
    """
    Scripted detection session.

    Each `detect` call pops the next scripted result: a tuple of DetectionBox
    for BoxesFound, None for EmptyDetection, or an exception instance to raise.
    An exhausted script yields EmptyDetection.
    """

    def __init__(self, tensor_size: Tuple[int, int] = (416, 416), setup_ok: bool = True):
        self._tensor_width, self._tensor_height = tensor_size
        self.setup_ok = setup_ok
        self.script: deque = deque()
        self.threshold = 0.0
        self.ready = False
        self.detect_calls = 0
        self.cleared = 0
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()

    @property
    def tensor_width(self) -> int:
        return self._tensor_width

    @property
    def tensor_height(self) -> int:
        return self._tensor_height

    def setup(self, threshold: float) -> bool:
        self.threshold = threshold
        self.ready = self.setup_ok
        return self.setup_ok

    def detect(self, image: np.ndarray):
        if not self.ready:
            return None
        self.detect_calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        result = self.script.popleft() if self.script else None
        if isinstance(result, Exception):
            raise result
        if result:
            return BoxesFound(boxes=tuple(result), frame=image)
        return EmptyDetection(frame=image)

    def is_ready(self) -> bool:
        return self.ready

    def update_threshold(self, threshold: float) -> None:
        self.threshold = threshold

    def get_confidence_threshold(self) -> float:
        return self.threshold

    def preprocess_image(self, image: np.ndarray) -> np.ndarray:
        return image

    def get_model_info(self) -> Dict[str, Any]:
        return {"model_name": "fake", "ready": self.ready}

    def clear(self) -> None:
        self.ready = False
        self.cleared += 1


class FakeFrameSource(FrameSource):
    """Frame source driven by the test; records geometry changes and releases."""

    def __init__(self, size: Tuple[int, int] = (416, 416), accept_reconfigure: bool = True):
        self._size = size
        self.accept_reconfigure = accept_reconfigure
        self.reconfigure_calls: List[Tuple[int, int]] = []
        self.on_frame = None
        self.started = False
        self.released = 0

    @property
    def size(self) -> Tuple[int, int]:
        return self._size

    def start(self, on_frame) -> None:
        self.on_frame = on_frame
        self.started = True

    def stop(self) -> None:
        self.started = False

    def reconfigure(self, width: int, height: int) -> bool:
        self.reconfigure_calls.append((width, height))
        if not self.accept_reconfigure:
            return False
        self._size = (width, height)
        return True

    def _on_release(self, image: np.ndarray) -> None:
        self.released += 1

    def emit(self, image: np.ndarray) -> bool:
        return self.on_frame(Frame(image, on_release=self._on_release))


@pytest.fixture
def fake_detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture
def fake_frame_source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture
def box() -> DetectionBox:
    return DetectionBox(0.1, 0.1, 0.5, 0.5)
