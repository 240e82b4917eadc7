"""
ONNX Runtime detection session.

Runs a single-class end-to-end detector (NMS baked into the export) whose
output is a `[1, N, C]` block of `(x1, y1, x2, y2, confidence, class_id, ...)`
rows with normalized coordinates.
"""
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import cv2
import numpy as np
import onnxruntime as ort

from shade.core.exceptions import ModelSetupError
from shade.domains.detection.entities.detection import BoxesFound, DetectionOutcome, EmptyDetection
from .base_detector import AbstractDetector, DetectorFactory
from .box_extractor import BoxExtractor, MIN_CHANNELS

logger = logging.getLogger(__name__)

GPU_PROVIDER = "CUDAExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"


def _static_dim(value: Any) -> int:
    """Symbolic (dynamic) dimensions come back as strings or None; treat them as unusable."""
    return value if isinstance(value, int) else -1


class OnnxDetector(AbstractDetector):
    """
    Detection model session backed by onnxruntime.

    `setup` and `clear` are expected to be serialized against `detect` by the
    caller; the session itself holds no lock.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        num_threads: int = 4,
        use_gpu: bool = True,
        max_detections: int = 15,
        target_class_id: int = 0,
        input_mean: float = 0.0,
        input_std: float = 255.0
    ):
        """
        Initialize the session wrapper. Nothing is loaded until `setup`.

        Args:
            model_path: Path to the `.onnx` artifact
            num_threads: Intra-op threads for CPU execution
            use_gpu: Try the CUDA provider first, falling back to CPU
            max_detections: Cap on boxes returned per frame
            target_class_id: The only class kept by extraction
            input_mean: Subtracted from each channel value
            input_std: Divisor applied after mean subtraction
        """
        self.model_path = Path(model_path)
        self.num_threads = num_threads
        self.use_gpu = use_gpu
        self.max_detections = max_detections
        self.target_class_id = target_class_id
        self.input_mean = input_mean
        self.input_std = input_std

        self.session: Optional[ort.InferenceSession] = None
        self.input_name: Optional[str] = None
        self.providers: List[str] = []
        self.confidence_threshold = 0.0
        self.channels_first = False

        self._tensor_width = 0
        self._tensor_height = 0
        self.max_candidates = 0
        self.num_channels = 0
        self._input_tensor: Optional[np.ndarray] = None
        self._extractor: Optional[BoxExtractor] = None

        # Performance tracking
        self.inference_times: List[float] = []
        self.total_images = 0
        self.total_detections = 0

    @property
    def tensor_width(self) -> int:
        return self._tensor_width

    @property
    def tensor_height(self) -> int:
        return self._tensor_height

    def _select_providers(self) -> List[str]:
        available = ort.get_available_providers()
        providers = []
        if self.use_gpu and GPU_PROVIDER in available:
            providers.append(GPU_PROVIDER)
        providers.append(CPU_PROVIDER)
        return providers

    def setup(self, threshold: float) -> bool:
        self.clear()
        self.confidence_threshold = float(np.clip(threshold, 0.0, 1.0))

        try:
            options = ort.SessionOptions()
            options.intra_op_num_threads = self.num_threads
            providers = self._select_providers()
            try:
                session = ort.InferenceSession(str(self.model_path), sess_options=options, providers=providers)
            except Exception as e:
                if providers == [CPU_PROVIDER]:
                    raise
                logger.warning(f"GPU session failed for {self.model_path.name}, retrying on CPU: {e}")
                providers = [CPU_PROVIDER]
                session = ort.InferenceSession(str(self.model_path), sess_options=options, providers=providers)

            input_meta = session.get_inputs()[0]
            output_meta = session.get_outputs()[0]
            input_shape = [_static_dim(d) for d in input_meta.shape]
            output_shape = [_static_dim(d) for d in output_meta.shape]

            if len(input_shape) != 4 or len(output_shape) != 3:
                raise ModelSetupError(f"Unexpected tensor ranks: input {input_meta.shape}, output {output_meta.shape}")

            # Exported as NHWC, but accept NCHW exports as well.
            self.channels_first = input_shape[1] == 3 and input_shape[3] != 3
            if self.channels_first:
                height, width = input_shape[2], input_shape[3]
            else:
                height, width = input_shape[1], input_shape[2]
            candidates, channels = output_shape[1], output_shape[2]

            if width <= 0 or height <= 0 or candidates <= 0 or channels <= 0:
                raise ModelSetupError(f"Non-positive tensor dimensions: input {input_meta.shape}, output {output_meta.shape}")
            if channels < MIN_CHANNELS:
                raise ModelSetupError(f"Output has {channels} channels, need at least {MIN_CHANNELS}")

        except Exception as e:
            logger.error(f"Failed to set up detection model {self.model_path}: {type(e).__name__}: {e}")
            self.clear()
            return False

        self.session = session
        self.input_name = input_meta.name
        self.providers = providers
        self._tensor_width = width
        self._tensor_height = height
        self.max_candidates = candidates
        self.num_channels = channels
        tensor_shape = (1, 3, height, width) if self.channels_first else (1, height, width, 3)
        self._input_tensor = np.zeros(tensor_shape, dtype=np.float32)
        self._extractor = BoxExtractor(
            num_channels=channels,
            max_boxes=self.max_detections,
            target_class_id=self.target_class_id
        )

        logger.info(
            f"✅ Detection model ready: {self.model_path.name} "
            f"({width}x{height}, {candidates}x{channels} output, providers={providers})"
        )
        return True

    def is_ready(self) -> bool:
        return self.session is not None and self._extractor is not None

    def update_threshold(self, threshold: float) -> None:
        self.confidence_threshold = float(np.clip(threshold, 0.0, 1.0))
        logger.debug(f"Confidence threshold set to {self.confidence_threshold:.2f}")

    def get_confidence_threshold(self) -> float:
        return self.confidence_threshold

    def preprocess_image(self, image: np.ndarray) -> np.ndarray:
        """
        Fill the reused input tensor from an RGBA frame.

        Alpha is dropped, the frame is resized with nearest-neighbour sampling
        and values are normalized as `(v - mean) / std`.
        """
        rgb = image[:, :, :3]
        if rgb.shape[0] != self._tensor_height or rgb.shape[1] != self._tensor_width:
            rgb = cv2.resize(rgb, (self._tensor_width, self._tensor_height), interpolation=cv2.INTER_NEAREST)

        target = self._input_tensor[0]
        if self.channels_first:
            np.copyto(target, rgb.transpose(2, 0, 1), casting="unsafe")
        else:
            np.copyto(target, rgb, casting="unsafe")
        target -= self.input_mean
        target /= self.input_std
        return self._input_tensor

    def detect(self, image: np.ndarray) -> Optional[DetectionOutcome]:
        if not self.is_ready():
            return None

        start = time.perf_counter()
        tensor = self.preprocess_image(image)
        output = self.session.run(None, {self.input_name: tensor})[0]
        boxes = self._extractor.extract(output, self.confidence_threshold)

        self.inference_times.append(time.perf_counter() - start)
        if len(self.inference_times) > 100:
            self.inference_times = self.inference_times[-100:]
        self.total_images += 1

        if boxes is None:
            return EmptyDetection(frame=image)

        self.total_detections += len(boxes)
        return BoxesFound(boxes=boxes, frame=image)

    def get_model_info(self) -> Dict[str, Any]:
        avg_ms = (sum(self.inference_times) / len(self.inference_times) * 1000) if self.inference_times else 0.0
        return {
            "model_name": self.model_path.name,
            "model_path": str(self.model_path),
            "providers": list(self.providers),
            "tensor_width": self._tensor_width,
            "tensor_height": self._tensor_height,
            "max_candidates": self.max_candidates,
            "num_channels": self.num_channels,
            "confidence_threshold": self.confidence_threshold,
            "ready": self.is_ready(),
            "total_images": self.total_images,
            "total_detections": self.total_detections,
            "average_inference_ms": avg_ms
        }

    def clear(self) -> None:
        if self.session is not None:
            logger.info(f"Releasing detection model {self.model_path.name}")
        self.session = None
        self.input_name = None
        self._input_tensor = None
        self._extractor = None


DetectorFactory.register_detector("onnx", OnnxDetector)
