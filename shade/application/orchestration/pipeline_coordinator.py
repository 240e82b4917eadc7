"""
Pipeline coordinator for application layer orchestration.

Drives one frame at a time through detection and decides what the overlay
should show. Four execution contexts meet here:

- the frame source thread calls `submit_frame`;
- a single inference worker runs detection and the per-frame decisions;
- the event loop runs the debounced settings watchers;
- the presentation context (reached through the dispatcher) owns the overlay.
"""
import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from shade.application.services.configuration_manager import ConfigurationManager, debounce
from shade.application.services.overlay_presenter import OverlayPresenter
from shade.core.config import settings
from shade.core.exceptions import CaptureReconfigurationError
from shade.domains.detection.entities.detection import BoxesFound, EmptyDetection
from shade.domains.detection.models import AbstractDetector, DetectorFactory
from shade.domains.similarity.services import FrameSimilarityChecker
from shade.domains.visualization.models.bitmap_pool import BitmapPool
from shade.infrastructure.capture.frame_source import Frame, FrameSource
from shade.shared.types import Dispatcher, Size
from shade.utils.error_handler import ComponentType, ErrorSeverity, PipelineErrorHandler, pipeline_error_handler

logger = logging.getLogger(__name__)


class CaptureState(Enum):
    """Capture lifecycle."""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class AtomicFlag:
    """Boolean with an atomic compare-and-set."""

    def __init__(self, value: bool = False):
        self._value = value
        self._lock = threading.Lock()

    def compare_and_set(self, expected: bool, new: bool) -> bool:
        with self._lock:
            if self._value != expected:
                return False
            self._value = new
            return True

    def set(self, value: bool) -> None:
        with self._lock:
            self._value = value

    def get(self) -> bool:
        with self._lock:
            return self._value


def create_default_detector(performance_mode: bool) -> AbstractDetector:
    """Build the configured detector backend; performance mode loads the large model."""
    return DetectorFactory.create_detector(
        settings.DETECTOR_TYPE,
        model_path=settings.resolved_model_path(performance_mode),
        num_threads=settings.DETECTION_NUM_THREADS,
        use_gpu=settings.DETECTION_USE_GPU,
        max_detections=settings.MAX_DETECTIONS,
        target_class_id=settings.TARGET_CLASS_ID,
        input_mean=settings.INPUT_MEAN,
        input_std=settings.INPUT_STD
    )


class PipelineCoordinator:
    """
    Single in-flight frame pipeline.

    A frame is admitted only when no other frame is being processed; others
    are released immediately and counted as dropped. The detector lock is held
    for exactly one detect or rebuild call.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        presenter: OverlayPresenter,
        configuration_manager: ConfigurationManager,
        detector_factory: Callable[[bool], AbstractDetector] = create_default_detector,
        similarity_checker: Optional[FrameSimilarityChecker] = None,
        dispatcher: Optional[Dispatcher] = None,
        error_handler: Optional[PipelineErrorHandler] = None
    ):
        """
        Initialize pipeline coordinator.

        Args:
            frame_source: Producer of RGBA frames
            presenter: Overlay presenter; only touched through the dispatcher
            configuration_manager: Source of user settings and their change streams
            detector_factory: Builds a detection session for a performance-mode flag
            similarity_checker: Full-scene fallback, created from settings if omitted
            dispatcher: Posts callables onto the presentation context; defaults to the
                event loop that calls `start`
            error_handler: Where per-frame failures are recorded
        """
        self.frame_source = frame_source
        self.presenter = presenter
        self.config_manager = configuration_manager
        self.detector_factory = detector_factory
        self.similarity_checker = similarity_checker or FrameSimilarityChecker()
        self.error_handler = error_handler or pipeline_error_handler

        self._dispatcher = dispatcher
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None
        self._watchers: List[asyncio.Task] = []

        self._detector: Optional[AbstractDetector] = None
        self._detector_lock = threading.Lock()
        self._in_flight = AtomicFlag()
        self._input_pool = BitmapPool(capacity=settings.INPUT_BUFFER_POOL_SIZE)
        self._input_lock = threading.Lock()

        # Pipeline state
        self.capture_state = CaptureState.IDLE
        self.threshold = settings.default_confidence_threshold
        self.full_scene_mode = False
        self.performance_mode = False
        self.target_visible = True
        self.frame_number = 0
        self.last_detected_frame = 0
        self.capture_size: Optional[Size] = None

        self._stats_lock = threading.Lock()
        self.pipeline_stats = {
            'frames_received': 0,
            'frames_admitted': 0,
            'frames_dropped': 0,
            'frames_failed': 0,
            'boxes_found': 0,
            'empty_detections': 0,
            'similarity_keeps': 0,
            'overlay_clears': 0
        }

        logger.debug("PipelineCoordinator initialized")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_starting(self) -> bool:
        return self.capture_state is CaptureState.STARTING

    @property
    def is_running(self) -> bool:
        return self.capture_state is CaptureState.RUNNING

    @property
    def detector(self) -> Optional[AbstractDetector]:
        return self._detector

    async def start(self) -> bool:
        """
        Set up the detector, size the capture and start frames flowing.

        Returns:
            False if the detector could not be set up or the source failed to start
        """
        if self.capture_state is not CaptureState.IDLE:
            logger.warning(f"Pipeline start ignored, capture is {self.capture_state.value}")
            return False

        self.capture_state = CaptureState.STARTING
        self._loop = asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="shade-inference")

        current = self.config_manager.current
        self.threshold = current.confidence_percent / 100.0
        self.full_scene_mode = current.full_scene_mode
        self._dispatch(lambda: self.presenter.set_opacity(current.opacity_percent))
        self._dispatch(lambda: self.presenter.set_pixelation_level(current.pixelation_level))

        ready = await self._loop.run_in_executor(
            self._executor, self._setup_detector, current.performance_mode, self.threshold
        )
        if not ready:
            logger.error("Detector setup failed, pipeline not started")
            self._shutdown_executor(wait_for_pending=False)
            self.capture_state = CaptureState.IDLE
            return False

        self.frame_number = 0
        self.last_detected_frame = 0
        if not self.apply_capture_geometry(self.surface_size(), force=True):
            logger.error("Initial capture geometry rejected, pipeline not started")
            await self.stop()
            return False

        self.capture_state = CaptureState.RUNNING
        try:
            self.frame_source.start(self.submit_frame)
        except Exception as e:
            self.error_handler.handle(ComponentType.CAPTURE, "start", e, severity=ErrorSeverity.HIGH)
            await self.stop()
            return False

        self._start_watchers()
        logger.info(f"✅ Pipeline started, capture {self.capture_size[0]}x{self.capture_size[1]}")
        return True

    async def stop(self) -> None:
        """Stop frames, watchers and inference, then drop detector and overlay state."""
        if self.capture_state is CaptureState.IDLE and self._executor is None:
            return

        self.capture_state = CaptureState.STOPPING
        try:
            await asyncio.to_thread(self.frame_source.stop)
        except Exception as e:
            self.error_handler.handle(ComponentType.CAPTURE, "stop", e)

        for task in self._watchers:
            task.cancel()
        if self._watchers:
            await asyncio.gather(*self._watchers, return_exceptions=True)
        self._watchers = []

        executor, self._executor = self._executor, None
        if executor is not None:
            await asyncio.to_thread(executor.shutdown, True)

        with self._detector_lock:
            if self._detector is not None:
                self._detector.clear()
            self._detector = None

        self.similarity_checker.clear()
        self._clear_detections()
        self._in_flight.set(False)
        self.capture_state = CaptureState.IDLE
        logger.info("Pipeline stopped")

    def _shutdown_executor(self, wait_for_pending: bool) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait_for_pending)

    def _setup_detector(self, performance_mode: bool, threshold: float) -> bool:
        """Tear down the current session and build a new one. Runs on the inference worker."""
        with self._detector_lock:
            if self._detector is not None:
                self._detector.clear()
            self._detector = None

            try:
                detector = self.detector_factory(performance_mode)
                if not detector.setup(threshold):
                    return False
            except Exception as e:
                self.error_handler.handle(ComponentType.DETECTION, "setup", e, severity=ErrorSeverity.HIGH)
                return False

            self._detector = detector
            self.performance_mode = performance_mode
            logger.info(f"Detector ready (performance_mode={performance_mode}, threshold={threshold:.2f})")
            return True

    # ------------------------------------------------------------------
    # Frame path
    # ------------------------------------------------------------------

    def submit_frame(self, frame: Frame) -> bool:
        """
        Offer a frame to the pipeline. Safe to call from any thread.

        The frame is always released before this returns; admitted pixels are
        copied into a pipeline-owned input buffer first.

        Returns:
            True if the frame was admitted, False if it was dropped
        """
        self._bump('frames_received')
        try:
            if self.capture_state is not CaptureState.RUNNING or self._executor is None:
                self._bump('frames_dropped')
                return False
            if not self._in_flight.compare_and_set(False, True):
                self._bump('frames_dropped')
                return False

            buffer = None
            try:
                self.frame_number += 1
                frame_number = self.frame_number
                buffer = self._copy_to_input(frame.image)
                self._pending = self._executor.submit(self._process_frame, buffer, frame_number)
            except Exception as e:
                self.error_handler.handle(ComponentType.CAPTURE, "submit_frame", e)
                self._bump('frames_failed')
                if buffer is not None:
                    self._recycle_input(buffer)
                self._in_flight.set(False)
                return False

            self._bump('frames_admitted')
            return True
        finally:
            frame.release()

    def _copy_to_input(self, image: np.ndarray) -> np.ndarray:
        height, width = image.shape[:2]
        with self._input_lock:
            buffer = self._input_pool.obtain(width, height)
        np.copyto(buffer, image)
        return buffer

    def _recycle_input(self, buffer: np.ndarray) -> None:
        with self._input_lock:
            self._input_pool.release(buffer)

    def _process_frame(self, buffer: np.ndarray, frame_number: int) -> None:
        """One detection cycle. Runs on the inference worker."""
        handed_off = False
        try:
            with self._detector_lock:
                detector = self._detector
                outcome = detector.detect(buffer) if detector is not None else None

            if isinstance(outcome, BoxesFound):
                self._bump('boxes_found')
                handed_off = self._on_boxes_found(outcome, frame_number)
            elif isinstance(outcome, EmptyDetection):
                self._bump('empty_detections')
                self._on_empty_detection(outcome, frame_number)
        except Exception as e:
            self._bump('frames_failed')
            self.error_handler.handle(ComponentType.DETECTION, "process_frame", e)
        finally:
            if not handed_off:
                self._recycle_input(buffer)
            self._in_flight.set(False)

    def _on_boxes_found(self, outcome: BoxesFound, frame_number: int) -> bool:
        """Returns True when the input buffer was handed to the presentation context."""
        self.last_detected_frame = frame_number
        if not self.target_visible:
            return False

        boxes = list(outcome.boxes)
        if self.full_scene_mode:
            boxes = self.similarity_checker.on_detection_success(outcome.frame, boxes)

        frame = outcome.frame

        def present():
            try:
                self.presenter.update_detections(boxes, frame)
            finally:
                self._recycle_input(frame)

        self._dispatch(present)
        return True

    def _on_empty_detection(self, outcome: EmptyDetection, frame_number: int) -> None:
        frames_since_detection = frame_number - self.last_detected_frame

        if self.full_scene_mode:
            if frames_since_detection < settings.FULLSCREEN_EMPTY_FRAMES_THRESHOLD:
                return
            if self.similarity_checker.should_keep_overlay(outcome.frame):
                # Unchanged scene outside the boxes counts as a detection.
                self.last_detected_frame = frame_number
                self._bump('similarity_keeps')
                return
            self.similarity_checker.clear()
        elif frames_since_detection < settings.EMPTY_FRAMES_THRESHOLD:
            return

        self._clear_detections()

    def _clear_detections(self) -> None:
        self._bump('overlay_clears')
        self._dispatch(self.presenter.clear)

    def _dispatch(self, callback: Callable[[], None]) -> None:
        if self._dispatcher is not None:
            self._dispatcher(callback)
        elif self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(callback)
        else:
            callback()

    def wait_for_pending(self, timeout: Optional[float] = None) -> bool:
        """Block until the in-flight frame, if any, has finished processing."""
        pending = self._pending
        if pending is None:
            return True
        done, _ = wait([pending], timeout=timeout)
        return bool(done)

    def _bump(self, key: str) -> None:
        with self._stats_lock:
            self.pipeline_stats[key] += 1

    # ------------------------------------------------------------------
    # External events
    # ------------------------------------------------------------------

    def clear_overlay(self) -> None:
        """Manual clear: overlay and similarity state."""
        self._clear_detections()
        self.similarity_checker.clear()

    def set_target_visible(self, visible: bool) -> None:
        self.target_visible = visible
        if not visible:
            self._clear_detections()

    def surface_size(self) -> Size:
        surface = self.presenter.handle.get()
        return surface.size if surface is not None else settings.surface_size

    def compute_capture_geometry(self, surface_size: Size) -> Optional[Size]:
        """Capture keeps the tensor width and the surface aspect ratio."""
        detector = self._detector
        if detector is None:
            return None
        surface_width = max(surface_size[0], 1)
        surface_height = max(surface_size[1], 1)
        width = max(detector.tensor_width, 1)
        height = max(int(max(detector.tensor_height, 1) * surface_height / surface_width), 1)
        return (width, height)

    def apply_capture_geometry(self, surface_size: Size, force: bool = False) -> bool:
        """
        Push new capture geometry to the frame source if it changed.

        A rejected reconfiguration leaves the previous geometry in place.
        """
        geometry = self.compute_capture_geometry(surface_size)
        if geometry is None:
            return False
        if not force and geometry == self.capture_size:
            return True

        try:
            if not self.frame_source.reconfigure(*geometry):
                raise CaptureReconfigurationError(f"Frame source rejected {geometry[0]}x{geometry[1]}")
        except Exception as e:
            self.error_handler.handle(ComponentType.CAPTURE, "reconfigure", e, severity=ErrorSeverity.MEDIUM)
            return False

        self.capture_size = geometry
        if self.is_running:
            self._clear_detections()
        return True

    def on_surface_resized(self, width: int, height: int) -> bool:
        return self.apply_capture_geometry((width, height))

    # ------------------------------------------------------------------
    # Settings watchers
    # ------------------------------------------------------------------

    def _start_watchers(self) -> None:
        cm = self.config_manager
        watchers = {
            "confidence": (
                debounce(cm.subscribe("confidence_percent"), settings.CONFIDENCE_DEBOUNCE_MS / 1000),
                self._apply_confidence
            ),
            "opacity": (
                debounce(cm.subscribe("opacity_percent"), settings.OPACITY_DEBOUNCE_MS / 1000),
                lambda value: self._dispatch(lambda: self.presenter.set_opacity(value))
            ),
            "pixelation": (
                debounce(cm.subscribe("pixelation_level"), settings.PIXELATION_DEBOUNCE_MS / 1000),
                lambda value: self._dispatch(lambda: self.presenter.set_pixelation_level(value))
            ),
            "full_scene": (cm.subscribe("full_scene_mode"), self._apply_full_scene_mode),
            "performance": (cm.subscribe("performance_mode", emit_current=False), self._apply_performance_mode),
        }
        self._watchers = [
            self._loop.create_task(self._watch(name, stream, apply), name=f"shade-watch-{name}")
            for name, (stream, apply) in watchers.items()
        ]

    async def _watch(self, name: str, stream, apply: Callable[[Any], Any]) -> None:
        try:
            async for value in stream:
                try:
                    result = apply(value)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    self.error_handler.handle(ComponentType.CONFIGURATION, f"apply_{name}", e)
        finally:
            await stream.aclose()

    def _apply_confidence(self, percent: float) -> None:
        self.threshold = min(max(percent / 100.0, 0.0), 1.0)
        detector = self._detector
        if detector is not None:
            detector.update_threshold(self.threshold)

    def _apply_full_scene_mode(self, enabled: bool) -> None:
        self.full_scene_mode = enabled
        if not enabled:
            self.similarity_checker.clear()

    async def _apply_performance_mode(self, enabled: bool) -> None:
        if self._executor is None:
            return
        rebuilt = await self._loop.run_in_executor(self._executor, self._setup_detector, enabled, self.threshold)
        if not rebuilt:
            logger.error(f"Detector rebuild failed (performance_mode={enabled}); no detections until the next change")
            return
        self.apply_capture_geometry(self.surface_size())

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        detector = self._detector
        with self._stats_lock:
            stats = dict(self.pipeline_stats)
        return {
            "capture_state": self.capture_state.value,
            "detector_ready": detector is not None and detector.is_ready(),
            "in_flight": self._in_flight.get(),
            "frame_number": self.frame_number,
            "last_detected_frame": self.last_detected_frame,
            "threshold": self.threshold,
            "full_scene_mode": self.full_scene_mode,
            "performance_mode": self.performance_mode,
            "target_visible": self.target_visible,
            "capture_size": list(self.capture_size) if self.capture_size else None,
            "stats": stats,
            "model": detector.get_model_info() if detector is not None else None
        }
