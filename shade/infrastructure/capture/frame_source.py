"""
Frame source adapters.

A frame source pushes RGBA frames at whatever rate it produces them. Each
frame buffer stays owned by the source until the consumer calls `release`.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

import cv2
import numpy as np

from shade.domains.visualization.models.bitmap_pool import BitmapPool
from shade.shared.types import FrameImage, Size

logger = logging.getLogger(__name__)


class Frame:
    """One delivered frame; call `release` once the pixels are no longer needed."""

    __slots__ = ("image", "_on_release")

    def __init__(self, image: FrameImage, on_release: Optional[Callable[[np.ndarray], None]] = None):
        self.image = image
        self._on_release = on_release

    @property
    def size(self) -> Size:
        return (self.image.shape[1], self.image.shape[0])

    def release(self) -> None:
        callback, self._on_release = self._on_release, None
        if callback is not None:
            callback(self.image)


FrameCallback = Callable[[Frame], None]


class FrameSource(ABC):
    """Producer of RGBA frames with a reconfigurable output geometry."""

    @property
    @abstractmethod
    def size(self) -> Size:
        """Current (width, height) of delivered frames."""
        pass

    @abstractmethod
    def start(self, on_frame: FrameCallback) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @abstractmethod
    def reconfigure(self, width: int, height: int) -> bool:
        """Change the delivered geometry. Returns False and keeps the old one if rejected."""
        pass


class OpenCVFrameSource(FrameSource):
    """
    Reads a camera index or video path/URL with `cv2.VideoCapture` on a daemon thread.

    Frames are converted from BGR to RGBA and resized to the configured geometry.
    Video files restart from the beginning when `loop` is set.
    """

    def __init__(
        self,
        source: Union[str, int],
        width: int,
        height: int,
        loop: bool = True,
        fps: Optional[float] = None,
        pool_size: int = 4
    ):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid capture size {width}x{height}")
        self.source = int(source) if isinstance(source, str) and source.isdigit() else source
        self.loop = loop
        self.fps = fps

        self._size = (width, height)
        self._lock = threading.Lock()
        self._pool = BitmapPool(capacity=pool_size)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._capture: Optional[cv2.VideoCapture] = None

        self.frames_delivered = 0

    @property
    def size(self) -> Size:
        return self._size

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def reconfigure(self, width: int, height: int) -> bool:
        if width <= 0 or height <= 0:
            logger.warning(f"Rejected capture geometry {width}x{height}")
            return False
        with self._lock:
            self._size = (width, height)
            self._pool.drain()
        logger.info(f"Capture geometry set to {width}x{height}")
        return True

    def start(self, on_frame: FrameCallback) -> None:
        if self.running:
            logger.warning("Frame source already running")
            return

        capture = cv2.VideoCapture(self.source)
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Could not open capture source: {self.source}")

        self._capture = capture
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(capture, on_frame), name="FrameSource", daemon=True
        )
        self._thread.start()
        logger.info(f"Frame source started: {self.source}")

    def _run(self, capture: cv2.VideoCapture, on_frame: FrameCallback) -> None:
        interval = 1.0 / self.fps if self.fps else 0.0
        try:
            while not self._stop_event.is_set():
                ret, bgr = capture.read()
                if not ret:
                    if self.loop and isinstance(self.source, str):
                        capture.set(cv2.CAP_PROP_POS_FRAMES, 0)
                        ret, bgr = capture.read()
                    if not ret:
                        logger.info("Frame source reached end of stream")
                        break

                frame = self._to_frame(bgr)
                self.frames_delivered += 1
                try:
                    on_frame(frame)
                except Exception as e:
                    logger.error(f"Frame consumer failed: {e}")
                    frame.release()

                if interval:
                    self._stop_event.wait(interval)
        finally:
            capture.release()

    def _to_frame(self, bgr: np.ndarray) -> Frame:
        with self._lock:
            width, height = self._size
            buffer = self._pool.obtain(width, height)

        if bgr.shape[1] != width or bgr.shape[0] != height:
            bgr = cv2.resize(bgr, (width, height), interpolation=cv2.INTER_AREA)
        cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA, dst=buffer)
        return Frame(FrameImage(buffer), on_release=self._recycle)

    def _recycle(self, buffer: np.ndarray) -> None:
        with self._lock:
            if buffer.shape[1] == self._size[0] and buffer.shape[0] == self._size[1]:
                self._pool.release(buffer)

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._capture = None
        logger.info("Frame source stopped")
