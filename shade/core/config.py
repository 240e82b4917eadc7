from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Optional, Tuple
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Shade Backend"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Detection model ---
    DETECTOR_TYPE: str = "onnx"
    WEIGHTS_DIR: str = "./weights"
    SMALL_MODEL_PATH: str = "shade_small.onnx"
    LARGE_MODEL_PATH: str = "shade_large.onnx"
    DETECTION_NUM_THREADS: int = 4
    DETECTION_USE_GPU: bool = True
    TARGET_CLASS_ID: int = 0
    MAX_DETECTIONS: int = Field(default=15, gt=0, description="Maximum boxes kept per frame.")
    DEFAULT_CONFIDENCE_PERCENT: float = Field(default=60.0, ge=0.0, le=100.0)
    INPUT_MEAN: float = 0.0
    INPUT_STD: float = 255.0

    # --- Empty-detection grace periods (frames) ---
    EMPTY_FRAMES_THRESHOLD: int = 3
    FULLSCREEN_EMPTY_FRAMES_THRESHOLD: int = 4

    # --- Frame similarity heuristic ---
    SIMILARITY_GRID_SIZE: int = 36
    SIMILARITY_THRESHOLD: float = 0.6
    SIMILARITY_PIXEL_THRESHOLD: int = 75
    SIMILARITY_BOX_MARGIN: float = 0.03
    SIMILARITY_MAX_BOX_COVERAGE: float = 0.70
    SIMILARITY_MIN_SAMPLE_FRACTION: float = 0.10
    SIMILARITY_BOX_HISTORY: int = 5

    # --- Overlay / pixelation ---
    DEFAULT_DOWNSAMPLE_FACTOR: int = 15
    MIN_DOWNSAMPLE_FACTOR: int = 5
    MAX_DOWNSAMPLE_FACTOR: int = 30
    MAX_BITMAP_POOL_SIZE: int = 10
    MIN_BITMAP_DIMENSION: int = 8
    BOX_SIMILARITY_THRESHOLD: float = 0.025
    DEFAULT_OVERLAY_OPACITY: float = 100.0

    # --- Debounce delays for streamed settings (ms) ---
    CONFIDENCE_DEBOUNCE_MS: int = 500
    OPACITY_DEBOUNCE_MS: int = 500
    PIXELATION_DEBOUNCE_MS: int = 300

    # --- Capture ---
    CAPTURE_SOURCE: Optional[str] = None  # device index ("0") or a video path/URL
    CAPTURE_AUTOSTART: bool = False
    CAPTURE_DEFAULT_SIZE: int = 416
    INPUT_BUFFER_POOL_SIZE: int = 2

    # --- Presentation surface (view space) ---
    SURFACE_WIDTH: int = 1080
    SURFACE_HEIGHT: int = 2400

    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8"
    }

    @property
    def default_confidence_threshold(self) -> float:
        return self.DEFAULT_CONFIDENCE_PERCENT / 100.0

    @property
    def surface_size(self) -> Tuple[int, int]:
        return (self.SURFACE_WIDTH, self.SURFACE_HEIGHT)

    def resolved_model_path(self, performance_mode: bool) -> Path:
        """Model artifact for the requested mode; the large model backs performance mode."""
        model_file = self.LARGE_MODEL_PATH if performance_mode else self.SMALL_MODEL_PATH
        return (Path(self.WEIGHTS_DIR) / model_file).resolve()


settings = Settings()
