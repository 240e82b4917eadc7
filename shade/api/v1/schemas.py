from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from shade.core.config import settings

# --- Request Schemas ---

class SettingsUpdateRequest(BaseModel):
    """Partial update of the overlay settings; omitted fields keep their value."""
    confidence_percent: Optional[float] = Field(None, ge=0.0, le=100.0, description="Minimum detection confidence, in percent.")
    pixelation_level: Optional[int] = Field(
        None, ge=settings.MIN_DOWNSAMPLE_FACTOR, le=settings.MAX_DOWNSAMPLE_FACTOR,
        description="Downsample factor for pixelated regions."
    )
    opacity_percent: Optional[float] = Field(None, ge=0.0, le=100.0, description="Overlay opacity, in percent.")
    full_scene_mode: Optional[bool] = Field(None, description="Keep overlays through empty detections when the scene is unchanged.")
    performance_mode: Optional[bool] = Field(None, description="Load the large model artifact.")


class VisibilityRequest(BaseModel):
    """Whether the captured target is currently visible."""
    visible: bool


class SurfaceResizeRequest(BaseModel):
    """New presentation surface size in pixels."""
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

# --- Response Schemas ---

class PipelineActionResponse(BaseModel):
    """Result of a pipeline control action."""
    success: bool
    message: str
    capture_state: str


class PipelineStatusResponse(BaseModel):
    """Current pipeline state and counters."""
    capture_state: str
    detector_ready: bool
    in_flight: bool
    frame_number: int
    last_detected_frame: int
    threshold: float
    full_scene_mode: bool
    performance_mode: bool
    target_visible: bool
    capture_size: Optional[List[int]] = Field(None, description="[width, height] of captured frames.")
    stats: Dict[str, int]
    model: Optional[Dict[str, Any]] = None
    presenter: Dict[str, Any] = Field(default_factory=dict)
    errors: Dict[str, Any] = Field(default_factory=dict)


class OverlayPatchData(BaseModel):
    """One rendered overlay patch."""
    index: int
    bounds: List[float] = Field(..., description="Destination [left, top, right, bottom] in surface pixels.")
    content_width: int
    content_height: int
    opacity: int = Field(..., ge=0, le=255)


class OverlayStateResponse(BaseModel):
    """What the presentation surface currently shows."""
    surface_width: int
    surface_height: int
    render_count: int
    patches: List[OverlayPatchData] = Field(default_factory=list)
