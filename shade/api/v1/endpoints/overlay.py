"""
Overlay inspection endpoints backed by the in-memory presentation surface.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from shade.api.v1.schemas import OverlayPatchData, OverlayStateResponse, SurfaceResizeRequest
from shade.dependencies import get_overlay_surface
from shade.domains.visualization.models.image_processor import ImageProcessor
from shade.infrastructure.presentation.overlay_surface import InMemoryOverlaySurface

logger = logging.getLogger(__name__)
router = APIRouter()

image_processor = ImageProcessor()


@router.get("", response_model=OverlayStateResponse)
async def get_overlay(surface: InMemoryOverlaySurface = Depends(get_overlay_surface)):
    width, height = surface.size
    patches = [
        OverlayPatchData(
            index=index,
            bounds=[float(v) for v in patch.bounds],
            content_width=patch.content.shape[1],
            content_height=patch.content.shape[0],
            opacity=patch.opacity
        )
        for index, patch in enumerate(surface.snapshot())
    ]
    return OverlayStateResponse(
        surface_width=width,
        surface_height=height,
        render_count=surface.render_count,
        patches=patches
    )


@router.get("/patches/{index}.png")
async def get_patch_image(index: int, surface: InMemoryOverlaySurface = Depends(get_overlay_surface)):
    patches = surface.snapshot()
    if index < 0 or index >= len(patches):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No overlay patch {index}")
    try:
        png = image_processor.encode_png(patches[index].content)
    except Exception:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to encode patch")
    return Response(content=png, media_type="image/png")


@router.put("/surface", response_model=OverlayStateResponse)
async def resize_surface(request: SurfaceResizeRequest, surface: InMemoryOverlaySurface = Depends(get_overlay_surface)):
    surface.resize(request.width, request.height)
    return await get_overlay(surface)
