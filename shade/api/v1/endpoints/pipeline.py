"""
Pipeline control endpoints: lifecycle, manual clear, target visibility and status.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from shade.api.v1.schemas import PipelineActionResponse, PipelineStatusResponse, VisibilityRequest
from shade.application.orchestration.pipeline_coordinator import CaptureState, PipelineCoordinator
from shade.dependencies import get_pipeline_coordinator
from shade.utils.error_handler import pipeline_error_handler

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/status", response_model=PipelineStatusResponse)
async def get_pipeline_status(coordinator: PipelineCoordinator = Depends(get_pipeline_coordinator)):
    return PipelineStatusResponse(
        **coordinator.get_status(),
        presenter=coordinator.presenter.get_statistics(),
        errors=pipeline_error_handler.get_error_statistics()
    )


@router.post("/start", response_model=PipelineActionResponse)
async def start_pipeline(coordinator: PipelineCoordinator = Depends(get_pipeline_coordinator)):
    if coordinator.capture_state is not CaptureState.IDLE:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Pipeline is {coordinator.capture_state.value}"
        )

    started = await coordinator.start()
    if not started:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline failed to start; check model and capture configuration."
        )
    return PipelineActionResponse(success=True, message="Pipeline started.", capture_state=coordinator.capture_state.value)


@router.post("/stop", response_model=PipelineActionResponse)
async def stop_pipeline(coordinator: PipelineCoordinator = Depends(get_pipeline_coordinator)):
    await coordinator.stop()
    return PipelineActionResponse(success=True, message="Pipeline stopped.", capture_state=coordinator.capture_state.value)


@router.post("/clear", response_model=PipelineActionResponse)
async def clear_overlay(coordinator: PipelineCoordinator = Depends(get_pipeline_coordinator)):
    coordinator.clear_overlay()
    return PipelineActionResponse(success=True, message="Overlay cleared.", capture_state=coordinator.capture_state.value)


@router.post("/visibility", response_model=PipelineActionResponse)
async def set_target_visibility(
    request: VisibilityRequest,
    coordinator: PipelineCoordinator = Depends(get_pipeline_coordinator)
):
    coordinator.set_target_visible(request.visible)
    state = "visible" if request.visible else "hidden"
    return PipelineActionResponse(success=True, message=f"Target marked {state}.", capture_state=coordinator.capture_state.value)
