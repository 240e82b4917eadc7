"""
Module for providing application dependencies.
Leverages FastAPI's dependency injection system and app.state for components built at startup.
"""
import logging

from fastapi import Request, HTTPException, status

from shade.application.orchestration.pipeline_coordinator import PipelineCoordinator
from shade.application.services.configuration_manager import ConfigurationManager
from shade.application.services.overlay_presenter import OverlayPresenter
from shade.infrastructure.presentation.overlay_surface import InMemoryOverlaySurface

logger = logging.getLogger(__name__)


def _from_state(request: Request, attribute: str, description: str):
    component = getattr(request.app.state, attribute, None)
    if component is None:
        logger.error(f"{description} not found in app.state (attribute '{attribute}'). Startup might have failed.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"{description} not available.")
    return component


def get_pipeline_coordinator(request: Request) -> PipelineCoordinator:
    """Retrieves the pipeline coordinator from app.state."""
    return _from_state(request, "pipeline_coordinator", "Pipeline coordinator")


def get_configuration_manager(request: Request) -> ConfigurationManager:
    """Retrieves the settings store from app.state."""
    return _from_state(request, "configuration_manager", "Configuration manager")


def get_overlay_presenter(request: Request) -> OverlayPresenter:
    return _from_state(request, "overlay_presenter", "Overlay presenter")


def get_overlay_surface(request: Request) -> InMemoryOverlaySurface:
    return _from_state(request, "overlay_surface", "Overlay surface")
