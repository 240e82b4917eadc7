"""
Overlay settings endpoints.

Changes are validated and published to the pipeline's settings watchers,
which apply them after their debounce delay.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from shade.api.v1.schemas import SettingsUpdateRequest
from shade.application.services.configuration_manager import ConfigurationManager, OverlaySettings
from shade.dependencies import get_configuration_manager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=OverlaySettings)
async def get_settings(config_manager: ConfigurationManager = Depends(get_configuration_manager)):
    return config_manager.current


@router.patch("", response_model=OverlaySettings)
async def update_settings(
    request: SettingsUpdateRequest,
    config_manager: ConfigurationManager = Depends(get_configuration_manager)
):
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    try:
        return config_manager.update(**changes)
    except ValidationError as e:
        logger.warning(f"Rejected settings update {changes}: {e}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
