"""
Health check endpoint: liveness plus pipeline readiness.
"""

import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Request

from shade.core.config import settings
from shade.utils.error_handler import pipeline_error_handler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_started_at = time.time()


@router.get("")
async def health_check(request: Request) -> Dict[str, Any]:
    coordinator = getattr(request.app.state, "pipeline_coordinator", None)
    presenter = getattr(request.app.state, "overlay_presenter", None)

    pipeline_running = bool(coordinator and coordinator.is_running)
    detector = coordinator.detector if coordinator is not None else None
    detector_ready = bool(detector and detector.is_ready())
    surface_attached = bool(presenter and presenter.handle.attached)

    status_report = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "uptime_seconds": round(time.time() - _started_at, 1),
        "pipeline_running": pipeline_running,
        "detector_ready": detector_ready,
        "surface_attached": surface_attached,
        "errors": pipeline_error_handler.get_error_statistics()["error_statistics"]
    }
    if coordinator is None or (pipeline_running and not detector_ready):
        status_report["status"] = "degraded"
        logger.warning(f"Health check: pipeline not fully ready: {status_report}")
    return status_report
