from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os
from pathlib import Path

from shade import __version__
from shade.core.config import settings
from shade.api import health as health_router
from shade.api.v1.endpoints import overlay as overlay_endpoints
from shade.api.v1.endpoints import pipeline as pipeline_endpoints
from shade.api.v1.endpoints import settings as settings_endpoints
from shade.application.orchestration.pipeline_coordinator import PipelineCoordinator
from shade.application.services.configuration_manager import ConfigurationManager
from shade.application.services.overlay_presenter import OverlayPresenter
from shade.infrastructure.capture.frame_source import OpenCVFrameSource
from shade.infrastructure.presentation.overlay_surface import InMemoryOverlaySurface

logging.basicConfig(level=os.getenv("LOG_LEVEL", settings.LOG_LEVEL), format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    logger.info("Application startup sequence initiated...")

    weights_dir = Path(settings.WEIGHTS_DIR).resolve()
    if not weights_dir.exists():
        logger.warning(f"Weights directory not found: {weights_dir}. Ensure model weights are available or mounted.")
    else:
        logger.info(f"Weights directory present: {weights_dir}")

    configuration_manager = ConfigurationManager()
    surface = InMemoryOverlaySurface(*settings.surface_size)
    presenter = OverlayPresenter()
    presenter.attach(surface)

    frame_source = OpenCVFrameSource(
        settings.CAPTURE_SOURCE or "0",
        settings.CAPTURE_DEFAULT_SIZE,
        settings.CAPTURE_DEFAULT_SIZE
    )
    coordinator = PipelineCoordinator(
        frame_source=frame_source,
        presenter=presenter,
        configuration_manager=configuration_manager
    )
    surface.add_resize_listener(coordinator.on_surface_resized)

    app_instance.state.configuration_manager = configuration_manager
    app_instance.state.overlay_surface = surface
    app_instance.state.overlay_presenter = presenter
    app_instance.state.pipeline_coordinator = coordinator

    if settings.CAPTURE_AUTOSTART:
        if await coordinator.start():
            logger.info("Capture pipeline autostarted")
        else:
            logger.error("Capture pipeline autostart failed; use POST /api/v1/pipeline/start to retry")

    try:
        yield
    finally:
        logger.info("Application shutdown sequence initiated...")
        try:
            await coordinator.stop()
        except Exception as e:
            logger.warning(f"Pipeline shutdown encountered issues: {e}")
        presenter.detach()


app = FastAPI(
    title=settings.APP_NAME,
    debug=settings.DEBUG,
    version=__version__,
    lifespan=lifespan,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"]
)

api_v1_router_prefix = settings.API_V1_PREFIX
app.include_router(
    settings_endpoints.router,
    prefix=f"{api_v1_router_prefix}/settings",
    tags=["V1 - Overlay Settings"]
)
app.include_router(
    pipeline_endpoints.router,
    prefix=f"{api_v1_router_prefix}/pipeline",
    tags=["V1 - Pipeline Control"]
)
app.include_router(
    overlay_endpoints.router,
    prefix=f"{api_v1_router_prefix}/overlay",
    tags=["V1 - Overlay"]
)

# Health Check System
app.include_router(health_router.router, tags=["Health Checks"])


@app.get("/", tags=["Root"])
async def read_root(request: Request):
    return {"message": f"Welcome to {settings.APP_NAME} - Version {app.version}"}
