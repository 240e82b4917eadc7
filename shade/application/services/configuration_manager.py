"""
Configuration manager application service.

Holds the user-facing overlay settings and streams changes to the pipeline.
Persistence is someone else's job: values live in memory and start from the
application settings.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field

from shade.core.config import settings

logger = logging.getLogger(__name__)

_MISSING = object()
_DONE = object()


class OverlaySettings(BaseModel):
    """User-adjustable overlay settings."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    confidence_percent: float = Field(
        default=settings.DEFAULT_CONFIDENCE_PERCENT, ge=0.0, le=100.0,
        description="Minimum detection confidence, in percent."
    )
    pixelation_level: int = Field(
        default=settings.DEFAULT_DOWNSAMPLE_FACTOR,
        ge=settings.MIN_DOWNSAMPLE_FACTOR, le=settings.MAX_DOWNSAMPLE_FACTOR,
        description="Downsample factor used for pixelated regions."
    )
    opacity_percent: float = Field(
        default=settings.DEFAULT_OVERLAY_OPACITY, ge=0.0, le=100.0,
        description="Overlay opacity, in percent."
    )
    full_scene_mode: bool = Field(default=False, description="Keep overlays through empty detections when the scene is unchanged.")
    performance_mode: bool = Field(default=False, description="Load the large model artifact.")


class ConfigurationManager:
    """
    Application-level settings store with per-field change streams.

    `update` may be called from any thread; subscribers receive values on the
    event loop they subscribed from.
    """

    def __init__(self, initial: OverlaySettings = None):
        self._settings = initial or OverlaySettings()
        self._subscribers: Dict[str, List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {
            name: [] for name in OverlaySettings.model_fields
        }
        logger.debug("ConfigurationManager initialized")

    @property
    def current(self) -> OverlaySettings:
        return self._settings

    def get(self, field: str) -> Any:
        return getattr(self._settings, field)

    def update(self, **changes) -> OverlaySettings:
        """
        Validate and apply changes, then publish each changed field.

        Raises:
            pydantic.ValidationError: if a value is out of range or a field is unknown
        """
        updated = OverlaySettings(**{**self._settings.model_dump(), **changes})
        previous = self._settings
        self._settings = updated

        for name in OverlaySettings.model_fields:
            value = getattr(updated, name)
            if value != getattr(previous, name):
                logger.info(f"Setting {name} changed to {value}")
                self._publish(name, value)
        return updated

    def _publish(self, field: str, value: Any) -> None:
        for loop, queue in list(self._subscribers[field]):
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(queue.put_nowait, value)

    async def subscribe(self, field: str, emit_current: bool = True) -> AsyncIterator[Any]:
        """
        Stream values of one field.

        Args:
            field: OverlaySettings field name
            emit_current: Yield the current value first; pass False to only see changes
        """
        if field not in self._subscribers:
            raise ValueError(f"Unknown setting: {field}")

        queue: asyncio.Queue = asyncio.Queue()
        entry = (asyncio.get_running_loop(), queue)
        self._subscribers[field].append(entry)
        try:
            if emit_current:
                yield self.get(field)
            while True:
                yield await queue.get()
        finally:
            self._subscribers[field].remove(entry)

    def subscriber_count(self, field: str) -> int:
        return len(self._subscribers[field])


async def debounce(source: AsyncIterator[Any], delay: float) -> AsyncIterator[Any]:
    """
    Yield a value from `source` only after `delay` seconds pass without a newer one.

    When `source` ends, a pending value is flushed before finishing.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def pump():
        try:
            async for value in source:
                queue.put_nowait(value)
        finally:
            queue.put_nowait(_DONE)

    task = asyncio.ensure_future(pump())
    pending = _MISSING
    try:
        while True:
            if pending is _MISSING:
                item = await queue.get()
            else:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=delay)
                except asyncio.TimeoutError:
                    value, pending = pending, _MISSING
                    yield value
                    continue

            if item is _DONE:
                if pending is not _MISSING:
                    yield pending
                # Surfaces an exception raised by the source.
                await task
                return
            pending = item
    finally:
        task.cancel()
