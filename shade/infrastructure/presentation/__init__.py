from .overlay_surface import InMemoryOverlaySurface, OverlaySurface, OverlaySurfaceHandle

__all__ = ["InMemoryOverlaySurface", "OverlaySurface", "OverlaySurfaceHandle"]
