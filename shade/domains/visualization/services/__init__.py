"""
Visualization Domain Services

Services for building and caching pixelated overlay regions.
"""

from .overlay_region_cache import OverlayRegionCache

__all__ = [
    "OverlayRegionCache"
]
