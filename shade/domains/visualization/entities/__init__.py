from .pixelated_region import OverlayPatch, PixelatedRegion

__all__ = ["OverlayPatch", "PixelatedRegion"]
