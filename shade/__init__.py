"""
Shade backend.

Keeps detected regions of a live frame stream covered by pixelated patches.
"""

__version__ = "1.0.0"
