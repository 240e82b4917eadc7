# FILE: shade/shared/types.py
"""
Module for shared type aliases used across the application.
"""
from typing import Tuple, NewType, Callable
import numpy as np


# RGBA frame, shape (H, W, 4), dtype uint8
FrameImage = NewType("FrameImage", np.ndarray)

# Pooled pixel buffer, shape (H, W, 4), dtype uint8
PixelBuffer = NewType("PixelBuffer", np.ndarray)

# (width, height) in pixels
Size = Tuple[int, int]

# (left, top, right, bottom) in view space
RectF = Tuple[float, float, float, float]

# Posts a callable onto the single-consumer presentation context
Dispatcher = Callable[[Callable[[], None]], None]
