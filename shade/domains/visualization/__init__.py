"""
Visualization domain.

Turns detection boxes into pixelated patches and recycles their pixel buffers.
"""
