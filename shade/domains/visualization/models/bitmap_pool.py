"""
Bounded FIFO pool of RGBA pixel buffers.

Buffers are plain `(height, width, 4)` uint8 arrays. A buffer is owned either
by the pool or by exactly one holder; callers hand it back with `release`.
"""
import logging
from collections import deque
from typing import Any, Deque, Dict, Optional

import numpy as np

from shade.shared.types import PixelBuffer

logger = logging.getLogger(__name__)


def next_power_of_two(value: int, minimum: int = 8) -> int:
    """Smallest power of two >= `value`, never below `minimum`."""
    if value <= minimum:
        return minimum
    return 1 << (value - 1).bit_length()


class BitmapPool:
    """FIFO pool keyed by buffer dimensions; the oldest buffer is evicted when full."""

    def __init__(self, capacity: int = 10, channels: int = 4):
        if capacity <= 0:
            raise ValueError("Pool capacity must be positive")
        self.capacity = capacity
        self.channels = channels
        self._buffers: Deque[np.ndarray] = deque()

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, buffer: np.ndarray) -> bool:
        return any(pooled is buffer for pooled in self._buffers)

    def acquire(self, width: int, height: int) -> Optional[PixelBuffer]:
        """Remove and return the first pooled buffer of this size, or None."""
        for index, buffer in enumerate(self._buffers):
            if buffer.shape[1] == width and buffer.shape[0] == height:
                del self._buffers[index]
                self.hits += 1
                logger.debug(f"POOL HIT: reusing {width}x{height} buffer")
                return PixelBuffer(buffer)

        self.misses += 1
        logger.debug(f"POOL MISS: no {width}x{height} buffer")
        return None

    def obtain(self, width: int, height: int) -> PixelBuffer:
        """Pooled buffer of this size if one exists, otherwise a fresh zeroed one."""
        buffer = self.acquire(width, height)
        if buffer is None:
            buffer = PixelBuffer(np.zeros((height, width, self.channels), dtype=np.uint8))
        return buffer

    def release(self, buffer: Optional[np.ndarray]) -> None:
        """Give a buffer back. Read-only views and buffers already pooled are ignored."""
        if buffer is None or not buffer.flags.writeable or buffer in self:
            return

        if len(self._buffers) >= self.capacity:
            self._buffers.popleft()
            self.evictions += 1
        self._buffers.append(buffer)

    def drain(self) -> None:
        """Drop every pooled buffer."""
        self._buffers.clear()

    def get_statistics(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._buffers),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hits / lookups if lookups else 0.0
        }
