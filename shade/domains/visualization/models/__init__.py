from .bitmap_pool import BitmapPool, next_power_of_two
from .image_processor import ImageProcessor

__all__ = ["BitmapPool", "ImageProcessor", "next_power_of_two"]
