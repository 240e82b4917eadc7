from .frame_similarity_checker import FrameSimilarityChecker, pixels_similar

__all__ = ["FrameSimilarityChecker", "pixels_similar"]
