"""
Exception types raised inside the Shade pipeline.

Most failures in the pipeline are absorbed and degrade to "no overlay";
these exist so the places that do raise can be told apart by callers.
"""


class ShadeError(Exception):
    """Base class for pipeline errors."""
    pass


class ModelSetupError(ShadeError):
    """The detection model could not be loaded or its tensor shapes are unusable."""
    pass


class CaptureReconfigurationError(ShadeError):
    """The capture source rejected a new geometry; the previous one stays active."""
    pass
