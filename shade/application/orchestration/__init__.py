from .pipeline_coordinator import AtomicFlag, CaptureState, PipelineCoordinator, create_default_detector

__all__ = ["AtomicFlag", "CaptureState", "PipelineCoordinator", "create_default_detector"]
