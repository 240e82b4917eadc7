from .frame_source import Frame, FrameSource, OpenCVFrameSource

__all__ = ["Frame", "FrameSource", "OpenCVFrameSource"]
