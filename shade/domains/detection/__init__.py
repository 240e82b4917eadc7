"""
Detection domain for single-class target detection.

This domain handles:
- Loading the detection model and running inference on frames
- Turning the raw model output into normalized detection boxes
- Confidence thresholding and degenerate-geometry filtering
"""
