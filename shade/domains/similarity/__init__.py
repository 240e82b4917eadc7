"""
Similarity domain.

Decides whether an empty detection means the target really left the scene or
the overlay is hiding it while the rest of the frame stays unchanged.
"""
