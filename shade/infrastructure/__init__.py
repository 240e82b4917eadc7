"""
Adapters for the external collaborators: frame capture and presentation.
"""
