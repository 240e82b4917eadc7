"""
Application layer: orchestration of the detection pipeline and the services
that sit between the domains and the outside world (settings, presentation).
"""
