"""
Domain layer for the Shade backend.

This layer contains the business logic organized by domain:
- detection: model session and box extraction
- similarity: scene-similarity fallback for empty detections
- visualization: pixelated overlay regions and buffer pooling

Each domain follows the structure:
- entities: Domain objects and value objects
- services: Business logic
- models: Technical implementations and adapters
"""
