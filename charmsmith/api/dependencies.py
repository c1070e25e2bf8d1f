"""
FastAPI Dependencies

The pipeline (and the HTTP client and storage it wraps) is built once in
the application lifespan and stored on app.state.
"""

from fastapi import Request

from charmsmith.pipeline.orchestrator import CharmPipeline


def get_pipeline(request: Request) -> CharmPipeline:
    """Get the shared pipeline - ready for FastAPI Depends()."""
    return request.app.state.pipeline
