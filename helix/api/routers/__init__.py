"""API routers for triple-helix."""

from helix.api.routers import content_router, progress_router

__all__ = [
    "content_router",
    "progress_router",
]
