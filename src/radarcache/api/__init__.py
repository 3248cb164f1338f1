"""HTTP API for radarcache.

This module provides:

- create_app: Factory function to create FastAPI application
- RadarResponse: Newest cached frames with cache state
- TimeSeriesResponse: Frames stitched from historical cache folders
- ErrorResponse: Error body, with retry hints when nothing is cached yet

Note: FastAPI-dependent exports (create_app, get_service) are lazy-loaded
to allow importing schemas without FastAPI installed.
"""

# Schemas can be imported directly (only depend on pydantic)
from radarcache.api.schemas import (
    CacheRangeResponse,
    CacheStatusResponse,
    ErrorResponse,
    FrameInfo,
    HealthResponse,
    MetadataResponse,
    RadarResponse,
    TimeSeriesResponse,
)


# Lazy imports for FastAPI-dependent components
def __getattr__(name):
    """Lazy load FastAPI-dependent components."""
    if name in ("create_app", "get_service"):
        from radarcache.api.app import create_app, get_service
        if name == "create_app":
            return create_app
        return get_service
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "create_app",
    "get_service",
    "CacheRangeResponse",
    "CacheStatusResponse",
    "ErrorResponse",
    "FrameInfo",
    "HealthResponse",
    "MetadataResponse",
    "RadarResponse",
    "TimeSeriesResponse",
]
