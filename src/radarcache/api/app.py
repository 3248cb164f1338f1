"""FastAPI application for cached weather radar imagery.

Provides REST API endpoints for:
- Newest cached radar frames per location (triggers a background update when stale)
- Individual frame images, current or from a historical cache folder
- Observation metadata, cache range and multi-folder time series
- Manual refresh and deletion
- Health checks

Example:
    >>> from radarcache.api import create_app
    >>> app = create_app()
    >>> # Run with: radarcache --serve
    >>> # or: RADARCACHE_CONFIG=radarcache.toml uvicorn radarcache.api.app:app

The module-level ``app`` is built before any configuration is loaded, so it
allows every CORS origin. ``api.cors_origins`` applies when the app is built
around a service, as ``radarcache --serve`` does.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from radarcache.api.schemas import (
    CacheRangeResponse,
    CacheStatusResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    MetadataResponse,
    RadarResponse,
    TimeSeriesResponse,
)
from radarcache.cache.models import Location, utc_now
from radarcache.config import load_settings
from radarcache.scraping.selectors import is_known_state
from radarcache.service import RadarCacheService

logger = logging.getLogger(__name__)

# API version
API_VERSION = "1.0.0"

# Seconds a client should wait before retrying when nothing is cached yet
RETRY_AFTER_SECONDS = 30

_PATH_CHARS = ("/", "\\", "..")


# Global service, built from configuration on first use
_service: Optional[RadarCacheService] = None


def get_service() -> RadarCacheService:
    """Get or create the global service from the configured settings."""
    global _service
    if _service is None:
        _service = RadarCacheService(load_settings())
    return _service


def validate_location(suburb: str, state: str) -> Location:
    """Build a Location from path parameters.

    Raises:
        HTTPException: 400 if either part is empty, contains path
            characters, or the state is not an Australian state
    """
    suburb = suburb.strip()
    state = state.strip()
    if not suburb:
        raise HTTPException(status_code=400, detail="Suburb is required")
    if not state:
        raise HTTPException(status_code=400, detail="State is required")
    if any(c in suburb or c in state for c in _PATH_CHARS):
        raise HTTPException(status_code=400, detail="Suburb and state must not contain path characters")
    if not is_known_state(state):
        raise HTTPException(
            status_code=400,
            detail=f"Unknown state '{state}'. Use an Australian state abbreviation such as QLD or NSW.",
        )
    return Location(suburb=suburb, state=state)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def refresh_endpoint(location: Location) -> str:
    return f"/api/radar/{quote(location.suburb, safe='')}/{quote(location.state, safe='')}/refresh"


def create_app(
    service: Optional[RadarCacheService] = None,
    start_background: bool = True,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        service: Service to serve from. Uses the global one if not provided,
            in which case every CORS origin is allowed.
        start_background: Whether startup launches the refresh and cleanup loops

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Radar Cache API",
        description="Locally cached weather radar imagery for Australian locations",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    def current() -> RadarCacheService:
        return service or get_service()

    # Add CORS middleware
    cors_origins = service.settings.api.cors_origins if service else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event():
        """Recover incomplete folders and start the background loops."""
        await current().start(background=start_background)
        logger.info("Radar cache service started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop background work and close the browser."""
        await current().stop()

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with custom response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=f"HTTP_{exc.status_code}",
                message=str(exc.detail),
            ).model_dump(exclude_none=True),
        )

    @app.get("/", tags=["info"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Radar Cache API",
            "version": API_VERSION,
            "docs": "/docs",
        }

    @app.get("/api/health", response_model=HealthResponse, tags=["info"])
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=API_VERSION,
            active_updates=len(current().orchestrator.registry),
            timestamp=utc_now(),
        )

    @app.get(
        "/api/radar/{suburb}/{state}",
        response_model=RadarResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid location"},
            404: {"model": ErrorResponse, "description": "Nothing cached yet"},
        },
        tags=["radar"],
    )
    async def get_radar(suburb: str, state: str):
        """Newest cached frames for a location.

        Triggers a background update when the cache is stale or missing and
        returns immediately with whatever is cached.
        """
        location = validate_location(suburb, state)
        orchestrator = current().orchestrator

        try:
            await orchestrator.trigger_update(location)
        except Exception as e:
            logger.warning(f"Background cache update failed for {location}: {e}")

        snapshot = orchestrator.get_cached_radar(location)
        if snapshot is None or not snapshot.frames:
            return JSONResponse(
                status_code=404,
                content=ErrorResponse(
                    error="HTTP_404",
                    message=(
                        "Screenshots not found in cache. Cache update has been triggered "
                        "in background. Please retry in a few moments."
                    ),
                    retry_after=RETRY_AFTER_SECONDS,
                    refresh_endpoint=refresh_endpoint(location),
                ).model_dump(exclude_none=True),
            )
        return RadarResponse.from_snapshot(snapshot)

    @app.get(
        "/api/radar/{suburb}/{state}/frame/{frame_index}",
        response_class=FileResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid location or frame index"},
            404: {"model": ErrorResponse, "description": "Frame not cached"},
        },
        tags=["radar"],
    )
    async def get_frame(
        suburb: str,
        state: str,
        frame_index: int,
        cache_folder: Optional[str] = Query(default=None, alias="cacheFolder"),
    ):
        """PNG image of one frame, from the newest folder or a named historical one."""
        location = validate_location(suburb, state)
        orchestrator = current().orchestrator
        last_index = orchestrator.frame_count - 1
        if frame_index < 0 or frame_index > last_index:
            raise HTTPException(
                status_code=400,
                detail=f"Frame index must be between 0 and {last_index}",
            )

        if cache_folder:
            frame = orchestrator.get_frame_from_folder(location, cache_folder, frame_index)
        else:
            frame = orchestrator.get_frame(location, frame_index)
        if frame is None or not frame.image_path.is_file():
            where = f" in {cache_folder}" if cache_folder else ""
            raise HTTPException(
                status_code=404,
                detail=f"Frame {frame_index} not found for {location}{where}",
            )

        return FileResponse(frame.image_path, media_type="image/png", filename=f"frame_{frame_index}.png")

    @app.get(
        "/api/radar/{suburb}/{state}/metadata",
        response_model=MetadataResponse,
        responses={404: {"model": ErrorResponse, "description": "Nothing cached"}},
        tags=["radar"],
    )
    async def get_metadata(suburb: str, state: str):
        """Observation metadata of the newest complete folder."""
        location = validate_location(suburb, state)
        metadata = current().orchestrator.get_metadata(location)
        if metadata is None:
            raise HTTPException(
                status_code=404,
                detail=(
                    f"No cached data found. Use POST {refresh_endpoint(location)} "
                    "to trigger cache update."
                ),
            )
        return MetadataResponse.from_metadata(metadata)

    @app.get(
        "/api/radar/{suburb}/{state}/range",
        response_model=CacheRangeResponse,
        tags=["history"],
    )
    async def get_range(suburb: str, state: str):
        """Oldest and newest complete cache folders for a location."""
        location = validate_location(suburb, state)
        return CacheRangeResponse.from_range(current().orchestrator.get_cache_range(location))

    @app.get(
        "/api/radar/{suburb}/{state}/timeseries",
        response_model=TimeSeriesResponse,
        responses={400: {"model": ErrorResponse, "description": "Invalid time range"}},
        tags=["history"],
    )
    async def get_timeseries(
        suburb: str,
        state: str,
        start_time: Optional[datetime] = Query(default=None, alias="startTime"),
        end_time: Optional[datetime] = Query(default=None, alias="endTime"),
    ):
        """Deduplicated, chronological frames from every folder in the range."""
        location = validate_location(suburb, state)
        start = _as_utc(start_time)
        end = _as_utc(end_time)
        if start is not None and end is not None and start > end:
            raise HTTPException(status_code=400, detail="startTime must not be after endTime")

        try:
            series = current().orchestrator.get_series(location, start, end)
        except Exception as e:
            logger.error(f"Time series error for {location}: {e}")
            raise HTTPException(
                status_code=500,
                detail=f"Time series assembly failed: {str(e)}",
            )
        return TimeSeriesResponse.from_series(series)

    @app.post(
        "/api/radar/{suburb}/{state}/refresh",
        response_model=CacheStatusResponse,
        tags=["cache"],
    )
    async def refresh(suburb: str, state: str):
        """Trigger a cache update if the cache is stale or missing."""
        location = validate_location(suburb, state)
        try:
            status = await current().orchestrator.trigger_update(location)
        except Exception as e:
            logger.error(f"Error triggering cache update for {location}: {e}")
            raise HTTPException(
                status_code=500,
                detail=f"Cache update trigger failed: {str(e)}",
            )
        return CacheStatusResponse.from_status(status)

    @app.delete(
        "/api/radar/{suburb}/{state}",
        response_model=MessageResponse,
        responses={404: {"model": ErrorResponse, "description": "Nothing cached"}},
        tags=["cache"],
    )
    async def delete_location(suburb: str, state: str):
        """Delete every cached folder for a location."""
        location = validate_location(suburb, state)
        if not current().orchestrator.delete_location(location):
            raise HTTPException(
                status_code=404,
                detail=f"No cached data found for {location}",
            )
        return MessageResponse(message=f"Cache deleted for {location}")

    return app


# Default app instance for uvicorn
app = create_app()
