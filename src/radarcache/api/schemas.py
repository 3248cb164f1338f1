"""Pydantic schemas for API responses.

Defines all data models returned by the radar cache API, plus converters
from the cache layer's dataclasses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from radarcache.cache.models import (
    CacheFolder,
    CacheRange,
    CacheUpdateStatus,
    Frame,
    ObservationMetadata,
    RadarSnapshot,
    TimeSeries,
)


class FrameInfo(BaseModel):
    """One radar frame.

    Attributes:
        frame_index: 0-based index, oldest first
        minutes_ago: Minutes before the observation time
        image_url: Relative URL serving the PNG
        absolute_observation_time: Observation time of this frame (time series only)
    """

    frame_index: int = Field(..., ge=0)
    minutes_ago: int
    image_url: Optional[str] = None
    absolute_observation_time: Optional[datetime] = None

    @classmethod
    def from_frame(cls, frame: Frame) -> "FrameInfo":
        return cls(
            frame_index=frame.frame_index,
            minutes_ago=frame.minutes_ago,
            image_url=frame.image_url,
            absolute_observation_time=frame.absolute_observation_time,
        )


class MetadataResponse(BaseModel):
    """Observation metadata for the cached frames."""

    observation_time: datetime
    forecast_time: Optional[datetime] = None
    weather_station: Optional[str] = None
    distance: Optional[str] = None

    @classmethod
    def from_metadata(cls, metadata: ObservationMetadata) -> "MetadataResponse":
        return cls(
            observation_time=metadata.observation_time,
            forecast_time=metadata.forecast_time,
            weather_station=metadata.weather_station,
            distance=metadata.distance,
        )


class RadarResponse(BaseModel):
    """Newest cached frames for a location and the cache state.

    Attributes:
        frames: Frames of the newest complete cache folder
        last_updated: When the folder was last written
        observation_time: Observation time of the radar data
        cache_is_valid: Whether the cache is still within its validity window
        cache_expires_at: When the cache stops being valid
        is_updating: Whether a background update is in progress
        next_update_time: Expected time of the next refreshed data
        estimated_update_seconds: Estimated seconds until an update completes
        last_error: Why the latest update failed, while updates keep failing
        last_error_at: When the latest update failed
        consecutive_failures: Failed updates since the last successful one
    """

    frames: list[FrameInfo]
    last_updated: datetime
    observation_time: datetime
    forecast_time: Optional[datetime] = None
    weather_station: Optional[str] = None
    distance: Optional[str] = None
    cache_folder: str
    cache_is_valid: bool
    cache_expires_at: datetime
    is_updating: bool
    next_update_time: datetime
    estimated_update_seconds: int
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    consecutive_failures: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: RadarSnapshot) -> "RadarResponse":
        return cls(
            frames=[FrameInfo.from_frame(f) for f in snapshot.frames],
            last_updated=snapshot.last_updated,
            observation_time=snapshot.metadata.observation_time,
            forecast_time=snapshot.metadata.forecast_time,
            weather_station=snapshot.metadata.weather_station,
            distance=snapshot.metadata.distance,
            cache_folder=snapshot.folder_name,
            cache_is_valid=snapshot.is_valid,
            cache_expires_at=snapshot.cache_expires_at,
            is_updating=snapshot.is_updating,
            next_update_time=snapshot.next_update_time,
            estimated_update_seconds=snapshot.estimated_update_seconds,
            last_error=snapshot.last_error,
            last_error_at=snapshot.last_error_at,
            consecutive_failures=snapshot.consecutive_failures,
        )


class CacheStatusResponse(BaseModel):
    """Result of a refresh request."""

    cache_exists: bool
    cache_is_valid: bool
    cache_expires_at: Optional[datetime] = None
    update_triggered: bool
    message: str
    next_update_time: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    consecutive_failures: int = 0

    @classmethod
    def from_status(cls, status: CacheUpdateStatus) -> "CacheStatusResponse":
        return cls(
            cache_exists=status.cache_exists,
            cache_is_valid=status.cache_is_valid,
            cache_expires_at=status.cache_expires_at,
            update_triggered=status.update_triggered,
            message=status.message,
            next_update_time=status.next_update_time,
            last_error=status.last_error,
            last_error_at=status.last_error_at,
            consecutive_failures=status.consecutive_failures,
        )


class CacheFolderInfo(BaseModel):
    """A complete historical cache folder."""

    folder_name: str
    cache_timestamp: datetime
    observation_time: Optional[datetime] = None
    available_data_types: list[str] = Field(default_factory=list)
    is_complete: bool = True

    @classmethod
    def from_folder(cls, folder: CacheFolder) -> "CacheFolderInfo":
        return cls(
            folder_name=folder.name,
            cache_timestamp=folder.cache_timestamp,
            observation_time=folder.observation_time,
            available_data_types=list(folder.available_data_types),
            is_complete=folder.is_complete,
        )


class CacheRangeResponse(BaseModel):
    """Span of cached history for a location."""

    oldest: Optional[CacheFolderInfo] = None
    newest: Optional[CacheFolderInfo] = None
    total_count: int = 0
    time_span_minutes: Optional[float] = None

    @classmethod
    def from_range(cls, cache_range: CacheRange) -> "CacheRangeResponse":
        return cls(
            oldest=CacheFolderInfo.from_folder(cache_range.oldest) if cache_range.oldest else None,
            newest=CacheFolderInfo.from_folder(cache_range.newest) if cache_range.newest else None,
            total_count=cache_range.total_count,
            time_span_minutes=cache_range.time_span_minutes,
        )


class SeriesFolderInfo(BaseModel):
    """Frames contributed by one cache folder."""

    folder_name: str
    cache_timestamp: datetime
    observation_time: datetime
    frames: list[FrameInfo]


class TimeSeriesResponse(BaseModel):
    """Chronological frames stitched from several cache folders."""

    cache_folders: list[SeriesFolderInfo]
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_frames: int

    @classmethod
    def from_series(cls, series: TimeSeries) -> "TimeSeriesResponse":
        return cls(
            cache_folders=[
                SeriesFolderInfo(
                    folder_name=folder.name,
                    cache_timestamp=folder.cache_timestamp,
                    observation_time=folder.observation_time,
                    frames=[FrameInfo.from_frame(f) for f in folder.frames],
                )
                for folder in series.folders
            ],
            start_time=series.start_time,
            end_time=series.end_time,
            total_frames=series.total_frames,
        )


class MessageResponse(BaseModel):
    """Plain confirmation message."""

    message: str


class HealthResponse(BaseModel):
    """Health check response.

    Attributes:
        status: Service status ('healthy' or 'unhealthy')
        version: API version
        active_updates: Number of cache updates in flight
        timestamp: Server time (UTC)
    """

    status: str = Field(
        default="healthy",
        description="Service status",
    )
    version: str = Field(
        default="1.0.0",
        description="API version",
    )
    active_updates: int = Field(
        default=0,
        ge=0,
        description="Cache updates in progress",
    )
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Error response schema.

    Attributes:
        error: Error type/code
        message: Human-readable error message
        detail: Additional error details
        retry_after: Seconds to wait before retrying (cache not yet populated)
        refresh_endpoint: Endpoint that triggers a cache update
    """

    error: str = Field(
        ...,
        description="Error type",
    )
    message: str = Field(
        ...,
        description="Error message",
    )
    detail: Optional[str] = Field(
        default=None,
        description="Additional details",
    )
    retry_after: Optional[int] = Field(
        default=None,
        description="Seconds to wait before retrying",
    )
    refresh_endpoint: Optional[str] = Field(
        default=None,
        description="Endpoint that triggers a cache update",
    )
