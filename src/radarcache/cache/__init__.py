"""Radar cache layer for radarcache.

Provides folder-based storage of radar frame generations, freshness checks,
single-flight background updates and multi-folder time series.

Background refresh can be run via:
    python -m radarcache.cache.refresh

Or as a long-running service with the HTTP API:
    python -m radarcache.cache.refresh --serve
"""

from radarcache.cache.metrics import ActiveUpdateRegistry, MetricsEstimator
from radarcache.cache.models import (
    CacheFolder,
    CacheRange,
    CacheUpdateStatus,
    Frame,
    Location,
    ObservationMetadata,
    RadarSnapshot,
    SeriesFolder,
    TimeSeries,
    UpdatePhase,
)
from radarcache.cache.orchestrator import AcquisitionRequest, CacheOrchestrator
from radarcache.cache.refresh import (
    CleanupScheduler,
    RefreshResult,
    RefreshScheduler,
    get_cache_status,
)
from radarcache.cache.storage import DeletionResult, FileStore
from radarcache.cache.timeseries import FolderFrames, assemble_time_series

__all__ = [
    "AcquisitionRequest",
    "ActiveUpdateRegistry",
    "CacheFolder",
    "CacheOrchestrator",
    "CacheRange",
    "CacheUpdateStatus",
    "CleanupScheduler",
    "DeletionResult",
    "FileStore",
    "FolderFrames",
    "Frame",
    "Location",
    "MetricsEstimator",
    "ObservationMetadata",
    "RadarSnapshot",
    "RefreshResult",
    "RefreshScheduler",
    "SeriesFolder",
    "TimeSeries",
    "UpdatePhase",
    "assemble_time_series",
    "get_cache_status",
]
