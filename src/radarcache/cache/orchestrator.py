"""Cache orchestration: freshness checks and single-flight background updates.

The orchestrator answers every read from the newest complete folder for a
location, never from the folder an update is currently writing. When the
cache is stale or missing it starts one background acquisition per location
and reports an estimated completion time.

Update flow:
    1. trigger_update creates the new folder and registers it as active
       with no await in between, so a concurrent trigger sees the update.
    2. The background task re-checks freshness (another run may have just
       finished), then waits for the global acquisition permit.
    3. The acquirer writes frame images into the folder; the orchestrator
       then writes metadata.json and finally frames.json.
    4. The active marker is always cleared; a folder that fails the
       completeness check is removed.

Example:
    >>> orchestrator = CacheOrchestrator(settings, acquirer)
    >>> status = await orchestrator.trigger_update(Location("Pomona", "QLD"))
    >>> status.message
    'No cache exists, update triggered'
"""

import asyncio
import logging
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

from radarcache.cache.metrics import ActiveUpdateRegistry, MetricsEstimator
from radarcache.cache.models import (
    CacheFolder,
    CacheRange,
    CacheUpdateStatus,
    Frame,
    Location,
    ObservationMetadata,
    RadarSnapshot,
    TimeSeries,
    UpdateFailure,
    utc_now,
)
from radarcache.cache.storage import FileStore
from radarcache.cache.timeseries import FolderFrames, assemble_time_series
from radarcache.config import Settings, static_estimate_seconds
from radarcache.errors import AcquisitionFailure

logger = logging.getLogger(__name__)

MSG_IN_PROGRESS = "Cache update already in progress"
MSG_VALID = "Cache is valid, no update needed"
MSG_STALE = "Cache is stale, update triggered"
MSG_NO_CACHE = "No cache exists, update triggered"


@dataclass
class AcquisitionRequest:
    """Everything an acquirer needs to produce one cache generation.

    Attributes:
        location: Location to acquire
        folder: Cache folder to write frame images into
        frame_paths: Target path of each frame, index order
        metrics: Estimator to report phase and step progress to
        debug_folder: Folder for debug artefacts, or None when disabled
    """

    location: Location
    folder: Path
    frame_paths: list[Path]
    metrics: MetricsEstimator
    debug_folder: Optional[Path] = None

    @property
    def location_key(self) -> str:
        return self.location.key


class Acquirer(Protocol):
    """Produces frames and metadata for a location (a browser session in production)."""

    async def acquire(self, request: AcquisitionRequest):
        """Write frame images and return an object with ``frames`` and ``metadata``."""
        ...


def frame_url(location: Location, frame_index: int, folder_name: Optional[str] = None) -> str:
    """Relative API URL serving one frame image."""
    url = f"/api/radar/{quote(location.suburb, safe='')}/{quote(location.state, safe='')}/frame/{frame_index}"
    if folder_name:
        url += f"?cacheFolder={quote(folder_name, safe='')}"
    return url


class CacheOrchestrator:
    """Coordinates reads, freshness and background updates for all locations."""

    def __init__(
        self,
        settings: Settings,
        acquirer: Acquirer,
        store: Optional[FileStore] = None,
        registry: Optional[ActiveUpdateRegistry] = None,
        metrics: Optional[MetricsEstimator] = None,
    ):
        """Initialize orchestrator.

        Args:
            settings: Loaded settings
            acquirer: Acquisition backend
            store: Folder store (defaults to one over cache.directory)
            registry: Shared registry of in-flight updates
            metrics: Duration estimator sharing the same registry
        """
        self.settings = settings
        self.acquirer = acquirer
        self.frame_count = settings.radar.frame_count
        self.expiration = timedelta(minutes=settings.cache.expiration_minutes)
        self.store = store or FileStore(settings.cache.directory, self.frame_count)
        self.registry = registry or (metrics.registry if metrics else ActiveUpdateRegistry())
        self.metrics = metrics or MetricsEstimator(self.registry, self.frame_count)
        self.static_estimate = static_estimate_seconds(settings)
        self._permit = asyncio.Semaphore(settings.acquisition.max_concurrent)
        self._tasks: set[asyncio.Task] = set()
        self._failures: dict[str, UpdateFailure] = {}

    # -- freshness -----------------------------------------------------------

    def is_valid(self, metadata: ObservationMetadata, now: Optional[datetime] = None) -> bool:
        """Whether a cache built from this observation is still fresh."""
        now = now or utc_now()
        return now < metadata.observation_time + self.expiration

    def expires_at(self, metadata: ObservationMetadata) -> datetime:
        return metadata.observation_time + self.expiration

    def get_fresh(
        self,
        location: Location,
        exclude: Optional[Path] = None,
    ) -> Optional[tuple[CacheFolder, ObservationMetadata]]:
        """Newest complete folder with readable metadata.

        Args:
            location: Location to look up
            exclude: Folder to skip, normally the one being written

        Returns:
            (folder, metadata) or None if no usable folder exists
        """
        excluded = Path(exclude).name.lower() if exclude else None
        for folder in self.store.list_folders(location):
            if excluded and folder.name.lower() == excluded:
                logger.debug(f"Skipping folder being written: {folder.name}")
                continue
            if not folder.is_complete:
                continue
            metadata = self.store.load_metadata(folder.path)
            if metadata is None:
                continue
            return folder, metadata
        return None

    def _current(self, location: Location) -> Optional[tuple[CacheFolder, ObservationMetadata]]:
        return self.get_fresh(location, exclude=self.registry.active_folder(location.key))

    # -- progress ------------------------------------------------------------

    def is_updating(self, location: Location) -> bool:
        return self.registry.is_active(location.key)

    def estimate_remaining(self, location: Location) -> int:
        """Seconds until the location's update completes (static estimate as fallback)."""
        remaining = self.metrics.estimate_remaining(location.key)
        return remaining if remaining is not None else self.static_estimate

    def _eta(self, location: Location) -> datetime:
        return utc_now() + timedelta(seconds=self.estimate_remaining(location))

    # -- failures ------------------------------------------------------------

    def last_failure(self, location: Location) -> Optional[UpdateFailure]:
        """Most recent failed update since the last success, if any."""
        return self._failures.get(location.key.lower())

    def _record_failure(self, location: Location, error: Exception) -> None:
        key = location.key.lower()
        previous = self._failures.get(key)
        self._failures[key] = UpdateFailure(
            message=str(error) or type(error).__name__,
            occurred_at=utc_now(),
            step=getattr(error, "step", None),
            consecutive_failures=previous.consecutive_failures + 1 if previous else 1,
        )
        if previous:
            logger.warning(
                f"{location} has failed {previous.consecutive_failures + 1} consecutive updates, "
                f"serving last good cache"
            )

    def _clear_failure(self, location: Location) -> None:
        self._failures.pop(location.key.lower(), None)

    def _status_from(
        self,
        location: Location,
        current: Optional[tuple[CacheFolder, ObservationMetadata]],
    ) -> CacheUpdateStatus:
        status = CacheUpdateStatus(cache_exists=current is not None)
        if current is not None:
            _, metadata = current
            status.cache_is_valid = self.is_valid(metadata)
            status.cache_expires_at = self.expires_at(metadata)
        failure = self.last_failure(location)
        if failure is not None:
            status.last_error = failure.message
            status.last_error_at = failure.occurred_at
            status.consecutive_failures = failure.consecutive_failures
        return status

    # -- triggering ----------------------------------------------------------

    async def trigger_update(self, location: Location) -> CacheUpdateStatus:
        """Start a background update if the cache is stale or missing.

        Returns immediately; the acquisition runs as a detached task.
        """
        key = location.key
        current = self._current(location)
        status = self._status_from(location, current)

        if self.registry.is_active(key):
            logger.debug(f"Update already in progress for {location}, skipping trigger")
            status.message = MSG_IN_PROGRESS
            status.next_update_time = self._eta(location)
            return status

        if status.cache_is_valid:
            status.message = MSG_VALID
            status.next_update_time = status.cache_expires_at
            return status

        # No await between the registry check above and registration below
        folder = self.store.create_folder(location)
        if not self.registry.register(key, folder):
            self.store.delete_if_empty(folder)
            status.message = MSG_IN_PROGRESS
            status.next_update_time = self._eta(location)
            return status

        task = asyncio.create_task(self._run_update(location, folder), name=f"update:{key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        status.update_triggered = True
        status.message = MSG_STALE if status.cache_exists else MSG_NO_CACHE
        status.next_update_time = self._eta(location)
        logger.info(f"{status.message} for {location} (folder {folder.name})")
        return status

    async def _run_update(self, location: Location, folder: Path) -> None:
        key = location.key
        debug_folder = None
        try:
            recheck = self.get_fresh(location, exclude=folder)
            if recheck is not None and self.is_valid(recheck[1]):
                logger.info(
                    f"Cache for {location} became valid before update started "
                    f"({recheck[0].name}), abandoning {folder.name}"
                )
                self.store.delete_if_empty(folder)
                return

            async with self._permit:
                self.registry.restart_clock(key)
                debug_folder = self._create_debug_folder()
                request = AcquisitionRequest(
                    location=location,
                    folder=folder,
                    frame_paths=[self.store.frame_path(folder, i) for i in range(self.frame_count)],
                    metrics=self.metrics,
                    debug_folder=debug_folder,
                )
                logger.info(f"Acquiring radar for {location} into {folder.name}")
                result = await self.acquirer.acquire(request)
                self._persist(folder, result)
                self.metrics.record_total_completion(key)
                self._clear_failure(location)
                logger.info(f"Cache updated for {location}: {folder.name}")

        except asyncio.CancelledError:
            logger.warning(f"Update for {location} cancelled")
            raise
        except AcquisitionFailure as e:
            logger.error(f"Acquisition failed for {location}: {e}")
            self._record_failure(location, e)
        except Exception as e:
            logger.error(f"Unexpected error updating {location}: {e}", exc_info=True)
            self._record_failure(location, e)
        finally:
            self.registry.clear(key)
            if self.store.delete_if_incomplete(folder):
                logger.warning(f"Removed incomplete cache folder {folder.name} after failed update")
            self._remove_empty_debug_folder(debug_folder)

    def _persist(self, folder: Path, result) -> None:
        """Write metadata.json then frames.json; the latter completes the folder."""
        frames = getattr(result, "frames", None)
        metadata = getattr(result, "metadata", None)
        if not frames or metadata is None:
            raise AcquisitionFailure("acquisition returned no frames or no metadata")
        try:
            self.store.save_metadata(folder, metadata)
            self.store.save_manifest(folder, frames)
        except OSError as e:
            raise AcquisitionFailure(f"could not persist cache manifests: {e}") from e
        if not self.store.is_complete(folder):
            raise AcquisitionFailure(f"folder {folder.name} is incomplete after saving")

    def _create_debug_folder(self) -> Optional[Path]:
        if not self.settings.debug.enabled:
            return None
        request_id = f"{utc_now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex}"
        path = self.store.debug_directory / request_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _remove_empty_debug_folder(self, path: Optional[Path]) -> None:
        if path is None or not path.is_dir():
            return
        if any(p.is_file() for p in path.rglob("*")):
            return
        shutil.rmtree(path, ignore_errors=True)
        logger.debug(f"Removed empty debug folder {path.name}")

    # -- reads ---------------------------------------------------------------

    def get_cache_status(self, location: Location) -> CacheUpdateStatus:
        """Current cache state without triggering anything."""
        status = self._status_from(location, self._current(location))
        if self.is_updating(location):
            status.message = MSG_IN_PROGRESS
            status.next_update_time = self._eta(location)
        elif status.cache_is_valid:
            status.message = "Cache is valid"
            status.next_update_time = status.cache_expires_at
        elif status.cache_exists:
            status.message = "Cache is stale"
        else:
            status.message = "No cache exists"
        return status

    def get_metadata(self, location: Location) -> Optional[ObservationMetadata]:
        current = self._current(location)
        return current[1] if current else None

    def get_cached_radar(self, location: Location) -> Optional[RadarSnapshot]:
        """Frames of the newest complete folder plus cache state."""
        current = self._current(location)
        if current is None:
            return None
        folder, metadata = current
        frames = self.store.load_frames(folder.path)
        if not frames:
            return None
        for frame in frames:
            frame.image_url = frame_url(location, frame.frame_index)

        is_valid = self.is_valid(metadata)
        is_updating = self.is_updating(location)
        estimate = self.estimate_remaining(location)
        expires_at = self.expires_at(metadata)
        if is_updating or not is_valid:
            next_update = utc_now() + timedelta(seconds=estimate)
        else:
            next_update = expires_at
        failure = self.last_failure(location)

        return RadarSnapshot(
            location=location,
            folder_name=folder.name,
            frames=frames,
            last_updated=datetime.fromtimestamp(folder.path.stat().st_mtime, tz=expires_at.tzinfo),
            metadata=metadata,
            is_valid=is_valid,
            is_updating=is_updating,
            cache_expires_at=expires_at,
            next_update_time=next_update,
            estimated_update_seconds=estimate,
            last_error=failure.message if failure else None,
            last_error_at=failure.occurred_at if failure else None,
            consecutive_failures=failure.consecutive_failures if failure else 0,
        )

    def _frame_in(
        self,
        location: Location,
        folder: Path,
        frame_index: int,
        folder_name: Optional[str] = None,
    ) -> Optional[Frame]:
        if frame_index < 0 or frame_index >= self.frame_count:
            return None
        for frame in self.store.load_frames(folder):
            if frame.frame_index == frame_index:
                frame.image_url = frame_url(location, frame_index, folder_name)
                return frame
        return None

    def get_frame(self, location: Location, frame_index: int) -> Optional[Frame]:
        """One frame of the newest complete folder (index 0..frame_count-1)."""
        current = self._current(location)
        if current is None:
            return None
        return self._frame_in(location, current[0].path, frame_index)

    def get_frame_from_folder(
        self,
        location: Location,
        folder_name: str,
        frame_index: int,
    ) -> Optional[Frame]:
        """One frame of a specific historical folder belonging to location."""
        for folder in self.get_all_folders(location):
            if folder.name.lower() == folder_name.lower():
                return self._frame_in(location, folder.path, frame_index, folder.name)
        return None

    def get_all_folders(self, location: Location) -> list[CacheFolder]:
        """Complete, non-active folders with readable metadata, oldest first."""
        active = self.registry.active_folder(location.key)
        active_name = active.name.lower() if active else None
        folders = [
            folder for folder in self.store.list_folders(location)
            if folder.is_complete
            and folder.observation_time is not None
            and folder.name.lower() != active_name
        ]
        folders.sort(key=lambda f: f.cache_timestamp)
        return folders

    def get_cache_range(self, location: Location) -> CacheRange:
        folders = self.get_all_folders(location)
        if not folders:
            return CacheRange(oldest=None, newest=None, total_count=0)
        oldest, newest = folders[0], folders[-1]
        span = None
        if len(folders) >= 2:
            span = (newest.cache_timestamp - oldest.cache_timestamp).total_seconds() / 60
        return CacheRange(oldest=oldest, newest=newest, total_count=len(folders), time_span_minutes=span)

    def get_series(
        self,
        location: Location,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> TimeSeries:
        """Stitched frames from every folder whose timestamp falls in [start, end]."""
        folders = [
            f for f in self.get_all_folders(location)
            if (start is None or f.cache_timestamp >= start)
            and (end is None or f.cache_timestamp <= end)
        ]
        limit = self.settings.timeseries.warning_folder_count
        if len(folders) > limit:
            logger.warning(
                f"Time series for {location} spans {len(folders)} folders "
                f"(warning threshold {limit}); consider a narrower range"
            )
        sources = [FolderFrames(folder=f, frames=self.store.load_frames(f.path)) for f in folders]
        return assemble_time_series(
            sources,
            start_time=start,
            end_time=end,
            url_for=lambda folder, frame: frame_url(location, frame.frame_index, folder.name),
        )

    # -- maintenance ---------------------------------------------------------

    def delete_location(self, location: Location) -> bool:
        """Delete all cached folders for a location. False if none existed."""
        deleted = self.store.delete_location(location)
        logger.info(f"Deleted {deleted} cache folder(s) for {location}")
        return deleted > 0

    def cleanup_incomplete_on_startup(self) -> int:
        """Remove folders left incomplete by a crash, sparing active updates."""
        deleted = self.store.cleanup_incomplete(exclude=self.registry.folders())
        if deleted:
            logger.info(f"Startup recovery removed {deleted} incomplete cache folder(s)")
        else:
            logger.debug("Startup recovery found no incomplete cache folders")
        return deleted

    def discover_locations(self) -> list[Location]:
        return self.store.discover_locations()

    async def wait_for_updates(self) -> None:
        """Wait until every background update has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight background updates."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} background update(s)")
