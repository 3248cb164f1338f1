"""Folder-based storage for radar cache generations.

Each acquisition writes one folder:

    {cache_dir}/{LocationKey}_{yyyyMMdd_HHmmss}/
        frame_0.png ... frame_{N-1}.png
        frames.json         # [{frameIndex, minutesAgo}]
        metadata.json       # {observationTime, forecastTime, weatherStation, distance}

A folder is complete when every frame file and frames.json exist. There is
no separate commit marker: frames.json is written last (after metadata.json)
and atomically, so its presence doubles as the commit signal.
"""

import json
import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from radarcache.cache.models import (
    FOLDER_TIMESTAMP_FORMAT,
    RADAR_DATA_TYPE,
    CacheFolder,
    Frame,
    Location,
    ObservationMetadata,
    default_minutes_ago,
    utc_now,
)

logger = logging.getLogger(__name__)

FRAMES_FILE = "frames.json"
METADATA_FILE = "metadata.json"
DEBUG_DIR_NAME = "debug"

_FOLDER_NAME = re.compile(r"^(?P<key>.+)_(?P<timestamp>\d{8}_\d{6})$")


@dataclass
class DeletionResult:
    """Outcome of a bulk delete."""

    deleted: int = 0
    bytes_freed: int = 0
    failed: int = 0

    @property
    def megabytes_freed(self) -> float:
        return self.bytes_freed / (1024 * 1024)

    def __str__(self) -> str:
        return (
            f"deleted {self.deleted} folder(s) ({self.megabytes_freed:.2f} MB), "
            f"{self.failed} failed"
        )


def parse_folder_timestamp(name: str) -> Optional[datetime]:
    """Extract the UTC timestamp embedded in a cache folder name."""
    match = _FOLDER_NAME.match(name)
    if not match:
        return None
    try:
        parsed = datetime.strptime(match.group("timestamp"), FOLDER_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def parse_location(name: str) -> Optional[Location]:
    """Recover the location from a cache folder name.

    Example:
        >>> parse_location("Pomona_QLD_20251207_000906")
        Location(suburb='Pomona', state='QLD')
    """
    match = _FOLDER_NAME.match(name)
    if not match:
        return None
    suburb, sep, state = match.group("key").rpartition("_")
    if not sep or not suburb or not state:
        return None
    return Location(suburb=suburb, state=state)


def folder_size(path: Path) -> int:
    """Total size in bytes of every file below path."""
    total = 0
    for item in path.rglob("*"):
        try:
            if item.is_file():
                total += item.stat().st_size
        except OSError as e:
            logger.warning(f"Could not stat {item}: {e}")
    return total


def _write_json_atomic(path: Path, payload) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    os.replace(tmp_path, path)


class FileStore:
    """Filesystem primitives for cache folders.

    Example:
        >>> store = FileStore(Path("/app/cache"), frame_count=7)
        >>> folder = store.create_folder(Location("Pomona", "QLD"))
        >>> store.is_complete(folder)
        False
    """

    def __init__(self, directory: Path, frame_count: int):
        """Initialize store.

        Args:
            directory: Root cache directory (created if missing)
            frame_count: Frames expected in a complete folder
        """
        self.directory = Path(directory)
        self.frame_count = frame_count
        self.directory.mkdir(parents=True, exist_ok=True)

    @property
    def debug_directory(self) -> Path:
        return self.directory / DEBUG_DIR_NAME

    # -- paths ---------------------------------------------------------------

    def folder_name(self, location: Location, timestamp: datetime) -> str:
        return f"{location.key}_{timestamp.astimezone(timezone.utc).strftime(FOLDER_TIMESTAMP_FORMAT)}"

    def frame_path(self, folder: Path, frame_index: int) -> Path:
        return Path(folder) / f"frame_{frame_index}.png"

    def manifest_path(self, folder: Path) -> Path:
        return Path(folder) / FRAMES_FILE

    def metadata_path(self, folder: Path) -> Path:
        return Path(folder) / METADATA_FILE

    def create_folder(self, location: Location, now: Optional[datetime] = None) -> Path:
        """Create a new, empty folder for an acquisition and return its path.

        An existing folder is never reused: when the name for this second is
        taken, the timestamp moves forward one second at a time.
        """
        timestamp = (now or utc_now()).replace(microsecond=0)
        while True:
            folder = self.directory / self.folder_name(location, timestamp)
            try:
                folder.mkdir(parents=True, exist_ok=False)
            except FileExistsError:
                logger.debug(f"Cache folder {folder.name} exists, trying the next second")
                timestamp += timedelta(seconds=1)
                continue
            logger.debug(f"Created cache folder {folder.name}")
            return folder

    # -- completeness --------------------------------------------------------

    def is_complete(self, folder: Path) -> bool:
        """Whether all frames and the frame manifest exist."""
        folder = Path(folder)
        if not folder.is_dir():
            return False
        for i in range(self.frame_count):
            if not self.frame_path(folder, i).is_file():
                return False
        return self.manifest_path(folder).is_file()

    # -- listing -------------------------------------------------------------

    def _folder_timestamp(self, path: Path) -> datetime:
        parsed = parse_folder_timestamp(path.name)
        if parsed is not None:
            return parsed
        return datetime.fromtimestamp(path.stat().st_ctime, tz=timezone.utc)

    def _cache_dirs(self) -> Iterable[Path]:
        if not self.directory.is_dir():
            return []
        return [
            p for p in self.directory.iterdir()
            if p.is_dir() and not p.name.lower().startswith(DEBUG_DIR_NAME)
        ]

    def list_folders(self, location: Location) -> list[CacheFolder]:
        """All folders for a location, newest first by embedded timestamp.

        Completeness is evaluated but not filtered on; observation time is
        read only for complete folders.
        """
        prefix = location.key.lower() + "_"
        folders = []
        for path in self._cache_dirs():
            if not path.name.lower().startswith(prefix):
                continue
            try:
                timestamp = self._folder_timestamp(path)
            except OSError as e:
                logger.warning(f"Skipping unreadable cache folder {path.name}: {e}")
                continue
            complete = self.is_complete(path)
            observation_time = None
            if complete:
                metadata = self.load_metadata(path)
                observation_time = metadata.observation_time if metadata else None
            folders.append(CacheFolder(
                name=path.name,
                path=path,
                cache_timestamp=timestamp,
                observation_time=observation_time,
                available_data_types=[RADAR_DATA_TYPE] if complete else [],
                is_complete=complete,
            ))
        folders.sort(key=lambda f: f.cache_timestamp, reverse=True)
        return folders

    def discover_locations(self) -> list[Location]:
        """Locations that have at least one cache folder, in first-seen order."""
        seen = set()
        locations = []
        for path in sorted(self._cache_dirs(), key=lambda p: p.name):
            location = parse_location(path.name)
            if location is None or location.lookup_key in seen:
                continue
            seen.add(location.lookup_key)
            locations.append(location)
        return locations

    # -- manifests -----------------------------------------------------------

    def save_metadata(self, folder: Path, metadata: ObservationMetadata) -> None:
        _write_json_atomic(self.metadata_path(folder), metadata.to_dict())
        logger.debug(f"Saved metadata to {Path(folder).name}")

    def save_manifest(self, folder: Path, frames: list[Frame]) -> None:
        entries = [frame.to_manifest_entry() for frame in sorted(frames, key=lambda f: f.frame_index)]
        _write_json_atomic(self.manifest_path(folder), entries)
        logger.debug(f"Saved frame manifest ({len(entries)} frames) to {Path(folder).name}")

    def load_metadata(self, folder: Path) -> Optional[ObservationMetadata]:
        """Read metadata.json, returning None when absent or corrupt."""
        path = self.metadata_path(folder)
        if not path.is_file():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return ObservationMetadata.from_dict(json.load(f))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Unreadable metadata in {Path(folder).name}: {e}")
            return None

    def load_manifest(self, folder: Path) -> dict[int, int]:
        """Read frames.json as {frame_index: minutes_ago}."""
        path = self.manifest_path(folder)
        if not path.is_file():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                entries = json.load(f)
            manifest = {}
            for entry in entries:
                index = entry.get("frameIndex", entry.get("FrameIndex"))
                minutes = entry.get("minutesAgo", entry.get("MinutesAgo"))
                if index is not None and minutes is not None:
                    manifest[int(index)] = int(minutes)
            return manifest
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Unreadable frame manifest in {Path(folder).name}: {e}")
            return {}

    def load_frames(self, folder: Path) -> list[Frame]:
        """Frames present in a folder, with minutes-ago from the manifest."""
        manifest = self.load_manifest(folder)
        frames = []
        for i in range(self.frame_count):
            image_path = self.frame_path(folder, i)
            if not image_path.is_file():
                continue
            frames.append(Frame(
                frame_index=i,
                image_path=image_path,
                minutes_ago=manifest.get(i, default_minutes_ago(i)),
            ))
        return frames

    # -- deletion ------------------------------------------------------------

    def delete_folder(self, folder: Path) -> bool:
        folder = Path(folder)
        if not folder.exists():
            return False
        shutil.rmtree(folder)
        logger.debug(f"Deleted cache folder {folder.name}")
        return True

    def delete_if_empty(self, folder: Path) -> bool:
        """Remove a folder only if nothing was written to it."""
        folder = Path(folder)
        try:
            if folder.is_dir() and not any(folder.iterdir()):
                folder.rmdir()
                logger.debug(f"Removed empty cache folder {folder.name}")
                return True
        except OSError as e:
            logger.warning(f"Could not remove empty folder {folder.name}: {e}")
        return False

    def delete_if_incomplete(self, folder: Path) -> bool:
        """Remove a folder unless it passes the completeness check."""
        folder = Path(folder)
        if not folder.exists() or self.is_complete(folder):
            return False
        try:
            shutil.rmtree(folder)
        except OSError as e:
            logger.warning(f"Could not remove incomplete folder {folder.name}: {e}")
            return False
        logger.info(f"Removed incomplete cache folder {folder.name}")
        return True

    def delete_location(self, location: Location) -> int:
        """Delete every folder for a location. Returns the count removed."""
        deleted = 0
        for folder in self.list_folders(location):
            try:
                if self.delete_folder(folder.path):
                    deleted += 1
            except OSError as e:
                logger.warning(f"Failed to delete {folder.name}: {e}")
        return deleted

    def cleanup_incomplete(self, exclude: Iterable[Path] = ()) -> int:
        """Delete every incomplete cache folder (crash recovery).

        Args:
            exclude: Folders to leave alone (updates currently in flight)

        Returns:
            Number of folders deleted
        """
        excluded = {Path(p).name.lower() for p in exclude}
        deleted = 0
        for path in self._cache_dirs():
            if path.name.lower() in excluded:
                continue
            if self.delete_if_incomplete(path):
                deleted += 1
        return deleted

    def delete_older_than(self, cutoff: datetime, exclude: Iterable[Path] = ()) -> DeletionResult:
        """Delete cache folders last written before cutoff."""
        excluded = {Path(p).name.lower() for p in exclude}
        return self._delete_stale(
            (p for p in self._cache_dirs() if p.name.lower() not in excluded),
            cutoff,
        )

    def delete_debug_older_than(self, cutoff: datetime) -> DeletionResult:
        """Delete debug request folders last written before cutoff."""
        if not self.debug_directory.is_dir():
            return DeletionResult()
        return self._delete_stale(
            (p for p in self.debug_directory.iterdir() if p.is_dir()),
            cutoff,
        )

    def _delete_stale(self, paths: Iterable[Path], cutoff: datetime) -> DeletionResult:
        result = DeletionResult()
        for path in paths:
            try:
                modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
                if modified >= cutoff:
                    continue
                size = folder_size(path)
                shutil.rmtree(path)
                result.deleted += 1
                result.bytes_freed += size
                logger.debug(f"Deleted old folder {path.name} (age: {utc_now() - modified})")
            except OSError as e:
                logger.warning(f"Failed to delete folder {path}: {e}")
                result.failed += 1
        return result
