"""Data models for the radar cache layer."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

# Radar frames on the source page: frame 0 is the oldest, 5 minutes apart,
# the newest (last) frame roughly 10 minutes old.
DEFAULT_OLDEST_MINUTES_AGO = 40
DEFAULT_FRAME_INTERVAL_MINUTES = 5

RADAR_DATA_TYPE = "radar"

FOLDER_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_FRACTION = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def sanitize_file_name(text: str) -> str:
    """Replace characters that are unsafe in folder names with underscores."""
    return _UNSAFE_CHARS.sub("_", text.strip())


def default_minutes_ago(frame_index: int) -> int:
    """Minutes-ago value assumed for a frame when the manifest has none."""
    return DEFAULT_OLDEST_MINUTES_AGO - frame_index * DEFAULT_FRAME_INTERVAL_MINUTES


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as ISO-8601 UTC with a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing Z and fractional seconds of any precision (older cache
    files carry seven digits). Naive values are taken to be UTC.

    Returns:
        Parsed datetime, or None for empty or unparseable input
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _pick(data: dict, name: str):
    """Read a camelCase key, falling back to its PascalCase spelling."""
    if name in data:
        return data[name]
    return data.get(name[:1].upper() + name[1:])


@dataclass(frozen=True)
class Location:
    """A (suburb, state) pair radar imagery is cached for."""

    suburb: str
    state: str

    @property
    def key(self) -> str:
        """Filesystem-safe location key used in folder names."""
        return sanitize_file_name(f"{self.suburb.strip()}_{self.state.strip()}")

    @property
    def lookup_key(self) -> str:
        """Case-insensitive key for indexing and locking."""
        return self.key.lower()

    def __str__(self) -> str:
        return f"{self.suburb}, {self.state}"


class UpdatePhase(str, Enum):
    """Coarse stages of a cache update, used for progress estimation."""

    INITIALIZING = "Initializing"
    CAPTURING_FRAMES = "CapturingFrames"
    SAVING = "Saving"


@dataclass
class ObservationMetadata:
    """Observation metadata scraped alongside the frames. All times UTC."""

    observation_time: datetime
    forecast_time: Optional[datetime] = None
    weather_station: Optional[str] = None
    distance: Optional[str] = None

    def expires_at(self, expiration_minutes: int) -> datetime:
        """When a cache built from this observation stops being valid."""
        return self.observation_time + timedelta(minutes=expiration_minutes)

    def to_dict(self) -> dict:
        return {
            "observationTime": format_timestamp(self.observation_time),
            "forecastTime": format_timestamp(self.forecast_time) if self.forecast_time else None,
            "weatherStation": self.weather_station,
            "distance": self.distance,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ObservationMetadata":
        """Create from metadata.json content.

        Raises:
            ValueError: If the observation time is missing or unparseable
        """
        observation_time = parse_timestamp(_pick(d, "observationTime"))
        if observation_time is None:
            raise ValueError("metadata has no valid observationTime")
        return cls(
            observation_time=observation_time,
            forecast_time=parse_timestamp(_pick(d, "forecastTime")),
            weather_station=_pick(d, "weatherStation"),
            distance=_pick(d, "distance"),
        )


@dataclass
class Frame:
    """One radar frame image. Index is 0-based, oldest to newest."""

    frame_index: int
    image_path: Path
    minutes_ago: int
    image_url: Optional[str] = None
    absolute_observation_time: Optional[datetime] = None

    def to_manifest_entry(self) -> dict:
        return {"frameIndex": self.frame_index, "minutesAgo": self.minutes_ago}


@dataclass
class CacheFolder:
    """A single acquisition's output folder.

    Attributes:
        name: Folder name, ``{LocationKey}_{yyyyMMdd_HHmmss}``
        path: Absolute folder path
        cache_timestamp: Timestamp embedded in the name (or the folder's
            creation time when the name cannot be parsed)
        observation_time: Observation time from metadata.json, if readable
        available_data_types: Data types present (currently only radar)
        is_complete: Whether the completeness check passed
    """

    name: str
    path: Path
    cache_timestamp: datetime
    observation_time: Optional[datetime] = None
    available_data_types: list[str] = field(default_factory=list)
    is_complete: bool = False


@dataclass
class ActiveUpdate:
    """An in-flight update for one location.

    Phase and step durations measured during the run are buffered here and
    only committed to the metrics history once the run succeeds.
    """

    location_key: str
    folder: Path
    started_at: datetime
    phase: UpdatePhase = UpdatePhase.INITIALIZING
    phase_started_at: Optional[datetime] = None
    current_frame: Optional[int] = None
    total_frames: Optional[int] = None
    phase_samples: list[tuple[UpdatePhase, float]] = field(default_factory=list)
    step_samples: list[tuple[str, float]] = field(default_factory=list)

    def __post_init__(self):
        if self.phase_started_at is None:
            self.phase_started_at = self.started_at

    def elapsed_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        return max(0.0, (now - self.started_at).total_seconds())


@dataclass
class UpdateFailure:
    """Most recent failed update for a location, cleared by the next success.

    Attributes:
        message: Failure description, prefixed with the step name when known
        occurred_at: When the update failed (UTC)
        step: Workflow step that failed, if known
        consecutive_failures: Failed updates since the last successful one
    """

    message: str
    occurred_at: datetime
    step: Optional[str] = None
    consecutive_failures: int = 1


@dataclass
class CacheUpdateStatus:
    """Structured answer to a trigger or status query."""

    cache_exists: bool = False
    cache_is_valid: bool = False
    cache_expires_at: Optional[datetime] = None
    update_triggered: bool = False
    message: str = ""
    next_update_time: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    consecutive_failures: int = 0


@dataclass
class CacheRange:
    """Span of cached history for a location."""

    oldest: Optional[CacheFolder]
    newest: Optional[CacheFolder]
    total_count: int
    time_span_minutes: Optional[float] = None


@dataclass
class RadarSnapshot:
    """The newest complete frames for a location plus cache state."""

    location: Location
    folder_name: str
    frames: list[Frame]
    last_updated: datetime
    metadata: ObservationMetadata
    is_valid: bool
    is_updating: bool
    cache_expires_at: datetime
    next_update_time: datetime
    estimated_update_seconds: int
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    consecutive_failures: int = 0


@dataclass
class SeriesFolder:
    """Frames contributed by one cache folder to a time series."""

    name: str
    cache_timestamp: datetime
    observation_time: datetime
    frames: list[Frame] = field(default_factory=list)


@dataclass
class TimeSeries:
    """Deduplicated, chronological frames stitched from several cache folders."""

    folders: list[SeriesFolder]
    start_time: Optional[datetime]
    end_time: Optional[datetime]

    @property
    def total_frames(self) -> int:
        return sum(len(folder.frames) for folder in self.folders)

    def flatten(self) -> list[Frame]:
        return [frame for folder in self.folders for frame in folder.frames]
