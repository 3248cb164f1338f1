"""Configuration loading for radarcache.

Settings come from a TOML file and can be overridden per key through
environment variables of the form ``RADARCACHE__SECTION__FIELD``:

    RADARCACHE__CACHE__EXPIRATION_MINUTES=15
    RADARCACHE__TIMEZONE=Australia/Brisbane

Operational settings (cache location, validity window, refresh and cleanup
cadence, frame count, wait durations, time zone) have no defaults. A missing
or invalid value raises ConfigurationError so the process fails at startup
instead of running with a guessed value.

Example:
    >>> settings = load_settings("radarcache.toml")
    >>> settings.cache.expiration_minutes
    15
"""

import logging
import math
import os
from pathlib import Path
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import toml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from radarcache.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "RADARCACHE__"
CONFIG_ENV_VAR = "RADARCACHE_CONFIG"


def _split_csv(value):
    """Accept comma-separated strings for list settings coming from the environment."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class CacheSection(BaseModel):
    """Where cache folders live and how long they stay valid."""

    directory: Path = Field(..., description="Root directory for cache folders")
    expiration_minutes: int = Field(
        ...,
        gt=0,
        description="Minutes after the observation time that a cache folder stays valid",
    )

    @field_validator("directory")
    @classmethod
    def expand_directory(cls, v):
        """Expand user paths and environment variables."""
        return Path(os.path.expanduser(os.path.expandvars(str(v))))


class RefreshSection(BaseModel):
    """Background refresh loop timing."""

    check_interval_minutes: int = Field(..., ge=1, le=60)
    initial_delay_seconds: int = Field(..., ge=0)
    location_stagger_seconds: int = Field(..., ge=0)


class CleanupSection(BaseModel):
    """Retention cleanup loop timing."""

    retention_hours: int = Field(..., gt=0)
    interval_hours: int = Field(..., gt=0)


class RadarSection(BaseModel):
    """Shape of a radar acquisition."""

    frame_count: int = Field(..., gt=0, description="Frames captured per acquisition")


class CropSection(BaseModel):
    """Crop applied to the map container, in CSS pixels relative to its bounding box."""

    x: int = Field(default=0, ge=0)
    y: int = Field(default=0, ge=0)
    right_offset: int = Field(default=0, ge=0)
    height: Optional[int] = Field(default=None, gt=0)


class ScreenshotSection(BaseModel):
    """Wait durations used while capturing frames."""

    tile_render_wait_ms: int = Field(..., ge=0)
    dynamic_content_wait_ms: int = Field(..., ge=0)
    crop: CropSection = Field(default_factory=CropSection)


class TimeSeriesSection(BaseModel):
    """Limits for multi-folder time series queries."""

    warning_folder_count: int = Field(..., gt=0)


class AcquisitionSection(BaseModel):
    """Global limit on concurrent browser sessions."""

    max_concurrent: int = Field(default=1, ge=1)


class EstimationSection(BaseModel):
    """Inputs to the static update-duration estimate used before any history exists."""

    base_overhead_seconds: float = Field(default=30.0, ge=0)
    per_frame_overhead_seconds: float = Field(default=2.0, ge=0)


class DebugSection(BaseModel):
    """Debug artefact capture (screenshots, HTML, console and network logs per step)."""

    enabled: bool = Field(default=False)
    wait_ms: int = Field(default=1000, ge=0)


class ScrapingSection(BaseModel):
    """Acquisition workflow options."""

    base_url: str = Field(default="https://www.bom.gov.au")
    disabled_steps: list[str] = Field(default_factory=list)

    @field_validator("disabled_steps", mode="before")
    @classmethod
    def split_disabled_steps(cls, v):
        return _split_csv(v)


class BrowserSection(BaseModel):
    """Browser launch and context options."""

    headless: bool = Field(default=True)
    viewport_width: int = Field(default=1920, gt=0)
    viewport_height: int = Field(default=1080, gt=0)
    device_scale_factor: float = Field(default=2.0, gt=0)
    locale: str = Field(default="en-AU")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        )
    )


class ApiSection(BaseModel):
    """HTTP adapter options."""

    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, v):
        return _split_csv(v)


class Settings(BaseModel):
    """Complete radarcache configuration."""

    timezone: str = Field(..., description="IANA time zone used to interpret page timestamps")
    cache: CacheSection
    refresh: RefreshSection
    cleanup: CleanupSection
    radar: RadarSection
    screenshot: ScreenshotSection
    timeseries: TimeSeriesSection
    acquisition: AcquisitionSection = Field(default_factory=AcquisitionSection)
    estimation: EstimationSection = Field(default_factory=EstimationSection)
    debug: DebugSection = Field(default_factory=DebugSection)
    scraping: ScrapingSection = Field(default_factory=ScrapingSection)
    browser: BrowserSection = Field(default_factory=BrowserSection)
    api: ApiSection = Field(default_factory=ApiSection)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        """Reject names the zoneinfo database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"unknown time zone {v!r}; use an IANA name such as Australia/Brisbane"
            )
        return v

    @model_validator(mode="after")
    def check_static_estimate(self):
        if static_estimate_seconds(self) <= 0:
            raise ValueError(
                "estimated update duration must be greater than 0; check "
                "screenshot waits, radar.frame_count and estimation settings"
            )
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def debug_directory(self) -> Path:
        """Debug artefacts live beside the cache folders."""
        return self.cache.directory / "debug"


def static_estimate_seconds(settings: Settings) -> int:
    """Estimate a full update's duration from configuration alone.

    Used whenever no duration history exists yet, so a first-ever run still
    reports a sensible ETA:

        base_overhead + frame_count * (tile_render_wait + per_frame_overhead)

    where the base overhead includes the dynamic-content wait spent while the
    forecast page loads.

    Args:
        settings: Loaded settings

    Returns:
        Whole seconds, rounded up
    """
    base_overhead = (
        settings.estimation.base_overhead_seconds
        + settings.screenshot.dynamic_content_wait_ms / 1000
    )
    per_frame = (
        settings.screenshot.tile_render_wait_ms / 1000
        + settings.estimation.per_frame_overhead_seconds
    )
    return math.ceil(base_overhead + settings.radar.frame_count * per_frame)


def find_config_file(env: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """Find a configuration file in the standard locations."""
    env = os.environ if env is None else env
    search_paths = []
    if env.get(CONFIG_ENV_VAR):
        search_paths.append(Path(env[CONFIG_ENV_VAR]))
    search_paths.extend([
        Path("radarcache.toml"),
        Path("~/.config/radarcache/config.toml").expanduser(),
    ])

    for path in search_paths:
        if path.exists():
            return path
    return None


def apply_env_overrides(data: dict, env: Mapping[str, str]) -> dict:
    """Merge ``RADARCACHE__SECTION__FIELD`` variables into raw config data.

    Args:
        data: Raw configuration dict (modified in place)
        env: Environment mapping

    Returns:
        The same dict, for chaining
    """
    for name, value in env.items():
        if not name.upper().startswith(ENV_PREFIX):
            continue
        parts = [p.lower() for p in name[len(ENV_PREFIX):].split("__") if p]
        if not parts:
            continue
        target = data
        for part in parts[:-1]:
            existing = target.get(part)
            if not isinstance(existing, dict):
                existing = {}
                target[part] = existing
            target = existing
        target[parts[-1]] = value
    return data


def _describe_errors(exc: ValidationError) -> str:
    lines = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        lines.append(f"  {location}: {error['msg']}")
    return "\n".join(lines)


def load_settings(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit TOML file. If None, searches the standard locations.
        env: Environment mapping for overrides. Defaults to os.environ.

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If the file cannot be parsed or a required
            setting is missing or out of range
    """
    env = os.environ if env is None else env
    config_path = Path(path) if path is not None else find_config_file(env)

    data: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        try:
            data = toml.load(config_path)
        except toml.TomlDecodeError as e:
            raise ConfigurationError(f"Invalid configuration file {config_path}: {e}")
        logger.debug(f"Loaded configuration from {config_path}")

    apply_env_overrides(data, env)

    try:
        settings = Settings(**data)
    except ValidationError as e:
        source = config_path or "environment"
        raise ConfigurationError(
            f"Invalid or missing configuration ({source}):\n{_describe_errors(e)}"
        ) from e

    logger.info(
        f"Configuration loaded: cache={settings.cache.directory}, "
        f"expiration={settings.cache.expiration_minutes}min, "
        f"frames={settings.radar.frame_count}, timezone={settings.timezone}"
    )
    return settings
