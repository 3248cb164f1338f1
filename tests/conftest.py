"""Shared pytest fixtures for radarcache tests.

Test Tiers:
- unit: Fast tests with temporary cache directories and fake acquirers (default)
- live: Real browser tests against the radar site, slow, requires network

Run live tests with: pytest -m live --run-live
"""

import asyncio
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from radarcache.cache.models import (
    Frame,
    Location,
    ObservationMetadata,
    UpdatePhase,
    default_minutes_ago,
    utc_now,
)
from radarcache.config import Settings
from radarcache.errors import AcquisitionFailure
from radarcache.scraping.workflow import WorkflowResult

# Smallest valid PNG (1x1 transparent pixel)
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d49484452000000010000000108060000001f15c489"
    "0000000d4944415478da63f8ffff3f0005fe02fea7d6a48a0000000049454e44ae426082"
)


def pytest_addoption(parser):
    """Add command line options for test configuration."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run live browser tests (slow, requires network)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: fast unit tests using fixtures")
    config.addinivalue_line("markers", "live: real browser tests (slow, requires network)")


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is specified."""
    if config.getoption("--run-live"):
        # --run-live given: don't skip live tests
        return

    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


def settings_data(cache_dir: Path, **sections) -> dict:
    """Raw configuration with every required key, sections overridable."""
    data = {
        "timezone": "Australia/Brisbane",
        "cache": {"directory": str(cache_dir), "expiration_minutes": 15},
        "refresh": {
            "check_interval_minutes": 5,
            "initial_delay_seconds": 0,
            "location_stagger_seconds": 0,
        },
        "cleanup": {"retention_hours": 24, "interval_hours": 1},
        "radar": {"frame_count": 7},
        "screenshot": {"tile_render_wait_ms": 1000, "dynamic_content_wait_ms": 2000},
        "timeseries": {"warning_folder_count": 50},
    }
    for name, values in sections.items():
        if isinstance(values, dict) and isinstance(data.get(name), dict):
            data[name] = {**data[name], **values}
        else:
            data[name] = values
    return data


def make_settings(cache_dir: Path, **sections) -> Settings:
    return Settings(**settings_data(cache_dir, **sections))


class FakeAcquirer:
    """Acquirer that writes tiny PNGs instead of driving a browser.

    Attributes:
        observation_time: Observation time reported in the metadata
        fail: Raise AcquisitionFailure after writing the first frame
        gate: Event the acquisition waits on before writing anything
        calls: Requests received, in order
    """

    def __init__(
        self,
        observation_time: Optional[datetime] = None,
        fail: bool = False,
        gate: Optional[asyncio.Event] = None,
    ):
        self.observation_time = observation_time
        self.fail = fail
        self.gate = gate
        self.calls = []
        self.warmed_up = False
        self.closed = False

    async def warm_up(self) -> None:
        self.warmed_up = True

    async def close(self) -> None:
        self.closed = True

    async def acquire(self, request):
        self.calls.append(request)
        if self.gate is not None:
            await self.gate.wait()

        key = request.location_key
        total = len(request.frame_paths)
        request.metrics.record_phase_transition(key, UpdatePhase.CAPTURING_FRAMES, 0, total)

        frames = []
        for i, path in enumerate(request.frame_paths):
            path.write_bytes(PNG_BYTES)
            if self.fail:
                raise AcquisitionFailure("map did not load", step="CaptureFrames")
            frames.append(Frame(frame_index=i, image_path=path, minutes_ago=default_minutes_ago(i)))
            request.metrics.record_phase_transition(key, UpdatePhase.CAPTURING_FRAMES, i + 1, total)

        request.metrics.record_phase_transition(key, UpdatePhase.SAVING)
        metadata = ObservationMetadata(
            observation_time=self.observation_time or utc_now() - timedelta(minutes=2),
            weather_station="Test Station",
            distance="12 km",
        )
        return WorkflowResult(frames=frames, metadata=metadata)


def write_cache_folder(
    cache_dir: Path,
    location: Location,
    timestamp: datetime,
    observation_time: Optional[datetime] = None,
    frame_count: int = 7,
    minutes_ago: Optional[list[int]] = None,
    complete: bool = True,
) -> Path:
    """Create a cache folder on disk as a finished update would leave it."""
    folder = cache_dir / f"{location.key}_{timestamp.strftime('%Y%m%d_%H%M%S')}"
    folder.mkdir(parents=True)
    for i in range(frame_count):
        (folder / f"frame_{i}.png").write_bytes(PNG_BYTES)
    metadata = ObservationMetadata(observation_time=observation_time or timestamp)
    (folder / "metadata.json").write_text(json.dumps(metadata.to_dict(), indent=2), encoding="utf-8")
    if complete:
        values = minutes_ago or [default_minutes_ago(i) for i in range(frame_count)]
        entries = [{"frameIndex": i, "minutesAgo": m} for i, m in enumerate(values)]
        (folder / "frames.json").write_text(json.dumps(entries, indent=2), encoding="utf-8")
    return folder


@pytest.fixture
def location() -> Location:
    """A location with a known state."""
    return Location(suburb="Pomona", state="QLD")


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    """Create a temporary cache directory for testing."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def settings(cache_dir) -> Settings:
    """Valid settings over the temporary cache directory."""
    return make_settings(cache_dir)


@pytest.fixture
def config_data(cache_dir) -> dict:
    """Raw configuration dict as it would be read from TOML."""
    return settings_data(cache_dir)


@pytest.fixture
def settings_factory(cache_dir):
    """Build settings over the temporary cache directory with section overrides."""
    return lambda **sections: make_settings(cache_dir, **sections)


@pytest.fixture
def cache_folder(cache_dir):
    """Write a cache folder into the temporary cache directory."""
    return lambda location, timestamp, **kwargs: write_cache_folder(cache_dir, location, timestamp, **kwargs)


@pytest.fixture
def acquirer_factory():
    """Build fake acquirers."""
    return FakeAcquirer
