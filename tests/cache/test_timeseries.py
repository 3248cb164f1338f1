"""Tests for multi-folder time series assembly."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

from radarcache.cache.models import CacheFolder, Frame
from radarcache.cache.timeseries import FolderFrames, assemble_time_series

T = datetime(2025, 12, 7, 0, 0, tzinfo=timezone.utc)


def source(name, cache_timestamp, observation_time, minutes_ago):
    """FolderFrames with one frame per minutes-ago value, index order."""
    folder = CacheFolder(
        name=name,
        path=Path("/cache") / name,
        cache_timestamp=cache_timestamp,
        observation_time=observation_time,
        available_data_types=["radar"],
        is_complete=True,
    )
    frames = [
        Frame(frame_index=i, image_path=folder.path / f"frame_{i}.png", minutes_ago=m)
        for i, m in enumerate(minutes_ago)
    ]
    return FolderFrames(folder=folder, frames=frames)


def times(series):
    return [f.absolute_observation_time for f in series.flatten()]


class TestAssembleTimeSeries:
    """Tests for dedupe, ordering and spacing."""

    def test_overlapping_folders_newer_wins(self):
        """A (T, T+5, T+10) and newer B (T+5, T+10, T+15): B's copies of the overlap win."""
        a = source("A", T + timedelta(minutes=10), T + timedelta(minutes=10), [10, 5, 0])
        b = source("B", T + timedelta(minutes=15), T + timedelta(minutes=15), [10, 5, 0])

        series = assemble_time_series([a, b])

        assert [f.name for f in series.folders] == ["A", "B"]
        assert times(series) == [T + timedelta(minutes=m) for m in (0, 5, 10, 15)]
        assert [f.absolute_observation_time for f in series.folders[0].frames] == [T]
        assert [f.frame_index for f in series.folders[1].frames] == [0, 1, 2]

    def test_input_order_irrelevant(self):
        """Sources are processed newest first whatever order they arrive in."""
        a = source("A", T + timedelta(minutes=10), T + timedelta(minutes=10), [10, 5, 0])
        b = source("B", T + timedelta(minutes=15), T + timedelta(minutes=15), [10, 5, 0])
        assert times(assemble_time_series([b, a])) == times(assemble_time_series([a, b]))

    def test_minimum_spacing(self):
        """Frames less than 4 minutes after the last accepted frame are dropped."""
        s = source("A", T, T + timedelta(minutes=20), [20, 18, 15, 12, 11, 5])
        series = assemble_time_series([s])
        assert times(series) == [T + timedelta(minutes=m) for m in (0, 5, 9, 15)]

    def test_strictly_increasing_and_spaced(self):
        """Flattened output is strictly increasing with gaps of at least 4 minutes."""
        sources = [
            source(f"F{i}", T + timedelta(minutes=7 * i), T + timedelta(minutes=7 * i), [40, 35, 30, 25, 20, 15, 10])
            for i in range(6)
        ]
        result = times(assemble_time_series(sources))
        assert result
        for earlier, later in zip(result, result[1:]):
            assert later - earlier >= timedelta(minutes=4)

    def test_implausible_observation_skipped(self):
        """Folders with a sentinel observation time contribute nothing."""
        bad = source("Bad", T, datetime.min.replace(tzinfo=timezone.utc), [10, 5])
        good = source("Good", T - timedelta(minutes=1), T, [10, 5])
        series = assemble_time_series([bad, good])
        assert [f.name for f in series.folders] == ["Good"]

    def test_missing_observation_skipped(self):
        """Folders without an observation time are skipped."""
        s = source("A", T, None, [10, 5])
        assert assemble_time_series([s]).folders == []

    def test_negative_minutes_ago_skipped(self):
        """Frames claiming to be from the future are skipped."""
        s = source("A", T, T, [10, 5, -5])
        assert times(assemble_time_series([s])) == [T - timedelta(minutes=10), T - timedelta(minutes=5)]

    def test_empty_folders_dropped(self):
        """A folder whose frames are all duplicates disappears from the output."""
        a = source("A", T, T, [10, 5])
        b = source("B", T + timedelta(minutes=1), T, [10, 5])
        series = assemble_time_series([a, b])
        assert [f.name for f in series.folders] == ["B"]
        assert series.total_frames == 2

    def test_urls_and_window_echoed(self):
        """Frame URLs come from the builder; the requested window is echoed."""
        s = source("A", T, T, [10, 5])
        end = T + timedelta(hours=1)
        series = assemble_time_series(
            [s],
            start_time=T,
            end_time=end,
            url_for=lambda folder, frame: f"/frame/{frame.frame_index}?cacheFolder={folder.name}",
        )
        assert series.start_time == T
        assert series.end_time == end
        assert [f.image_url for f in series.flatten()] == ["/frame/0?cacheFolder=A", "/frame/1?cacheFolder=A"]

    def test_overlap_warning_keeps_data(self, caplog):
        """Interleaved folders are logged as overlapping but still returned."""
        a = source("A", T, T + timedelta(minutes=20), [20, 0])
        b = source("B", T + timedelta(minutes=1), T + timedelta(minutes=10), [0])
        with caplog.at_level("WARNING"):
            series = assemble_time_series([a, b])
        assert series.total_frames == 3
        assert "Folder overlap detected" in caplog.text

    def test_no_sources(self):
        """No folders, empty series."""
        series = assemble_time_series([])
        assert series.folders == []
        assert series.total_frames == 0
