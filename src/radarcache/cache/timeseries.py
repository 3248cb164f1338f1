"""Stitch frames from many cache generations into one time series.

Consecutive cache folders for a location overlap: each holds the last
~40 minutes of radar, and a new folder is written every few minutes. Frame
times are relative ("minutes ago") to each folder's observation time, so the
assembler converts them to absolute times, keeps the newest folder's copy of
any duplicated instant, enforces a minimum spacing between frames and hands
back the result grouped by source folder in chronological order.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from radarcache.cache.models import CacheFolder, Frame, SeriesFolder, TimeSeries

logger = logging.getLogger(__name__)

MIN_FRAME_SPACING = timedelta(minutes=4)

# Observation times at or before this are default/sentinel values
MIN_PLAUSIBLE_OBSERVATION = datetime.min.replace(tzinfo=timezone.utc) + timedelta(days=366)


@dataclass
class FolderFrames:
    """One cache folder's frames as input to the assembler."""

    folder: CacheFolder
    frames: list[Frame] = field(default_factory=list)

    @property
    def observation_time(self) -> Optional[datetime]:
        return self.folder.observation_time


def _is_plausible(observation_time: Optional[datetime]) -> bool:
    return observation_time is not None and observation_time > MIN_PLAUSIBLE_OBSERVATION


def assemble_time_series(
    sources: list[FolderFrames],
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    url_for: Optional[Callable[[CacheFolder, Frame], str]] = None,
    min_spacing: timedelta = MIN_FRAME_SPACING,
) -> TimeSeries:
    """Merge frames from several cache folders.

    Args:
        sources: Complete folders with their frames (any order)
        start_time: Requested window start, echoed in the result
        end_time: Requested window end, echoed in the result
        url_for: Optional builder for each frame's image URL
        min_spacing: Minimum gap between accepted frames

    Returns:
        TimeSeries whose folders can be flattened in order without
        re-sorting: frames strictly increase in absolute time and are at
        least min_spacing apart.
    """
    groups: list[tuple[FolderFrames, list[Frame]]] = []
    seen_times: set[datetime] = set()

    newest_first = sorted(sources, key=lambda s: s.folder.cache_timestamp, reverse=True)
    for source in newest_first:
        observation_time = source.observation_time
        if not _is_plausible(observation_time):
            logger.warning(
                f"Skipping folder {source.folder.name}: implausible observation time "
                f"{observation_time}"
            )
            continue

        unique = []
        for frame in sorted(source.frames, key=lambda f: f.frame_index):
            if frame.minutes_ago < 0:
                logger.warning(
                    f"Skipping frame {frame.frame_index} from {source.folder.name}: "
                    f"negative minutes ago ({frame.minutes_ago})"
                )
                continue
            absolute = observation_time - timedelta(minutes=frame.minutes_ago)
            if absolute in seen_times:
                continue
            seen_times.add(absolute)
            frame.absolute_observation_time = absolute
            if url_for is not None:
                frame.image_url = url_for(source.folder, frame)
            unique.append(frame)

        if unique:
            groups.append((source, unique))

    # Flatten and apply the monotonic minimum-spacing filter
    ordered = sorted(
        ((source, frame) for source, frames in groups for frame in frames),
        key=lambda item: item[1].absolute_observation_time,
    )
    accepted: set[int] = set()
    last_time: Optional[datetime] = None
    for source, frame in ordered:
        absolute = frame.absolute_observation_time
        if last_time is not None:
            if absolute < last_time:
                logger.warning(
                    f"Skipping frame {frame.frame_index} from {source.folder.name}: "
                    f"{absolute} is older than previous frame {last_time}"
                )
                continue
            gap = absolute - last_time
            if gap < min_spacing:
                logger.debug(
                    f"Skipping frame {frame.frame_index} from {source.folder.name}: "
                    f"only {gap.total_seconds() / 60:.1f} minutes after previous frame"
                )
                continue
        accepted.add(id(frame))
        last_time = absolute

    # Regroup accepted frames by source folder
    series_folders = []
    for source, frames in groups:
        kept = sorted(
            (f for f in frames if id(f) in accepted),
            key=lambda f: f.absolute_observation_time,
        )
        if kept:
            series_folders.append(SeriesFolder(
                name=source.folder.name,
                cache_timestamp=source.folder.cache_timestamp,
                observation_time=source.observation_time,
                frames=kept,
            ))
    series_folders.sort(key=lambda f: f.frames[0].absolute_observation_time)

    for current, following in zip(series_folders, series_folders[1:]):
        current_last = current.frames[-1].absolute_observation_time
        next_first = following.frames[0].absolute_observation_time
        if current_last >= next_first:
            logger.warning(
                f"Folder overlap detected: {current.name} ends at {current_last}, "
                f"{following.name} starts at {next_first}"
            )

    return TimeSeries(folders=series_folders, start_time=start_time, end_time=end_time)
