"""Update-duration metrics and remaining-time estimation.

Keeps bounded, in-memory histories (most recent 20 samples) of:
- total update durations
- per-phase durations (Initializing, CapturingFrames, Saving)
- per-step durations (keyed by workflow step name)

Total durations are aggregated with the median so an occasional very slow
run does not skew estimates; phase and step durations use the mean over the
window. Samples from a run are buffered on its ActiveUpdate and only
committed when the run succeeds, so failed runs never pollute the history.

Nothing here is persisted; history starts empty on every process start and
callers fall back to radarcache.config.static_estimate_seconds until the
first run completes.
"""

import logging
import math
import statistics
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from radarcache.cache.models import ActiveUpdate, UpdatePhase, utc_now

logger = logging.getLogger(__name__)

MAX_SAMPLES = 20

# Saving estimate when no Saving phase has been measured yet
SAVING_FLOOR_SECONDS = 5

# Initializing estimate pads the median total by this factor
INITIALIZING_PADDING = 1.1


class ActiveUpdateRegistry:
    """In-flight updates keyed by location.

    Registration is the single-flight mechanism: ``register`` refuses a
    second update for a key that is already active.
    """

    def __init__(self):
        self._updates: dict[str, ActiveUpdate] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(key: str) -> str:
        return key.lower()

    def register(self, key: str, folder: Path, now: Optional[datetime] = None) -> bool:
        """Mark an update as active.

        Returns:
            False if an update is already active for this key
        """
        key = self._normalize(key)
        with self._lock:
            if key in self._updates:
                return False
            self._updates[key] = ActiveUpdate(
                location_key=key,
                folder=Path(folder),
                started_at=now or utc_now(),
            )
            return True

    def get(self, key: str) -> Optional[ActiveUpdate]:
        with self._lock:
            return self._updates.get(self._normalize(key))

    def is_active(self, key: str) -> bool:
        return self.get(key) is not None

    def active_folder(self, key: str) -> Optional[Path]:
        update = self.get(key)
        return update.folder if update else None

    def find_by_folder(self, folder: Path) -> Optional[ActiveUpdate]:
        name = Path(folder).name.lower()
        with self._lock:
            for update in self._updates.values():
                if update.folder.name.lower() == name:
                    return update
        return None

    def restart_clock(self, key: str, now: Optional[datetime] = None) -> None:
        """Reset the start time once the update actually begins work.

        Time spent queued for the acquisition permit is not part of the
        update's duration.
        """
        update = self.get(key)
        if update is not None:
            now = now or utc_now()
            update.started_at = now
            update.phase_started_at = now

    def clear(self, key: str) -> Optional[ActiveUpdate]:
        with self._lock:
            return self._updates.pop(self._normalize(key), None)

    def folders(self) -> list[Path]:
        with self._lock:
            return [update.folder for update in self._updates.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._updates)


class MetricsEstimator:
    """Sliding-window duration history and phase-aware ETA.

    Example:
        >>> registry = ActiveUpdateRegistry()
        >>> metrics = MetricsEstimator(registry, frame_count=7)
        >>> metrics.estimate_remaining("pomona_qld") is None
        True
    """

    def __init__(
        self,
        registry: ActiveUpdateRegistry,
        frame_count: int,
        max_samples: int = MAX_SAMPLES,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize estimator.

        Args:
            registry: Shared registry of in-flight updates
            frame_count: Frames captured per update
            max_samples: History window size per series
            clock: Source of the current UTC time
        """
        self.registry = registry
        self.frame_count = frame_count
        self.max_samples = max_samples
        self._clock = clock
        self._lock = threading.Lock()
        self._total_durations: deque[float] = deque(maxlen=max_samples)
        self._phase_durations: dict[UpdatePhase, deque[float]] = {}
        self._step_durations: dict[str, deque[float]] = {}

    # -- mutators ------------------------------------------------------------

    def record_phase_transition(
        self,
        key: str,
        phase: UpdatePhase,
        current_frame: Optional[int] = None,
        total_frames: Optional[int] = None,
    ) -> None:
        """Report the phase (and frame progress) of an in-flight update.

        When the phase changes, the time spent in the previous phase is
        buffered as a sample for that phase.
        """
        update = self.registry.get(key)
        if update is None:
            logger.debug(f"Progress for {key} ignored: no active update")
            return
        now = self._clock()
        with self._lock:
            if phase != update.phase:
                duration = (now - update.phase_started_at).total_seconds()
                update.phase_samples.append((update.phase, duration))
                logger.debug(f"{key}: phase {update.phase.value} took {duration:.1f}s")
                update.phase = phase
                update.phase_started_at = now
            update.current_frame = current_frame
            update.total_frames = total_frames

    def record_step_completion(
        self,
        step_name: str,
        seconds: float,
        key: Optional[str] = None,
    ) -> None:
        """Record how long a workflow step took.

        With a key for an active update the sample is buffered until that
        update completes; otherwise it goes straight into the history.
        """
        update = self.registry.get(key) if key else None
        with self._lock:
            if update is not None:
                update.step_samples.append((step_name, seconds))
            else:
                self._append_step(step_name, seconds)

    def record_total_completion(self, key: str) -> Optional[float]:
        """Commit a successful update's durations to the history.

        Closes the current phase, moves buffered phase and step samples into
        the history and records the total duration.

        Returns:
            Total duration in seconds, or None if no update was active
        """
        update = self.registry.get(key)
        if update is None:
            logger.debug(f"Completion for {key} ignored: no active update")
            return None
        now = self._clock()
        total = update.elapsed_seconds(now)
        with self._lock:
            update.phase_samples.append(
                (update.phase, (now - update.phase_started_at).total_seconds())
            )
            for phase, duration in update.phase_samples:
                self._phase_durations.setdefault(phase, deque(maxlen=self.max_samples)).append(duration)
            for step_name, duration in update.step_samples:
                self._append_step(step_name, duration)
            update.phase_samples = []
            update.step_samples = []
            self._total_durations.append(total)
        logger.info(f"Update for {key} completed in {total:.1f}s")
        return total

    def _append_step(self, step_name: str, seconds: float) -> None:
        self._step_durations.setdefault(step_name, deque(maxlen=self.max_samples)).append(seconds)

    # -- aggregates ----------------------------------------------------------

    def _snapshot(self, samples: Optional[deque]) -> list[float]:
        if samples is None:
            return []
        with self._lock:
            return list(samples)

    def median_total(self) -> Optional[float]:
        samples = self._snapshot(self._total_durations)
        return statistics.median(samples) if samples else None

    def average_total(self) -> Optional[float]:
        samples = self._snapshot(self._total_durations)
        return statistics.fmean(samples) if samples else None

    def average_phase(self, phase: UpdatePhase) -> Optional[float]:
        samples = self._snapshot(self._phase_durations.get(phase))
        return statistics.fmean(samples) if samples else None

    def average_step(self, step_name: str) -> Optional[float]:
        samples = self._snapshot(self._step_durations.get(step_name))
        return statistics.fmean(samples) if samples else None

    def total_sample_count(self) -> int:
        return len(self._snapshot(self._total_durations))

    def get_step_metrics(self) -> dict[str, dict]:
        """Per-step average duration and sample count."""
        with self._lock:
            snapshot = {name: list(samples) for name, samples in self._step_durations.items()}
        return {
            name: {"average": statistics.fmean(samples), "samples": len(samples)}
            for name, samples in snapshot.items()
            if samples
        }

    # -- estimation ----------------------------------------------------------

    def estimate_remaining(self, key: str) -> Optional[int]:
        """Estimate seconds until the active update for key completes.

        Returns:
            Whole seconds (rounded up), or None when no update is active or
            no run has completed yet. Callers then use the static estimate.
        """
        update = self.registry.get(key)
        if update is None:
            return None
        median_total = self.median_total()
        if median_total is None:
            return None

        elapsed = update.elapsed_seconds(self._clock())

        if update.phase == UpdatePhase.INITIALIZING:
            remaining = max(0.0, median_total * INITIALIZING_PADDING - elapsed)

        elif update.phase == UpdatePhase.CAPTURING_FRAMES:
            current, total = update.current_frame, update.total_frames
            if current is not None and total:
                capture_avg = self.average_phase(UpdatePhase.CAPTURING_FRAMES)
                if capture_avg is not None:
                    frame_avg = capture_avg / self.frame_count
                    saving_avg = self.average_phase(UpdatePhase.SAVING) or 0.0
                    remaining = max(0.0, (total - current - 1) * frame_avg + saving_avg)
                else:
                    progress = (current + 1) / total
                    remaining = max(0.0, median_total / progress - elapsed)
            else:
                remaining = max(0.0, median_total - elapsed)

        else:
            saving_avg = self.average_phase(UpdatePhase.SAVING)
            remaining = saving_avg if saving_avg is not None else SAVING_FLOOR_SECONDS

        return math.ceil(remaining)
