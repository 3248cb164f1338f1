"""Tests for update-duration metrics and remaining-time estimation."""

import math
import threading
from datetime import datetime, timedelta, timezone

import pytest

from radarcache.cache.metrics import ActiveUpdateRegistry, MetricsEstimator
from radarcache.cache.models import UpdatePhase

KEY = "Pomona_QLD"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return ActiveUpdateRegistry()


@pytest.fixture
def metrics(registry, clock):
    return MetricsEstimator(registry, frame_count=7, clock=clock)


def run_update(registry, metrics, clock, init=10.0, per_frame=5.0, saving=2.0, key=KEY):
    """Simulate one successful update with the given phase durations."""
    registry.register(key, f"/cache/{key}_x", now=clock())
    clock.advance(init)
    metrics.record_phase_transition(key, UpdatePhase.CAPTURING_FRAMES, 0, 7)
    for i in range(7):
        clock.advance(per_frame)
        metrics.record_phase_transition(key, UpdatePhase.CAPTURING_FRAMES, i + 1, 7)
    metrics.record_phase_transition(key, UpdatePhase.SAVING)
    clock.advance(saving)
    total = metrics.record_total_completion(key)
    registry.clear(key)
    return total


class TestActiveUpdateRegistry:
    """Tests for single-flight registration."""

    def test_second_registration_refused(self, registry):
        """Only one active update per key."""
        assert registry.register(KEY, "/cache/a")
        assert not registry.register(KEY, "/cache/b")
        assert registry.active_folder(KEY).name == "a"

    def test_keys_case_insensitive(self, registry):
        """Keys differing only in case refer to the same update."""
        registry.register("Pomona_QLD", "/cache/a")
        assert registry.is_active("pomona_qld")
        assert not registry.register("POMONA_QLD", "/cache/b")

    def test_clear(self, registry):
        """Clearing removes the marker and allows a new registration."""
        registry.register(KEY, "/cache/a")
        assert registry.clear(KEY) is not None
        assert not registry.is_active(KEY)
        assert registry.register(KEY, "/cache/b")

    def test_concurrent_registration(self, registry):
        """Exactly one of many racing threads registers."""
        results = []
        barrier = threading.Barrier(8)

        def worker(i):
            barrier.wait()
            results.append(registry.register(KEY, f"/cache/{i}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert len(registry) == 1

    def test_find_by_folder(self, registry):
        """Active updates can be found by folder name, ignoring case."""
        registry.register(KEY, "/cache/Pomona_QLD_20250101_000000")
        assert registry.find_by_folder("/other/pomona_qld_20250101_000000") is not None
        assert registry.find_by_folder("/cache/missing") is None


class TestHistory:
    """Tests for recording samples."""

    def test_successful_run_recorded(self, registry, metrics, clock):
        """Total, phase and step samples land in the history."""
        total = run_update(registry, metrics, clock)
        assert total == pytest.approx(10 + 35 + 2)
        assert metrics.median_total() == pytest.approx(47)
        assert metrics.average_phase(UpdatePhase.INITIALIZING) == pytest.approx(10)
        assert metrics.average_phase(UpdatePhase.CAPTURING_FRAMES) == pytest.approx(35)
        assert metrics.average_phase(UpdatePhase.SAVING) == pytest.approx(2)

    def test_failed_run_not_recorded(self, registry, metrics, clock):
        """A run that never completes contributes no samples."""
        registry.register(KEY, "/cache/a", now=clock())
        clock.advance(5)
        metrics.record_phase_transition(KEY, UpdatePhase.CAPTURING_FRAMES, 0, 7)
        metrics.record_step_completion("NavigateHomepage", 3.0, key=KEY)
        registry.clear(KEY)

        assert metrics.total_sample_count() == 0
        assert metrics.average_phase(UpdatePhase.INITIALIZING) is None
        assert metrics.get_step_metrics() == {}

    def test_window_bounded(self, registry, metrics, clock):
        """Only the most recent 20 totals are kept."""
        for i in range(25):
            run_update(registry, metrics, clock, init=float(i + 1))
        assert metrics.total_sample_count() == 20

    def test_median_resists_outlier(self, registry, metrics, clock):
        """One very slow run does not move the median total."""
        for _ in range(4):
            run_update(registry, metrics, clock, init=10)
        run_update(registry, metrics, clock, init=1000)
        assert metrics.median_total() == pytest.approx(47)
        assert metrics.average_total() > metrics.median_total()

    def test_step_metrics(self, registry, metrics, clock):
        """Step samples committed with a run are reported per step."""
        registry.register(KEY, "/cache/a", now=clock())
        metrics.record_step_completion("NavigateHomepage", 2.0, key=KEY)
        metrics.record_step_completion("NavigateHomepage", 4.0, key=KEY)
        clock.advance(6)
        metrics.record_total_completion(KEY)

        assert metrics.get_step_metrics() == {"NavigateHomepage": {"average": 3.0, "samples": 2}}

    def test_step_without_key_recorded_directly(self, metrics):
        """Step timings outside an update go straight into the history."""
        metrics.record_step_completion("PauseRadar", 1.5)
        assert metrics.average_step("PauseRadar") == pytest.approx(1.5)

    def test_progress_without_active_update_ignored(self, metrics):
        """Phase reports for unknown keys are dropped."""
        metrics.record_phase_transition("unknown", UpdatePhase.SAVING)
        assert metrics.record_total_completion("unknown") is None


class TestEstimateRemaining:
    """Tests for phase-aware ETA."""

    def test_no_active_update(self, metrics):
        """No estimate without an active update."""
        assert metrics.estimate_remaining(KEY) is None

    def test_no_history(self, registry, metrics, clock):
        """No estimate before any run has completed."""
        registry.register(KEY, "/cache/a", now=clock())
        assert metrics.estimate_remaining(KEY) is None

    def test_initializing(self, registry, metrics, clock):
        """Initializing: padded median total minus elapsed."""
        run_update(registry, metrics, clock)
        registry.register(KEY, "/cache/b", now=clock())
        clock.advance(7)
        assert metrics.estimate_remaining(KEY) == math.ceil(47 * 1.1 - 7)

    def test_initializing_never_negative(self, registry, metrics, clock):
        """A run slower than history reports zero, not a negative value."""
        run_update(registry, metrics, clock)
        registry.register(KEY, "/cache/b", now=clock())
        clock.advance(500)
        assert metrics.estimate_remaining(KEY) == 0

    def test_capturing_with_frame_history(self, registry, metrics, clock):
        """Capturing: remaining frames at the average frame time plus saving."""
        run_update(registry, metrics, clock)
        registry.register(KEY, "/cache/b", now=clock())
        clock.advance(10)
        metrics.record_phase_transition(KEY, UpdatePhase.CAPTURING_FRAMES, 2, 7)

        # avg frame = 35 / 7 = 5s; (7 - 2 - 1) * 5 + 2
        assert metrics.estimate_remaining(KEY) == 22

    def test_capturing_without_frame_history(self, registry, metrics, clock):
        """Capturing with counts but no capture history: median total scaled by progress."""
        registry.register("Other_QLD", "/cache/o", now=clock())
        clock.advance(30)
        metrics.record_total_completion("Other_QLD")
        registry.clear("Other_QLD")
        assert metrics.average_phase(UpdatePhase.CAPTURING_FRAMES) is None

        registry.register(KEY, "/cache/b", now=clock())
        clock.advance(6)
        metrics.record_phase_transition(KEY, UpdatePhase.CAPTURING_FRAMES, 2, 7)

        assert metrics.estimate_remaining(KEY) == math.ceil(30 / (3 / 7) - 6)

    def test_capturing_without_counts(self, registry, metrics, clock):
        """Capturing without frame counts: median total minus elapsed."""
        run_update(registry, metrics, clock)
        registry.register(KEY, "/cache/b", now=clock())
        clock.advance(20)
        metrics.record_phase_transition(KEY, UpdatePhase.CAPTURING_FRAMES)
        assert metrics.estimate_remaining(KEY) == 27

    def test_saving_uses_average(self, registry, metrics, clock):
        """Saving: the average saving duration."""
        run_update(registry, metrics, clock, saving=3.2)
        registry.register(KEY, "/cache/b", now=clock())
        metrics.record_phase_transition(KEY, UpdatePhase.SAVING)
        assert metrics.estimate_remaining(KEY) == 4

    def test_saving_floor_without_samples(self, registry, metrics, clock):
        """Saving without a measured saving phase falls back to 5 seconds."""
        registry.register("Other_QLD", "/cache/o", now=clock())
        clock.advance(30)
        metrics.record_total_completion("Other_QLD")
        registry.clear("Other_QLD")
        registry.register(KEY, "/cache/b", now=clock())
        metrics.record_phase_transition(KEY, UpdatePhase.SAVING)
        assert metrics.estimate_remaining(KEY) == 5

    def test_restart_clock_excludes_queue_time(self, registry, metrics, clock):
        """Time waiting for the permit does not count as elapsed."""
        run_update(registry, metrics, clock)
        registry.register(KEY, "/cache/b", now=clock())
        clock.advance(300)
        registry.restart_clock(KEY, now=clock())
        assert metrics.estimate_remaining(KEY) == math.ceil(47 * 1.1)
