"""Radar acquisition workflow: an ordered list of steps over one browser page.

The step order is fixed and declared explicitly in RADAR_STEPS. Before each
step the engine checks that every prerequisite has completed and that the
page is in an acceptable state; violating either is a wiring error
(WorkflowConfigurationError), not a transient failure. A step returning a
failed result aborts the run with AcquisitionFailure; there is no retry.

Steps listed in ``scraping.disabled_steps`` are skipped and treated as
completed, so later steps that depend on them still run.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from radarcache.cache.metrics import MetricsEstimator
from radarcache.cache.models import Frame, ObservationMetadata, UpdatePhase
from radarcache.errors import AcquisitionFailure, WorkflowConfigurationError
from radarcache.scraping.base import ScrapingStep
from radarcache.scraping.context import ScrapingContext
from radarcache.scraping.steps.capture import CaptureFramesStep
from radarcache.scraping.steps.map import (
    CalculateMapBoundsStep,
    PauseRadarStep,
    ResetToFirstFrameStep,
    WaitForMapReadyStep,
)
from radarcache.scraping.steps.metadata import ExtractMetadataStep
from radarcache.scraping.steps.navigation import (
    ClickRadarLinkStep,
    ClickSearchButtonStep,
    NavigateHomepageStep,
)
from radarcache.scraping.steps.search import (
    FillSearchInputStep,
    SelectSearchResultStep,
    WaitForSearchResultsStep,
)

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "RadarScraping"

# Step duration relative to its average that logs a warning
SLOW_STEP_FACTOR = 1.5
# Relative deviation from the average that is worth an info line
NOTABLE_DEVIATION = 0.2
# Total duration relative to the average total that logs a warning
SLOW_RUN_FACTOR = 1.3

# Execution order matters: each step depends on the page state left by earlier ones
RADAR_STEPS: list[tuple[str, Callable[..., ScrapingStep]]] = [
    ("NavigateHomepage", NavigateHomepageStep),
    ("ClickSearchButton", ClickSearchButtonStep),
    ("FillSearchInput", FillSearchInputStep),
    ("WaitForSearchResults", WaitForSearchResultsStep),
    ("SelectSearchResult", SelectSearchResultStep),
    ("ClickRadarLink", ClickRadarLinkStep),
    ("WaitForMapReady", WaitForMapReadyStep),
    ("PauseRadar", PauseRadarStep),
    ("ResetToFirstFrame", ResetToFirstFrameStep),
    ("ExtractMetadata", ExtractMetadataStep),
    ("CalculateMapBounds", CalculateMapBoundsStep),
    ("CaptureFrames", CaptureFramesStep),
]


@dataclass
class WorkflowResult:
    """Frames written and metadata scraped by a successful run."""

    frames: list[Frame]
    metadata: ObservationMetadata


class RadarWorkflow:
    """Runs steps in declared order against a ScrapingContext.

    Example:
        >>> workflow = RadarWorkflow.from_settings(settings, metrics)
        >>> result = await workflow.run(context, location_key="Pomona_QLD")
        >>> len(result.frames)
        7
    """

    name = WORKFLOW_NAME

    def __init__(
        self,
        steps: dict[str, ScrapingStep],
        order: Iterable[str],
        metrics: Optional[MetricsEstimator] = None,
        disabled_steps: Iterable[str] = (),
    ):
        """Initialize workflow.

        Args:
            steps: Step instances by name
            order: Step names in execution order
            metrics: Estimator receiving step timings and phase changes
            disabled_steps: Step names to skip (treated as completed)
        """
        self.steps = dict(steps)
        self.order = list(order)
        self.metrics = metrics
        self.disabled_steps = set(disabled_steps)

        unknown = self.disabled_steps - set(self.order)
        if unknown:
            logger.warning(f"Ignoring unknown disabled steps: {', '.join(sorted(unknown))}")

    @classmethod
    def from_settings(
        cls,
        settings,
        metrics: Optional[MetricsEstimator] = None,
        catalogue: Optional[list[tuple[str, Callable[..., ScrapingStep]]]] = None,
    ) -> "RadarWorkflow":
        """Build the radar workflow from the static step catalogue."""
        catalogue = RADAR_STEPS if catalogue is None else catalogue
        steps = {name: factory(settings) for name, factory in catalogue}
        return cls(
            steps=steps,
            order=[name for name, _ in catalogue],
            metrics=metrics,
            disabled_steps=settings.scraping.disabled_steps,
        )

    def _check_ready(self, step_name: str, context: ScrapingContext) -> ScrapingStep:
        step = self.steps.get(step_name)
        if step is None:
            raise WorkflowConfigurationError(f"Step {step_name} is not registered")

        missing = [p for p in step.prerequisites if p not in context.completed_steps]
        if missing:
            raise WorkflowConfigurationError(
                f"Step {step_name} prerequisites not met. Required: {', '.join(step.prerequisites)}; "
                f"missing: {', '.join(missing)}"
            )

        if not step.can_execute(context):
            raise WorkflowConfigurationError(
                f"Step {step_name} cannot execute in current page state: {context.state.name}"
            )
        return step

    def _log_step_timing(self, step_name: str, duration: float) -> None:
        average = self.metrics.average_step(step_name) if self.metrics else None
        if not average:
            logger.info(f"Step {step_name} completed in {duration:.2f}s")
            return

        diff = duration - average
        diff_percent = diff / average * 100
        if duration > average * SLOW_STEP_FACTOR:
            logger.warning(
                f"Step {step_name} took significantly longer than average: {duration:.2f}s "
                f"(avg: {average:.2f}s, {diff:+.2f}s, {diff_percent:+.1f}% slower)"
            )
        elif abs(diff) > average * NOTABLE_DEVIATION:
            logger.info(
                f"Step {step_name} completed in {duration:.2f}s "
                f"(avg: {average:.2f}s, {diff:+.2f}s, {diff_percent:+.1f}%)"
            )
        else:
            logger.info(f"Step {step_name} completed in {duration:.2f}s (avg: {average:.2f}s)")

    def _log_run_timing(self, context: ScrapingContext, total: float, timings: list[tuple[str, float]]) -> None:
        breakdown = ", ".join(f"{name}={seconds:.2f}s" for name, seconds in timings)
        average_total = self.metrics.average_total() if self.metrics else None

        if average_total and total > average_total * SLOW_RUN_FACTOR:
            diff = total - average_total
            logger.warning(
                f"Workflow {self.name} took significantly longer than average: {total:.2f}s "
                f"(avg: {average_total:.2f}s, {diff:+.2f}s, {diff / average_total * 100:+.1f}% slower) "
                f"for {context.location}"
            )
        else:
            logger.info(
                f"Workflow {self.name} completed in {total:.2f}s for {context.location}. "
                f"Step breakdown: {breakdown}"
            )

        if self.metrics is None:
            return
        step_metrics = self.metrics.get_step_metrics()
        slow_steps = [
            f"{name} ({seconds:.2f}s vs avg {step_metrics[name]['average']:.2f}s)"
            for name, seconds in timings
            if name in step_metrics and seconds > step_metrics[name]["average"] * SLOW_STEP_FACTOR
        ]
        if slow_steps:
            logger.warning(f"Workflow {self.name} had slower-than-average steps: {', '.join(slow_steps)}")

    async def run(self, context: ScrapingContext, location_key: Optional[str] = None) -> WorkflowResult:
        """Execute every enabled step in order.

        Args:
            context: Fresh context for this run
            location_key: Key of the active update metrics are attributed to

        Returns:
            WorkflowResult with the captured frames and scraped metadata

        Raises:
            WorkflowConfigurationError: Missing step, unmet prerequisite or
                page-state guard failure
            AcquisitionFailure: A step failed, or the run finished without
                frames or metadata
        """
        if self.metrics is not None and location_key is not None and context.progress is None:
            def progress(phase, current=None, total=None):
                self.metrics.record_phase_transition(location_key, phase, current, total)
            context.progress = progress

        context.report(UpdatePhase.INITIALIZING)
        started = time.monotonic()
        timings: list[tuple[str, float]] = []

        for step_name in self.order:
            if step_name in self.disabled_steps:
                logger.info(f"Step {step_name} is disabled, skipping")
                context.completed_steps.add(step_name)
                continue

            step = self._check_ready(step_name, context)

            logger.info(f"Executing step {step_name}")
            step_started = time.monotonic()
            result = await step.execute(context)
            duration = time.monotonic() - step_started
            timings.append((step_name, duration))

            self._log_step_timing(step_name, duration)
            if self.metrics is not None:
                self.metrics.record_step_completion(step_name, duration, key=location_key)

            if not result.success:
                raise AcquisitionFailure(result.error_message or "step failed", step=step_name)

            context.completed_steps.add(step_name)

        self._log_run_timing(context, time.monotonic() - started, timings)

        if context.metadata is None:
            raise AcquisitionFailure("workflow finished without observation metadata")
        if not context.frames:
            raise AcquisitionFailure("workflow finished without frames")
        return WorkflowResult(frames=list(context.frames), metadata=context.metadata)
