"""State shared between acquisition workflow steps."""

from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Optional

from radarcache.cache.models import Frame, Location, ObservationMetadata, UpdatePhase


class PageState(IntEnum):
    """How far the browser has progressed through the site.

    States are totally ordered; a step that needs the map to be ready also
    accepts any later state.
    """

    INITIAL = 0
    HOMEPAGE_LOADED = 1
    SEARCH_MODAL_OPEN = 2
    SEARCH_RESULTS_VISIBLE = 3
    FORECAST_PAGE_LOADED = 4
    RADAR_PAGE_LOADED = 5
    MAP_READY = 6
    SLIDESHOW_PAUSED = 7
    FRAME0_SELECTED = 8

    def at_least(self, other: "PageState") -> bool:
        return self >= other


@dataclass
class Clip:
    """Screen rectangle in CSS pixels."""

    x: float
    y: float
    width: float
    height: float

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class StepResult:
    """Outcome of one workflow step."""

    success: bool
    error_message: Optional[str] = None

    @classmethod
    def ok(cls) -> "StepResult":
        return cls(success=True)

    @classmethod
    def failed(cls, message: str) -> "StepResult":
        return cls(success=False, error_message=message)


@dataclass
class ScrapingContext:
    """Mutable state threaded through a single workflow run.

    Attributes:
        location: Location being acquired
        frame_paths: Where each frame image must be written
        page: Browser page (None in tests driving fake steps)
        state: Current page state
        completed_steps: Names of steps completed or skipped
        progress: Callback(phase, current, total) for progress reporting
    """

    location: Location
    frame_paths: list[Path]
    page: Any = None
    debug: Any = None
    state: PageState = PageState.INITIAL
    completed_steps: set[str] = field(default_factory=set)
    progress: Any = None

    # Values produced by one step and consumed by a later one
    search_results: list[tuple[str, str, str]] = field(default_factory=list)
    selected_result_index: Optional[int] = None
    map_container: Any = None
    map_bounds: Optional[Clip] = None
    metadata: Optional[ObservationMetadata] = None
    frame_info: list[tuple[int, int]] = field(default_factory=list)
    frames: list[Frame] = field(default_factory=list)

    @property
    def suburb(self) -> str:
        return self.location.suburb

    @property
    def state_name(self) -> str:
        return self.location.state

    @property
    def frame_count(self) -> int:
        return len(self.frame_paths)

    def report(self, phase: UpdatePhase, current: Optional[int] = None, total: Optional[int] = None) -> None:
        if self.progress is not None:
            self.progress(phase, current, total)
