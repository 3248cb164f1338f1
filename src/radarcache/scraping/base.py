"""Base class for acquisition workflow steps."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from radarcache.scraping.context import ScrapingContext, StepResult

logger = logging.getLogger(__name__)


class ScrapingStep(ABC):
    """One unit of browser work in the radar workflow.

    Subclasses declare a unique name, the names of steps that must have
    completed first, and a page-state guard. ``execute`` reports failure
    through its StepResult rather than by raising; the workflow turns a
    failed result into an AcquisitionFailure.
    """

    name: str = ""
    prerequisites: tuple[str, ...] = ()

    def __init__(self, settings=None):
        self.settings = settings

    @abstractmethod
    def can_execute(self, context: ScrapingContext) -> bool:
        """Whether the page is in a state this step can run from."""

    @abstractmethod
    async def execute(self, context: ScrapingContext) -> StepResult:
        """Run the step against context.page."""

    async def save_debug(self, context: ScrapingContext, label: str) -> None:
        if context.debug is not None:
            await context.debug.save_step(context.page, label)

    async def fail(self, context: ScrapingContext, message: str, exc: Optional[Exception] = None) -> StepResult:
        """Log, capture error artefacts and build a failed result."""
        if exc is not None:
            logger.error(f"Step {self.name} failed: {exc}")
        else:
            logger.error(f"Step {self.name}: {message}")
        if context.debug is not None:
            await context.debug.save_error(context.page, message)
        return StepResult.failed(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
