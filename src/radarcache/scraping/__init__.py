"""Radar acquisition through a headless browser.

This module provides:

- RadarWorkflow: Ordered step engine run against one browser page
- ScrapingStep: Base class for workflow steps
- ScrapingContext: Mutable state shared by the steps of one run
- BrowserAcquirer: Runs the workflow in a fresh browser context per update

Note: Playwright-dependent exports (BrowserAcquirer, BrowserSession) are
lazy-loaded so the workflow engine can be imported without a browser install.
"""

from radarcache.scraping.base import ScrapingStep
from radarcache.scraping.context import Clip, PageState, ScrapingContext, StepResult
from radarcache.scraping.workflow import RADAR_STEPS, RadarWorkflow, WorkflowResult


# Lazy imports for Playwright-dependent components
def __getattr__(name):
    """Lazy load Playwright-dependent components."""
    if name in ("BrowserAcquirer", "BrowserSession"):
        from radarcache.scraping.browser import BrowserAcquirer, BrowserSession
        if name == "BrowserAcquirer":
            return BrowserAcquirer
        return BrowserSession
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "BrowserAcquirer",
    "BrowserSession",
    "Clip",
    "PageState",
    "RADAR_STEPS",
    "RadarWorkflow",
    "ScrapingContext",
    "ScrapingStep",
    "StepResult",
    "WorkflowResult",
]
