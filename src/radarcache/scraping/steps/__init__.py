"""Playwright steps of the radar acquisition workflow, in execution order."""

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

__all__ = [
    "CalculateMapBoundsStep",
    "CaptureFramesStep",
    "ClickRadarLinkStep",
    "ClickSearchButtonStep",
    "ExtractMetadataStep",
    "FillSearchInputStep",
    "NavigateHomepageStep",
    "PauseRadarStep",
    "ResetToFirstFrameStep",
    "SelectSearchResultStep",
    "WaitForMapReadyStep",
    "WaitForSearchResultsStep",
]
