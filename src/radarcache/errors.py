"""Exception types for radarcache.

Only conditions that callers cannot absorb are raised. Stale caches, races
between concurrent triggers, partial folders and missing metrics history are
reported through status fields and log lines instead.
"""

from typing import Optional


class RadarCacheError(Exception):
    """Base class for radarcache errors."""


class ConfigurationError(RadarCacheError):
    """A required setting is missing or invalid. Fatal at startup."""


class WorkflowConfigurationError(ConfigurationError):
    """A workflow step is missing, out of order, or cannot run in the current page state."""


class AcquisitionFailure(RadarCacheError):
    """An acquisition step failed.

    Attributes:
        step: Name of the step that failed, if known
    """

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step

    def __str__(self) -> str:
        message = super().__str__()
        if self.step:
            return f"{self.step}: {message}"
        return message
