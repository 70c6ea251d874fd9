"""Error taxonomy for the replay engine."""
from __future__ import annotations


class AutotesterError(Exception):
    """Base class for all autotester errors."""


class ConfigurationError(AutotesterError):
    """Raised when a run cannot start: missing macro, unknown env, bad encoding."""


class InitialNavigationError(AutotesterError):
    """Raised when the navigation to the base URL before step 1 fails."""


class ArtifactCaptureError(AutotesterError):
    """Raised when a screenshot or trace cannot be written."""


class StepError(AutotesterError):
    """Base for failures that stay local to one step."""


class LocatorNotFound(StepError):
    """None of the locator candidates matched an element."""


class ElementNotInteractable(StepError):
    """The element matched but stayed hidden, detached or disabled."""


class AssertionFailed(StepError):
    """An assert/assertCss/assertCursor check did not hold."""


class NavigationFailed(StepError):
    """Navigation errored, returned HTTP >= 400 or landed on an error page."""


class UnsupportedAction(StepError):
    """The step's action_type is not part of the vocabulary."""
