"""Failure taxonomy for search jobs."""

from enum import Enum
from typing import Any, Dict, Optional

class FailureKind(str, Enum):
    CONFIGURATION_ERROR = "configuration_error"
    AUTH_FAILURE = "auth_failure"
    AUTH_COLLISION = "auth_collision"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    EXTRACTION_UNAVAILABLE = "extraction_unavailable"
    UNKNOWN = "unknown"

class AutomationError(Exception):
    """Base class for typed driver failures.

    `diagnostic` carries whatever the failing step knew (tried selectors,
    frame URLs, current page URL) so the coordinator can log it.
    """

    kind: FailureKind = FailureKind.UNKNOWN

    def __init__(self, message: str = "", diagnostic: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.kind.value)
        self.diagnostic = diagnostic or {}

class ConfigurationError(AutomationError):
    """Auction credentials or another required setting is missing."""
    kind = FailureKind.CONFIGURATION_ERROR

class AuthFailure(AutomationError):
    """Login form missing or login not confirmed."""
    kind = FailureKind.AUTH_FAILURE

class AuthCollision(AutomationError):
    """The account is logged in somewhere else."""
    kind = FailureKind.AUTH_COLLISION

class NavigationTimeout(AutomationError):
    kind = FailureKind.NAVIGATION_TIMEOUT

class ExtractionUnavailable(AutomationError):
    """The results container never appeared."""
    kind = FailureKind.EXTRACTION_UNAVAILABLE

class UnknownError(AutomationError):
    kind = FailureKind.UNKNOWN
