"""
Failure taxonomy for the analysis pipeline.

Every stage error carries a machine-readable reason so callers can render a
precise message without inspecting provider-specific text.
"""

from enum import Enum
from typing import Optional


class FailureReason(Enum):
    """Machine-readable failure reasons."""
    INSUFFICIENT_CONTENT = "insufficient_content"  # Retry capture with a longer wait
    QUOTA_EXCEEDED = "quota_exceeded"              # Upgrade tier or wait for reset
    PROVIDER_UNAVAILABLE = "provider_unavailable"  # Network error or timeout
    PROVIDER_REJECTED = "provider_rejected"        # Non-2xx response
    EMPTY_RESPONSE = "empty_response"              # 2xx without text
    PERSISTENCE_ERROR = "persistence_error"        # Non-fatal, reported as warning

    @property
    def recoverable(self) -> bool:
        """Whether the caller may retry the same request."""
        return self is not FailureReason.QUOTA_EXCEEDED


class ChartRadarError(Exception):
    """Base class for stage errors with a failure reason."""

    reason: FailureReason

    def __init__(self, message: str, reason: Optional[FailureReason] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class ProviderError(ChartRadarError):
    """Raised by the provider gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailable(ProviderError):
    """Provider could not be reached or did not answer in time."""
    reason = FailureReason.PROVIDER_UNAVAILABLE


class ProviderRejected(ProviderError):
    """Provider answered with a non-2xx status."""
    reason = FailureReason.PROVIDER_REJECTED


class EmptyResponse(ProviderError):
    """Provider answered successfully but without any text."""
    reason = FailureReason.EMPTY_RESPONSE


class PersistenceError(ChartRadarError):
    """Analysis could not be written to the history store."""
    reason = FailureReason.PERSISTENCE_ERROR
