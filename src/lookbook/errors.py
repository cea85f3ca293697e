"""
Exception hierarchy for the lookbook pipeline.

Messages are phrased so that keyword classification in
``step5_error_handler.classify_error`` lands in the right bucket.
"""

from __future__ import annotations

from typing import Any, Optional


class LookbookError(Exception):
    """Base class for all pipeline errors."""


class ColorExtractionError(LookbookError):
    """Raised when an uploaded image cannot be decoded for color analysis."""


class InvalidColorError(LookbookError, ValueError):
    """Raised for malformed hex color strings."""


class CreditsError(LookbookError):
    """Raised when the credits collaborator cannot be reached or rejects a call."""


class GenerationError(LookbookError):
    """Base class for provider-side failures. Carries the job when one exists."""

    def __init__(self, message: str, job: Optional[Any] = None):
        super().__init__(message)
        self.job = job


class SubmissionRejectedError(GenerationError):
    """Provider accepted the request but returned no job identifier."""


class ProviderError(GenerationError):
    """HTTP-level rejection from the provider (4xx/5xx, missing key)."""

    def __init__(self, message: str, status_code: Optional[int] = None, job: Optional[Any] = None):
        super().__init__(message, job=job)
        self.status_code = status_code


class ProviderNetworkError(GenerationError):
    """Transport failure talking to the provider."""


class ProviderFailureError(GenerationError):
    """Job reached an explicit failure status or reported an error message."""


class GenerationTimeoutError(GenerationError):
    """Poll attempt ceiling (or hard deadline) exceeded without a terminal status."""


class GenerationCancelledError(GenerationError):
    """Caller abandoned the poll loop through its cancel event."""


class RequestTimeoutError(ProviderNetworkError):
    """A single HTTP exchange with the provider exceeded its timeout (not a job timeout)."""
