"""Custom exceptions used by provider adapters.

The hierarchy doubles as the failure taxonomy used by the writing workers:
transient errors are retried, content errors are not.
"""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base error raised for provider failures."""


class ProviderConfigError(ProviderError):
    """Raised when configuration is missing or invalid."""


class ProviderTransientError(ProviderError):
    """Raised for failures that may succeed on a later attempt (timeouts, 5xx)."""


class ProviderRateLimitError(ProviderTransientError):
    """Raised when the provider throttles the caller."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderResponseError(ProviderError):
    """Raised when a provider returns an unusable response."""


class ProviderContentError(ProviderResponseError):
    """Raised when the provider refuses the prompt or filters the output."""
