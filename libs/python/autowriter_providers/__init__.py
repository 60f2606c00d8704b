"""Provider abstraction for the text-generation calls made by the writing workers."""

from .base import LLMProvider, ProviderCapabilities, ProviderRequest, ProviderResponse
from .config import ProviderConfig, ProviderSettings, load_provider_config
from .exceptions import (
    ProviderConfigError,
    ProviderContentError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTransientError,
)
from .factory import ProviderFactory
from .mock import MockProvider

__all__ = [
    "LLMProvider",
    "ProviderCapabilities",
    "ProviderRequest",
    "ProviderResponse",
    "ProviderConfig",
    "ProviderSettings",
    "load_provider_config",
    "ProviderFactory",
    "MockProvider",
    "ProviderError",
    "ProviderConfigError",
    "ProviderContentError",
    "ProviderRateLimitError",
    "ProviderResponseError",
    "ProviderTransientError",
]
