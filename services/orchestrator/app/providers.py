"""Build the orchestrator's provider from the environment."""

from __future__ import annotations

import os

from autowriter_providers import (
    LLMProvider,
    ProviderConfig,
    ProviderFactory,
    ProviderSettings,
    load_provider_config,
)


def resolve_provider_config() -> ProviderConfig:
    """``LLM_PROVIDER`` picks the adapter; ``mock`` needs no credentials."""

    provider_name = os.getenv("LLM_PROVIDER", "mock")
    if provider_name.lower() == "mock":
        return ProviderConfig(name="mock", api_key="mock", model="mock", settings=ProviderSettings())
    return load_provider_config(prefix=provider_name)


def create_provider() -> LLMProvider:
    return ProviderFactory.create(resolve_provider_config())
