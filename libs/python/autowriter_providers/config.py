"""Configuration models and helpers for provider selection."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ProviderConfigError

PROVIDER_ENV_VAR = "LLM_PROVIDER"
DEFAULT_PROVIDER = "openai"


class ProviderSettings(BaseModel):
    """Per-call default parameters."""

    temperature: float = Field(0.7, ge=0, le=2)
    max_output_tokens: int | None = Field(None, ge=16)
    top_p: float | None = Field(None, ge=0, le=1)
    json_mode: bool = Field(False)
    request_timeout: float = Field(120.0, gt=0, description="Seconds before a call is abandoned")
    reasoning_effort: str | None = Field(
        None, description="Default reasoning effort parameter for reasoning-capable models"
    )
    verbosity: str | None = Field(None, description="Default verbosity hint")


class ProviderConfig(BaseModel):
    """Configuration for a single provider instance."""

    model_config = ConfigDict(frozen=True)

    name: str
    api_key: str
    model: str
    base_url: str | None = None
    settings: ProviderSettings = Field(default_factory=ProviderSettings)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def load_provider_config(prefix: str | None = None) -> ProviderConfig:
    """Load configuration from environment variables.

    Args:
        prefix: Optional prefix for environment variables (default uses provider name).

    Environment variables used (assuming prefix "OPENAI"):
        OPENAI_API_KEY
        OPENAI_MODEL
        OPENAI_BASE_URL (optional)
        OPENAI_TEMPERATURE (optional)
        OPENAI_MAX_OUTPUT_TOKENS (optional)
        OPENAI_TOP_P (optional)
        OPENAI_JSON_MODE (optional boolean)
        OPENAI_TIMEOUT (optional seconds)

    Raises:
        ProviderConfigError: If required variables are missing or invalid.
    """

    provider_name = (prefix or os.getenv(PROVIDER_ENV_VAR, DEFAULT_PROVIDER)).upper()

    def read_env(key: str, default: Any | None = None) -> Any:
        return os.getenv(f"{provider_name}_{key}", default)

    api_key = read_env("API_KEY")
    model = read_env("MODEL")
    if not api_key or not model:
        raise ProviderConfigError(
            f"{provider_name}_API_KEY and {provider_name}_MODEL must both be set"
        )

    try:
        max_output_raw = _optional_str(read_env("MAX_OUTPUT_TOKENS"))
        max_output_tokens = int(max_output_raw) if max_output_raw else None
        if max_output_tokens is not None and max_output_tokens <= 0:
            max_output_tokens = None
        top_p_raw = _optional_str(read_env("TOP_P"))
        settings = ProviderSettings(
            temperature=float(read_env("TEMPERATURE", 0.7)),
            max_output_tokens=max_output_tokens,
            top_p=float(top_p_raw) if top_p_raw else None,
            json_mode=_parse_bool(read_env("JSON_MODE", "false")),
            request_timeout=float(read_env("TIMEOUT", 120.0)),
            reasoning_effort=_optional_str(read_env("REASONING_EFFORT")),
            verbosity=_optional_str(read_env("VERBOSITY")),
        )
    except (TypeError, ValueError, ValidationError) as exc:
        raise ProviderConfigError(f"Invalid {provider_name} provider settings: {exc}") from exc

    return ProviderConfig(
        name=provider_name.lower(),
        api_key=api_key,
        model=model,
        base_url=_optional_str(read_env("BASE_URL")),
        settings=settings,
    )
