"""OpenAI chat-completions provider implementation."""

from __future__ import annotations

import time
from typing import Any, Dict, List

import openai
from openai import AsyncOpenAI

from .base import LLMProvider, ProviderCapabilities, ProviderRequest, ProviderResponse
from .config import ProviderConfig
from .exceptions import (
    ProviderContentError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTransientError,
)


def _retry_after(err: openai.APIStatusError) -> float | None:
    header = err.response.headers.get("retry-after") if err.response is not None else None
    try:
        return float(header) if header else None
    except ValueError:
        return None


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.settings.request_timeout,
            max_retries=0,
        )

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            max_input_tokens=None,
            max_output_tokens=self._config.settings.max_output_tokens,
            supports_reasoning_effort=True,
            supports_verbosity=True,
        )

    def _build_params(self, request: ProviderRequest) -> Dict[str, Any]:
        settings = self._config.settings
        messages: List[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        params: Dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "temperature": request.temperature if request.temperature is not None else settings.temperature,
        }

        top_p = request.top_p if request.top_p is not None else settings.top_p
        if top_p is not None:
            params["top_p"] = top_p

        max_output = (
            request.max_output_tokens
            if request.max_output_tokens is not None
            else settings.max_output_tokens
        )
        if max_output:
            params["max_completion_tokens"] = max_output

        if request.json_schema:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "structured", "schema": request.json_schema},
            }
        elif settings.json_mode:
            params["response_format"] = {"type": "json_object"}

        reasoning_effort = request.reasoning_effort or settings.reasoning_effort
        if reasoning_effort:
            params["reasoning_effort"] = reasoning_effort
        verbosity = request.verbosity or settings.verbosity
        if verbosity:
            params["verbosity"] = verbosity
        return params

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        params = self._build_params(request)

        start = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(**params)
        except openai.RateLimitError as err:
            raise ProviderRateLimitError(str(err), retry_after=_retry_after(err)) from err
        except (openai.APIConnectionError, openai.APITimeoutError) as err:
            raise ProviderTransientError(str(err)) from err
        except openai.InternalServerError as err:
            raise ProviderTransientError(str(err)) from err
        except openai.BadRequestError as err:
            if getattr(err, "code", None) == "content_policy_violation":
                raise ProviderContentError(str(err)) from err
            raise ProviderError(str(err)) from err
        latency_ms = (time.perf_counter() - start) * 1000

        try:
            choice = response.choices[0]
            message = choice.message
        except (IndexError, AttributeError) as err:
            raise ProviderResponseError("OpenAI response missing content") from err

        refusal = getattr(message, "refusal", None)
        if refusal or choice.finish_reason == "content_filter":
            raise ProviderContentError(refusal or "OpenAI filtered the completion")

        usage = getattr(response, "usage", None)
        return ProviderResponse(
            text=message.content or "",
            raw=response,
            model=response.model,
            prompt_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
            latency_ms=latency_ms,
            finish_reason=choice.finish_reason,
        )
