"""Deterministic mock provider for tests and offline development."""

from __future__ import annotations

import json
from collections import deque
from typing import Iterable

from .base import LLMProvider, ProviderCapabilities, ProviderRequest, ProviderResponse
from .config import ProviderConfig, ProviderSettings

DEFAULT_TEXT = "Mock response generated for testing."
DEFAULT_SCENE_COUNT = 3

_SCENE_PARAGRAPH = (
    "The lamps along the quay had already been lit when {title} began. "
    "Rain drifted in from the harbour and settled on every coat and crate, "
    "and nobody on the dock seemed willing to say out loud what they had all seen. "
)


class MockProvider(LLMProvider):
    """Offline provider.

    Requests tagged ``metadata["task"] == "outline"`` receive a JSON scene list,
    ``"scene"`` receives a few paragraphs of prose. ``responses`` scripts the next
    replies in order; an exception instance in the script is raised instead.
    """

    name = "mock"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        responses: Iterable[str | BaseException] | None = None,
        scene_count: int = DEFAULT_SCENE_COUNT,
    ) -> None:
        if config is None:
            settings = ProviderSettings(temperature=0.1, json_mode=False)
            config = ProviderConfig(name="mock", api_key="mock", model="mock", settings=settings)
        self._config = config
        self._script: deque[str | BaseException] = deque(responses or [])
        self.scene_count = scene_count
        self.requests: list[ProviderRequest] = []

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            max_input_tokens=32000,
            max_output_tokens=4000,
        )

    def queue(self, *responses: str | BaseException) -> None:
        self._script.extend(responses)

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.requests.append(request)
        if self._script:
            scripted = self._script.popleft()
            if isinstance(scripted, BaseException):
                raise scripted
            text = scripted
        else:
            text = self._default_text(request)
        return ProviderResponse(
            text=text,
            raw={"mock": True},
            model="mock",
            prompt_tokens=len(request.prompt.split()),
            completion_tokens=len(text.split()),
            latency_ms=1.0,
            finish_reason="stop",
        )

    def _default_text(self, request: ProviderRequest) -> str:
        task = request.metadata.get("task")
        title = request.metadata.get("title") or "the scene"
        if task == "outline":
            scenes = [
                {
                    "scene_number": index + 1,
                    "title": f"{title} - part {index + 1}",
                    "pov": "narrator",
                    "section_type": "scene",
                    "location": "harbour",
                    "target_words": 800,
                    "description": f"Beat {index + 1} of {title}.",
                    "key_events": [f"event {index + 1}"],
                    "emotional_arc": "uneasy to resolved",
                }
                for index in range(self.scene_count)
            ]
            return json.dumps({"scenes": scenes})
        if task == "scene":
            return "\n\n".join(_SCENE_PARAGRAPH.format(title=title).strip() for _ in range(3))
        return f"{DEFAULT_TEXT}\nPrompt: {request.prompt[:80]}"
