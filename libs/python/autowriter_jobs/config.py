"""Pipeline tunables read from the environment."""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, Field

ENV_PREFIX = "AUTOWRITER_"


class PipelineSettings(BaseModel):
    """Timing and sizing knobs shared by the driver, workers and watchdog."""

    max_retries: int = Field(10, ge=1)
    recovery_delay_seconds: float = Field(30.0, ge=0)
    outline_tick_seconds: float = Field(2.0, ge=0)
    scene_tick_seconds: float = Field(5.0, ge=0)
    lease_seconds: float = Field(300.0, gt=0)
    watchdog_stall_seconds: float = Field(180.0, gt=0)
    stall_timeout_seconds: float = Field(3600.0, gt=0)
    estimated_scenes_per_chapter: int = Field(5, ge=1)
    min_scene_length: int = Field(100, ge=1)
    context_chars: int = Field(2000, ge=0)
    pool_sweep_seconds: float = Field(15.0, gt=0)
    idle_poll_seconds: float = Field(30.0, gt=0, description="Upper bound on a driver sleep")


def load_pipeline_settings() -> PipelineSettings:
    """Build settings from ``AUTOWRITER_*`` variables; unset keys keep their defaults."""

    values: dict[str, str] = {}
    for field_name in PipelineSettings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
        if raw is not None and raw.strip():
            values[field_name] = raw.strip()
    return PipelineSettings.model_validate(values)


@lru_cache(maxsize=1)
def get_pipeline_settings() -> PipelineSettings:
    return load_pipeline_settings()
