"""Shared pytest configuration for the Autowriter project."""

from __future__ import annotations

import os
import sys
from pathlib import Path
import sysconfig

import pytest

ROOT = Path(__file__).resolve().parent.parent
EXTRA_PATHS = [ROOT, ROOT / "libs/python"]
for extra in EXTRA_PATHS:
    sys.path.insert(0, str(extra))

SITE_PACKAGES = Path(sysconfig.get_paths().get("purelib", ""))
if SITE_PACKAGES and str(SITE_PACKAGES) not in sys.path:
    sys.path.append(str(SITE_PACKAGES))

# Services build their store and provider lazily from the environment.
os.environ.setdefault("AUTOWRITER_STORE", "memory")
os.environ.setdefault("LLM_PROVIDER", "mock")

from autowriter_jobs import PipelineSettings  # noqa: E402
from autowriter_jobs.store import MemoryStore  # noqa: E402

from tests.utils.builders import ManualClock  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings()
