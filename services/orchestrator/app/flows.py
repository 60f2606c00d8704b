"""Prefect flows driving writing projects to completion."""

from __future__ import annotations

import logging
from time import perf_counter
from uuid import UUID

from prefect import flow

from autowriter_observability import log_context

from .dependencies import get_runtime

logger = logging.getLogger(__name__)


@flow(name="autowriter-drive-project", version="0.1.0")
async def drive_project_flow(project_id: UUID) -> dict:
    """Tick one project until it stops, completes, stalls or is owned elsewhere."""

    runtime = get_runtime()
    started = perf_counter()
    with log_context(project_id=project_id):
        logger.info("Starting project drive")
        response = await runtime.driver.run(project_id)
        logger.info(
            "Project drive finished",
            extra={
                "result": response.result,
                "elapsed_seconds": round(perf_counter() - started, 3),
            },
        )
    return response.model_dump(mode="json")
