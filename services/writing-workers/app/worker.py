"""Long-running writing worker: sweeps active projects and drives them."""

import asyncio
import logging
import os
import signal

from autowriter_observability import (
    record_worker_heartbeat,
    setup_logging,
    start_metrics_server,
)

from services.orchestrator.app.dependencies import get_runtime

SERVICE_NAME = "writing_workers"
METRICS_PORT = int(os.getenv("AUTOWRITER_WORKER_METRICS_PORT", "9500"))
HEARTBEAT_SECONDS = 60

setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)


async def _heartbeat(stop: asyncio.Event) -> None:
    while not stop.is_set():
        record_worker_heartbeat(SERVICE_NAME)
        logger.info("writing worker heartbeat")
        try:
            await asyncio.wait_for(stop.wait(), timeout=HEARTBEAT_SECONDS)
        except asyncio.TimeoutError:
            pass


async def run() -> None:
    runtime = get_runtime()
    runtime.store.initialise()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(
        "writing worker booted",
        extra={"metrics_port": METRICS_PORT, "sweep_seconds": runtime.settings.pool_sweep_seconds},
    )
    try:
        await asyncio.gather(runtime.pool.run_forever(stop), _heartbeat(stop))
    finally:
        await runtime.pool.shutdown()
        runtime.store.close()
        logger.info("writing worker stopped")


def main() -> None:
    start_metrics_server(METRICS_PORT)
    asyncio.run(run())


if __name__ == "__main__":
    main()
