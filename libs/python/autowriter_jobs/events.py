"""In-process fan-out of progress events."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from autowriter_schemas import ProgressEvent

logger = logging.getLogger(__name__)

Listener = Callable[[ProgressEvent], Awaitable[None] | None]


class ProgressBroadcaster:
    """Deliver each published event to every queue and listener.

    Queues are bounded; a slow subscriber loses its oldest events rather than
    blocking the workers.
    """

    def __init__(self) -> None:
        self._queues: set[asyncio.Queue[ProgressEvent]] = set()
        self._listeners: list[Listener] = []

    def subscribe(self, maxsize: int = 100) -> asyncio.Queue[ProgressEvent]:
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=maxsize)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ProgressEvent]) -> None:
        self._queues.discard(queue)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def publish(self, event: ProgressEvent) -> None:
        for queue in list(self._queues):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:  # noqa: BLE001 - listener isolation
                logger.exception(
                    "Progress listener failed",
                    extra={"project_id": str(event.project_id)},
                )
