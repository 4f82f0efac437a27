from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import typer

from ..config import MAX_QUEUE_CAPACITY, MIN_QUEUE_CAPACITY
from ..models import VideoRequest

logger = logging.getLogger(__name__)


class QueueFull(RuntimeError):
    pass


class QueueClosed(RuntimeError):
    pass


class RequestQueue:
    """Bounded FIFO between the HTTP handlers and the single worker.

    Enqueueing never waits: a full queue is reported back to the caller straight away.
    """

    def __init__(self, capacity: int):
        self.capacity = max(MIN_QUEUE_CAPACITY, min(MAX_QUEUE_CAPACITY, capacity))
        self._queue: "asyncio.Queue[VideoRequest]" = asyncio.Queue(maxsize=self.capacity)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def try_enqueue(self, request: VideoRequest) -> None:
        if self._closed:
            raise QueueClosed("Cannot enqueue: Video request queue closed!")
        try:
            self._queue.put_nowait(request)
        except asyncio.QueueFull as exc:
            raise QueueFull("Cannot enqueue: Video request queue capacity exceeded!") from exc
        logger.info("Enqueued %s (%s/%s)", request.youtube_id, self._queue.qsize(), self.capacity)

    def close(self) -> None:
        self._closed = True

    async def get(self) -> VideoRequest:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()


async def run_worker(
    queue: RequestQueue,
    process: Callable[[VideoRequest], Awaitable[bool]],
) -> None:
    """Feed queued requests to ``process`` one at a time, in arrival order."""
    while True:
        request = await queue.get()

        try:
            ran = await process(request)
            logger.info("Request %s finished (ran to completion: %s)", request.youtube_id, ran)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to handle video request %s", request.youtube_id)
            typer.secho(f"Failed to handle video request!\n{exc}", fg=typer.colors.RED, err=True)
        finally:
            queue.task_done()
