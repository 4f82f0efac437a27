from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
from typing import Iterator, Optional

import typer
import uvicorn

from .api.app import create_app
from .config import Settings, get_settings
from .core.lock import PORT_NOT_READY, InstanceLock
from .core.process import CommandRunner
from .core.prompt import Prompter, TerminalPrompter
from .core.signals import InterruptLatch
from .integrations.acoustid_client import AcoustIDClient
from .integrations.musicbrainz_client import MusicBrainzClient
from .services.context import WorkerContext
from .services.request_service import RequestProcessor
from .services.worker import RequestQueue, run_worker

logger = logging.getLogger(__name__)


class TtyStartupError(RuntimeError):
    pass


class TtyServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT to the interrupt latch."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def bind_listener(host: str, port: Optional[int]) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port or 0))
        sock.listen(128)
    except OSError as exc:
        sock.close()
        raise TtyStartupError(f"Failed to bind the listener on {host}:{port or 0}: {exc}") from exc
    sock.setblocking(False)
    return sock


def build_worker_context(settings: Settings, prompter: Optional[Prompter] = None) -> WorkerContext:
    prompter = prompter or TerminalPrompter()
    latch = InterruptLatch(prompter)
    return WorkerContext(
        settings=settings,
        prompter=prompter,
        latch=latch,
        runner=CommandRunner(latch),
        acoustid=AcoustIDClient(settings.acoustid),
        musicbrainz=MusicBrainzClient(settings.musicbrainz),
    )


async def serve(settings: Settings, prompter: Optional[Prompter] = None) -> None:
    """Run the tty instance until the HTTP server stops."""
    pid = os.getpid()
    lock: Optional[InstanceLock] = None
    if settings.SKIP_LOCK_CHECKS:
        logger.warning("Skipping lock check!")
        typer.secho("Skipping lock check!", fg=typer.colors.YELLOW, err=True)
    else:
        lock = InstanceLock.acquire(settings.LOCKFILE_PATH)

    try:
        if lock is not None:
            lock.write_record(pid, PORT_NOT_READY)
        sock = bind_listener(settings.HOST, settings.PORT_OVERRIDE)
        port = sock.getsockname()[1]
        if lock is not None:
            lock.write_record(pid, port)

        try:
            await _serve_on(sock, port, settings, prompter)
        finally:
            sock.close()
    finally:
        if lock is not None:
            lock.release()


async def _serve_on(sock: socket.socket, port: int, settings: Settings, prompter: Optional[Prompter]) -> None:
    loop = asyncio.get_running_loop()
    queue = RequestQueue(settings.queue_capacity)
    ctx = build_worker_context(settings, prompter)
    processor = RequestProcessor(ctx)

    ctx.latch.install(loop)
    worker = asyncio.create_task(run_worker(queue, processor.process))
    server = TtyServer(
        uvicorn.Config(
            create_app(queue, settings),
            log_level=settings.LOG_LEVEL.lower(),
            lifespan="off",
            access_log=False,
        )
    )

    typer.secho(f"TTY instance is running! Listening on {settings.HOST}:{port}", fg=typer.colors.GREEN, bold=True)
    logger.info("Serving on %s:%s, queue capacity %s", settings.HOST, port, queue.capacity)
    try:
        await server.serve(sockets=[sock])
    finally:
        queue.close()
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
        ctx.latch.uninstall(loop)
        await ctx.aclose()


def run_tty(settings: Optional[Settings] = None, prompter: Optional[Prompter] = None) -> None:
    asyncio.run(serve(settings or get_settings(), prompter))
