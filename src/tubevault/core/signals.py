from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from typing import Callable, Optional

import typer

from ..models import WhatToDo
from .prompt import Prompter

logger = logging.getLogger(__name__)

FORCED_EXIT_CODE = 72


class InterruptLatch:
    """Turns SIGINT into a pending decision that is consumed at checkpoints.

    A second interrupt while one is still pending terminates the process at once,
    without any cleanup.
    """

    def __init__(self, prompter: Prompter, on_double_interrupt: Callable[[int], None] = os._exit):
        self._prompter = prompter
        self._on_double_interrupt = on_double_interrupt
        self._lock = threading.Lock()
        self._pending = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending

    def trip(self) -> None:
        with self._lock:
            already_pending = self._pending
            self._pending = True
        if already_pending:
            logger.error("Interrupted twice, terminating")
            self._on_double_interrupt(FORCED_EXIT_CODE)
            return
        typer.secho(
            "\nInterrupt received, it will be handled at the next checkpoint. Interrupt again to force quit.",
            fg=typer.colors.RED,
            err=True,
        )

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.add_signal_handler(signal.SIGINT, self.trip)

    def uninstall(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.remove_signal_handler(signal.SIGINT)

    def _take(self) -> bool:
        with self._lock:
            was_pending = self._pending
            self._pending = False
            return was_pending

    async def check(self) -> Optional[WhatToDo]:
        if not self._take():
            return None
        # Retrying is never a meaningful answer to an interrupt.
        return await self._prompter.ask_what_to_do(
            typer.style("Interrupted.", fg=typer.colors.RED),
            WhatToDo.all_except(WhatToDo.RETRY),
        )
