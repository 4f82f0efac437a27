from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import typer

from ..models import WhatToDo
from .prompt import Prompter
from .signals import InterruptLatch

logger = logging.getLogger(__name__)


class SpawnError(RuntimeError):
    """The external tool could not be started at all (missing binary, permissions...)."""

    def __init__(self, argv: Sequence[str], cause: OSError):
        super().__init__(f"Failed to spawn '{argv[0]}': {cause}")
        self.argv = list(argv)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    NON_ZERO_EXIT = "non_zero_exit"
    KILLED_BY_SIGNAL = "killed_by_signal"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class CommandOutcome:
    kind: OutcomeKind
    returncode: Optional[int] = None
    stdout: Optional[bytes] = None
    stderr: Optional[bytes] = None
    decision: Optional[WhatToDo] = None

    @property
    def success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def signal_number(self) -> Optional[int]:
        if self.kind is OutcomeKind.KILLED_BY_SIGNAL and self.returncode is not None:
            return -self.returncode
        return None

    def describe(self) -> str:
        if self.kind is OutcomeKind.SUCCESS:
            return "exit code 0"
        if self.kind is OutcomeKind.NON_ZERO_EXIT:
            return f"exit code {self.returncode}"
        if self.kind is OutcomeKind.KILLED_BY_SIGNAL:
            return f"terminated by signal {self.signal_number}"
        return "interrupted"

    @classmethod
    def from_returncode(
        cls, returncode: int, stdout: Optional[bytes] = None, stderr: Optional[bytes] = None
    ) -> "CommandOutcome":
        if returncode == 0:
            kind = OutcomeKind.SUCCESS
        elif returncode < 0:
            kind = OutcomeKind.KILLED_BY_SIGNAL
        else:
            kind = OutcomeKind.NON_ZERO_EXIT
        return cls(kind=kind, returncode=returncode, stdout=stdout, stderr=stderr)

    @classmethod
    def interrupted(cls, decision: WhatToDo) -> "CommandOutcome":
        return cls(kind=OutcomeKind.INTERRUPTED, decision=decision)


class CommandRunner:
    """Spawns external tools inside a work directory and classifies how they ended.

    Never retries on its own; that is up to the caller.
    """

    def __init__(self, latch: InterruptLatch, console_width: Optional[int] = None):
        self._latch = latch
        self._console_width = console_width

    def _separator(self) -> str:
        width = self._console_width or shutil.get_terminal_size((80, 24)).columns
        return "=" * width

    async def _interrupt_checkpoint(self) -> Optional[WhatToDo]:
        decision = await self._latch.check()
        if decision is None or decision is WhatToDo.CONTINUE:
            return None
        return decision

    async def run(self, argv: Sequence[str], work_dir: Path, capture_output: bool = False) -> CommandOutcome:
        argv = [str(arg) for arg in argv]
        if not argv:
            raise ValueError("Cannot run an empty command")

        decision = await self._interrupt_checkpoint()
        if decision is not None:
            return CommandOutcome.interrupted(decision)

        self._print_enter(argv)
        logger.info("Running %s in %s", argv, work_dir)
        pipe = asyncio.subprocess.PIPE if capture_output else None
        try:
            process = await asyncio.create_subprocess_exec(*argv, cwd=str(work_dir), stdout=pipe, stderr=pipe)
        except OSError as exc:
            logger.error("Could not spawn %s: %s", argv[0], exc)
            raise SpawnError(argv, exc) from exc

        stdout, stderr = await process.communicate()
        outcome = CommandOutcome.from_returncode(process.returncode, stdout, stderr)
        self._print_return(outcome)
        logger.info("%s finished with %s", argv[0], outcome.describe())

        decision = await self._interrupt_checkpoint()
        if decision is not None:
            return CommandOutcome.interrupted(decision)
        return outcome

    def _print_enter(self, argv: List[str]) -> None:
        separator = typer.style(self._separator(), fg=typer.colors.CYAN)
        typer.echo()
        typer.echo(separator)
        typer.echo("Entering command context.")
        typer.echo(f"Executing: {' '.join(argv)}")
        typer.echo(separator)
        typer.echo()

    def _print_return(self, outcome: CommandOutcome) -> None:
        separator = typer.style(self._separator(), fg=typer.colors.YELLOW)
        typer.echo()
        typer.echo(separator)
        typer.echo("Returned to tty context.")
        if outcome.kind is OutcomeKind.KILLED_BY_SIGNAL:
            typer.secho("Command was terminated by signal.", fg=typer.colors.RED)
        else:
            color = typer.colors.GREEN if outcome.success else typer.colors.RED
            typer.secho(f"Command returned exit code {outcome.returncode}.", fg=color)
        typer.echo(separator)
        typer.echo()


async def into_success_or_ask(
    outcome: CommandOutcome,
    prompter: Prompter,
    message: str,
    allowed: Iterable[WhatToDo],
) -> Optional[WhatToDo]:
    """``None`` when the command succeeded, otherwise what the human wants to do next."""
    if outcome.success:
        return None
    if outcome.kind is OutcomeKind.INTERRUPTED:
        return outcome.decision
    return await prompter.ask_what_to_do(
        typer.style(f"{message} ({outcome.describe()})", fg=typer.colors.RED),
        allowed,
    )
