from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

import typer

from ..models import WhatToDo

logger = logging.getLogger(__name__)

T = TypeVar("T")

WHAT_TO_DO_QUESTION = "What would you like to do?"


class Prompter(ABC):
    """Human interaction used by the request lifecycle.

    Every method blocks the calling task until the human answers; there is no timeout.
    """

    @abstractmethod
    async def select(self, prompt: str, items: Sequence[str], default: int = 0) -> int:
        ...

    @abstractmethod
    async def multi_select(self, prompt: str, items: Sequence[str], defaults: Sequence[bool]) -> List[int]:
        ...

    @abstractmethod
    async def confirm(self, prompt: str, default: bool = True) -> bool:
        ...

    @abstractmethod
    async def text(self, prompt: str) -> str:
        ...

    @abstractmethod
    async def pause(self, prompt: str = "Press Enter to continue...") -> None:
        ...

    async def ask_what_to_do(self, message: str, allowed: Iterable[WhatToDo]) -> WhatToDo:
        choices = WhatToDo.ordered(allowed)
        if not choices:
            raise ValueError("Internal error: ask_what_to_do received an empty set of allowed decisions")

        title = f"{message}\n{typer.style(WHAT_TO_DO_QUESTION, fg=typer.colors.CYAN)}" if message else WHAT_TO_DO_QUESTION
        index = await self.select(title, [choice.label for choice in choices], default=0)
        decision = choices[index]
        logger.info("Recovery decision: %s", decision.value)
        return decision


class TerminalPrompter(Prompter):
    """Prompts on the controlling terminal, off the event loop."""

    def __init__(self, max_items: int = 16):
        self._max_items = max_items

    async def _blocking(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def select(self, prompt: str, items: Sequence[str], default: int = 0) -> int:
        return await self._blocking(lambda: self._select(prompt, list(items), default))

    async def multi_select(self, prompt: str, items: Sequence[str], defaults: Sequence[bool]) -> List[int]:
        return await self._blocking(lambda: self._multi_select(prompt, list(items), list(defaults)))

    async def confirm(self, prompt: str, default: bool = True) -> bool:
        return await self._blocking(lambda: typer.confirm(prompt, default=default))

    async def text(self, prompt: str) -> str:
        return await self._blocking(lambda: self._text(prompt))

    async def pause(self, prompt: str = "Press Enter to continue...") -> None:
        await self._blocking(
            lambda: typer.prompt(prompt, default="", show_default=False, prompt_suffix=" ")
        )

    # --- blocking helpers -------------------------------------------------
    def _print_items(self, items: List[str]) -> None:
        width = len(str(len(items)))
        if len(items) > self._max_items:
            typer.echo(f"({len(items)} options)")
        for index, item in enumerate(items, start=1):
            typer.echo(f"  {index:>{width}}) {item}")

    def _select(self, prompt: str, items: List[str], default: int) -> int:
        if not items:
            raise ValueError("Cannot select from an empty list")
        typer.echo(prompt)
        self._print_items(items)
        while True:
            answer: int = typer.prompt("Choice", default=default + 1, type=int)
            if 1 <= answer <= len(items):
                return answer - 1
            typer.secho(f"Choose a number between 1 and {len(items)}", fg=typer.colors.RED, err=True)

    def _multi_select(self, prompt: str, items: List[str], defaults: List[bool]) -> List[int]:
        typer.echo(prompt)
        self._print_items(items)
        default_answer = ",".join(str(index + 1) for index, on in enumerate(defaults) if on)
        while True:
            raw: str = typer.prompt(
                "Choices (comma separated, Enter keeps the default)",
                default=default_answer,
                show_default=True,
            )
            selected = _parse_indices(raw, len(items))
            if selected is not None:
                return selected
            typer.secho(f"Use numbers between 1 and {len(items)}", fg=typer.colors.RED, err=True)

    def _text(self, prompt: str) -> str:
        while True:
            value: str = typer.prompt(prompt, type=str)
            if value.strip():
                return value.strip()
            typer.secho("Value cannot be empty", fg=typer.colors.RED, err=True)


def _parse_indices(raw: str, count: int) -> Optional[List[int]]:
    indices: List[int] = []
    for token in raw.replace(" ", ",").split(","):
        if not token:
            continue
        if not token.isdigit():
            return None
        value = int(token)
        if not 1 <= value <= count:
            return None
        if value - 1 not in indices:
            indices.append(value - 1)
    return sorted(indices)
