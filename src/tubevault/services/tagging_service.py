from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

import typer

from ..core.process import into_success_or_ask
from ..models import Recording, WhatToDo
from .context import WorkerContext

logger = logging.getLogger(__name__)


def build_ffmpeg_command(ffmpeg: str, loglevel: str, source: Path, target: Path, recording: Recording) -> List[str]:
    return [
        ffmpeg,
        "-loglevel",
        loglevel,
        "-y",
        "-i",
        str(source),
        "-metadata",
        f"MusicBrainz Track Id={recording.id}",
        "-metadata",
        f"Title={recording.title}",
        "-metadata",
        f"Artist={recording.artists_string()}",
        "-codec",
        "copy",
        str(target),
    ]


class TaggingService:
    def __init__(self, ctx: WorkerContext):
        self._ctx = ctx

    async def apply_recording(self, filepath: Path, recording: Recording) -> Optional[WhatToDo]:
        """Rewrite the tags of ``filepath`` in place, copying the audio stream untouched.

        Returns ``RESTART_REQUEST``/``ABORT_REQUEST`` when the human asked for it, else ``None``.
        """
        tools = self._ctx.settings.tools
        with tempfile.TemporaryDirectory(prefix="tubevault-tag-") as movedir:
            moved = Path(movedir) / filepath.name
            typer.echo(f"{typer.style('Moving', fg=typer.colors.YELLOW)} '{filepath}' to '{moved}'")
            shutil.move(str(filepath), str(moved))

            command = build_ffmpeg_command(tools.ffmpeg, tools.ffmpeg_loglevel, moved, filepath, recording)
            while True:
                outcome = await self._ctx.runner.run(command, Path(movedir))
                decision = await into_success_or_ask(
                    outcome, self._ctx.prompter, "ffmpeg failed to rewrite the metadata", WhatToDo.all()
                )
                if decision is None:
                    break
                if decision is WhatToDo.RETRY:
                    continue
                if decision is WhatToDo.CONTINUE:
                    self._restore(moved, filepath)
                    return None
                return decision

        typer.echo(
            f"{typer.style('Copied', fg=typer.colors.YELLOW)} '{moved}' to '{filepath}' "
            "with updated metadata from MusicBrainz"
        )
        logger.info("Tagged %s with recording %s", filepath, recording.id)
        return None

    @staticmethod
    def _restore(moved: Path, filepath: Path) -> None:
        # Whatever ffmpeg left behind is not trustworthy after a failure.
        if filepath.exists():
            filepath.unlink()
        shutil.move(str(moved), str(filepath))
        typer.echo(f"Restored untagged '{filepath}'")
