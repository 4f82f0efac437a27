from __future__ import annotations

import logging
import shlex
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import typer

from ..config import KeepTmp
from ..core.process import into_success_or_ask
from ..core.workdir import WorkDirectory
from ..models import VideoRequest, WhatToDo
from .context import WorkerContext
from .fingerprint_service import FingerprintService

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    DOWNLOADING = "downloading"
    FINGERPRINTING = "fingerprinting"
    IMPORTING = "importing"
    FINALIZING = "finalizing"
    DONE = "done"


_NEXT_STATE = {
    RequestState.DOWNLOADING: RequestState.FINGERPRINTING,
    RequestState.FINGERPRINTING: RequestState.IMPORTING,
    RequestState.IMPORTING: RequestState.FINALIZING,
    RequestState.FINALIZING: RequestState.DONE,
}


class RetryScope(str, Enum):
    COMMAND = "command"
    REQUEST = "request"


class StepResult(str, Enum):
    ADVANCE = "advance"
    RETRY = "retry"
    RESTART = "restart"
    ABORT = "abort"

    @property
    def scope(self) -> Optional[RetryScope]:
        if self is StepResult.RETRY:
            return RetryScope.COMMAND
        if self is StepResult.RESTART:
            return RetryScope.REQUEST
        return None

    @classmethod
    def from_decision(cls, decision: Optional[WhatToDo]) -> "StepResult":
        if decision is None or decision is WhatToDo.CONTINUE:
            return cls.ADVANCE
        if decision is WhatToDo.RETRY:
            return cls.RETRY
        if decision is WhatToDo.RESTART_REQUEST:
            return cls.RESTART
        return cls.ABORT


class AttemptOutcome(str, Enum):
    COMPLETED = "completed"
    RESTART = "restart"
    ABORTED = "aborted"


def build_download_command(executable: str, extra_args: str, youtube_id: str) -> List[str]:
    # '--' keeps ids starting with '-' from being read as options.
    return [executable, *shlex.split(extra_args), "--", youtube_id]


def build_import_command(executable: str, extra_args: str) -> List[str]:
    return [executable, *shlex.split(extra_args), "."]


Step = Callable[[VideoRequest, WorkDirectory], Awaitable[StepResult]]


class RequestProcessor:
    """Drives one video request from download to library import.

    A step may ask for its own command to be retried, for the whole request to start
    over in a fresh work directory, or for the request to be abandoned.
    """

    def __init__(self, ctx: WorkerContext, fingerprinting: Optional[FingerprintService] = None):
        self._ctx = ctx
        self._fingerprinting = fingerprinting or FingerprintService(ctx)
        self._steps: Dict[RequestState, Step] = {
            RequestState.DOWNLOADING: self._download,
            RequestState.FINGERPRINTING: self._fingerprint,
            RequestState.IMPORTING: self._import,
            RequestState.FINALIZING: self._finalize,
        }

    async def process(self, request: VideoRequest) -> bool:
        """True when the request ran to completion, False when the human aborted it."""
        attempt = 0
        while True:
            attempt += 1
            typer.secho(f"Processing request for {request.youtube_id}", bold=True)
            logger.info("Processing %s (attempt %s)", request.youtube_id, attempt)

            decision = await self._ctx.latch.check()
            if decision is WhatToDo.ABORT_REQUEST:
                return self._aborted(request)
            if decision is WhatToDo.RESTART_REQUEST:
                continue

            work_dir = WorkDirectory(parent=self._ctx.settings.WORK_DIR_PARENT)
            try:
                outcome = await self._run_attempt(request, work_dir)
            finally:
                work_dir.cleanup()

            if outcome is AttemptOutcome.RESTART:
                typer.secho(f"Restarting request for {request.youtube_id}", fg=typer.colors.YELLOW)
                continue
            if outcome is AttemptOutcome.ABORTED:
                return self._aborted(request)
            typer.secho(f"Request for {request.youtube_id} ran to completion", fg=typer.colors.GREEN)
            logger.info("Request %s completed", request.youtube_id)
            return True

    def _aborted(self, request: VideoRequest) -> bool:
        typer.secho(f"Aborted request for {request.youtube_id}", fg=typer.colors.RED)
        logger.info("Request %s aborted", request.youtube_id)
        return False

    async def _run_attempt(self, request: VideoRequest, work_dir: WorkDirectory) -> AttemptOutcome:
        state = RequestState.DOWNLOADING
        while state is not RequestState.DONE:
            result = await self._steps[state](request, work_dir)
            logger.debug("Step %s -> %s", state.value, result.value)
            if result is StepResult.RETRY:
                continue
            if result is StepResult.RESTART:
                return AttemptOutcome.RESTART
            if result is StepResult.ABORT:
                return AttemptOutcome.ABORTED
            state = _NEXT_STATE[state]
        return AttemptOutcome.COMPLETED

    # --- steps ------------------------------------------------------------
    async def _download(self, request: VideoRequest, work_dir: WorkDirectory) -> StepResult:
        tools = self._ctx.settings.tools
        command = build_download_command(tools.yt_dlp, tools.yt_dlp_args, request.youtube_id)
        outcome = await self._ctx.runner.run(command, work_dir.path)
        decision = await into_success_or_ask(outcome, self._ctx.prompter, "yt-dlp failed", WhatToDo.all())
        return StepResult.from_decision(decision)

    async def _fingerprint(self, request: VideoRequest, work_dir: WorkDirectory) -> StepResult:
        # CONTINUE here skips whatever fingerprinting is left and goes on to the import.
        decision = await self._fingerprinting.process_directory(work_dir.path)
        return StepResult.from_decision(decision)

    async def _import(self, request: VideoRequest, work_dir: WorkDirectory) -> StepResult:
        tools = self._ctx.settings.tools
        command = build_import_command(tools.beet, tools.beet_args)
        outcome = await self._ctx.runner.run(command, work_dir.path)
        decision = await into_success_or_ask(outcome, self._ctx.prompter, "beet import failed", WhatToDo.all())
        return StepResult.from_decision(decision)

    async def _finalize(self, request: VideoRequest, work_dir: WorkDirectory) -> StepResult:
        decision = await self._ctx.latch.check()
        if decision in (WhatToDo.RESTART_REQUEST, WhatToDo.ABORT_REQUEST):
            return StepResult.from_decision(decision)

        policy = self._ctx.settings.KEEP_TMP
        if policy is KeepTmp.ALWAYS:
            keep = True
        elif policy is KeepTmp.NEVER:
            keep = False
        else:
            keep = await self._ctx.prompter.confirm(
                f"Would you like to keep the temp directory '{work_dir.path}'?", default=False
            )

        if keep:
            kept = work_dir.persist()
            typer.secho(f"Persisted directory '{kept}'", fg=typer.colors.MAGENTA)
            logger.info("Kept work directory %s", kept)
        return StepResult.ADVANCE
