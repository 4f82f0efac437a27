from __future__ import annotations

import asyncio
import logging
import math
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import typer
from pydantic import ValidationError
from tqdm import tqdm

from ..core.process import into_success_or_ask
from ..integrations.acoustid_client import AcoustIDError
from ..integrations.musicbrainz_client import MusicBrainzClient, MusicBrainzError
from ..models import FpcalcOutput, LookupResult, Recording, WhatToDo
from ..utils.files import regular_files_in
from ..utils.iters import repeat_last
from .context import WorkerContext
from .tagging_service import TaggingService

logger = logging.getLogger(__name__)

NONE_ITEM = "<none>"
BACK_ITEM = "<back>"

# Seconds between submission status polls; the last value repeats.
SUBMISSION_WAIT_TIMES = (1, 2, 3, 5, 8)
FAILED_STATUS_PATIENCE = 3
NOT_IMPORTED_PATIENCE = 4
WAIT_TICK_SECONDS = 0.1


class Escalation(Exception):
    """Unwinds the sub-flow with a decision that the enclosing request has to handle."""

    def __init__(self, decision: WhatToDo):
        super().__init__(decision.value)
        self.decision = decision


def _red(text: str) -> str:
    return typer.style(text, fg=typer.colors.RED)


class RecordingCache:
    """MusicBrainz recordings already fetched for one candidate tree."""

    def __init__(self, client: MusicBrainzClient, prompter):
        self._client = client
        self._prompter = prompter
        self._recordings: Dict[str, Recording] = {}

    def __contains__(self, mbid: str) -> bool:
        return mbid in self._recordings

    async def fetch_all(self, mbids: Iterable[str]) -> List[Recording]:
        # May contain duplicates.
        unique = list(dict.fromkeys(mbids))
        while True:
            failed = 0
            for mbid in unique:
                if mbid in self._recordings:
                    continue
                try:
                    self._recordings[mbid] = await self._client.fetch_recording(mbid)
                except MusicBrainzError as exc:
                    failed += 1
                    typer.echo(f"Failed to fetch {self._client.recording_url(mbid)}: {exc}")
            if not failed:
                break
            retry = await self._prompter.confirm(
                _red(f"{failed} MusicBrainz API calls have failed, retry?"), default=True
            )
            if not retry:
                typer.secho(f"Continuing without {failed} recordings", fg=typer.colors.YELLOW)
                logger.warning("Dropped %s recordings after failed MusicBrainz fetches", failed)
                break
        return [self._recordings[mbid] for mbid in unique if mbid in self._recordings]


class TreeEntry:
    def __init__(self, result: LookupResult):
        self.result = result
        self.display = (
            f"Score: {typer.style(str(result.score), fg=typer.colors.CYAN, bold=True)}, "
            f"AcoustID: {result.id}, "
            f"Recordings: {typer.style(str(len(result.recordings or [])), fg=typer.colors.CYAN)}"
        )

    @property
    def recording_ids(self) -> List[str]:
        return [ref.id for ref in self.result.recordings or []]


class FingerprintService:
    """Fingerprints the downloaded files, matches them against AcoustID and tags them."""

    def __init__(
        self,
        ctx: WorkerContext,
        tagging: Optional[TaggingService] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._ctx = ctx
        self._tagging = tagging or TaggingService(ctx)
        self._sleep = sleep

    @property
    def _prompter(self):
        return self._ctx.prompter

    async def _checkpoint(self) -> None:
        decision = await self._ctx.latch.check()
        if decision in (WhatToDo.RESTART_REQUEST, WhatToDo.ABORT_REQUEST):
            raise Escalation(decision)

    async def process_directory(self, work_dir: Path) -> Optional[WhatToDo]:
        """``None`` when every selected file was handled, otherwise the decision to escalate.

        ``CONTINUE`` means the human chose to skip the rest of the fingerprinting.
        """
        names = regular_files_in(work_dir)
        if not names:
            typer.secho("No files to fingerprint.", fg=typer.colors.YELLOW)
            return None

        selections = await self._prompter.multi_select(
            f"Select files to fingerprint, if {typer.style(NONE_ITEM, bold=True)} is selected, "
            f"{typer.style('all other selections will be ignored', fg=typer.colors.RED)}",
            [NONE_ITEM, *names],
            [False, *([True] * len(names))],
        )
        if 0 in selections:
            typer.secho(f"{NONE_ITEM} selected, ignoring other selections!", fg=typer.colors.MAGENTA, bold=True)
            selections = []

        try:
            for index in selections:
                await self._checkpoint()
                await self.process_file(work_dir / names[index - 1])
        except Escalation as escalation:
            logger.info("Fingerprinting escalated: %s", escalation.decision.value)
            return escalation.decision
        return None

    async def process_file(self, filepath: Path) -> None:
        typer.secho(f"Fingerprinting '{filepath.name}'", bold=True)
        fpcalc_output = await self._fingerprint(filepath)
        duration = math.floor(fpcalc_output.duration)
        results = await self._lookup(fpcalc_output.fingerprint, duration)

        usable = [result for result in results if result.has_recordings]
        ignored = len(results) - len(usable)
        if ignored:
            typer.secho(
                f"Ignoring {ignored} matches that do not have any associated recordings!",
                fg=typer.colors.YELLOW,
            )

        selection: Optional[Recording] = None
        if usable:
            cache = RecordingCache(self._ctx.musicbrainz, self._prompter)
            selection = await self.select_recording(usable, cache)
        else:
            typer.secho("No AcoustID matches with associated recordings!", fg=typer.colors.MAGENTA)

        if selection is None:
            selection = await self.submit_fingerprint(fpcalc_output.fingerprint, duration)
        if selection is None:
            logger.info("No recording chosen for %s", filepath.name)
            return

        decision = await self._tagging.apply_recording(filepath, selection)
        if decision is not None:
            raise Escalation(decision)

    # --- fingerprint & lookup ---------------------------------------------
    async def _fingerprint(self, filepath: Path) -> FpcalcOutput:
        command = [self._ctx.settings.tools.fpcalc, "-json", str(filepath)]
        # There is nothing to continue with without a fingerprint.
        allowed = WhatToDo.all_except(WhatToDo.CONTINUE)
        while True:
            outcome = await self._ctx.runner.run(command, filepath.parent, capture_output=True)
            if outcome.success:
                try:
                    return FpcalcOutput.model_validate_json(outcome.stdout or b"")
                except ValidationError as exc:
                    logger.error("Unparsable fpcalc output for %s: %s", filepath.name, exc)
                    decision = await self._prompter.ask_what_to_do(
                        _red(f"fpcalc output for '{filepath.name}' could not be parsed."), allowed
                    )
            else:
                decision = await into_success_or_ask(
                    outcome, self._prompter, f"fpcalc failed to fingerprint '{filepath.name}'", allowed
                )
            if decision is WhatToDo.RETRY:
                continue
            raise Escalation(decision)

    async def _lookup(self, fingerprint: str, duration: int) -> List[LookupResult]:
        while True:
            await self._checkpoint()
            try:
                response = await self._ctx.acoustid.lookup(fingerprint, duration)
            except AcoustIDError as exc:
                message = f"AcoustID fingerprint lookup failed: {exc}"
            else:
                if response.status == "ok":
                    await self._checkpoint()
                    return list(response.results or [])
                message = f"AcoustID fingerprint lookup returned status '{response.status}'."
            logger.warning(message)
            await self._checkpoint()

            decision = await self._prompter.ask_what_to_do(_red(message), WhatToDo.all())
            if decision is WhatToDo.RETRY:
                continue
            raise Escalation(decision)

    # --- disambiguation tree ----------------------------------------------
    async def select_recording(self, results: Sequence[LookupResult], cache: RecordingCache) -> Optional[Recording]:
        entries = [TreeEntry(result) for result in results]
        typer.echo(f"Select correct recording, or {typer.style(NONE_ITEM, bold=True)} if none is correct")

        first_run = True
        while True:
            entry = await self._ask_top_level(first_run, entries)
            if entry is None:
                return None
            while True:
                recording = await self._ask_recordings(first_run, entry, cache)
                if recording is None:
                    first_run = False
                    break
                self._print_selected(recording)
                if await self._prompter.confirm("Confirm?", default=True):
                    return recording
                first_run = False

    async def _ask_top_level(self, first_run: bool, entries: List[TreeEntry]) -> Optional[TreeEntry]:
        threshold = self._ctx.settings.acoustid.autoselect_score
        if first_run and len(entries) == 1 and entries[0].result.score > threshold:
            typer.echo(f"{typer.style('Autoselecting', fg=typer.colors.MAGENTA)} {entries[0].display}")
            return entries[0]
        index = await self._prompter.select(
            "Select an AcoustID match", [NONE_ITEM, *(entry.display for entry in entries)], default=0
        )
        return entries[index - 1] if index > 0 else None

    async def _ask_recordings(self, first_run: bool, entry: TreeEntry, cache: RecordingCache) -> Optional[Recording]:
        await self._checkpoint()
        recordings = await cache.fetch_all(entry.recording_ids)
        await self._checkpoint()
        displays = [self._recording_display(recording) for recording in recordings]

        if first_run and len(recordings) == 1:
            typer.echo(f"{typer.style('Autoselecting', fg=typer.colors.MAGENTA)} {displays[0]}")
            return recordings[0]
        index = await self._prompter.select(
            f"Currently exploring AcoustID: {entry.result.id}", [BACK_ITEM, *displays], default=0
        )
        return recordings[index - 1] if index > 0 else None

    def _recording_display(self, recording: Recording) -> str:
        return (
            f"{self._ctx.musicbrainz.recording_url(recording.id)}; "
            f"Title: {typer.style(recording.title, fg=typer.colors.BLUE)}, "
            f"Disambiguation: {typer.style(recording.disambiguation or '', fg=typer.colors.BLUE)}, "
            f"Artists: {typer.style(recording.artists_string(), fg=typer.colors.BLUE)}"
        )

    def _print_selected(self, recording: Recording) -> None:
        def bright(text: str) -> str:
            return typer.style(text, fg=typer.colors.CYAN, bold=True)

        typer.echo()
        typer.secho("Selected:", fg=typer.colors.BLUE, bold=True)
        typer.echo(f"Recording: {self._ctx.musicbrainz.recording_url(recording.id)}")
        typer.echo(f"Title: {bright(recording.title)}")
        typer.echo(f"Disambiguation: {bright(recording.disambiguation or '')}")
        typer.echo(f"Artists: {bright(recording.artists_string())}")
        typer.echo()

    # --- submission fallback ----------------------------------------------
    async def submit_fingerprint(self, fingerprint: str, duration: int) -> Optional[Recording]:
        """Offer to submit an unmatched fingerprint; returns the recording it was bound to."""
        wants_submit = await self._prompter.confirm(
            typer.style("Would you like to submit the fingerprint?", fg=typer.colors.CYAN), default=True
        )
        if not wants_submit:
            return None

        while True:
            user_key = self._ctx.acoustid_user_key
            if user_key is None:
                user_key = await self._prompter.text("Insert the AcoustID user API key (https://acoustid.org)")
            mbid = await self._ask_recording_id()

            await self._checkpoint()
            try:
                recording = await self._ctx.musicbrainz.fetch_recording(mbid)
            except MusicBrainzError as exc:
                decision = await self._prompter.ask_what_to_do(_red(str(exc)), WhatToDo.all())
                if decision is WhatToDo.RETRY:
                    continue
                if decision is WhatToDo.CONTINUE:
                    return None
                raise Escalation(decision)

            decision = await self._submit_and_confirm(fingerprint, duration, recording, user_key)
            if decision is None:
                if self._ctx.acoustid_user_key is None:
                    typer.secho("Persisting AcoustID User Key (for current session)", fg=typer.colors.MAGENTA)
                self._ctx.remember_acoustid_user_key(user_key)
                return recording
            if decision is WhatToDo.RETRY:
                continue
            if decision is WhatToDo.CONTINUE:
                return recording
            raise Escalation(decision)

    async def _ask_recording_id(self) -> str:
        while True:
            mbid = await self._prompter.text(
                "Insert the MusicBrainz RECORDING ID that you would like to bind to the fingerprint"
            )
            confirmed = await self._prompter.confirm(
                f"{typer.style('Confirm MusicBrainz RECORDING ID', fg=typer.colors.GREEN)}: {mbid}", default=True
            )
            if confirmed:
                return mbid

    async def _submit_and_confirm(
        self, fingerprint: str, duration: int, recording: Recording, user_key: str
    ) -> Optional[WhatToDo]:
        await self._checkpoint()
        try:
            submission = await self._ctx.acoustid.submit(fingerprint, duration, recording, user_key)
        except AcoustIDError as exc:
            return await self._prompter.ask_what_to_do(_red(str(exc)), WhatToDo.all())
        await self._checkpoint()

        if submission.status != "ok" or not submission.submissions:
            return await self._prompter.ask_what_to_do(
                _red(f"AcoustID returned submission status {submission.status}."), WhatToDo.all()
            )

        acoustid_id, decision = await self._poll_submission(submission.submissions[0].id)
        if decision is not None:
            return decision

        typer.secho(f"AcoustID submission succeeded: {self._ctx.acoustid.track_url(acoustid_id)}", fg=typer.colors.GREEN)
        logger.info("Fingerprint submitted as AcoustID %s for recording %s", acoustid_id, recording.id)
        await self._prompter.pause(f"Press {typer.style('Enter', fg=typer.colors.CYAN, bold=True)} to continue...")
        return None

    async def _poll_submission(self, submission_id: int) -> Tuple[Optional[str], Optional[WhatToDo]]:
        for attempt, wait_time in enumerate(repeat_last(SUBMISSION_WAIT_TIMES)):
            await self._wait(wait_time)
            await self._checkpoint()

            try:
                status = await self._ctx.acoustid.submission_status(submission_id)
            except AcoustIDError as exc:
                failure: Optional[str] = str(exc)
            else:
                failure = None if status.status == "ok" and status.submissions else f"status '{status.status}'"

            if failure is not None:
                if attempt > FAILED_STATUS_PATIENCE:
                    decision = await self._prompter.ask_what_to_do(
                        _red("AcoustID server keeps sending failed status response."), WhatToDo.all()
                    )
                    if decision is WhatToDo.RETRY:
                        continue
                    return None, decision
                typer.echo(f"AcoustID server response {failure}, retrying...")
                continue

            entry = status.submissions[0]
            if entry.status != "imported" or entry.result is None:
                if attempt > NOT_IMPORTED_PATIENCE:
                    decision = await self._prompter.ask_what_to_do(
                        _red("AcoustID server keeps sending not-'imported' submission status."), WhatToDo.all()
                    )
                    if decision is WhatToDo.RETRY:
                        continue
                    return None, decision
                typer.echo(f"AcoustID submission entry status is '{entry.status}', retrying...")
                continue

            return entry.result.id, None
        raise AssertionError("unreachable")

    async def _wait(self, seconds: int) -> None:
        ticks = round(seconds / WAIT_TICK_SECONDS)
        with tqdm(total=ticks, desc=f"Waiting {seconds} seconds to get submit status", leave=False) as progress:
            for _ in range(ticks):
                await self._sleep(WAIT_TICK_SECONDS)
                progress.update(1)
