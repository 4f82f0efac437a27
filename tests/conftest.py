from __future__ import annotations

from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Iterable, List, Optional, Sequence, Tuple

import pytest

from tubevault.config import KeepTmp, Settings
from tubevault.core.process import CommandOutcome
from tubevault.core.prompt import Prompter
from tubevault.core.signals import InterruptLatch
from tubevault.models import Recording, WhatToDo
from tubevault.services.context import WorkerContext


class ScriptedPrompter(Prompter):
    """Answers prompts from a script of ``(kind, answer)`` pairs, in order."""

    def __init__(self, script: Iterable[Tuple[str, Any]] = ()):
        self.script: Deque[Tuple[str, Any]] = deque(script)
        self.calls: List[Tuple[str, str, Any]] = []

    def _next(self, kind: str, prompt: str, payload: Any = None) -> Any:
        self.calls.append((kind, prompt, payload))
        assert self.script, f"unexpected {kind} prompt: {prompt!r}"
        expected, answer = self.script.popleft()
        assert expected == kind, f"expected a {expected} prompt, got {kind}: {prompt!r}"
        return answer

    async def select(self, prompt: str, items: Sequence[str], default: int = 0) -> int:
        return self._next("select", prompt, list(items))

    async def multi_select(self, prompt: str, items: Sequence[str], defaults: Sequence[bool]) -> List[int]:
        return self._next("multi_select", prompt, (list(items), list(defaults)))

    async def confirm(self, prompt: str, default: bool = True) -> bool:
        return self._next("confirm", prompt, default)

    async def text(self, prompt: str) -> str:
        return self._next("text", prompt)

    async def pause(self, prompt: str = "Press Enter to continue...") -> None:
        self._next("pause", prompt)

    async def ask_what_to_do(self, message: str, allowed: Iterable[WhatToDo]) -> WhatToDo:
        choices = WhatToDo.ordered(allowed)
        if not choices:
            raise ValueError("empty set of allowed decisions")
        decision = self._next("what_to_do", message, choices)
        assert decision in choices, f"{decision} is not offered in {choices}"
        return decision

    def asked(self, kind: str) -> List[Tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] == kind]


Effect = Callable[[List[str], Path], None]


class FakeRunner:
    """Stands in for CommandRunner; returns scripted outcomes keyed by executable name."""

    def __init__(self, outcomes: Optional[dict] = None, effects: Optional[dict] = None):
        self.outcomes = {name: deque(items) for name, items in (outcomes or {}).items()}
        self.effects = effects or {}
        self.calls: List[Tuple[List[str], Path]] = []

    async def run(self, argv: Sequence[str], work_dir: Path, capture_output: bool = False) -> CommandOutcome:
        argv = [str(arg) for arg in argv]
        self.calls.append((argv, work_dir))
        name = argv[0]
        queued = self.outcomes.get(name)
        outcome = queued.popleft() if queued else CommandOutcome.from_returncode(0)
        effect = self.effects.get(name)
        if effect is not None and outcome.success:
            effect(argv, work_dir)
        return outcome

    def executables(self) -> List[str]:
        return [argv[0] for argv, _ in self.calls]


class FakeAcoustID:
    def __init__(self, lookups=(), submissions=(), statuses=()):
        self.lookups = deque(lookups)
        self.submissions = deque(submissions)
        self.statuses = deque(statuses)
        self.submitted: List[Tuple[str, int, str, str]] = []
        self.looked_up: List[Tuple[str, int]] = []

    def track_url(self, acoustid_id: str) -> str:
        return f"https://acoustid.org/track/{acoustid_id}"

    @staticmethod
    def _pop(queue: Deque):
        item = queue.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    async def lookup(self, fingerprint: str, duration: int):
        self.looked_up.append((fingerprint, duration))
        return self._pop(self.lookups)

    async def submit(self, fingerprint: str, duration: int, recording: Recording, user_key: str):
        self.submitted.append((fingerprint, duration, recording.id, user_key))
        return self._pop(self.submissions)

    async def submission_status(self, submission_id: int):
        return self._pop(self.statuses)

    async def aclose(self) -> None:
        pass


class FakeMusicBrainz:
    def __init__(self, recordings: Optional[dict] = None, failures: Optional[dict] = None):
        self.recordings = recordings or {}
        # mbid -> number of times the fetch fails before it succeeds
        self.failures = dict(failures or {})
        self.fetched: List[str] = []

    def recording_url(self, mbid: str) -> str:
        return f"https://musicbrainz.org/recording/{mbid}"

    async def fetch_recording(self, mbid: str) -> Recording:
        from tubevault.integrations.musicbrainz_client import MusicBrainzError

        self.fetched.append(mbid)
        if self.failures.get(mbid, 0) > 0:
            self.failures[mbid] -= 1
            raise MusicBrainzError(f"fetch of {mbid} failed")
        return self.recordings[mbid]

    async def aclose(self) -> None:
        pass


class ExitRecorder:
    def __init__(self):
        self.codes: List[int] = []

    def __call__(self, code: int) -> None:
        self.codes.append(code)


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "LOCKFILE_PATH": tmp_path / "tubevault.lock",
        "WORK_DIR_PARENT": tmp_path / "work",
        "KEEP_TMP": KeepTmp.NEVER,
    }
    values.update(overrides)
    return Settings(**values)


def make_context(
    tmp_path: Path,
    prompter: Optional[ScriptedPrompter] = None,
    runner: Optional[FakeRunner] = None,
    acoustid: Optional[FakeAcoustID] = None,
    musicbrainz: Optional[FakeMusicBrainz] = None,
    **settings_overrides,
) -> WorkerContext:
    prompter = prompter or ScriptedPrompter()
    latch = InterruptLatch(prompter, on_double_interrupt=ExitRecorder())
    return WorkerContext(
        settings=make_settings(tmp_path, **settings_overrides),
        prompter=prompter,
        latch=latch,
        runner=runner or FakeRunner(),
        acoustid=acoustid or FakeAcoustID(),
        musicbrainz=musicbrainz or FakeMusicBrainz(),
    )


def recording(mbid: str, title: str = "Song", *artists: Tuple[str, str]) -> Recording:
    return Recording.model_validate(
        {
            "id": mbid,
            "title": title,
            "artist-credit": [{"name": name, "joinphrase": join} for name, join in artists],
        }
    )


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()
