from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import Settings
from ..core.process import CommandRunner
from ..core.prompt import Prompter
from ..core.signals import InterruptLatch
from ..integrations.acoustid_client import AcoustIDClient
from ..integrations.musicbrainz_client import MusicBrainzClient


@dataclass
class WorkerContext:
    """Everything the single worker needs, alive for the whole tty instance."""

    settings: Settings
    prompter: Prompter
    latch: InterruptLatch
    runner: CommandRunner
    acoustid: AcoustIDClient
    musicbrainz: MusicBrainzClient
    # Asked for once, kept in memory after the first successful submission.
    acoustid_user_key: Optional[str] = None

    def remember_acoustid_user_key(self, key: str) -> None:
        if self.acoustid_user_key is None:
            self.acoustid_user_key = key

    async def aclose(self) -> None:
        await self.acoustid.aclose()
        await self.musicbrainz.aclose()
