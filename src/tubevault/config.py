from __future__ import annotations

import tempfile
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings

# Lives in the system temp dir so that every tty/request instance on the machine agrees on it.
LOCKFILE_NAME = "a81f7509-2019-4fb9-8d72-ba66c897df34.lock"

MIN_QUEUE_CAPACITY = 1
MAX_QUEUE_CAPACITY = 256


class KeepTmp(str, Enum):
    ALWAYS = "always"
    ASK = "ask"
    NEVER = "never"


class ToolSettings(BaseModel):
    yt_dlp: str = "yt-dlp"
    # '--' and the video id are appended after these.
    yt_dlp_args: str = "--extract-audio"
    beet: str = "beet"
    # '.' is appended after these and the command runs inside the work directory.
    beet_args: str = "import -m -s"
    fpcalc: str = "fpcalc"
    ffmpeg: str = "ffmpeg"
    ffmpeg_loglevel: str = "warning"


class AcoustIDSettings(BaseModel):
    api_base: str = "https://api.acoustid.org/v2"
    # Application key of this client, not a user secret.
    client_key: str = "bHEqneqDyO"
    track_url: str = "https://acoustid.org/track"
    timeout_seconds: float = 2.0
    requests_per_second: int = 3
    max_concurrent_requests: int = 16
    autoselect_score: float = 0.95


class MusicBrainzSettings(BaseModel):
    api_base: str = "https://musicbrainz.org/ws/2"
    recording_url: str = "https://musicbrainz.org/recording"
    user_agent: str = "tubevault/0.1.0 ( https://github.com/tubevault/tubevault )"
    timeout_seconds: float = 10.0
    requests_per_second: int = 1
    max_concurrent_requests: int = 4


class Settings(BaseSettings):
    # TTY instance
    HOST: str = "127.0.0.1"
    PORT_OVERRIDE: Optional[int] = None
    # Requests waiting in the queue, not counting the one being processed.
    MAX_REQUESTS: int = 16
    KEEP_TMP: KeepTmp = KeepTmp.NEVER
    # Parent directory for work directories; None means the system temp dir.
    WORK_DIR_PARENT: Optional[Path] = None
    ENQUEUE_RATE_LIMIT: str = "120/minute"

    # Instance lock
    LOCKFILE_PATH: Path = Path(tempfile.gettempdir()) / LOCKFILE_NAME
    SKIP_LOCK_CHECKS: bool = False
    LOCK_READ_ATTEMPTS: int = 4
    LOCK_READ_DELAY_SECONDS: float = 0.2

    # Request instance
    REQUEST_TIMEOUT_SECONDS: float = 1.0

    LOG_LEVEL: str = "WARNING"

    tools: ToolSettings = ToolSettings()
    acoustid: AcoustIDSettings = AcoustIDSettings()
    musicbrainz: MusicBrainzSettings = MusicBrainzSettings()

    class Config:
        env_file = ".env"
        env_prefix = "TUBEVAULT_"
        env_nested_delimiter = "__"
        case_sensitive = True

    @property
    def queue_capacity(self) -> int:
        return max(MIN_QUEUE_CAPACITY, min(MAX_QUEUE_CAPACITY, self.MAX_REQUESTS))


@lru_cache()
def get_settings() -> Settings:
    return Settings()
