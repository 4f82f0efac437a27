from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, ConfigDict, Field

_YOUTUBE_HOSTS = ("youtube.com", "youtube-nocookie.com")
_SHORT_HOSTS = ("youtu.be",)
_ID_PATH_KINDS = ("watch", "v", "embed", "e", "shorts")


class UnknownUrlKind(ValueError):
    """Raised when a URL is not one of the supported YouTube URL shapes."""

    def __init__(self, url: str):
        super().__init__(f"Unknown YouTube URL kind: {url!r}")
        self.url = url


class VideoRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    youtube_id: str = Field(..., min_length=1)

    @classmethod
    def from_yt_url(cls, youtube_url: str) -> "VideoRequest":
        youtube_id = _extract_youtube_id(youtube_url)
        if not youtube_id:
            raise UnknownUrlKind(youtube_url)
        return cls(youtube_id=youtube_id)


def _extract_youtube_id(youtube_url: str) -> Optional[str]:
    try:
        parsed = urlparse(youtube_url.strip())
        host = (parsed.hostname or "").lower()
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None

    segments = [segment for segment in parsed.path.split("/") if segment]

    if host.endswith(_YOUTUBE_HOSTS):
        # youtube.com/watch?v=ID&foo=bar
        if len(segments) == 1 and segments[0] == "watch":
            values = parse_qs(parsed.query).get("v")
            return values[0] if values else None
        # youtube.com/(watch|v|embed|e|shorts)/ID?foo=bar
        if len(segments) == 2 and segments[0] in _ID_PATH_KINDS:
            return segments[1]
        return None

    if host.endswith(_SHORT_HOSTS):
        # youtu.be/ID?foo=bar
        if len(segments) == 1:
            return segments[0]
        return None

    return None


class WhatToDo(str, Enum):
    RETRY = "retry"
    RESTART_REQUEST = "restart_request"
    CONTINUE = "continue"
    ABORT_REQUEST = "abort_request"

    @property
    def label(self) -> str:
        return _WHAT_TO_DO_LABELS[self]

    @classmethod
    def all(cls) -> List["WhatToDo"]:
        return list(cls)

    @classmethod
    def all_except(cls, excluded: "WhatToDo") -> List["WhatToDo"]:
        return [member for member in cls if member is not excluded]

    @classmethod
    def ordered(cls, decisions: Iterable["WhatToDo"]) -> List["WhatToDo"]:
        """Deduplicate and sort into declaration order, whatever order the caller used."""
        wanted = set(decisions)
        return [member for member in cls if member in wanted]


_WHAT_TO_DO_LABELS = {
    WhatToDo.RETRY: "Retry",
    WhatToDo.RESTART_REQUEST: "Restart video request",
    WhatToDo.CONTINUE: "Continue...",
    WhatToDo.ABORT_REQUEST: "Abort the video request",
}


class ArtistCredit(BaseModel):
    name: str
    joinphrase: str = ""


class Recording(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = ""
    disambiguation: Optional[str] = None
    artist_credit: List[ArtistCredit] = Field(default_factory=list, alias="artist-credit")

    def artists_string(self) -> str:
        return artists_to_string(self.artist_credit)


def artists_to_string(credits: Iterable[ArtistCredit]) -> str:
    # MusicBrainz join phrases already carry their surrounding spaces (" & ", " feat. ").
    return "".join(f"{credit.name}{credit.joinphrase or ''}" for credit in credits).strip()


class FpcalcOutput(BaseModel):
    duration: float
    fingerprint: str


class RecordingRef(BaseModel):
    id: str


class LookupResult(BaseModel):
    id: str
    score: float
    recordings: Optional[List[RecordingRef]] = None

    @property
    def has_recordings(self) -> bool:
        return bool(self.recordings)


class LookupResponse(BaseModel):
    status: str
    results: Optional[List[LookupResult]] = None


class SubmissionEntry(BaseModel):
    index: Optional[str] = None
    id: int
    status: str


class SubmitResponse(BaseModel):
    status: str
    submissions: Optional[List[SubmissionEntry]] = None


class SubmissionResult(BaseModel):
    id: str


class SubmissionStatusEntry(BaseModel):
    id: int
    status: str
    result: Optional[SubmissionResult] = None


class SubmissionStatusResponse(BaseModel):
    status: str
    submissions: Optional[List[SubmissionStatusEntry]] = None
