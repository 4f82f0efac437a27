from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx
from pydantic import ValidationError

from ..config import MusicBrainzSettings
from ..models import Recording
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class MusicBrainzError(RuntimeError):
    pass


@dataclass
class MusicBrainzClient:
    settings: MusicBrainzSettings = field(default_factory=MusicBrainzSettings)
    client: Optional[httpx.AsyncClient] = None
    _limiter: RateLimiter = field(init=False)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=self.settings.timeout_seconds,
                headers={"User-Agent": self.settings.user_agent, "Accept": "application/json"},
            )
        self._limiter = RateLimiter(
            max_calls=self.settings.requests_per_second,
            period=1.0,
            max_concurrent=self.settings.max_concurrent_requests,
        )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    def recording_url(self, mbid: str) -> str:
        return f"{self.settings.recording_url}/{mbid}"

    async def fetch_recording(self, mbid: str) -> Recording:
        url = f"{self.settings.api_base}/recording/{mbid}"
        async with self._limiter:
            try:
                response = await self.client.get(url, params={"inc": "artists", "fmt": "json"})
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("MusicBrainz recording %s fetch failed: %s", mbid, exc)
                raise MusicBrainzError(f"MusicBrainz request for recording {mbid} failed: {exc}") from exc
        try:
            return Recording.model_validate(payload)
        except ValidationError as exc:
            raise MusicBrainzError(f"Unexpected MusicBrainz response for {mbid}: {exc}") from exc
