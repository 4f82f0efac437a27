from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from .. import __version__
from ..config import AcoustIDSettings
from ..models import (
    LookupResponse,
    Recording,
    SubmissionStatusResponse,
    SubmitResponse,
)
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class AcoustIDError(RuntimeError):
    """Transport failure or undecodable response from the AcoustID web service."""


@dataclass
class AcoustIDClient:
    settings: AcoustIDSettings = field(default_factory=AcoustIDSettings)
    client: Optional[httpx.AsyncClient] = None
    _limiter: RateLimiter = field(init=False)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.settings.timeout_seconds)
        self._limiter = RateLimiter(
            max_calls=self.settings.requests_per_second,
            period=1.0,
            max_concurrent=self.settings.max_concurrent_requests,
        )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    def track_url(self, acoustid_id: str) -> str:
        return f"{self.settings.track_url}/{acoustid_id}"

    async def lookup(self, fingerprint: str, duration: int) -> LookupResponse:
        params = [
            ("client", self.settings.client_key),
            ("format", "json"),
            ("fingerprint", fingerprint),
            ("meta", "recordings"),
            ("duration", str(duration)),
        ]
        payload = await self._request("POST", "/lookup", params)
        return self._parse(LookupResponse, payload)

    async def submit(self, fingerprint: str, duration: int, recording: Recording, user_key: str) -> SubmitResponse:
        params = [
            ("format", "json"),
            ("client", self.settings.client_key),
            ("clientversion", __version__),
            ("user", user_key),
            ("duration.0", str(duration)),
            ("fingerprint.0", fingerprint),
            ("mbid.0", recording.id),
            ("track.0", recording.title),
        ]
        artists = recording.artists_string()
        if artists:
            params.append(("artist.0", artists))
        payload = await self._request("POST", "/submit", params)
        return self._parse(SubmitResponse, payload)

    async def submission_status(self, submission_id: int) -> SubmissionStatusResponse:
        params = [
            ("format", "json"),
            ("client", self.settings.client_key),
            ("clientversion", __version__),
            ("id", str(submission_id)),
        ]
        payload = await self._request("GET", "/submission_status", params)
        return self._parse(SubmissionStatusResponse, payload)

    # --- internal helpers -------------------------------------------------
    async def _request(self, method: str, path: str, params: List[Tuple[str, str]]) -> Dict[str, Any]:
        url = f"{self.settings.api_base}{path}"
        async with self._limiter:
            try:
                response = await self.client.request(method, url, params=params)
                # AcoustID reports most failures as {"status": "error"} bodies, keep those.
                if response.status_code >= 500:
                    response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("AcoustID %s %s failed: %s", method, path, exc)
                raise AcoustIDError(f"AcoustID request to {path} failed: {exc}") from exc

    @staticmethod
    def _parse(model, payload: Dict[str, Any]):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise AcoustIDError(f"Unexpected AcoustID response: {exc}") from exc
