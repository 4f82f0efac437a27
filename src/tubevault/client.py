from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import httpx

from .api.routes.requests import VIDEO_REQUEST_PATH
from .config import Settings, get_settings
from .core.lock import ensure_tty_running_and_read_port
from .models import VideoRequest

logger = logging.getLogger(__name__)


class RequestClientError(RuntimeError):
    pass


def resolve_port(settings: Settings, port_override: Optional[int], skip_lock_checks: bool) -> int:
    if port_override is not None:
        if skip_lock_checks:
            logger.warning("Skipping lock check!")
        logger.info("Using manually specified port %s", port_override)
        return port_override
    if skip_lock_checks:
        raise RequestClientError("The lockfile check is set to be skipped, but no port has been specified!")
    return ensure_tty_running_and_read_port(
        settings.LOCKFILE_PATH,
        attempts=settings.LOCK_READ_ATTEMPTS,
        delay=settings.LOCK_READ_DELAY_SECONDS,
    )


@dataclass
class TtyClient:
    port: int
    host: str = "127.0.0.1"
    timeout_seconds: float = 1.0
    transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def send(self, video_request: VideoRequest) -> None:
        headers = {"X-Request-Pid": str(os.getpid())}
        with httpx.Client(base_url=self.base_url, timeout=self.timeout_seconds, transport=self.transport) as client:
            try:
                response = client.post(
                    VIDEO_REQUEST_PATH,
                    data={"youtube_id": video_request.youtube_id},
                    headers=headers,
                )
            except httpx.HTTPError as exc:
                raise RequestClientError(f"Could not reach the tty instance at {self.base_url}: {exc}") from exc

        if response.is_success:
            logger.info("Enqueued %s on %s", video_request.youtube_id, self.base_url)
            return
        body = response.text or "<empty tty instance response>"
        raise RequestClientError(
            f"TTY instance ({self.base_url}) rejected {video_request.youtube_id} "
            f"(http code: {response.status_code}); {body}"
        )


def send_video_request(
    yt_url: str,
    port_override: Optional[int] = None,
    skip_lock_checks: bool = False,
    settings: Optional[Settings] = None,
) -> VideoRequest:
    settings = settings or get_settings()
    port = resolve_port(settings, port_override, skip_lock_checks)
    video_request = VideoRequest.from_yt_url(yt_url)
    TtyClient(port=port, host=settings.HOST, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS).send(video_request)
    return video_request
