from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .client import RequestClientError, send_video_request
from .config import KeepTmp, Settings, get_settings
from .core.lock import InstanceLockError
from .models import UnknownUrlKind
from .tty import TtyStartupError, run_tty

app = typer.Typer(help="Archive music from YouTube into a beets library, one reviewed request at a time.")
logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")


def apply_overrides(cfg: Settings, tool_overrides: Dict[str, Any], overrides: Dict[str, Any]) -> Settings:
    """Layer command line options on top of the environment/.env settings; ``None`` means not given."""
    update = {key: value for key, value in overrides.items() if value is not None}
    tools = {key: value for key, value in tool_overrides.items() if value is not None}
    if tools:
        update["tools"] = cfg.tools.model_copy(update=tools)
    return cfg.model_copy(update=update)


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Python logging level (default from settings)"),
) -> None:
    level = (log_level or get_settings().LOG_LEVEL).upper()
    logging.getLogger().setLevel(level)


@app.command()
def tty(
    yt_dlp: Optional[str] = typer.Option(None, "--yt-dlp", help="yt-dlp executable"),
    yt_dlp_args: Optional[str] = typer.Option(None, "--yt-dlp-args", help="Extra yt-dlp arguments"),
    beet: Optional[str] = typer.Option(None, "--beet", help="beet executable"),
    beet_args: Optional[str] = typer.Option(None, "--beet-args", help="Arguments passed to beet before '.'"),
    fpcalc: Optional[str] = typer.Option(None, "--fpcalc", help="fpcalc executable"),
    ffmpeg: Optional[str] = typer.Option(None, "--ffmpeg", help="ffmpeg executable"),
    ffmpeg_loglevel: Optional[str] = typer.Option(None, "--ffmpeg-loglevel", help="ffmpeg -loglevel value"),
    max_requests: Optional[int] = typer.Option(None, "--max-requests", help="Queue capacity (clamped to 1..256)"),
    keep_tmp: Optional[KeepTmp] = typer.Option(None, "--keep-tmp", case_sensitive=False),
    port_override: Optional[int] = typer.Option(None, "--port-override", help="Listen on this port"),
    skip_lock_checks: bool = typer.Option(False, "--dangerously-skip-lock-checks"),
    lockfile: Optional[Path] = typer.Option(None, "--lockfile", help="Override the lockfile location"),
) -> None:
    """Run the interactive tty instance that processes video requests."""

    cfg = apply_overrides(
        get_settings(),
        {
            "yt_dlp": yt_dlp,
            "yt_dlp_args": yt_dlp_args,
            "beet": beet,
            "beet_args": beet_args,
            "fpcalc": fpcalc,
            "ffmpeg": ffmpeg,
            "ffmpeg_loglevel": ffmpeg_loglevel,
        },
        {
            "MAX_REQUESTS": max_requests,
            "KEEP_TMP": keep_tmp,
            "PORT_OVERRIDE": port_override,
            "SKIP_LOCK_CHECKS": skip_lock_checks or None,
            "LOCKFILE_PATH": lockfile,
        },
    )
    logger.info("Starting tty instance (queue capacity %s, keep tmp %s)", cfg.queue_capacity, cfg.KEEP_TMP.value)
    try:
        run_tty(cfg)
    except (InstanceLockError, TtyStartupError) as exc:
        _fail(str(exc))


@app.command()
def request(
    yt_url: str = typer.Option(..., "--yt-url", help="YouTube video URL"),
    port_override: Optional[int] = typer.Option(None, "--port-override", help="Port of the tty instance"),
    skip_lock_checks: bool = typer.Option(False, "--dangerously-skip-lock-checks"),
    lockfile: Optional[Path] = typer.Option(None, "--lockfile", help="Override the lockfile location"),
) -> None:
    """Send one video request to the running tty instance."""

    cfg = apply_overrides(get_settings(), {}, {"LOCKFILE_PATH": lockfile})
    try:
        video_request = send_video_request(
            yt_url,
            port_override=port_override,
            skip_lock_checks=skip_lock_checks or cfg.SKIP_LOCK_CHECKS,
            settings=cfg,
        )
    except (RequestClientError, InstanceLockError, UnknownUrlKind) as exc:
        _fail(str(exc))
        return
    typer.echo(f"Enqueued {video_request.youtube_id}")


if __name__ == "__main__":
    app()
