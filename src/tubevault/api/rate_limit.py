from __future__ import annotations

from fastapi import FastAPI
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.requests import Request


def _rate_limit_key(request: Request) -> str:
    # Only loopback clients reach the tty instance; the pid header tells request instances apart.
    pid = request.headers.get("x-request-pid")
    if pid:
        return f"pid:{pid}"
    return f"ip:{get_remote_address(request)}"


def init_rate_limiter(app: FastAPI, limit: str) -> Limiter:
    """Attach a limiter owned by ``app`` that applies ``limit`` to every route."""
    limiter = Limiter(key_func=_rate_limit_key, default_limits=[limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    return limiter
