from __future__ import annotations

import logging

from fastapi import FastAPI

from ..config import Settings, get_settings
from ..services.worker import RequestQueue
from .rate_limit import init_rate_limiter
from .routes.requests import router as requests_router

logger = logging.getLogger(__name__)


def create_app(queue: RequestQueue, settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="tubevault tty instance", docs_url=None, redoc_url=None, openapi_url=None)
    init_rate_limiter(app, settings.ENQUEUE_RATE_LIMIT)

    app.state.settings = settings
    app.state.queue = queue
    app.include_router(requests_router)
    logger.debug("HTTP app ready, queue capacity %s", queue.capacity)
    return app
