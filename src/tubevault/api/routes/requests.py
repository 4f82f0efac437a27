import logging

from fastapi import APIRouter, Form, Request, Response
from fastapi.responses import PlainTextResponse

from ...models import VideoRequest
from ...services.worker import QueueClosed, QueueFull

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])

VIDEO_REQUEST_PATH = "/video-request"


@router.post(VIDEO_REQUEST_PATH)
async def enqueue_video_request(request: Request, youtube_id: str = Form(..., min_length=1)) -> Response:
    video_request = VideoRequest(youtube_id=youtube_id)
    try:
        request.app.state.queue.try_enqueue(video_request)
    except QueueFull as exc:
        logger.warning("Rejected %s: %s", youtube_id, exc)
        return PlainTextResponse(str(exc), status_code=503)
    except QueueClosed as exc:
        logger.error("Rejected %s: %s", youtube_id, exc)
        return PlainTextResponse(str(exc), status_code=500)
    return Response(status_code=200)
