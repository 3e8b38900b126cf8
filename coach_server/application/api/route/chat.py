from typing import AsyncIterator
import asyncio
import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from application.api.dependencies import ContainerDep, RateLimitedUid
from application.container import ServiceContainer
from application.streaming.sse import format_event, format_keepalive
from domain.errors import StreamTimeoutError
from domain.models.turn import TurnInput
from domain.streaming.events import ErrorEvent
from infrastructure.storage.document_store import SESSIONS

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/sessions", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class TurnRequest(BaseModel):
    message: str = Field(min_length=1, max_length=8000)


@router.post("/{session_id}/stream")
async def stream_turn(
    session_id: str,
    body: TurnRequest,
    request: Request,
    uid: RateLimitedUid,
    container: ContainerDep,
):
    """Run one coaching turn and stream its events as SSE"""

    session = await container.store.get(SESSIONS, session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session not found")
    if session.get("uid") != uid:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="session belongs to a different user")

    structlog.contextvars.bind_contextvars(session_id=session_id)
    turn = TurnInput(
        session_id=session_id,
        uid=uid,
        coach_id=session.get("coach_id") or "",
        message=body.message,
    )
    return StreamingResponse(
        event_stream(container, turn, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def event_stream(container: ServiceContainer, turn: TurnInput, request: Request) -> AsyncIterator[str]:
    """Drain the turn's event queue into SSE frames.

    Idle gaps produce keep-alive comments. The pipeline task is cancelled if
    the client goes away or the stream outlives its timeout; once the terminal
    event is written the task is left to finish its detached work.
    """

    settings = container.settings
    metrics = container.metrics
    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.stream_timeout_sec

    stream = container.pipeline.start(turn)
    metrics.increment_counter("sse.connections")
    finished = False
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("Stream timed out", timeout_sec=settings.stream_timeout_sec)
                metrics.record_pipeline_error(StreamTimeoutError.code)
                stream.task.cancel()
                yield format_event(ErrorEvent(code=StreamTimeoutError.code, message="stream timed out"))
                return

            try:
                event = await stream.handler.next_event(timeout=min(settings.stream_keepalive_sec, remaining))
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    logger.info("Client disconnected")
                    metrics.increment_counter("sse.disconnects")
                    return
                if deadline - loop.time() > 0:
                    yield format_keepalive()
                continue

            yield format_event(event)
            if event.is_terminal:
                finished = True
                return
    finally:
        if not finished and not stream.task.done():
            stream.task.cancel()
        logger.info("Stream finished", finished=finished, **stream.handler.get_info())
