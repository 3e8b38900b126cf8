from typing import Any, AsyncIterator, Dict, List, Optional
import asyncio
import structlog
from datetime import datetime, timezone

from domain.errors import StreamClosedError
from domain.models.records import NextAction, Plan, WeeklyReview
from domain.models.turn import ToolRequest
from domain.streaming.events import (
    BaseEvent, ErrorEvent, MessageDeltaEvent, MessageFinalEvent,
    NextActionsCardEvent, PlanCardEvent, PolicyNoticeEvent, RenderHints,
    StreamDoneEvent, StreamOpenEvent, ToolRequestEvent, ToolStatusEvent,
    WeeklyReviewCardEvent
)

logger = structlog.get_logger(__name__)


class StreamingHandler:
    """Per-turn event sink backed by a bounded queue.

    The pipeline task writes events, the HTTP response drains them. Exactly one
    terminal event (``error`` or ``stream.done``) is accepted; emitting anything
    after it raises ``StreamClosedError``.
    """

    def __init__(self, session_id: str, max_queue_size: int = 100):
        self.session_id = session_id
        self.queue: "asyncio.Queue[BaseEvent]" = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False
        self.event_count = 0

    async def emit(self, event: BaseEvent):
        """Put an event on the queue, waiting while the consumer catches up"""

        if self.closed:
            raise StreamClosedError(f"stream already closed, dropped {event.type.value}")

        if event.is_terminal:
            self.closed = True
            logger.debug("Stream closing", session_id=self.session_id, terminal=event.type.value)

        self.event_count += 1
        await self.queue.put(event)

    async def events(self) -> AsyncIterator[BaseEvent]:
        """Yield events until the terminal one has been delivered"""

        while True:
            event = await self.queue.get()
            yield event
            if event.is_terminal:
                return

    async def next_event(self, timeout: Optional[float] = None) -> BaseEvent:
        """Wait for the next event; raises ``asyncio.TimeoutError`` when idle"""

        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    async def send_open(self):
        await self.emit(StreamOpenEvent(
            session_id=self.session_id,
            server_time_iso=datetime.now(timezone.utc).replace(microsecond=0).isoformat()
        ))

    async def send_delta(self, token: str):
        """Stream a single model token"""

        await self.emit(MessageDeltaEvent(delta=token))

    async def send_final(self, message_id: str, text: str, max_cards: int = 3):
        await self.emit(MessageFinalEvent(
            message_id=message_id,
            text=text,
            render_hints=RenderHints(max_cards=max_cards)
        ))

    async def send_plan_card(self, plan: Plan):
        await self.emit(PlanCardEvent(plan=plan))

    async def send_next_actions_card(self, items: List[NextAction]):
        await self.emit(NextActionsCardEvent(items=items))

    async def send_weekly_review_card(self, review: WeeklyReview):
        await self.emit(WeeklyReviewCardEvent(review=review))

    async def send_tool_request(self, request: ToolRequest):
        await self.emit(ToolRequestEvent(
            request_id=request.request_id,
            tool=request.tool,
            requires_confirmation=request.requires_confirmation,
            reason=request.reason,
            payload_data=request.payload
        ))

    async def send_tool_status(
        self,
        request_id: str,
        status: str,
        execution_token: Optional[str] = None,
        expires_in_sec: Optional[int] = None
    ):
        await self.emit(ToolStatusEvent(
            request_id=request_id,
            status=status,
            execution_token=execution_token,
            expires_in_sec=expires_in_sec
        ))

    async def send_policy_notice(self, kind: str, message: str):
        await self.emit(PolicyNoticeEvent(kind=kind, message=message))

    async def send_error(self, code: str, message: str):
        """Send the terminal error event"""

        await self.emit(ErrorEvent(code=code, message=message))

    async def send_done(self):
        """Send the terminal success event"""

        await self.emit(StreamDoneEvent())

    def get_info(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "closed": self.closed,
            "event_count": self.event_count,
            "queued": self.queue.qsize()
        }
