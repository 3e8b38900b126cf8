from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, Field
from enum import Enum

from domain.models.records import NextAction, Plan, WeeklyReview


class EventType(str, Enum):
    """Server-sent event types of the turn protocol"""
    STREAM_OPEN = "stream.open"
    MESSAGE_DELTA = "message.delta"
    MESSAGE_FINAL = "message.final"
    CARD_PLAN = "card.plan"
    CARD_NEXT_ACTIONS = "card.next_actions"
    CARD_WEEKLY_REVIEW = "card.weekly_review"
    TOOL_REQUEST = "tool.request"
    TOOL_STATUS = "tool.status"
    POLICY_NOTICE = "policy.notice"
    ERROR = "error"
    STREAM_DONE = "stream.done"


TERMINAL_EVENTS = frozenset({EventType.ERROR, EventType.STREAM_DONE})


class BaseEvent(BaseModel):
    """Base model for all protocol events; ``type`` is the SSE event name"""
    type: EventType

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"type"}, exclude_none=True)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS


class StreamOpenEvent(BaseEvent):
    type: Literal[EventType.STREAM_OPEN] = EventType.STREAM_OPEN
    session_id: str
    server_time_iso: str


class MessageDeltaEvent(BaseEvent):
    type: Literal[EventType.MESSAGE_DELTA] = EventType.MESSAGE_DELTA
    role: Literal["assistant"] = "assistant"
    delta: str


class RenderHints(BaseModel):
    max_cards: int = 3


class MessageFinalEvent(BaseEvent):
    type: Literal[EventType.MESSAGE_FINAL] = EventType.MESSAGE_FINAL
    message_id: str
    role: Literal["assistant"] = "assistant"
    text: str
    render_hints: RenderHints = Field(default_factory=RenderHints)


class PlanCardEvent(BaseEvent):
    type: Literal[EventType.CARD_PLAN] = EventType.CARD_PLAN
    schema_name: Literal["Plan.v1"] = Field(default="Plan.v1", serialization_alias="schema")
    plan: Plan

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"type"}, exclude_none=True, by_alias=True)


class NextActionsCardEvent(BaseEvent):
    type: Literal[EventType.CARD_NEXT_ACTIONS] = EventType.CARD_NEXT_ACTIONS
    schema_name: Literal["NextAction.v1"] = Field(default="NextAction.v1", serialization_alias="schema")
    items: List[NextAction]

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"type"}, exclude_none=True, by_alias=True)


class WeeklyReviewCardEvent(BaseEvent):
    type: Literal[EventType.CARD_WEEKLY_REVIEW] = EventType.CARD_WEEKLY_REVIEW
    schema_name: Literal["WeeklyReview.v1"] = Field(default="WeeklyReview.v1", serialization_alias="schema")
    review: WeeklyReview

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"type"}, exclude_none=True, by_alias=True)


class ToolRequestEvent(BaseEvent):
    type: Literal[EventType.TOOL_REQUEST] = EventType.TOOL_REQUEST
    request_id: str
    tool: str
    requires_confirmation: bool
    reason: str
    payload_data: Dict[str, Any] = Field(default_factory=dict, serialization_alias="payload")

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"type"}, by_alias=True)


class ToolStatusEvent(BaseEvent):
    type: Literal[EventType.TOOL_STATUS] = EventType.TOOL_STATUS
    request_id: str
    status: str
    execution_token: Optional[str] = None
    expires_in_sec: Optional[int] = None


class PolicyNoticeEvent(BaseEvent):
    type: Literal[EventType.POLICY_NOTICE] = EventType.POLICY_NOTICE
    kind: str
    message: str


class ErrorEvent(BaseEvent):
    type: Literal[EventType.ERROR] = EventType.ERROR
    code: str
    message: str


class StreamDoneEvent(BaseEvent):
    type: Literal[EventType.STREAM_DONE] = EventType.STREAM_DONE
    status: Literal["ok"] = "ok"


Event = Union[
    StreamOpenEvent,
    MessageDeltaEvent,
    MessageFinalEvent,
    PlanCardEvent,
    NextActionsCardEvent,
    WeeklyReviewCardEvent,
    ToolRequestEvent,
    ToolStatusEvent,
    PolicyNoticeEvent,
    ErrorEvent,
    StreamDoneEvent,
]
