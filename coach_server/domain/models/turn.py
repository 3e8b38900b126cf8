from typing import Dict, Any, FrozenSet, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

from domain.models.coach_spec import CoachSpec
from domain.models.records import NextAction, Plan, User, WeeklyReview


class RouteName(str, Enum):
    """Conversational intents the router can pick"""
    QUICK_NUDGE = "quick_nudge"
    DEEP_SESSION = "deep_session"
    MAKE_A_SYSTEM = "make_a_system"
    REVIEW_RETRO = "review_retro"
    SCHEDULING = "scheduling"


class ContextKey(str, Enum):
    VALUES = "values"
    ACTIVE_PLANS = "active_plans"
    LAST_SESSION_SUMMARY = "last_session_summary"
    COMMITMENTS = "commitments"


class Route(BaseModel):
    """Classification result for one turn; immutable once created"""
    model_config = ConfigDict(frozen=True)

    name: RouteName
    confidence: float = Field(ge=0.0, le=1.0)
    needs_extraction: bool
    context_keys: FrozenSet[ContextKey]
    tool_ids: FrozenSet[str]

    def is_high_confidence(self) -> bool:
        return self.confidence >= 0.7


class MemoryHit(BaseModel):
    type: str = Field(description="commitment, preference, note or session_summary")
    id: str
    snippet: str
    score: float = 0.0


class ContextPacket(BaseModel):
    """Everything the generator needs for one turn; built fresh, never persisted"""
    user: User
    coach_spec: CoachSpec
    active_plans: List[Plan] = Field(default_factory=list)
    recent_summary: str = ""
    memory_hits: List[MemoryHit] = Field(default_factory=list)


class ToolRequest(BaseModel):
    request_id: str
    tool: str
    requires_confirmation: bool
    reason: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class CoachOutput(BaseModel):
    message_text: str
    tool_requests: List[ToolRequest] = Field(default_factory=list)
    structured_data: Dict[str, Any] = Field(default_factory=dict)
    used_fallback: bool = False


class ExtractionOutput(BaseModel):
    plan: Optional[Plan] = None
    next_actions: List[NextAction] = Field(default_factory=list)
    weekly_review: Optional[WeeklyReview] = None
    parse_failed: bool = False

    def is_empty(self) -> bool:
        return self.plan is None and not self.next_actions and self.weekly_review is None


class TurnInput(BaseModel):
    session_id: str
    uid: str
    coach_id: str = ""
    message: str
