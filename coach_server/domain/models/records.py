from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Record(BaseModel):
    """Base for documents persisted in the document store"""
    model_config = ConfigDict(extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Energy(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WhenKind(str, Enum):
    NOW = "now"
    TODAY_WINDOW = "today_window"
    SCHEDULE_EXACT = "schedule_exact"


class Horizon(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"


class When(BaseModel):
    kind: WhenKind = WhenKind.NOW
    start_iso: Optional[str] = None
    end_iso: Optional[str] = None


class NextAction(BaseModel):
    id: str
    title: str
    duration_min: int = 0
    energy: Energy = Energy.MEDIUM
    when: When = Field(default_factory=When)
    status: Optional[str] = None


class Milestone(BaseModel):
    id: Optional[str] = None
    label: str
    due_date_hint: str = ""
    success_metric: str = ""
    status: Optional[str] = None


class Plan(Record):
    """A coaching plan; persisted once it is created through the plan tools"""
    id: Optional[str] = None
    uid: Optional[str] = None
    coach_id: Optional[str] = None
    title: str
    objective: str = ""
    horizon: Horizon = Horizon.WEEK
    milestones: List[Milestone] = Field(default_factory=list)
    next_actions: List[NextAction] = Field(default_factory=list)
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Commitment(BaseModel):
    id: str
    text: str
    created_at: datetime = Field(default_factory=utc_now)
    status: str = "active"


class WeeklyReview(BaseModel):
    wins: List[str] = Field(default_factory=list)
    misses: List[str] = Field(default_factory=list)
    root_causes: List[str] = Field(default_factory=list)
    next_week_focus: List[str] = Field(default_factory=list)
    commitments: List[Any] = Field(default_factory=list)


class ContextVault(BaseModel):
    values: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    current_projects: List[str] = Field(default_factory=list)


class Preferences(BaseModel):
    model_config = ConfigDict(extra="allow")

    include_context: bool = True


class User(Record):
    uid: str
    display_name: str = ""
    email: str = ""
    context_vault: ContextVault = Field(default_factory=ContextVault)
    preferences: Preferences = Field(default_factory=Preferences)
    commitments: List[Commitment] = Field(default_factory=list)
    memory_summary: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def active_commitments(self) -> List[Commitment]:
        return [c for c in self.commitments if c.status == "active"]


class Coach(Record):
    id: str
    owner_uid: str = ""
    visibility: str = "private"
    title: str = ""
    promise: str = ""
    tags: List[str] = Field(default_factory=list)
    blueprint: Dict[str, Any] = Field(default_factory=dict)
    coach_spec: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class SessionSummary(BaseModel):
    text: str = ""
    generated_at: Optional[datetime] = None


class Session(Record):
    id: str
    uid: str
    coach_id: Optional[str] = None
    title: str = ""
    mode: str = "quick"
    summary: Optional[SessionSummary] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CadenceKind(str, Enum):
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKLY = "weekly"
    CUSTOM_CRON = "custom_cron"


class CheckinCadence(BaseModel):
    kind: CadenceKind
    hour: int = 9
    minute: int = 0
    weekdays: List[int] = Field(default_factory=list, description="1 = Sunday ... 7 = Saturday")
    cron: Optional[str] = None


class Checkin(Record):
    id: str
    uid: str
    coach_id: str = ""
    cadence: CheckinCadence
    channel: str
    next_run_at: datetime
    status: str = "active"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ToolRunStatus(str, Enum):
    AWAITING_CLIENT = "awaiting_client"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ToolRun(Record):
    id: str
    uid: str
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    tool_id: str
    owner: str
    input: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    status: ToolRunStatus
    execution_token: Optional[str] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
