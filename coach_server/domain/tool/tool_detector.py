from abc import ABC, abstractmethod
from typing import List, Sequence
from dataclasses import dataclass
import uuid

from domain.models.coach_spec import CoachSpec
from domain.models.turn import ToolRequest


def new_request_id() -> str:
    return f"tr_{uuid.uuid4().hex[:16]}"


class ToolIntentDetector(ABC):
    """Finds tool opportunities in a finished coach message"""

    @abstractmethod
    def detect(self, text: str, spec: CoachSpec) -> List[ToolRequest]:
        pass


@dataclass(frozen=True)
class KeywordRule:
    tool: str
    keywords: Sequence[str]
    reason: str


DEFAULT_RULES = (
    KeywordRule("calendar_event_create", ("calendar", "schedule"), "Schedule the discussed action"),
    KeywordRule("reminder_create", ("remind",), "Create a reminder for this action"),
)


class KeywordToolDetector(ToolIntentDetector):
    """Case-insensitive keyword match, one request per matching rule.

    Tools the coach is not allowed to use are skipped; the confirmation flag
    comes from the coach's confirmation list.
    """

    def __init__(self, rules: Sequence[KeywordRule] = DEFAULT_RULES):
        self.rules = list(rules)

    def detect(self, text: str, spec: CoachSpec) -> List[ToolRequest]:
        lowered = text.lower()
        requests = []
        for rule in self.rules:
            if not any(keyword in lowered for keyword in rule.keywords):
                continue
            if not spec.tools_allowed.is_allowed(rule.tool):
                continue

            request_id = new_request_id()
            requests.append(ToolRequest(
                request_id=request_id,
                tool=rule.tool,
                requires_confirmation=spec.tools_allowed.needs_confirmation(rule.tool),
                reason=rule.reason,
                payload={"idempotency_key": request_id}
            ))
        return requests
