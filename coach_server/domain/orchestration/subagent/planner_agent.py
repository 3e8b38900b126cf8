from typing import Any, List, Optional, Set
import structlog
from pydantic import ValidationError

from domain.errors import ExtractionError, ProviderError
from domain.models.coach_spec import CoachSpec
from domain.models.records import Energy, Horizon, NextAction, Plan, WeeklyReview, WhenKind
from domain.models.turn import CoachOutput, ExtractionOutput
from infrastructure.llm.llm_client import LLMClient
from .base_subagent import BaseSubAgent, parse_json_response

logger = structlog.get_logger(__name__)

MAX_MILESTONES = 8
MAX_PLAN_NEXT_ACTIONS = 12
MAX_NEXT_ACTIONS = 7

_ENERGIES = {energy.value for energy in Energy}
_WHEN_KINDS = {kind.value for kind in WhenKind}
_HORIZONS = {horizon.value for horizon in Horizon}
_REVIEW_FIELDS = ("wins", "misses", "root_causes", "next_week_focus", "commitments")

EXTRACTION_PROMPT = """Extract structured data from this coaching response.

Coach response:
{text}

Extract any of the following that are present and return them as one JSON
object with the keys "plan", "next_actions" and "weekly_review":

1. plan (if the coach created a plan):
{{
  "title": "string",
  "objective": "string",
  "horizon": "today" | "week" | "month" | "quarter",
  "milestones": [
    {{
      "label": "string",
      "due_date_hint": "string",
      "success_metric": "string"
    }}
  ],
  "next_actions": [...]
}}

2. next_actions (if the coach suggested specific actions):
[
  {{
    "id": "string",
    "title": "string",
    "duration_min": number,
    "energy": "low" | "medium" | "high",
    "when": {{
      "kind": "now" | "today_window" | "schedule_exact",
      "start_iso": "ISO8601 string (optional)",
      "end_iso": "ISO8601 string (optional)"
    }}
  }}
]

3. weekly_review (if this was a review session):
{{
  "wins": ["string"],
  "misses": ["string"],
  "root_causes": ["string"],
  "next_week_focus": ["string"],
  "commitments": [...]
}}

Constraints:
- Max 8 milestones per plan
- Max 12 next actions per plan
- Max 7 next actions in standalone list

Respond with JSON only. If nothing to extract, return empty object {{}}."""

NEXT_ACTIONS_PROMPT = """Extract next actions from this coaching response.

Coach response:
{text}

Return a JSON array of next actions:
[
  {{
    "id": "string",
    "title": "string",
    "duration_min": number,
    "energy": "low" | "medium" | "high",
    "when": {{
      "kind": "now" | "today_window" | "schedule_exact"
    }}
  }}
]

Max 7 actions. If none found, return empty array []."""


def _choice(value: Any, allowed: Set[str], default: Any) -> Any:
    return value if isinstance(value, str) and value in allowed else default


def normalize_next_actions(raw: Any, limit: int, prefix: str) -> List[NextAction]:
    """Cap, fill missing ids by position and coerce invalid enum values"""

    if not isinstance(raw, list):
        return []

    actions = []
    for index, item in enumerate(raw[:limit]):
        if not isinstance(item, dict) or not item.get("title"):
            continue

        when = item.get("when") if isinstance(item.get("when"), dict) else {}
        if _choice(when.get("kind"), _WHEN_KINDS, None) is None:
            when = {**when, "kind": WhenKind.NOW.value}

        try:
            duration = int(item.get("duration_min") or 0)
        except (TypeError, ValueError, OverflowError):
            duration = 0

        try:
            actions.append(NextAction(
                id=str(item.get("id") or f"{prefix}_{index + 1}"),
                title=str(item["title"]),
                duration_min=duration,
                energy=_choice(item.get("energy"), _ENERGIES, Energy.MEDIUM),
                when=when,
            ))
        except ValidationError as e:
            logger.debug("Dropping malformed next action", index=index, error=str(e))
    return actions


def normalize_plan(raw: Any) -> Optional[Plan]:
    if not isinstance(raw, dict) or not raw.get("title"):
        return None

    raw_milestones = raw.get("milestones")
    if not isinstance(raw_milestones, list):
        raw_milestones = []

    milestones = []
    for index, item in enumerate(raw_milestones[:MAX_MILESTONES]):
        if not isinstance(item, dict) or not item.get("label"):
            continue
        milestones.append({**item, "id": item.get("id") or f"milestone_{index + 1}"})

    try:
        return Plan(
            title=str(raw["title"]),
            objective=str(raw.get("objective") or ""),
            horizon=_choice(raw.get("horizon"), _HORIZONS, Horizon.WEEK),
            milestones=milestones,
            next_actions=normalize_next_actions(raw.get("next_actions"), MAX_PLAN_NEXT_ACTIONS, "action"),
        )
    except ValidationError as e:
        logger.debug("Dropping malformed plan", error=str(e))
        return None


def normalize_weekly_review(raw: Any) -> Optional[WeeklyReview]:
    if not isinstance(raw, dict):
        return None

    fields = {name: raw[name] for name in _REVIEW_FIELDS if isinstance(raw.get(name), list)}
    if not any(fields.values()):
        return None
    try:
        return WeeklyReview(**fields)
    except ValidationError as e:
        logger.debug("Dropping malformed weekly review", error=str(e))
        return None


class PlannerAgent(BaseSubAgent):
    """Extracts plans, next actions and weekly reviews from a finished reply"""

    def __init__(self, llm: LLMClient):
        super().__init__("planner", "Extracts structured coaching artifacts", llm)

    async def generate(self, coach_output: CoachOutput, spec: CoachSpec) -> ExtractionOutput:
        """Run the extraction call.

        Raises ``ExtractionError`` when the provider fails. Output that is not
        a JSON object yields an empty result flagged with ``parse_failed``.
        Caps are applied regardless of what the model returned.
        """

        self.update_activity()
        try:
            response = await self.llm.complete(EXTRACTION_PROMPT.format(text=coach_output.message_text))
        except ProviderError as e:
            raise ExtractionError(f"extraction call failed: {e}") from e

        try:
            raw = parse_json_response(response)
        except ValueError as e:
            logger.warning("Extraction response is not JSON", error=str(e))
            return ExtractionOutput(parse_failed=True)

        if not isinstance(raw, dict):
            logger.warning("Extraction response is not an object", kind=type(raw).__name__)
            return ExtractionOutput(parse_failed=True)

        output = ExtractionOutput(
            plan=normalize_plan(raw.get("plan")),
            next_actions=normalize_next_actions(raw.get("next_actions"), MAX_NEXT_ACTIONS, "na"),
            weekly_review=normalize_weekly_review(raw.get("weekly_review")),
        )
        logger.info(
            "Extraction complete",
            coach=spec.identity.name,
            has_plan=output.plan is not None,
            next_actions=len(output.next_actions),
            has_review=output.weekly_review is not None
        )
        return output

    async def extract_next_actions(self, text: str) -> List[NextAction]:
        """Extract only a standalone next-action list"""

        self.update_activity()
        try:
            response = await self.llm.complete(NEXT_ACTIONS_PROMPT.format(text=text))
        except ProviderError as e:
            raise ExtractionError(f"extraction call failed: {e}") from e

        try:
            raw = parse_json_response(response)
        except ValueError:
            return []
        return normalize_next_actions(raw, MAX_NEXT_ACTIONS, "na")
