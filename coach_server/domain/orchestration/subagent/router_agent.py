from typing import Dict, FrozenSet, NamedTuple
import math
import structlog

from domain.errors import ProviderError, RouterError
from domain.models.turn import ContextKey, Route, RouteName
from infrastructure.llm.llm_client import LLMClient
from .base_subagent import BaseSubAgent, parse_json_response

logger = structlog.get_logger(__name__)


class RouteProfile(NamedTuple):
    context_keys: FrozenSet[ContextKey]
    needs_extraction: bool
    tool_ids: FrozenSet[str]


ROUTE_TABLE: Dict[RouteName, RouteProfile] = {
    RouteName.QUICK_NUDGE: RouteProfile(
        frozenset({ContextKey.VALUES}),
        False,
        frozenset()
    ),
    RouteName.DEEP_SESSION: RouteProfile(
        frozenset({ContextKey.VALUES, ContextKey.ACTIVE_PLANS, ContextKey.LAST_SESSION_SUMMARY}),
        True,
        frozenset({"memory_read", "memory_write", "plan_create"})
    ),
    RouteName.MAKE_A_SYSTEM: RouteProfile(
        frozenset({ContextKey.VALUES, ContextKey.ACTIVE_PLANS}),
        True,
        frozenset({"plan_create", "checkin_schedule"})
    ),
    RouteName.REVIEW_RETRO: RouteProfile(
        frozenset({ContextKey.ACTIVE_PLANS, ContextKey.COMMITMENTS, ContextKey.LAST_SESSION_SUMMARY}),
        True,
        frozenset({"memory_read", "plan_update"})
    ),
    RouteName.SCHEDULING: RouteProfile(
        frozenset({ContextKey.ACTIVE_PLANS}),
        False,
        frozenset({"calendar_event_create", "reminder_create", "local_notification_schedule"})
    ),
}

DEFAULT_CONFIDENCE = 0.5

CLASSIFICATION_PROMPT = """Classify the user's intent into one of these routes:

Routes:
1. quick_nudge: User wants a quick tip, nudge, or simple action (< 5 min)
   - Examples: "I'm stuck", "What should I do next?", "Give me a quick win"

2. deep_session: User wants to work through a problem deeply
   - Examples: "I need to figure out my strategy", "Help me think through this", "I'm overwhelmed"

3. make_a_system: User wants to build a repeatable system or routine
   - Examples: "Help me create a morning routine", "I need a system for X", "How do I make this automatic?"

4. review_retro: User wants to review progress or do a retrospective
   - Examples: "Let's review my week", "What did I accomplish?", "Weekly review time"

5. scheduling: User wants to schedule something specific
   - Examples: "Remind me to X", "Add this to my calendar", "Schedule a check-in"

User message: "{message}"

Respond with JSON only:
{{
  "route": "quick_nudge" | "deep_session" | "make_a_system" | "review_retro" | "scheduling",
  "confidence": 0.0-1.0,
  "needs_planner": true | false
}}

Be decisive. If unsure, default to "quick_nudge" with confidence 0.5."""


def build_route(name: RouteName, confidence: float) -> Route:
    """Route for ``name``; context keys, extraction and tools come from the table"""

    profile = ROUTE_TABLE[name]
    return Route(
        name=name,
        confidence=min(max(confidence, 0.0), 1.0),
        needs_extraction=profile.needs_extraction,
        context_keys=profile.context_keys,
        tool_ids=profile.tool_ids
    )


def default_route() -> Route:
    return build_route(RouteName.QUICK_NUDGE, DEFAULT_CONFIDENCE)


class RouterAgent(BaseSubAgent):
    """Classifies a user message into one of the five coaching intents.

    The model only picks the intent and a confidence. Everything else about
    the route is fixed by ``ROUTE_TABLE``, so a model answering
    ``needs_planner: false`` for a deep session does not disable extraction.
    """

    def __init__(self, llm: LLMClient):
        super().__init__("router", "Classifies user intent", llm)

    async def classify(self, message: str, uid: str) -> Route:
        self.update_activity()

        try:
            response = await self.llm.complete(CLASSIFICATION_PROMPT.format(message=message))
        except ProviderError as e:
            raise RouterError("classification failed", e) from e

        try:
            raw = parse_json_response(response)
            name = RouteName(raw["route"])
        except (ValueError, KeyError, TypeError) as e:
            logger.info("Unusable classification, using default route", uid=uid, error=str(e))
            return default_route()

        try:
            confidence = float(raw.get("confidence", DEFAULT_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE
        if not math.isfinite(confidence):
            confidence = DEFAULT_CONFIDENCE

        route = build_route(name, confidence)
        logger.info(
            "Message classified",
            uid=uid,
            route=route.name.value,
            confidence=route.confidence,
            high_confidence=route.is_high_confidence()
        )
        return route
