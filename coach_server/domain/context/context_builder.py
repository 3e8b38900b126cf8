from typing import Any, Dict, List, Optional
import structlog
from pydantic import ValidationError

from domain.context.context_ranker import ContextRanker
from domain.context.memory.cache_memory_store import CacheMemoryStore
from domain.errors import ContextBuildError
from domain.models.coach_spec import CoachSpec, default_coach_spec, spec_from_legacy_blueprint
from domain.models.records import Coach, Plan, User
from domain.models.turn import ContextKey, ContextPacket, MemoryHit, Route
from domain.tool.tool_executor import active_plans_cache_key
from infrastructure.storage.document_store import COACHES, PLANS, SESSIONS, USERS, DocumentStore

logger = structlog.get_logger(__name__)

MAX_CONTEXT_PLANS = 10
SUMMARY_LOOKBACK_SESSIONS = 5


def coach_spec_cache_key(coach_id: str) -> str:
    return f"coach_spec:{coach_id}"


class ContextBuilder:
    """Assembles the per-turn context packet.

    The user and coach lookups are required; a store failure there aborts the
    turn. Everything selected by the route's context keys is optional and an
    error leaves the corresponding field empty.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: CacheMemoryStore,
        ranker: Optional[ContextRanker] = None,
        coach_ttl: float = 600,
        plans_ttl: float = 60
    ):
        self.store = store
        self.cache = cache
        self.ranker = ranker or ContextRanker()
        self.coach_ttl = coach_ttl
        self.plans_ttl = plans_ttl

    async def build(self, uid: str, coach_id: str, route: Route, message: Optional[str] = None) -> ContextPacket:
        """Build the context packet for one turn"""

        user = await self._get_user(uid)
        coach_spec = await self._get_coach_spec(coach_id)
        packet = ContextPacket(user=user, coach_spec=coach_spec)

        for key in sorted(route.context_keys, key=lambda k: k.value):
            try:
                if key == ContextKey.ACTIVE_PLANS:
                    packet.active_plans = await self._get_active_plans(uid)
                elif key == ContextKey.LAST_SESSION_SUMMARY:
                    packet.recent_summary = await self._get_last_session_summary(uid)
                elif key == ContextKey.COMMITMENTS:
                    packet.memory_hits = self._commitment_hits(user, message)
                # values already travel on the user record
            except Exception as e:
                logger.warning("Optional context fetch failed", key=key.value, uid=uid, error=str(e))

        logger.info(
            "Context built",
            uid=uid,
            coach_id=coach_id or None,
            route=route.name.value,
            active_plans=len(packet.active_plans),
            memory_hits=len(packet.memory_hits),
            has_summary=bool(packet.recent_summary)
        )
        return packet

    async def _get_user(self, uid: str) -> User:
        try:
            doc = await self.store.get(USERS, uid)
            if doc is None:
                user = User(uid=uid)
                await self.store.set(USERS, uid, user.to_document())
                logger.info("Created default user record", uid=uid)
                return user
            return User.model_validate(doc)
        except ValidationError as e:
            raise ContextBuildError("failed to parse user", e) from e
        except Exception as e:
            raise ContextBuildError("failed to get user", e) from e

    async def _get_coach_spec(self, coach_id: str) -> CoachSpec:
        if not coach_id:
            return default_coach_spec()

        try:
            spec = await self.cache.get_or_set(
                coach_spec_cache_key(coach_id),
                self.coach_ttl,
                lambda: self._load_coach_spec(coach_id)
            )
        except Exception as e:
            raise ContextBuildError("failed to get coach", e) from e

        # Cached specs are shared between turns
        return spec.model_copy(deep=True)

    async def _load_coach_spec(self, coach_id: str) -> CoachSpec:
        doc = await self.store.get(COACHES, coach_id)
        if doc is None:
            logger.info("Coach not found, using default spec", coach_id=coach_id)
            return default_coach_spec()

        coach = Coach.model_validate(doc)
        if coach.coach_spec:
            try:
                return CoachSpec.model_validate(coach.coach_spec)
            except ValidationError as e:
                logger.warning("Invalid coach spec, falling back", coach_id=coach_id, error=str(e))

        if coach.blueprint:
            return spec_from_legacy_blueprint(coach.blueprint)
        return default_coach_spec()

    async def _get_active_plans(self, uid: str) -> List[Plan]:
        async def load() -> List[Plan]:
            docs = await self.store.query(
                PLANS,
                filters={"uid": uid, "status": "active"},
                order_by="created_at",
                descending=True,
                limit=MAX_CONTEXT_PLANS
            )
            return [Plan.model_validate(doc) for doc in docs]

        return await self.cache.get_or_set(active_plans_cache_key(uid), self.plans_ttl, load)

    async def _get_last_session_summary(self, uid: str) -> str:
        sessions: List[Dict[str, Any]] = await self.store.query(
            SESSIONS,
            filters={"uid": uid},
            order_by="updated_at",
            descending=True,
            limit=SUMMARY_LOOKBACK_SESSIONS
        )
        for session in sessions:
            text = (session.get("summary") or {}).get("text")
            if text:
                return text
        return ""

    def _commitment_hits(self, user: User, message: Optional[str]) -> List[MemoryHit]:
        hits = [
            MemoryHit(type="commitment", id=commitment.id, snippet=commitment.text)
            for commitment in user.active_commitments()
        ]
        return self.ranker.rank(hits, message)
