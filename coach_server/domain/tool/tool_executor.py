from typing import Any, Awaitable, Callable, Dict, List, Optional
from datetime import datetime, timedelta
import re
import uuid
import structlog
from pydantic import ValidationError

from domain.context.memory.cache_memory_store import CacheMemoryStore
from domain.errors import ToolInputError, ToolPermissionError
from domain.models.records import (
    CadenceKind, Checkin, CheckinCadence, Commitment, Plan, User, utc_now
)
from domain.models.turn import MemoryHit
from infrastructure.storage.document_store import (
    ArrayUnion, CHECKINS, PLANS, USERS, DocumentStore
)

logger = structlog.get_logger(__name__)

MAX_PLAN_MILESTONES = 8
MAX_PLAN_NEXT_ACTIONS = 12
DEFAULT_LIST_LIMIT = 10
CHECKIN_CHANNELS = ("in_app", "local_notification_proposal")
PROTECTED_PLAN_FIELDS = {"id", "uid", "coach_id", "created_at"}

MEMORY_WRITE_BLOCKLIST = (
    "password", "api_key", "api key", "credit card", "credit_card",
    "ssn", "social security", "secret", "token", "private key",
)
_CARD_NUMBER = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
_SSN = re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b")


def active_plans_cache_key(uid: str) -> str:
    return f"plans:active:{uid}"


def calculate_next_run(cadence: CheckinCadence, now: datetime) -> datetime:
    """Next UTC run time; rolls to tomorrow once today's slot has passed.

    ``weekdays`` skips Saturday and Sunday. ``weekly`` advances to the first
    listed weekday (1 = Sunday ... 7 = Saturday). ``custom_cron`` runs daily.
    """

    next_run = now.replace(hour=cadence.hour, minute=cadence.minute, second=0, microsecond=0)
    if next_run < now:
        next_run += timedelta(days=1)

    if cadence.kind == CadenceKind.WEEKDAYS:
        while next_run.weekday() >= 5:
            next_run += timedelta(days=1)
    elif cadence.kind == CadenceKind.WEEKLY and cadence.weekdays:
        targets = {(day - 2) % 7 for day in cadence.weekdays}
        for _ in range(7):
            if next_run.weekday() in targets:
                break
            next_run += timedelta(days=1)

    return next_run


class ServerToolExecutor:
    """Executes server-owned tools against the document store"""

    def __init__(
        self,
        store: DocumentStore,
        cache: Optional[CacheMemoryStore] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.cache = cache
        self.clock = clock
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "memory_read": self.memory_read,
            "memory_write": self.memory_write,
            "plan_create": self.plan_create,
            "plan_update": self.plan_update,
            "plan_list_active": self.plan_list_active,
            "checkin_schedule": self.checkin_schedule,
        }

    def supports(self, tool_id: str) -> bool:
        return tool_id in self.handlers

    async def execute(self, tool_id: str, input_data: Dict[str, Any]) -> Dict[str, Any]:
        handler = self.handlers.get(tool_id)
        if handler is None:
            raise ToolInputError(f"tool {tool_id} is not executed on the server")
        return await handler(input_data)

    async def memory_read(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        user = await self._load_user(input_data["uid"])
        query = str(input_data["query"]).lower()
        limit = int(input_data.get("limit") or DEFAULT_LIST_LIMIT)

        hits: List[MemoryHit] = []
        if user.memory_summary and query in user.memory_summary.lower():
            hits.append(MemoryHit(type="session_summary", id="memory_summary", snippet=user.memory_summary, score=0.8))

        for commitment in user.commitments:
            if query in commitment.text.lower():
                hits.append(MemoryHit(type="commitment", id=commitment.id, snippet=commitment.text, score=0.7))

        for kind, entries in (("value", user.context_vault.values), ("goal", user.context_vault.goals)):
            for entry in entries:
                if query in entry.lower():
                    hits.append(MemoryHit(type="preference", id=kind, snippet=entry, score=0.6))

        return {"hits": [hit.model_dump() for hit in hits[:limit]]}

    async def memory_write(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        uid = input_data["uid"]
        patch = input_data.get("patch") or {}
        now = self.clock()
        user = await self._load_user(uid)

        commitments = []
        for item in patch.get("commitments_add") or []:
            text = item if isinstance(item, str) else (item or {}).get("text", "")
            if not text:
                raise ToolInputError("commitment text is required")
            _reject_sensitive(text)
            commitments.append(Commitment(
                id=(item.get("id") if isinstance(item, dict) else None) or f"commit_{uuid.uuid4().hex[:12]}",
                text=text,
                created_at=now,
                status=(item.get("status") if isinstance(item, dict) else None) or "active",
            ))

        redactions = set(patch.get("redactions") or [])
        if redactions:
            kept = [c.model_dump(mode="json") for c in user.commitments if c.id not in redactions]
            await self.store.update(USERS, uid, {"commitments": kept})

        updates: Dict[str, Any] = {"updated_at": now.isoformat()}
        if commitments:
            updates["commitments"] = ArrayUnion(*[c.model_dump(mode="json") for c in commitments])
        for key, value in (patch.get("preferences_set") or {}).items():
            updates[f"preferences.{key}"] = value

        await self.store.update(USERS, uid, updates)
        return {"status": "ok", "commitments_added": len(commitments), "redacted": len(redactions)}

    async def plan_create(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        uid = input_data["uid"]
        raw = dict(input_data.get("plan") or {})
        milestones = list(raw.get("milestones") or [])
        next_actions = list(raw.get("next_actions") or [])

        if len(next_actions) > MAX_PLAN_NEXT_ACTIONS:
            raise ToolInputError(f"too many next actions (max {MAX_PLAN_NEXT_ACTIONS}, got {len(next_actions)})")
        if len(milestones) > MAX_PLAN_MILESTONES:
            raise ToolInputError(f"too many milestones (max {MAX_PLAN_MILESTONES}, got {len(milestones)})")
        if raw.get("horizon") not in ("today", "week", "month", "quarter"):
            raise ToolInputError(
                f"invalid horizon: {raw.get('horizon')} (must be today, week, month, or quarter)"
            )
        if not raw.get("title"):
            raise ToolInputError("plan title is required")
        if not raw.get("objective"):
            raise ToolInputError("plan objective is required")

        raw["milestones"] = [_with_defaults(item, "milestone", index) for index, item in enumerate(milestones)]
        raw["next_actions"] = [_with_defaults(item, "action", index) for index, item in enumerate(next_actions)]

        now = self.clock()
        plan_id = self.store.new_id()
        raw.update(id=plan_id, uid=uid, coach_id=input_data.get("coach_id", ""), status="active",
                   created_at=now, updated_at=now)
        try:
            plan = Plan.model_validate(raw)
        except ValidationError as e:
            raise ToolInputError(f"invalid plan: {e.errors()[0].get('msg', 'validation failed')}") from e

        await self.store.set(PLANS, plan_id, plan.to_document())
        await self._invalidate_plans(uid)
        logger.info("Plan created", uid=uid, plan_id=plan_id)
        return {"plan_id": plan_id, "status": "created"}

    async def plan_update(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        uid = input_data["uid"]
        plan_id = input_data["plan_id"]
        updates = input_data.get("updates") or {}

        existing = await self.store.get(PLANS, plan_id)
        if existing is None:
            raise ToolInputError("plan not found")
        if existing.get("uid") != uid:
            raise ToolPermissionError("unauthorized: plan belongs to different user")

        if isinstance(updates.get("next_actions"), list) and len(updates["next_actions"]) > MAX_PLAN_NEXT_ACTIONS:
            raise ToolInputError(f"too many next actions (max {MAX_PLAN_NEXT_ACTIONS})")
        if isinstance(updates.get("milestones"), list) and len(updates["milestones"]) > MAX_PLAN_MILESTONES:
            raise ToolInputError(f"too many milestones (max {MAX_PLAN_MILESTONES})")

        changes = {key: value for key, value in updates.items() if key not in PROTECTED_PLAN_FIELDS}
        changes["updated_at"] = self.clock().isoformat()
        await self.store.update(PLANS, plan_id, changes)
        await self._invalidate_plans(uid)
        return {"status": "updated"}

    async def plan_list_active(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        limit = int(input_data.get("limit") or DEFAULT_LIST_LIMIT)
        plans = await self.store.query(
            PLANS,
            filters={"uid": input_data["uid"], "status": "active"},
            order_by="created_at",
            descending=True,
            limit=limit
        )
        return {"plans": plans}

    async def checkin_schedule(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        raw_cadence = input_data.get("cadence") or {}
        channel = input_data.get("channel")

        if raw_cadence.get("kind") not in {kind.value for kind in CadenceKind}:
            raise ToolInputError(f"invalid cadence kind: {raw_cadence.get('kind')}")
        if channel not in CHECKIN_CHANNELS:
            raise ToolInputError(f"invalid channel: {channel}")

        hour = raw_cadence.get("hour")
        minute = raw_cadence.get("minute")
        if not isinstance(hour, int) or not 0 <= hour <= 23:
            raise ToolInputError(f"invalid hour: {hour} (must be 0-23)")
        if not isinstance(minute, int) or not 0 <= minute <= 59:
            raise ToolInputError(f"invalid minute: {minute} (must be 0-59)")

        cadence = CheckinCadence.model_validate(raw_cadence)
        now = self.clock()
        checkin = Checkin(
            id=self.store.new_id(),
            uid=input_data["uid"],
            coach_id=input_data.get("coach_id", ""),
            cadence=cadence,
            channel=channel,
            next_run_at=calculate_next_run(cadence, now),
            created_at=now,
            updated_at=now,
        )
        await self.store.set(CHECKINS, checkin.id, checkin.to_document())
        return {
            "checkin_id": checkin.id,
            "status": "scheduled",
            "next_run_at": checkin.next_run_at.isoformat()
        }

    async def _load_user(self, uid: str) -> User:
        doc = await self.store.get(USERS, uid)
        if doc is None:
            raise ToolInputError("user not found")
        return User.model_validate(doc)

    async def _invalidate_plans(self, uid: str) -> None:
        if self.cache is not None:
            await self.cache.delete(active_plans_cache_key(uid))


def _reject_sensitive(text: str) -> None:
    lowered = text.lower()
    for pattern in MEMORY_WRITE_BLOCKLIST:
        if pattern in lowered:
            raise ToolInputError(f"rejected: contains sensitive pattern '{pattern}'")
    if _CARD_NUMBER.search(text):
        raise ToolInputError("rejected: contains credit card number")
    if _SSN.search(text):
        raise ToolInputError("rejected: contains SSN")


def _with_defaults(item: Any, prefix: str, index: int) -> Dict[str, Any]:
    if isinstance(item, dict):
        entry = dict(item)
    else:
        entry = {"label" if prefix == "milestone" else "title": str(item)}
    if not entry.get("id"):
        entry["id"] = f"{prefix}_{index + 1}"
    if not entry.get("status"):
        entry["status"] = "pending"
    return entry
