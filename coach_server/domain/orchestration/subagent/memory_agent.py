from typing import Callable, List
from datetime import datetime
import uuid
import structlog

from domain.errors import ProviderError, SafetyViolation
from domain.models.records import Commitment, utc_now
from domain.models.turn import CoachOutput
from domain.safety.safety_filter import SafetyFilter
from infrastructure.llm.llm_client import LLMClient
from infrastructure.storage.document_store import SESSIONS, USERS, ArrayUnion, DocumentStore
from .base_subagent import BaseSubAgent, parse_json_response

logger = structlog.get_logger(__name__)

EMPTY_SUMMARY = "Session completed"
MAX_SUMMARY_LINES = 5

SUMMARY_PROMPT = """Summarize this coaching session in 2-5 lines. Focus on:
- Key insights
- Decisions made
- Commitments

Session:
{text}

Summary (2-5 lines):"""

COMMITMENTS_PROMPT = """Extract specific commitments or action items from this coaching session.

Session:
{text}

Return a JSON array of commitment strings:
["commitment 1", "commitment 2", ...]

Only include explicit commitments. If none, return empty array []."""

MEMORY_SUMMARY_PROMPT = """Update this user's memory summary with new insight.

Current summary:
{current}

New insight:
{insight}

Generate an updated summary (max 3-4 sentences) that incorporates the new insight."""


class MemoryConsolidator(BaseSubAgent):
    """Persists a session summary and explicit commitments after a turn.

    Runs detached from the response stream. Any exception propagates to the
    background runner, which logs it; nothing here reaches the client.
    """

    def __init__(
        self,
        llm: LLMClient,
        store: DocumentStore,
        safety: SafetyFilter,
        clock: Callable[[], datetime] = utc_now
    ):
        super().__init__("memory", "Consolidates session memory", llm)
        self.store = store
        self.safety = safety
        self.clock = clock

    async def update(self, session_id: str, uid: str, coach_output: CoachOutput) -> None:
        self.update_activity()

        summary = await self.generate_summary(coach_output.message_text)
        commitments = await self.extract_commitments(coach_output.message_text)

        now = self.clock()
        await self.store.update(SESSIONS, session_id, {
            "summary.text": summary,
            "summary.generated_at": now.isoformat(),
            "updated_at": now.isoformat(),
        })

        if commitments:
            records = [
                Commitment(id=f"commit_{uuid.uuid4().hex[:12]}", text=text, created_at=now)
                for text in commitments
            ]
            await self.store.update(USERS, uid, {
                "commitments": ArrayUnion(*[record.model_dump(mode="json") for record in records])
            })

        logger.info("Memory consolidated", session_id=session_id, uid=uid, commitments=len(commitments))

    async def generate_summary(self, text: str) -> str:
        """2-5 line summary; provider errors propagate"""

        response = await self.llm.complete(SUMMARY_PROMPT.format(text=text))
        lines = [line for line in response.strip().splitlines() if line.strip()]
        if not lines:
            return EMPTY_SUMMARY
        return self.safety.redact_sensitive_data("\n".join(lines[:MAX_SUMMARY_LINES]))

    async def extract_commitments(self, text: str) -> List[str]:
        """Explicit commitments from the reply; any failure yields none"""

        try:
            raw = parse_json_response(await self.llm.complete(COMMITMENTS_PROMPT.format(text=text)))
        except (ProviderError, ValueError) as e:
            logger.warning("Commitment extraction failed", error=str(e))
            return []

        if not isinstance(raw, list):
            return []

        commitments = []
        for item in raw:
            if not isinstance(item, str) or not item.strip():
                continue
            try:
                self.safety.validate_memory_write(item)
            except SafetyViolation:
                logger.info("Skipping commitment with sensitive data")
                continue
            commitments.append(item.strip())
        return commitments

    async def update_memory_summary(self, uid: str, insight: str) -> str:
        """Fold a new insight into the user's rolling memory summary"""

        doc = await self.store.get(USERS, uid) or {}
        response = await self.llm.complete(MEMORY_SUMMARY_PROMPT.format(
            current=doc.get("memory_summary", ""),
            insight=insight
        ))
        updated = self.safety.redact_sensitive_data(response.strip())
        await self.store.update(USERS, uid, {"memory_summary": updated})
        return updated
