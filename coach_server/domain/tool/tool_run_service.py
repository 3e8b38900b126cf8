from typing import Any, Callable, Dict, Iterable, Optional
from datetime import datetime, timedelta
import hashlib
import hmac
import secrets
import structlog

from domain.errors import ToolError, ToolInputError, ToolPermissionError, ToolRunNotFoundError
from domain.models.records import ToolRun, ToolRunStatus, utc_now
from infrastructure.observability.logging import PipelineLogger
from infrastructure.observability.metrics import MetricsCollector
from infrastructure.storage.document_store import TOOL_RUNS, DocumentStore
from .tool_executor import ServerToolExecutor
from .tool_registry import ToolOwner, ToolRegistry

logger = structlog.get_logger(__name__)
pipeline_logger = PipelineLogger("tools")


def idempotent_run_id(uid: str, tool_id: str, idempotency_key: str) -> str:
    digest = hashlib.sha256(f"{uid}:{tool_id}:{idempotency_key}".encode("utf-8")).hexdigest()
    return f"run_{digest[:24]}"


class ToolRunService:
    """Second half of the confirmation protocol.

    Once the user approves a proposed tool, the client calls ``execute``.
    Server tools run immediately. Client tools get an execution token that the
    device presents back through ``submit_result``. A repeated call with the
    same idempotency key returns the first run unchanged.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        executor: ServerToolExecutor,
        store: DocumentStore,
        metrics: Optional[MetricsCollector] = None,
        token_ttl_sec: int = 300,
        clock: Callable[[], datetime] = utc_now
    ):
        self.registry = registry
        self.executor = executor
        self.store = store
        self.metrics = metrics
        self.token_ttl_sec = token_ttl_sec
        self.clock = clock

    async def execute(
        self,
        uid: str,
        tool_id: str,
        input_data: Dict[str, Any],
        session_id: Optional[str] = None,
        request_id: Optional[str] = None,
        granted_permissions: Iterable[str] = ()
    ) -> ToolRun:
        tool = self.registry.get(tool_id)
        if tool.owner == ToolOwner.SERVER:
            # Server tools always act on the authenticated caller
            input_data = {**input_data, "uid": uid}

        self.registry.validate_input(tool_id, input_data)
        self.registry.check_permissions(tool_id, granted_permissions)

        idempotency_key = input_data.get("idempotency_key")
        if idempotency_key:
            run_id = idempotent_run_id(uid, tool_id, str(idempotency_key))
            existing = await self.store.get(TOOL_RUNS, run_id)
            if existing is not None:
                logger.info("Idempotent tool replay", tool_id=tool_id, tool_run_id=run_id)
                return ToolRun.model_validate(existing)
        else:
            run_id = f"run_{self.store.new_id()}"

        now = self.clock()
        run = ToolRun(
            id=run_id,
            uid=uid,
            session_id=session_id,
            request_id=request_id,
            tool_id=tool_id,
            owner=tool.owner.value,
            input=input_data,
            idempotency_key=idempotency_key,
            status=ToolRunStatus.AWAITING_CLIENT,
            created_at=now,
            updated_at=now,
        )

        if tool.owner == ToolOwner.CLIENT:
            run.execution_token = secrets.token_urlsafe(24)
            await self.store.set(TOOL_RUNS, run.id, run.to_document())
            pipeline_logger.log_tool_execution(tool_id, uid, status=run.status.value)
            return run

        started = self.clock()
        try:
            run.output = await self.executor.execute(tool_id, input_data)
            run.status = ToolRunStatus.SUCCEEDED
        except ToolError as e:
            run.status = ToolRunStatus.FAILED
            run.error = str(e)
            await self.store.set(TOOL_RUNS, run.id, run.to_document())
            self._record(tool_id, uid, run, started)
            raise

        await self.store.set(TOOL_RUNS, run.id, run.to_document())
        self._record(tool_id, uid, run, started)
        return run

    async def submit_result(
        self,
        uid: str,
        tool_run_id: str,
        execution_token: str,
        status: str,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> ToolRun:
        """Record the outcome a device reports for a client tool"""

        doc = await self.store.get(TOOL_RUNS, tool_run_id)
        if doc is None:
            raise ToolRunNotFoundError("tool run not found")

        run = ToolRun.model_validate(doc)
        if run.uid != uid:
            raise ToolPermissionError("tool run belongs to a different user")
        if not run.execution_token or not hmac.compare_digest(run.execution_token, execution_token):
            raise ToolPermissionError("invalid execution token")

        if run.status != ToolRunStatus.AWAITING_CLIENT:
            return run

        if self.clock() - run.created_at > timedelta(seconds=self.token_ttl_sec):
            raise ToolPermissionError("execution token expired")

        try:
            final_status = ToolRunStatus(status)
        except ValueError:
            raise ToolInputError(f"invalid status: {status}") from None
        if final_status == ToolRunStatus.AWAITING_CLIENT:
            raise ToolInputError(f"invalid status: {status}")

        now = self.clock()
        run.status = final_status
        run.output = output
        run.error = error
        run.updated_at = now
        await self.store.update(TOOL_RUNS, run.id, {
            "status": run.status.value,
            "output": output,
            "error": error,
            "updated_at": now.isoformat(),
        })
        self._record(run.tool_id, uid, run, run.created_at)
        return run

    def _record(self, tool_id: str, uid: str, run: ToolRun, started: datetime) -> None:
        duration_ms = (self.clock() - started).total_seconds() * 1000
        pipeline_logger.log_tool_execution(
            tool_id, uid, status=run.status.value, duration_ms=duration_ms, error=run.error
        )
        if self.metrics is not None:
            self.metrics.record_tool_execution(tool_id, success=run.status == ToolRunStatus.SUCCEEDED)
