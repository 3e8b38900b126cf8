from typing import Any, Dict, List, Literal, Optional
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from application.api.dependencies import ContainerDep, CurrentUid, RateLimitedUid
from domain.errors import ToolError
from domain.models.records import ToolRun, ToolRunStatus

router = APIRouter(prefix="/v1/tools", tags=["tools"])


class ExecuteToolRequest(BaseModel):
    tool_id: str
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    granted_permissions: List[str] = Field(default_factory=list)


class ToolResultRequest(BaseModel):
    tool_run_id: str
    execution_token: str
    status: Literal["succeeded", "failed"]
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def _run_response(run: ToolRun, token_ttl_sec: int) -> Dict[str, Any]:
    response: Dict[str, Any] = {
        "tool_run_id": run.id,
        "tool_id": run.tool_id,
        "status": run.status.value,
    }
    if run.output is not None:
        response["output"] = run.output
    if run.error:
        response["error"] = run.error
    if run.status == ToolRunStatus.AWAITING_CLIENT and run.execution_token:
        response["execution_token"] = run.execution_token
        response["expires_in_sec"] = token_ttl_sec
    return response


@router.get("")
async def list_tools(uid: CurrentUid, container: ContainerDep):
    return {"tools": [tool.describe() for tool in container.registry.list()]}


@router.post("/execute")
async def execute_tool(body: ExecuteToolRequest, uid: RateLimitedUid, container: ContainerDep):
    """Execute a tool the user has approved"""

    try:
        run = await container.tool_runs.execute(
            uid,
            body.tool_id,
            body.input,
            session_id=body.session_id,
            request_id=body.request_id,
            granted_permissions=body.granted_permissions,
        )
    except ToolError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    return _run_response(run, container.settings.tool_confirmation_ttl_sec)


@router.post("/result")
async def submit_tool_result(body: ToolResultRequest, uid: CurrentUid, container: ContainerDep):
    """Record the outcome of a client-executed tool"""

    try:
        run = await container.tool_runs.submit_result(
            uid,
            body.tool_run_id,
            body.execution_token,
            body.status,
            output=body.output,
            error=body.error,
        )
    except ToolError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    return {"tool_run_id": run.id, "status": run.status.value}
