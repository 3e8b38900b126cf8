from typing import Optional
from fastapi import APIRouter, status
from pydantic import BaseModel

from application.api.dependencies import ContainerDep, CurrentUid
from domain.models.records import Session
from infrastructure.storage.document_store import SESSIONS

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    coach_id: Optional[str] = None
    title: str = ""
    mode: str = "quick"


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(body: CreateSessionRequest, uid: CurrentUid, container: ContainerDep):
    session = Session(
        id=container.store.new_id(),
        uid=uid,
        coach_id=body.coach_id,
        title=body.title,
        mode=body.mode,
    )
    await container.store.set(SESSIONS, session.id, session.to_document())

    return {
        "session_id": session.id,
        "coach_id": session.coach_id,
        "created_at": session.created_at.isoformat(),
        "stream_url": f"/v1/sessions/{session.id}/stream",
    }
