from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from api.config import settings
from api.errors import run_in_session
from core.services import guest_service
from core.storage.schema import create_session_factory

router = APIRouter(prefix="/guests", tags=["guests"])
session_factory = create_session_factory(settings.db_path)


class GuestCreatePayload(BaseModel):
    session_id: str


@router.post("")
async def create_guest_user(payload: GuestCreatePayload):
    return run_in_session(session_factory, guest_service.create_guest_user, session_id=payload.session_id)


@router.get("/session/{session_id}")
async def get_guest_by_session(session_id: str):
    user_id = run_in_session(session_factory, guest_service.get_guest_user_id, session_id=session_id)
    return {"user_id": user_id}


@router.get("/session/{session_id}/pending")
async def pending_guest_roadmaps(session_id: str):
    return run_in_session(session_factory, guest_service.pending_guest_roadmaps, session_id=session_id)
