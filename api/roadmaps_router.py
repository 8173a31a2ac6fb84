from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import current_identity
from api.config import settings
from api.errors import run_in_session
from core.roadmap.models import EpicCreate, Identity, MilestoneCreate, RoadmapCreate, RoadmapUpdate
from core.services import guest_service, roadmap_service
from core.storage.schema import create_session_factory

router = APIRouter(prefix="/roadmaps", tags=["roadmaps"])
session_factory = create_session_factory(settings.db_path)


class MigratePayload(BaseModel):
    guest_user_id: str = Field(min_length=1)
    target_user_id: str = Field(min_length=1)


@router.post("")
async def create_roadmap(payload: RoadmapCreate, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.create_roadmap, identity=identity, payload=payload)


@router.get("/user/{owner_id}")
async def list_roadmaps_by_owner(owner_id: str):
    items = run_in_session(session_factory, roadmap_service.list_roadmaps_by_owner, owner_id=owner_id)
    return {"items": items}


@router.post("/migrate")
async def migrate_guest_roadmaps(payload: MigratePayload, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory,
        guest_service.transfer_ownership,
        identity=identity,
        guest_user_id=payload.guest_user_id,
        target_user_id=payload.target_user_id,
    )


@router.get("/{roadmap_id}")
async def get_roadmap(roadmap_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.get_roadmap, identity=identity, roadmap_id=roadmap_id)


@router.get("/{roadmap_id}/full")
async def get_roadmap_full(roadmap_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, roadmap_service.get_roadmap_full, identity=identity, roadmap_id=roadmap_id
    )


@router.put("/{roadmap_id}")
async def update_roadmap(roadmap_id: str, payload: RoadmapUpdate, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, roadmap_service.update_roadmap, identity=identity, roadmap_id=roadmap_id, payload=payload
    )


@router.delete("/{roadmap_id}")
async def delete_roadmap(roadmap_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.delete_roadmap, identity=identity, roadmap_id=roadmap_id)


@router.post("/{roadmap_id}/milestones")
async def create_milestone(
    roadmap_id: str, payload: MilestoneCreate, identity: Identity = Depends(current_identity)
):
    return run_in_session(
        session_factory, roadmap_service.create_milestone, identity=identity, roadmap_id=roadmap_id, payload=payload
    )


@router.post("/{roadmap_id}/epics")
async def create_epic(roadmap_id: str, payload: EpicCreate, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, roadmap_service.create_epic, identity=identity, roadmap_id=roadmap_id, payload=payload
    )
