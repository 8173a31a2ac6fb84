from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from api.auth import current_identity
from api.config import settings
from api.errors import run_in_session
from core.roadmap.models import (
    CommentCreate,
    EntityKind,
    EpicUpdate,
    FeatureCreate,
    FeatureUpdate,
    Identity,
    MilestoneUpdate,
    TaskCreate,
    TaskUpdate,
)
from core.services import roadmap_service
from core.storage.schema import create_session_factory

router = APIRouter(tags=["hierarchy"])
session_factory = create_session_factory(settings.db_path)


class LinkFeaturePayload(BaseModel):
    feature_id: str = Field(min_length=1)


# --- milestones ----------------------------------------------------------


@router.put("/milestones/{milestone_id}")
async def update_milestone(
    milestone_id: str, payload: MilestoneUpdate, identity: Identity = Depends(current_identity)
):
    return run_in_session(
        session_factory,
        roadmap_service.update_milestone,
        identity=identity,
        milestone_id=milestone_id,
        payload=payload,
    )


@router.delete("/milestones/{milestone_id}")
async def delete_milestone(milestone_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, roadmap_service.delete_milestone, identity=identity, milestone_id=milestone_id
    )


@router.post("/milestones/{milestone_id}/features")
async def link_milestone_feature(
    milestone_id: str, payload: LinkFeaturePayload, identity: Identity = Depends(current_identity)
):
    return run_in_session(
        session_factory,
        roadmap_service.link_milestone_feature,
        identity=identity,
        milestone_id=milestone_id,
        feature_id=payload.feature_id,
    )


@router.delete("/milestones/{milestone_id}/features/{feature_id}")
async def unlink_milestone_feature(
    milestone_id: str, feature_id: str, identity: Identity = Depends(current_identity)
):
    return run_in_session(
        session_factory,
        roadmap_service.unlink_milestone_feature,
        identity=identity,
        milestone_id=milestone_id,
        feature_id=feature_id,
    )


# --- epics ---------------------------------------------------------------


@router.put("/epics/{epic_id}")
async def update_epic(epic_id: str, payload: EpicUpdate, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, roadmap_service.update_epic, identity=identity, epic_id=epic_id, payload=payload
    )


@router.delete("/epics/{epic_id}")
async def delete_epic(epic_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.delete_epic, identity=identity, epic_id=epic_id)


# --- features ------------------------------------------------------------


@router.post("/features")
async def create_feature(payload: FeatureCreate, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.create_feature, identity=identity, payload=payload)


@router.put("/features/{feature_id}")
async def update_feature(feature_id: str, payload: FeatureUpdate, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, roadmap_service.update_feature, identity=identity, feature_id=feature_id, payload=payload
    )


@router.delete("/features/{feature_id}")
async def delete_feature(feature_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.delete_feature, identity=identity, feature_id=feature_id)


# --- tasks ---------------------------------------------------------------


@router.post("/tasks")
async def create_task(payload: TaskCreate, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.create_task, identity=identity, payload=payload)


@router.put("/tasks/{task_id}")
async def update_task(task_id: str, payload: TaskUpdate, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, roadmap_service.update_task, identity=identity, task_id=task_id, payload=payload
    )


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(session_factory, roadmap_service.delete_task, identity=identity, task_id=task_id)


# --- comments ------------------------------------------------------------


def _add_comment(kind: EntityKind, entity_id: str, payload: CommentCreate, identity: Identity, share_token: str | None):
    return run_in_session(
        session_factory,
        roadmap_service.add_comment,
        identity=identity,
        entity_kind=kind,
        entity_id=entity_id,
        payload=payload,
        share_token=share_token,
    )


def _list_comments(kind: EntityKind, entity_id: str, identity: Identity, share_token: str | None):
    items = run_in_session(
        session_factory,
        roadmap_service.list_comments,
        identity=identity,
        entity_kind=kind,
        entity_id=entity_id,
        share_token=share_token,
    )
    return {"items": items}


@router.post("/epics/{epic_id}/comments")
async def add_epic_comment(
    epic_id: str,
    payload: CommentCreate,
    identity: Identity = Depends(current_identity),
    x_share_token: str | None = Header(default=None),
):
    return _add_comment(EntityKind.EPIC, epic_id, payload, identity, x_share_token)


@router.get("/epics/{epic_id}/comments")
async def list_epic_comments(
    epic_id: str,
    identity: Identity = Depends(current_identity),
    x_share_token: str | None = Header(default=None),
):
    return _list_comments(EntityKind.EPIC, epic_id, identity, x_share_token)


@router.post("/features/{feature_id}/comments")
async def add_feature_comment(
    feature_id: str,
    payload: CommentCreate,
    identity: Identity = Depends(current_identity),
    x_share_token: str | None = Header(default=None),
):
    return _add_comment(EntityKind.FEATURE, feature_id, payload, identity, x_share_token)


@router.get("/features/{feature_id}/comments")
async def list_feature_comments(
    feature_id: str,
    identity: Identity = Depends(current_identity),
    x_share_token: str | None = Header(default=None),
):
    return _list_comments(EntityKind.FEATURE, feature_id, identity, x_share_token)
