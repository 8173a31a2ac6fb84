from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from core.roadmap.errors import ConflictError, EntityNotFoundError, InputValidationError
from core.roadmap.models import (
    CommentCreate,
    EntityKind,
    EpicCreate,
    EpicUpdate,
    FeatureCreate,
    FeatureUpdate,
    Identity,
    MilestoneCreate,
    MilestoneUpdate,
    RoadmapCreate,
    RoadmapUpdate,
    TaskCreate,
    TaskUpdate,
    changed_fields,
)
from core.roadmap.positions import clamp_position
from core.services.access_service import (
    date_iso,
    ensure_profile,
    get_roadmap_row,
    require_role,
    to_iso,
)
from core.sharing.roles import ShareRole
from core.storage.schema import (
    MilestoneFeature,
    Roadmap,
    RoadmapComment,
    RoadmapEpic,
    RoadmapFeature,
    RoadmapMilestone,
    RoadmapTask,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid4().hex


# --- serialization -------------------------------------------------------


def serialize_roadmap(row: Roadmap) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "owner_id": row.owner_id,
        "status": row.status,
        "project_id": row.project_id,
        "start_date": date_iso(row.start_date),
        "end_date": date_iso(row.end_date),
        "settings": dict(row.settings or {}),
        "created_at": to_iso(row.created_at),
        "updated_at": to_iso(row.updated_at),
    }


def serialize_milestone(row: RoadmapMilestone) -> dict[str, Any]:
    return {
        "id": row.id,
        "roadmap_id": row.roadmap_id,
        "title": row.title,
        "description": row.description,
        "target_date": date_iso(row.target_date),
        "completed_date": date_iso(row.completed_date),
        "status": row.status,
        "position": row.position,
        "color": row.color,
        "feature_ids": [link.feature_id for link in sorted(row.feature_links, key=lambda link: link.id)],
        "created_at": to_iso(row.created_at),
        "updated_at": to_iso(row.updated_at),
    }


def serialize_task(row: RoadmapTask) -> dict[str, Any]:
    return {
        "id": row.id,
        "feature_id": row.feature_id,
        "title": row.title,
        "description": row.description,
        "status": row.status,
        "priority": row.priority,
        "position": row.position,
        "assigned_to": row.assigned_to,
        "due_date": date_iso(row.due_date),
        "completed_at": to_iso(row.completed_at),
        "checklist": list(row.checklist or []),
        "labels": list(row.labels or []),
        "created_at": to_iso(row.created_at),
        "updated_at": to_iso(row.updated_at),
    }


def serialize_feature(row: RoadmapFeature, *, with_tasks: bool = False) -> dict[str, Any]:
    data = {
        "id": row.id,
        "roadmap_id": row.roadmap_id,
        "epic_id": row.epic_id,
        "title": row.title,
        "description": row.description,
        "status": row.status,
        "position": row.position,
        "is_deliverable": bool(row.is_deliverable),
        "estimated_hours": row.estimated_hours,
        "actual_hours": row.actual_hours,
        "start_date": date_iso(row.start_date),
        "end_date": date_iso(row.end_date),
        "created_at": to_iso(row.created_at),
        "updated_at": to_iso(row.updated_at),
    }
    if with_tasks:
        data["tasks"] = [serialize_task(task) for task in sorted(row.tasks, key=_position_key)]
    return data


def serialize_epic(row: RoadmapEpic, *, with_features: bool = False) -> dict[str, Any]:
    data = {
        "id": row.id,
        "roadmap_id": row.roadmap_id,
        "title": row.title,
        "description": row.description,
        "priority": row.priority,
        "status": row.status,
        "position": row.position,
        "color": row.color,
        "estimated_hours": row.estimated_hours,
        "actual_hours": row.actual_hours,
        "start_date": date_iso(row.start_date),
        "due_date": date_iso(row.due_date),
        "completed_date": date_iso(row.completed_date),
        "tags": list(row.tags or []),
        "created_at": to_iso(row.created_at),
        "updated_at": to_iso(row.updated_at),
    }
    if with_features:
        data["features"] = [
            serialize_feature(feature, with_tasks=True) for feature in sorted(row.features, key=_position_key)
        ]
    return data


def serialize_comment(row: RoadmapComment) -> dict[str, Any]:
    return {
        "id": row.id,
        "entity_kind": row.entity_kind,
        "entity_id": row.entity_id,
        "user_id": row.user_id,
        "content": row.content,
        "created_at": to_iso(row.created_at),
    }


def _position_key(row) -> tuple[int, str]:
    return (int(row.position or 0), str(row.id))


def build_full_tree(row: Roadmap, *, role: ShareRole | None = None) -> dict[str, Any]:
    data = serialize_roadmap(row)
    data["current_user_role"] = role.value if role is not None else None
    data["milestones"] = [serialize_milestone(item) for item in sorted(row.milestones, key=_position_key)]
    data["epics"] = [serialize_epic(item, with_features=True) for item in sorted(row.epics, key=_position_key)]
    return data


# --- sibling ordering ----------------------------------------------------


def _siblings(session: Session, model, scope_column, scope_id: str):
    return session.query(model).filter(scope_column == scope_id)


def _claim_insert_position(session: Session, model, scope_column, scope_id: str, requested: int | None) -> int:
    count = _siblings(session, model, scope_column, scope_id).count()
    position = clamp_position(requested, count)
    if position < count:
        _siblings(session, model, scope_column, scope_id).filter(model.position >= position).update(
            {model.position: model.position + 1},
            synchronize_session="fetch",
        )
    return position


def _move_within_siblings(session: Session, model, scope_column, scope_id: str, row, requested: int) -> None:
    count = _siblings(session, model, scope_column, scope_id).count()
    new_position = max(0, min(int(requested), count - 1))
    old_position = int(row.position)
    if new_position == old_position:
        return
    others = _siblings(session, model, scope_column, scope_id).filter(model.id != row.id)
    if new_position > old_position:
        others.filter(model.position > old_position, model.position <= new_position).update(
            {model.position: model.position - 1},
            synchronize_session="fetch",
        )
    else:
        others.filter(model.position >= new_position, model.position < old_position).update(
            {model.position: model.position + 1},
            synchronize_session="fetch",
        )
    row.position = new_position


def _compact_after_delete(session: Session, model, scope_column, scope_id: str, removed_position: int) -> None:
    _siblings(session, model, scope_column, scope_id).filter(model.position > removed_position).update(
        {model.position: model.position - 1},
        synchronize_session="fetch",
    )


def _apply_changes(row, changes: dict[str, Any], *, skip: tuple[str, ...] = ("position",)) -> None:
    for key, value in changes.items():
        if key in skip:
            continue
        setattr(row, key, value)


def _touch_roadmap(session: Session, roadmap_id: str) -> None:
    roadmap = session.query(Roadmap).filter(Roadmap.id == roadmap_id).one_or_none()
    if roadmap is not None:
        roadmap.updated_at = _now()


def _now() -> datetime:
    return datetime.now(UTC)


def _get(session: Session, model, entity_id: str, kind: str):
    row = session.query(model).filter(model.id == entity_id).one_or_none()
    if row is None:
        raise EntityNotFoundError(f"{kind}_not_found:{entity_id}", code=f"{kind}_not_found")
    return row


# --- roadmaps ------------------------------------------------------------


def create_roadmap(session: Session, *, identity: Identity, payload: RoadmapCreate) -> dict[str, Any]:
    ensure_profile(session, identity)
    row = Roadmap(
        id=_new_id(),
        owner_id=identity.user_id,
        name=payload.name,
        description=payload.description,
        status=payload.status.value,
        project_id=payload.project_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        settings=dict(payload.settings or {}),
    )
    session.add(row)
    session.flush()
    session.refresh(row)
    logger.info("roadmap created id=%s owner=%s", row.id, row.owner_id)
    return serialize_roadmap(row)


def get_roadmap(session: Session, *, identity: Identity, roadmap_id: str) -> dict[str, Any]:
    row = get_roadmap_row(session, roadmap_id)
    require_role(session, row, identity, ShareRole.VIEWER)
    return serialize_roadmap(row)


def get_roadmap_full(session: Session, *, identity: Identity, roadmap_id: str) -> dict[str, Any]:
    row = get_roadmap_row(session, roadmap_id)
    role = require_role(session, row, identity, ShareRole.VIEWER)
    return build_full_tree(row, role=role)


def update_roadmap(
    session: Session, *, identity: Identity, roadmap_id: str, payload: RoadmapUpdate
) -> dict[str, Any]:
    row = get_roadmap_row(session, roadmap_id)
    require_role(session, row, identity, ShareRole.EDITOR)
    changes = changed_fields(payload)
    if "name" in changes and changes["name"] is None:
        raise InputValidationError("name:title_required")
    if "status" in changes and changes["status"] is not None:
        changes["status"] = changes["status"].value
    if "settings" in changes and changes["settings"] is None:
        changes["settings"] = {}
    _apply_changes(row, changes, skip=())
    row.updated_at = _now()
    session.flush()
    session.refresh(row)
    return serialize_roadmap(row)


def delete_roadmap(session: Session, *, identity: Identity, roadmap_id: str) -> dict[str, Any]:
    row = get_roadmap_row(session, roadmap_id)
    require_role(session, row, identity, ShareRole.OWNER)
    session.query(RoadmapComment).filter(RoadmapComment.roadmap_id == roadmap_id).delete()
    session.delete(row)
    session.flush()
    logger.info("roadmap deleted id=%s", roadmap_id)
    return {"success": True, "id": roadmap_id}


def list_roadmaps_by_owner(session: Session, *, owner_id: str) -> list[dict[str, Any]]:
    rows = (
        session.query(Roadmap)
        .filter(Roadmap.owner_id == owner_id)
        .order_by(Roadmap.updated_at.desc(), Roadmap.id.desc())
        .all()
    )
    return [serialize_roadmap(row) for row in rows]


# --- milestones ----------------------------------------------------------


def create_milestone(
    session: Session, *, identity: Identity, roadmap_id: str, payload: MilestoneCreate
) -> dict[str, Any]:
    roadmap = get_roadmap_row(session, roadmap_id)
    require_role(session, roadmap, identity, ShareRole.EDITOR)
    position = _claim_insert_position(
        session, RoadmapMilestone, RoadmapMilestone.roadmap_id, roadmap_id, payload.position
    )
    row = RoadmapMilestone(
        id=_new_id(),
        roadmap_id=roadmap_id,
        title=payload.title,
        description=payload.description,
        target_date=payload.target_date,
        completed_date=payload.completed_date,
        status=payload.status.value,
        position=position,
        color=payload.color,
    )
    session.add(row)
    roadmap.updated_at = _now()
    session.flush()
    session.refresh(row)
    return serialize_milestone(row)


def update_milestone(
    session: Session, *, identity: Identity, milestone_id: str, payload: MilestoneUpdate
) -> dict[str, Any]:
    row = _get(session, RoadmapMilestone, milestone_id, "milestone")
    require_role(session, get_roadmap_row(session, row.roadmap_id), identity, ShareRole.EDITOR)
    changes = changed_fields(payload)
    for required in ("title", "target_date"):
        if required in changes and changes[required] is None:
            raise InputValidationError(f"{required}:required")
    if changes.get("status") is not None:
        changes["status"] = changes["status"].value
    _apply_changes(row, changes)
    if changes.get("position") is not None:
        _move_within_siblings(
            session, RoadmapMilestone, RoadmapMilestone.roadmap_id, row.roadmap_id, row, changes["position"]
        )
    row.updated_at = _now()
    _touch_roadmap(session, row.roadmap_id)
    session.flush()
    session.refresh(row)
    return serialize_milestone(row)


def delete_milestone(session: Session, *, identity: Identity, milestone_id: str) -> dict[str, Any]:
    row = _get(session, RoadmapMilestone, milestone_id, "milestone")
    require_role(session, get_roadmap_row(session, row.roadmap_id), identity, ShareRole.EDITOR)
    roadmap_id, position = row.roadmap_id, int(row.position)
    session.delete(row)
    session.flush()
    _compact_after_delete(session, RoadmapMilestone, RoadmapMilestone.roadmap_id, roadmap_id, position)
    _touch_roadmap(session, roadmap_id)
    session.flush()
    return {"success": True, "id": milestone_id}


def link_milestone_feature(
    session: Session, *, identity: Identity, milestone_id: str, feature_id: str
) -> dict[str, Any]:
    milestone = _get(session, RoadmapMilestone, milestone_id, "milestone")
    require_role(session, get_roadmap_row(session, milestone.roadmap_id), identity, ShareRole.EDITOR)
    feature = _get(session, RoadmapFeature, feature_id, "feature")
    if feature.roadmap_id != milestone.roadmap_id:
        raise InputValidationError(f"feature_not_in_roadmap:{feature_id}")
    existing = (
        session.query(MilestoneFeature)
        .filter(MilestoneFeature.milestone_id == milestone_id, MilestoneFeature.feature_id == feature_id)
        .one_or_none()
    )
    if existing is not None:
        raise ConflictError(f"feature_already_linked:{feature_id}")
    session.add(MilestoneFeature(milestone_id=milestone_id, feature_id=feature_id))
    session.flush()
    session.refresh(milestone)
    return serialize_milestone(milestone)


def unlink_milestone_feature(
    session: Session, *, identity: Identity, milestone_id: str, feature_id: str
) -> dict[str, Any]:
    milestone = _get(session, RoadmapMilestone, milestone_id, "milestone")
    require_role(session, get_roadmap_row(session, milestone.roadmap_id), identity, ShareRole.EDITOR)
    link = (
        session.query(MilestoneFeature)
        .filter(MilestoneFeature.milestone_id == milestone_id, MilestoneFeature.feature_id == feature_id)
        .one_or_none()
    )
    if link is None:
        raise EntityNotFoundError(f"milestone_feature_not_found:{feature_id}", code="milestone_feature_not_found")
    session.delete(link)
    session.flush()
    session.refresh(milestone)
    return serialize_milestone(milestone)


# --- epics ---------------------------------------------------------------


def create_epic(session: Session, *, identity: Identity, roadmap_id: str, payload: EpicCreate) -> dict[str, Any]:
    roadmap = get_roadmap_row(session, roadmap_id)
    require_role(session, roadmap, identity, ShareRole.EDITOR)
    position = _claim_insert_position(session, RoadmapEpic, RoadmapEpic.roadmap_id, roadmap_id, payload.position)
    row = RoadmapEpic(
        id=_new_id(),
        roadmap_id=roadmap_id,
        title=payload.title,
        description=payload.description,
        priority=payload.priority.value,
        status=payload.status.value,
        position=position,
        color=payload.color,
        estimated_hours=payload.estimated_hours,
        actual_hours=payload.actual_hours,
        start_date=payload.start_date,
        due_date=payload.due_date,
        completed_date=payload.completed_date,
        tags=list(payload.tags),
    )
    session.add(row)
    roadmap.updated_at = _now()
    session.flush()
    session.refresh(row)
    return serialize_epic(row)


def update_epic(session: Session, *, identity: Identity, epic_id: str, payload: EpicUpdate) -> dict[str, Any]:
    row = _get(session, RoadmapEpic, epic_id, "epic")
    require_role(session, get_roadmap_row(session, row.roadmap_id), identity, ShareRole.EDITOR)
    changes = changed_fields(payload)
    if "title" in changes and changes["title"] is None:
        raise InputValidationError("title:title_required")
    for key in ("priority", "status"):
        if changes.get(key) is not None:
            changes[key] = changes[key].value
    if "tags" in changes and changes["tags"] is None:
        changes["tags"] = []
    _apply_changes(row, changes)
    if changes.get("position") is not None:
        _move_within_siblings(session, RoadmapEpic, RoadmapEpic.roadmap_id, row.roadmap_id, row, changes["position"])
    row.updated_at = _now()
    _touch_roadmap(session, row.roadmap_id)
    session.flush()
    session.refresh(row)
    return serialize_epic(row)


def delete_epic(session: Session, *, identity: Identity, epic_id: str) -> dict[str, Any]:
    row = _get(session, RoadmapEpic, epic_id, "epic")
    require_role(session, get_roadmap_row(session, row.roadmap_id), identity, ShareRole.EDITOR)
    roadmap_id, position = row.roadmap_id, int(row.position)
    feature_ids = [feature.id for feature in row.features]
    session.query(RoadmapComment).filter(
        RoadmapComment.entity_id.in_([epic_id, *feature_ids])
    ).delete(synchronize_session="fetch")
    session.delete(row)
    session.flush()
    _compact_after_delete(session, RoadmapEpic, RoadmapEpic.roadmap_id, roadmap_id, position)
    _touch_roadmap(session, roadmap_id)
    session.flush()
    return {"success": True, "id": epic_id}


# --- features ------------------------------------------------------------


def create_feature(session: Session, *, identity: Identity, payload: FeatureCreate) -> dict[str, Any]:
    epic = _get(session, RoadmapEpic, payload.epic_id, "epic")
    if payload.roadmap_id and payload.roadmap_id != epic.roadmap_id:
        raise InputValidationError(f"roadmap_id:epic_roadmap_mismatch:{payload.roadmap_id}")
    require_role(session, get_roadmap_row(session, epic.roadmap_id), identity, ShareRole.EDITOR)
    position = _claim_insert_position(session, RoadmapFeature, RoadmapFeature.epic_id, epic.id, payload.position)
    row = RoadmapFeature(
        id=_new_id(),
        roadmap_id=epic.roadmap_id,
        epic_id=epic.id,
        title=payload.title,
        description=payload.description,
        status=payload.status.value,
        position=position,
        is_deliverable=payload.is_deliverable,
        estimated_hours=payload.estimated_hours,
        actual_hours=payload.actual_hours,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    session.add(row)
    _touch_roadmap(session, epic.roadmap_id)
    session.flush()
    session.refresh(row)
    return serialize_feature(row)


def update_feature(
    session: Session, *, identity: Identity, feature_id: str, payload: FeatureUpdate
) -> dict[str, Any]:
    row = _get(session, RoadmapFeature, feature_id, "feature")
    require_role(session, get_roadmap_row(session, row.roadmap_id), identity, ShareRole.EDITOR)
    changes = changed_fields(payload)
    if "title" in changes and changes["title"] is None:
        raise InputValidationError("title:title_required")
    if changes.get("status") is not None:
        changes["status"] = changes["status"].value
    if "is_deliverable" in changes and changes["is_deliverable"] is None:
        changes.pop("is_deliverable")
    _apply_changes(row, changes)
    if changes.get("position") is not None:
        _move_within_siblings(session, RoadmapFeature, RoadmapFeature.epic_id, row.epic_id, row, changes["position"])
    row.updated_at = _now()
    _touch_roadmap(session, row.roadmap_id)
    session.flush()
    session.refresh(row)
    return serialize_feature(row)


def delete_feature(session: Session, *, identity: Identity, feature_id: str) -> dict[str, Any]:
    row = _get(session, RoadmapFeature, feature_id, "feature")
    require_role(session, get_roadmap_row(session, row.roadmap_id), identity, ShareRole.EDITOR)
    roadmap_id, epic_id, position = row.roadmap_id, row.epic_id, int(row.position)
    session.query(RoadmapComment).filter(RoadmapComment.entity_id == feature_id).delete(
        synchronize_session="fetch"
    )
    session.delete(row)
    session.flush()
    _compact_after_delete(session, RoadmapFeature, RoadmapFeature.epic_id, epic_id, position)
    _touch_roadmap(session, roadmap_id)
    session.flush()
    return {"success": True, "id": feature_id}


# --- tasks ---------------------------------------------------------------


def create_task(session: Session, *, identity: Identity, payload: TaskCreate) -> dict[str, Any]:
    feature = _get(session, RoadmapFeature, payload.feature_id, "feature")
    require_role(session, get_roadmap_row(session, feature.roadmap_id), identity, ShareRole.EDITOR)
    position = _claim_insert_position(session, RoadmapTask, RoadmapTask.feature_id, feature.id, payload.position)
    row = RoadmapTask(
        id=_new_id(),
        feature_id=feature.id,
        title=payload.title,
        description=payload.description,
        status=payload.status.value,
        priority=payload.priority.value,
        position=position,
        assigned_to=payload.assigned_to,
        due_date=payload.due_date,
        checklist=[item.model_dump() for item in payload.checklist],
        labels=list(payload.labels),
    )
    session.add(row)
    _touch_roadmap(session, feature.roadmap_id)
    session.flush()
    session.refresh(row)
    return serialize_task(row)


def update_task(session: Session, *, identity: Identity, task_id: str, payload: TaskUpdate) -> dict[str, Any]:
    row = _get(session, RoadmapTask, task_id, "task")
    feature = _get(session, RoadmapFeature, row.feature_id, "feature")
    require_role(session, get_roadmap_row(session, feature.roadmap_id), identity, ShareRole.EDITOR)
    changes = changed_fields(payload)
    if "title" in changes and changes["title"] is None:
        raise InputValidationError("title:title_required")
    for key in ("status", "priority"):
        if changes.get(key) is not None:
            changes[key] = changes[key].value
    for key in ("checklist", "labels"):
        if key in changes and changes[key] is None:
            changes[key] = []
    if changes.get("status") == "done" and "completed_at" not in changes and row.completed_at is None:
        changes["completed_at"] = _now()
    _apply_changes(row, changes)
    if changes.get("position") is not None:
        _move_within_siblings(session, RoadmapTask, RoadmapTask.feature_id, row.feature_id, row, changes["position"])
    row.updated_at = _now()
    _touch_roadmap(session, feature.roadmap_id)
    session.flush()
    session.refresh(row)
    return serialize_task(row)


def delete_task(session: Session, *, identity: Identity, task_id: str) -> dict[str, Any]:
    row = _get(session, RoadmapTask, task_id, "task")
    feature = _get(session, RoadmapFeature, row.feature_id, "feature")
    require_role(session, get_roadmap_row(session, feature.roadmap_id), identity, ShareRole.EDITOR)
    position = int(row.position)
    session.delete(row)
    session.flush()
    _compact_after_delete(session, RoadmapTask, RoadmapTask.feature_id, feature.id, position)
    _touch_roadmap(session, feature.roadmap_id)
    session.flush()
    return {"success": True, "id": task_id}


# --- comments ------------------------------------------------------------


def add_comment(
    session: Session,
    *,
    identity: Identity,
    entity_kind: EntityKind,
    entity_id: str,
    payload: CommentCreate,
    share_token: str | None = None,
) -> dict[str, Any]:
    if entity_kind == EntityKind.EPIC:
        roadmap_id = _get(session, RoadmapEpic, entity_id, "epic").roadmap_id
    elif entity_kind == EntityKind.FEATURE:
        roadmap_id = _get(session, RoadmapFeature, entity_id, "feature").roadmap_id
    else:
        raise InputValidationError(f"entity_kind:not_commentable:{entity_kind.value}")
    roadmap = get_roadmap_row(session, roadmap_id)
    require_role(session, roadmap, identity, ShareRole.COMMENTER, share_token=share_token)
    row = RoadmapComment(
        id=_new_id(),
        roadmap_id=roadmap_id,
        entity_kind=entity_kind.value,
        entity_id=entity_id,
        user_id=identity.user_id,
        content=payload.content,
    )
    session.add(row)
    session.flush()
    session.refresh(row)
    return serialize_comment(row)


def list_comments(
    session: Session,
    *,
    identity: Identity,
    entity_kind: EntityKind,
    entity_id: str,
    share_token: str | None = None,
) -> list[dict[str, Any]]:
    model = RoadmapEpic if entity_kind == EntityKind.EPIC else RoadmapFeature
    roadmap_id = _get(session, model, entity_id, entity_kind.value).roadmap_id
    roadmap = get_roadmap_row(session, roadmap_id)
    require_role(session, roadmap, identity, ShareRole.VIEWER, share_token=share_token)
    rows = (
        session.query(RoadmapComment)
        .filter(RoadmapComment.entity_kind == entity_kind.value, RoadmapComment.entity_id == entity_id)
        .order_by(RoadmapComment.created_at.asc(), RoadmapComment.id.asc())
        .all()
    )
    return [serialize_comment(row) for row in rows]
