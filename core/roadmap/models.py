from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from core.roadmap.errors import InputValidationError

MAX_TITLE_CHARS = 200
MAX_COMMENT_CHARS = 5000


class RoadmapStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class MilestoneStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    AT_RISK = "at_risk"
    COMPLETED = "completed"
    MISSED = "missed"


class EpicStatus(str, Enum):
    BACKLOG = "backlog"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class EpicPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NICE_TO_HAVE = "nice_to_have"


class FeatureStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"
    BLOCKED = "blocked"


class TaskPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EntityKind(str, Enum):
    ROADMAP = "roadmap"
    MILESTONE = "milestone"
    EPIC = "epic"
    FEATURE = "feature"
    TASK = "task"


class Identity(BaseModel):
    user_id: str = Field(min_length=1)
    email: str | None = None
    is_guest: bool = False

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str | None) -> str | None:
        cleaned = str(value or "").strip().lower()
        return cleaned or None


def _clean_title(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    if not cleaned:
        raise ValueError("title_required")
    if len(cleaned) > MAX_TITLE_CHARS:
        raise ValueError("title_too_long")
    return cleaned


# --- records as returned by the gateway ---------------------------------


class ChecklistItem(BaseModel):
    text: str = Field(min_length=1)
    completed: bool = False


class TaskNode(BaseModel):
    id: str
    feature_id: str
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    position: int = 0
    assigned_to: str | None = None
    due_date: date | None = None
    completed_at: datetime | None = None
    checklist: list[ChecklistItem] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FeatureNode(BaseModel):
    id: str
    roadmap_id: str
    epic_id: str
    title: str
    description: str | None = None
    status: FeatureStatus = FeatureStatus.NOT_STARTED
    position: int = 0
    is_deliverable: bool = True
    estimated_hours: float | None = None
    actual_hours: float | None = None
    start_date: date | None = None
    end_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    tasks: list[TaskNode] = Field(default_factory=list)


class EpicNode(BaseModel):
    id: str
    roadmap_id: str
    title: str
    description: str | None = None
    priority: EpicPriority = EpicPriority.MEDIUM
    status: EpicStatus = EpicStatus.BACKLOG
    position: int = 0
    color: str | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    start_date: date | None = None
    due_date: date | None = None
    completed_date: date | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    features: list[FeatureNode] = Field(default_factory=list)


class MilestoneNode(BaseModel):
    id: str
    roadmap_id: str
    title: str
    description: str | None = None
    target_date: date
    completed_date: date | None = None
    status: MilestoneStatus = MilestoneStatus.NOT_STARTED
    position: int = 0
    color: str | None = None
    feature_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RoadmapRecord(BaseModel):
    id: str
    name: str
    description: str | None = None
    owner_id: str
    status: RoadmapStatus = RoadmapStatus.DRAFT
    project_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RoadmapTree(RoadmapRecord):
    current_user_role: str | None = None
    milestones: list[MilestoneNode] = Field(default_factory=list)
    epics: list[EpicNode] = Field(default_factory=list)


class CommentRecord(BaseModel):
    id: str
    entity_kind: EntityKind
    entity_id: str
    user_id: str
    content: str
    created_at: datetime | None = None


class TransferResult(BaseModel):
    success: bool
    migrated_count: int = 0


class GuestUser(BaseModel):
    user_id: str
    is_new: bool = False


# --- inputs ---------------------------------------------------------------


class RoadmapCreate(BaseModel):
    name: str
    description: str | None = None
    status: RoadmapStatus = RoadmapStatus.DRAFT
    project_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _clean_title(value)


class RoadmapUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    status: RoadmapStatus | None = None
    project_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    settings: dict[str, Any] | None = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str | None) -> str | None:
        return _clean_title(value)


class MilestoneCreate(BaseModel):
    title: str
    target_date: date
    description: str | None = None
    completed_date: date | None = None
    status: MilestoneStatus = MilestoneStatus.NOT_STARTED
    position: int | None = Field(default=None, ge=0)
    color: str | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        return _clean_title(value)


class MilestoneUpdate(BaseModel):
    title: str | None = None
    target_date: date | None = None
    description: str | None = None
    completed_date: date | None = None
    status: MilestoneStatus | None = None
    position: int | None = Field(default=None, ge=0)
    color: str | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        return _clean_title(value)


class EpicCreate(BaseModel):
    title: str = "New Epic"
    description: str | None = None
    priority: EpicPriority = EpicPriority.MEDIUM
    status: EpicStatus = EpicStatus.BACKLOG
    position: int | None = Field(default=None, ge=0)
    color: str | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    start_date: date | None = None
    due_date: date | None = None
    completed_date: date | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        return _clean_title(value)


class EpicUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: EpicPriority | None = None
    status: EpicStatus | None = None
    position: int | None = Field(default=None, ge=0)
    color: str | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    start_date: date | None = None
    due_date: date | None = None
    completed_date: date | None = None
    tags: list[str] | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        return _clean_title(value)


class FeatureCreate(BaseModel):
    epic_id: str = Field(min_length=1)
    title: str
    roadmap_id: str | None = None
    description: str | None = None
    status: FeatureStatus = FeatureStatus.NOT_STARTED
    position: int | None = Field(default=None, ge=0)
    is_deliverable: bool = True
    estimated_hours: float | None = None
    actual_hours: float | None = None
    start_date: date | None = None
    end_date: date | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        return _clean_title(value)


class FeatureUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    status: FeatureStatus | None = None
    position: int | None = Field(default=None, ge=0)
    is_deliverable: bool | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    start_date: date | None = None
    end_date: date | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        return _clean_title(value)


class TaskCreate(BaseModel):
    feature_id: str = Field(min_length=1)
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    position: int | None = Field(default=None, ge=0)
    assigned_to: str | None = None
    due_date: date | None = None
    checklist: list[ChecklistItem] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        return _clean_title(value)


class TaskUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    position: int | None = Field(default=None, ge=0)
    assigned_to: str | None = None
    due_date: date | None = None
    completed_at: datetime | None = None
    checklist: list[ChecklistItem] | None = None
    labels: list[str] | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        return _clean_title(value)


class CommentCreate(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def _check_content(cls, value: str) -> str:
        cleaned = str(value or "").strip()
        if not cleaned:
            raise ValueError("content_required")
        if len(cleaned) > MAX_COMMENT_CHARS:
            raise ValueError("content_too_long")
        return cleaned


def coerce_input(model_cls: type[BaseModel], data: Any) -> BaseModel:
    """Validate caller input into ``model_cls`` without touching the network."""
    if isinstance(data, model_cls):
        return data
    try:
        if isinstance(data, BaseModel):
            return model_cls.model_validate(data.model_dump(exclude_unset=True))
        return model_cls.model_validate(dict(data or {}))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or "input"
        message = str(first.get("msg", "invalid")).replace("Value error, ", "")
        raise InputValidationError(f"{field}:{message}", code="invalid_input") from exc


def changed_fields(update: BaseModel) -> dict[str, Any]:
    return update.model_dump(exclude_unset=True)
