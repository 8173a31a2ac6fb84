from __future__ import annotations

from pathlib import Path

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.sql import func

Base = declarative_base()


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=True, index=True)
    full_name = Column(String(255), nullable=True)
    is_guest = Column(Boolean, nullable=False, default=False, server_default="0")
    guest_session_id = Column(String(128), nullable=True, unique=True, index=True)
    migrated_from_guest_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class Roadmap(Base):
    __tablename__ = "roadmaps"

    id = Column(String(64), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="draft")  # draft | active | paused | completed | archived
    project_id = Column(String(64), nullable=True, index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        index=True,
    )

    milestones = relationship("RoadmapMilestone", back_populates="roadmap", cascade="all, delete-orphan")
    epics = relationship("RoadmapEpic", back_populates="roadmap", cascade="all, delete-orphan")
    share = relationship("RoadmapShare", back_populates="roadmap", cascade="all, delete-orphan", uselist=False)


class RoadmapMilestone(Base):
    __tablename__ = "roadmap_milestones"

    id = Column(String(64), primary_key=True)
    roadmap_id = Column(String(64), ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    target_date = Column(Date, nullable=False)
    completed_date = Column(Date, nullable=True)
    status = Column(String(16), nullable=False, default="not_started")
    position = Column(Integer, nullable=False, default=0)
    color = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    roadmap = relationship("Roadmap", back_populates="milestones")
    feature_links = relationship("MilestoneFeature", back_populates="milestone", cascade="all, delete-orphan")

    __table_args__ = (CheckConstraint("position >= 0", name="ck_milestone_position"),)


class MilestoneFeature(Base):
    __tablename__ = "milestone_features"

    id = Column(Integer, primary_key=True, autoincrement=True)
    milestone_id = Column(
        String(64), ForeignKey("roadmap_milestones.id", ondelete="CASCADE"), nullable=False, index=True
    )
    feature_id = Column(String(64), ForeignKey("roadmap_features.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    milestone = relationship("RoadmapMilestone", back_populates="feature_links")
    feature = relationship("RoadmapFeature", back_populates="milestone_links")

    __table_args__ = (UniqueConstraint("milestone_id", "feature_id", name="uq_milestone_feature"),)


class RoadmapEpic(Base):
    __tablename__ = "roadmap_epics"

    id = Column(String(64), primary_key=True)
    roadmap_id = Column(String(64), ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(16), nullable=False, default="medium")
    status = Column(String(16), nullable=False, default="backlog")
    position = Column(Integer, nullable=False, default=0)
    color = Column(String(32), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    completed_date = Column(Date, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    roadmap = relationship("Roadmap", back_populates="epics")
    features = relationship("RoadmapFeature", back_populates="epic", cascade="all, delete-orphan")

    __table_args__ = (CheckConstraint("position >= 0", name="ck_epic_position"),)


class RoadmapFeature(Base):
    __tablename__ = "roadmap_features"

    id = Column(String(64), primary_key=True)
    roadmap_id = Column(String(64), ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False, index=True)
    epic_id = Column(String(64), ForeignKey("roadmap_epics.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="not_started")
    position = Column(Integer, nullable=False, default=0)
    is_deliverable = Column(Boolean, nullable=False, default=True, server_default="1")
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    epic = relationship("RoadmapEpic", back_populates="features")
    tasks = relationship("RoadmapTask", back_populates="feature", cascade="all, delete-orphan")
    milestone_links = relationship("MilestoneFeature", back_populates="feature", cascade="all, delete-orphan")

    __table_args__ = (CheckConstraint("position >= 0", name="ck_feature_position"),)


class RoadmapTask(Base):
    __tablename__ = "roadmap_tasks"

    id = Column(String(64), primary_key=True)
    feature_id = Column(String(64), ForeignKey("roadmap_features.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="todo")
    priority = Column(String(16), nullable=False, default="medium")
    position = Column(Integer, nullable=False, default=0)
    assigned_to = Column(String(64), nullable=True)
    due_date = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    checklist = Column(JSON, nullable=False, default=list)
    labels = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    feature = relationship("RoadmapFeature", back_populates="tasks")

    __table_args__ = (CheckConstraint("position >= 0", name="ck_task_position"),)


class RoadmapComment(Base):
    __tablename__ = "roadmap_comments"

    id = Column(String(64), primary_key=True)
    roadmap_id = Column(String(64), ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False, index=True)
    entity_kind = Column(String(16), nullable=False)  # epic | feature
    entity_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    __table_args__ = (CheckConstraint("entity_kind IN ('epic', 'feature')", name="ck_comment_entity_kind"),)


class RoadmapShare(Base):
    __tablename__ = "roadmap_shares"

    id = Column(String(64), primary_key=True)
    roadmap_id = Column(String(64), ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False, unique=True)
    share_token = Column(String(64), nullable=False, unique=True, index=True)
    created_by = Column(String(64), nullable=False)
    invited_emails = Column(JSON, nullable=False, default=list)  # [{"email": ..., "role": ...}]
    default_role = Column(String(16), nullable=False, default="viewer")
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    roadmap = relationship("Roadmap", back_populates="share")

    __table_args__ = (
        CheckConstraint("default_role IN ('viewer', 'commenter')", name="ck_share_default_role"),
    )


def _normalize_db_path(db_path: str) -> str:
    raw = str(db_path or "").strip()
    if not raw:
        return f"sqlite:///{Path('roadmap.db').resolve()}"
    if raw.startswith("sqlite:///:memory:"):
        return raw
    if raw.startswith("sqlite:///"):
        return raw
    if raw.startswith("sqlite:"):
        # Handle malformed sqlite URI inputs such as "sqlite:/roadmap.db"
        tail = raw[len("sqlite:") :].lstrip("/")
        if not tail:
            tail = "roadmap.db"
        return f"sqlite:///{Path(tail).resolve()}"
    if raw.startswith("/"):
        return f"sqlite:///{raw}"
    return f"sqlite:///{Path(raw).resolve()}"


def create_roadmap_engine(db_path: str = "sqlite:///roadmap.db"):
    normalized = _normalize_db_path(db_path)
    connect_args = {"check_same_thread": False} if normalized.startswith("sqlite:///") else {}
    engine = create_engine(normalized, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(db_path: str = "sqlite:///roadmap.db"):
    engine = create_roadmap_engine(db_path=db_path)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
