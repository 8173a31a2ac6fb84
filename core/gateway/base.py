from __future__ import annotations

from pydantic import BaseModel

from core.roadmap.models import (
    CommentCreate,
    CommentRecord,
    EntityKind,
    EpicCreate,
    EpicNode,
    EpicUpdate,
    FeatureCreate,
    FeatureNode,
    FeatureUpdate,
    GuestUser,
    Identity,
    MilestoneCreate,
    MilestoneNode,
    MilestoneUpdate,
    RoadmapCreate,
    RoadmapRecord,
    RoadmapTree,
    RoadmapUpdate,
    TaskCreate,
    TaskNode,
    TaskUpdate,
    TransferResult,
)
from core.sharing.roles import ShareConfig, SharedRoadmap, ShareRole, ShareSettings


class ShareLookup(BaseModel):
    roadmap: RoadmapTree
    role: ShareRole
    share: ShareSettings


class RoadmapGateway:
    """Authoritative store for roadmap records, acting for one identity.

    Every method is a single round trip. Failures raise ``RoadmapError``
    subclasses; nothing is retried here.
    """

    name = "base"

    def __init__(self, identity: Identity | None = None) -> None:
        self.identity = identity

    def with_identity(self, identity: Identity) -> "RoadmapGateway":
        raise NotImplementedError

    # roadmaps
    async def create_roadmap(self, payload: RoadmapCreate) -> RoadmapRecord:
        raise NotImplementedError

    async def get_roadmap(self, roadmap_id: str) -> RoadmapRecord:
        raise NotImplementedError

    async def get_roadmap_full(self, roadmap_id: str) -> RoadmapTree:
        raise NotImplementedError

    async def update_roadmap(self, roadmap_id: str, changes: RoadmapUpdate) -> RoadmapRecord:
        raise NotImplementedError

    async def delete_roadmap(self, roadmap_id: str) -> None:
        raise NotImplementedError

    async def list_roadmaps_by_owner(self, owner_id: str) -> list[RoadmapRecord]:
        raise NotImplementedError

    # milestones
    async def create_milestone(self, roadmap_id: str, payload: MilestoneCreate) -> MilestoneNode:
        raise NotImplementedError

    async def update_milestone(self, milestone_id: str, changes: MilestoneUpdate) -> MilestoneNode:
        raise NotImplementedError

    async def delete_milestone(self, milestone_id: str) -> None:
        raise NotImplementedError

    async def link_milestone_feature(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        raise NotImplementedError

    async def unlink_milestone_feature(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        raise NotImplementedError

    # epics / features / tasks
    async def create_epic(self, roadmap_id: str, payload: EpicCreate) -> EpicNode:
        raise NotImplementedError

    async def update_epic(self, epic_id: str, changes: EpicUpdate) -> EpicNode:
        raise NotImplementedError

    async def delete_epic(self, epic_id: str) -> None:
        raise NotImplementedError

    async def create_feature(self, payload: FeatureCreate) -> FeatureNode:
        raise NotImplementedError

    async def update_feature(self, feature_id: str, changes: FeatureUpdate) -> FeatureNode:
        raise NotImplementedError

    async def delete_feature(self, feature_id: str) -> None:
        raise NotImplementedError

    async def create_task(self, payload: TaskCreate) -> TaskNode:
        raise NotImplementedError

    async def update_task(self, task_id: str, changes: TaskUpdate) -> TaskNode:
        raise NotImplementedError

    async def delete_task(self, task_id: str) -> None:
        raise NotImplementedError

    # comments
    async def add_comment(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        payload: CommentCreate,
        *,
        share_token: str | None = None,
    ) -> CommentRecord:
        raise NotImplementedError

    async def list_comments(
        self, entity_kind: EntityKind, entity_id: str, *, share_token: str | None = None
    ) -> list[CommentRecord]:
        raise NotImplementedError

    # sharing
    async def get_share_settings(self, roadmap_id: str) -> ShareSettings | None:
        raise NotImplementedError

    async def upsert_share_settings(self, roadmap_id: str, config: ShareConfig) -> ShareSettings:
        raise NotImplementedError

    async def disable_share_settings(self, roadmap_id: str) -> None:
        raise NotImplementedError

    async def resolve_share_token(self, token: str) -> ShareLookup:
        raise NotImplementedError

    async def list_shared_with_me(self) -> list[SharedRoadmap]:
        raise NotImplementedError

    # guests / migration
    async def create_guest_user(self, session_id: str) -> GuestUser:
        raise NotImplementedError

    async def get_guest_user_id(self, session_id: str) -> str | None:
        raise NotImplementedError

    async def transfer_ownership(self, guest_user_id: str, target_user_id: str) -> TransferResult:
        raise NotImplementedError
