from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from core.gateway.base import RoadmapGateway, ShareLookup
from core.roadmap.errors import AuthorizationError, GatewayError, RoadmapError
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
from core.services import guest_service, roadmap_service, share_service
from core.sharing.roles import ShareConfig, SharedRoadmap, ShareSettings

logger = logging.getLogger(__name__)


class InProcessGateway(RoadmapGateway):
    """Gateway backed directly by the SQLAlchemy service layer.

    Each call opens its own session, commits on success and rolls back on
    any error. Work runs in a worker thread so the event loop never blocks
    on the database.
    """

    name = "in_process"

    def __init__(
        self,
        session_factory,
        identity: Identity | None = None,
        *,
        share_base_url: str | None = None,
    ) -> None:
        super().__init__(identity)
        self._session_factory = session_factory
        self._share_base_url = share_base_url

    def with_identity(self, identity: Identity) -> "InProcessGateway":
        return InProcessGateway(self._session_factory, identity, share_base_url=self._share_base_url)

    def _run(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
        session = self._session_factory()
        try:
            result = fn(session, **kwargs)
            session.commit()
            return result
        except RoadmapError:
            session.rollback()
            raise
        except Exception as exc:
            session.rollback()
            logger.exception("in-process gateway call failed: %s", getattr(fn, "__name__", fn))
            raise GatewayError(f"gateway_server_error:{exc}", code="gateway_server_error") from exc
        finally:
            session.close()

    async def _call(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._run, fn, **kwargs)

    def _who(self) -> Identity:
        if self.identity is None:
            raise AuthorizationError("identity_required")
        return self.identity

    # roadmaps
    async def create_roadmap(self, payload: RoadmapCreate) -> RoadmapRecord:
        data = await self._call(roadmap_service.create_roadmap, identity=self._who(), payload=payload)
        return RoadmapRecord.model_validate(data)

    async def get_roadmap(self, roadmap_id: str) -> RoadmapRecord:
        data = await self._call(roadmap_service.get_roadmap, identity=self._who(), roadmap_id=roadmap_id)
        return RoadmapRecord.model_validate(data)

    async def get_roadmap_full(self, roadmap_id: str) -> RoadmapTree:
        data = await self._call(roadmap_service.get_roadmap_full, identity=self._who(), roadmap_id=roadmap_id)
        return RoadmapTree.model_validate(data)

    async def update_roadmap(self, roadmap_id: str, changes: RoadmapUpdate) -> RoadmapRecord:
        data = await self._call(
            roadmap_service.update_roadmap, identity=self._who(), roadmap_id=roadmap_id, payload=changes
        )
        return RoadmapRecord.model_validate(data)

    async def delete_roadmap(self, roadmap_id: str) -> None:
        await self._call(roadmap_service.delete_roadmap, identity=self._who(), roadmap_id=roadmap_id)

    async def list_roadmaps_by_owner(self, owner_id: str) -> list[RoadmapRecord]:
        rows = await self._call(roadmap_service.list_roadmaps_by_owner, owner_id=owner_id)
        return [RoadmapRecord.model_validate(row) for row in rows]

    # milestones
    async def create_milestone(self, roadmap_id: str, payload: MilestoneCreate) -> MilestoneNode:
        data = await self._call(
            roadmap_service.create_milestone, identity=self._who(), roadmap_id=roadmap_id, payload=payload
        )
        return MilestoneNode.model_validate(data)

    async def update_milestone(self, milestone_id: str, changes: MilestoneUpdate) -> MilestoneNode:
        data = await self._call(
            roadmap_service.update_milestone, identity=self._who(), milestone_id=milestone_id, payload=changes
        )
        return MilestoneNode.model_validate(data)

    async def delete_milestone(self, milestone_id: str) -> None:
        await self._call(roadmap_service.delete_milestone, identity=self._who(), milestone_id=milestone_id)

    async def link_milestone_feature(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        data = await self._call(
            roadmap_service.link_milestone_feature,
            identity=self._who(),
            milestone_id=milestone_id,
            feature_id=feature_id,
        )
        return MilestoneNode.model_validate(data)

    async def unlink_milestone_feature(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        data = await self._call(
            roadmap_service.unlink_milestone_feature,
            identity=self._who(),
            milestone_id=milestone_id,
            feature_id=feature_id,
        )
        return MilestoneNode.model_validate(data)

    # epics / features / tasks
    async def create_epic(self, roadmap_id: str, payload: EpicCreate) -> EpicNode:
        data = await self._call(
            roadmap_service.create_epic, identity=self._who(), roadmap_id=roadmap_id, payload=payload
        )
        return EpicNode.model_validate(data)

    async def update_epic(self, epic_id: str, changes: EpicUpdate) -> EpicNode:
        data = await self._call(roadmap_service.update_epic, identity=self._who(), epic_id=epic_id, payload=changes)
        return EpicNode.model_validate(data)

    async def delete_epic(self, epic_id: str) -> None:
        await self._call(roadmap_service.delete_epic, identity=self._who(), epic_id=epic_id)

    async def create_feature(self, payload: FeatureCreate) -> FeatureNode:
        data = await self._call(roadmap_service.create_feature, identity=self._who(), payload=payload)
        return FeatureNode.model_validate(data)

    async def update_feature(self, feature_id: str, changes: FeatureUpdate) -> FeatureNode:
        data = await self._call(
            roadmap_service.update_feature, identity=self._who(), feature_id=feature_id, payload=changes
        )
        return FeatureNode.model_validate(data)

    async def delete_feature(self, feature_id: str) -> None:
        await self._call(roadmap_service.delete_feature, identity=self._who(), feature_id=feature_id)

    async def create_task(self, payload: TaskCreate) -> TaskNode:
        data = await self._call(roadmap_service.create_task, identity=self._who(), payload=payload)
        return TaskNode.model_validate(data)

    async def update_task(self, task_id: str, changes: TaskUpdate) -> TaskNode:
        data = await self._call(roadmap_service.update_task, identity=self._who(), task_id=task_id, payload=changes)
        return TaskNode.model_validate(data)

    async def delete_task(self, task_id: str) -> None:
        await self._call(roadmap_service.delete_task, identity=self._who(), task_id=task_id)

    # comments
    async def add_comment(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        payload: CommentCreate,
        *,
        share_token: str | None = None,
    ) -> CommentRecord:
        data = await self._call(
            roadmap_service.add_comment,
            identity=self._who(),
            entity_kind=entity_kind,
            entity_id=entity_id,
            payload=payload,
            share_token=share_token,
        )
        return CommentRecord.model_validate(data)

    async def list_comments(
        self, entity_kind: EntityKind, entity_id: str, *, share_token: str | None = None
    ) -> list[CommentRecord]:
        rows = await self._call(
            roadmap_service.list_comments,
            identity=self._who(),
            entity_kind=entity_kind,
            entity_id=entity_id,
            share_token=share_token,
        )
        return [CommentRecord.model_validate(row) for row in rows]

    # sharing
    async def get_share_settings(self, roadmap_id: str) -> ShareSettings | None:
        data = await self._call(
            share_service.get_share_settings,
            identity=self._who(),
            roadmap_id=roadmap_id,
            base_url=self._share_base_url,
        )
        return ShareSettings.model_validate(data) if data is not None else None

    async def upsert_share_settings(self, roadmap_id: str, config: ShareConfig) -> ShareSettings:
        data = await self._call(
            share_service.upsert_share_settings,
            identity=self._who(),
            roadmap_id=roadmap_id,
            config=config,
            base_url=self._share_base_url,
        )
        return ShareSettings.model_validate(data)

    async def disable_share_settings(self, roadmap_id: str) -> None:
        await self._call(share_service.disable_share_settings, identity=self._who(), roadmap_id=roadmap_id)

    async def resolve_share_token(self, token: str) -> ShareLookup:
        data = await self._call(
            share_service.resolve_share_token,
            token=token,
            identity=self.identity,
            base_url=self._share_base_url,
        )
        return ShareLookup.model_validate(data)

    async def list_shared_with_me(self) -> list[SharedRoadmap]:
        rows = await self._call(share_service.list_shared_with_me, identity=self._who())
        return [SharedRoadmap.model_validate(row) for row in rows]

    # guests / migration
    async def create_guest_user(self, session_id: str) -> GuestUser:
        data = await self._call(guest_service.create_guest_user, session_id=session_id)
        return GuestUser.model_validate(data)

    async def get_guest_user_id(self, session_id: str) -> str | None:
        return await self._call(guest_service.get_guest_user_id, session_id=session_id)

    async def transfer_ownership(self, guest_user_id: str, target_user_id: str) -> TransferResult:
        data = await self._call(
            guest_service.transfer_ownership,
            identity=self._who(),
            guest_user_id=guest_user_id,
            target_user_id=target_user_id,
        )
        logger.info("transfer_ownership guest=%s migrated=%s", guest_user_id, data.get("migrated_count"))
        return TransferResult.model_validate(data)
