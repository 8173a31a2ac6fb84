from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel

from core.gateway.base import RoadmapGateway
from core.roadmap.errors import AuthorizationError, ShareLinkExpiredError, ShareLinkNotFoundError
from core.roadmap.models import CommentCreate, CommentRecord, EntityKind, RoadmapTree, coerce_input
from core.sharing.roles import (
    Invitation,
    ShareConfig,
    SharedRoadmap,
    ShareRole,
    ShareSettings,
    can_comment,
    normalize_email,
    resolve_role,
)

logger = logging.getLogger(__name__)


class ShareOutcome(str, Enum):
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


class ShareResolution(BaseModel):
    outcome: ShareOutcome
    token: str
    roadmap: RoadmapTree | None = None
    role: ShareRole | None = None
    share: ShareSettings | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == ShareOutcome.RESOLVED

    def require(self) -> "ShareResolution":
        if self.outcome == ShareOutcome.EXPIRED:
            raise ShareLinkExpiredError(f"share_expired:{self.token}")
        if self.outcome == ShareOutcome.NOT_FOUND:
            raise ShareLinkNotFoundError(f"share_not_found:{self.token}")
        return self


class AccessControlResolver:
    """Sharing configuration and effective-role lookups for roadmaps.

    All writes go through ``share_roadmap``, the single upsert path; the
    ``invite``/``revoke``/``set_link_role`` helpers read the current
    settings and write back a full configuration.
    """

    def __init__(self, gateway: RoadmapGateway) -> None:
        self._gateway = gateway

    async def get_share_settings(self, roadmap_id: str) -> ShareSettings | None:
        return await self._gateway.get_share_settings(roadmap_id)

    async def share_roadmap(
        self,
        roadmap_id: str,
        *,
        invited_emails: Iterable[Invitation | dict[str, Any]] = (),
        default_role: ShareRole | str = ShareRole.VIEWER,
        expires_at: datetime | None = None,
    ) -> ShareSettings:
        config = coerce_input(
            ShareConfig,
            {
                "invited_emails": [
                    row.model_dump() if isinstance(row, Invitation) else dict(row) for row in invited_emails
                ],
                "default_role": default_role,
                "expires_at": expires_at,
            },
        )
        settings = await self._gateway.upsert_share_settings(roadmap_id, config)
        logger.info(
            "roadmap shared id=%s invited=%d link_role=%s",
            roadmap_id,
            len(config.invited_emails),
            config.default_role.value,
        )
        return settings

    async def disable_sharing(self, roadmap_id: str) -> None:
        await self._gateway.disable_share_settings(roadmap_id)
        logger.info("roadmap sharing disabled id=%s", roadmap_id)

    async def invite(self, roadmap_id: str, email: str, role: ShareRole | str = ShareRole.VIEWER) -> ShareSettings:
        invitation = coerce_input(Invitation, {"email": email, "role": role})
        current = await self._gateway.get_share_settings(roadmap_id)
        invitations = list(current.invited_emails) if current else []
        invitations.append(invitation)
        return await self.share_roadmap(
            roadmap_id,
            invited_emails=invitations,
            default_role=current.default_role if current else ShareRole.VIEWER,
            expires_at=current.expires_at if current else None,
        )

    async def revoke(self, roadmap_id: str, email: str) -> ShareSettings | None:
        target = normalize_email(email)
        current = await self._gateway.get_share_settings(roadmap_id)
        if current is None:
            return None
        remaining = [row for row in current.invited_emails if row.email != target]
        if len(remaining) == len(current.invited_emails):
            return current
        return await self.share_roadmap(
            roadmap_id,
            invited_emails=remaining,
            default_role=current.default_role,
            expires_at=current.expires_at,
        )

    async def set_link_role(self, roadmap_id: str, role: ShareRole | str) -> ShareSettings:
        current = await self._gateway.get_share_settings(roadmap_id)
        return await self.share_roadmap(
            roadmap_id,
            invited_emails=list(current.invited_emails) if current else [],
            default_role=role,
            expires_at=current.expires_at if current else None,
        )

    async def get_roadmap_by_share_token(self, token: str) -> ShareResolution:
        try:
            lookup = await self._gateway.resolve_share_token(token)
        except ShareLinkExpiredError:
            return ShareResolution(outcome=ShareOutcome.EXPIRED, token=token)
        except ShareLinkNotFoundError:
            return ShareResolution(outcome=ShareOutcome.NOT_FOUND, token=token)
        return ShareResolution(
            outcome=ShareOutcome.RESOLVED,
            token=token,
            roadmap=lookup.roadmap,
            role=lookup.role,
            share=lookup.share,
        )

    async def get_shared_with_me(self) -> list[SharedRoadmap]:
        return await self._gateway.list_shared_with_me()

    def effective_role(
        self,
        viewer_email: str | None,
        settings: ShareSettings | None,
        *,
        is_owner: bool = False,
    ) -> ShareRole | None:
        if settings is None or not settings.is_active:
            return ShareRole.OWNER if is_owner else None
        return resolve_role(viewer_email, settings.invited_emails, settings.public_link, is_owner=is_owner)

    async def add_comment(
        self,
        entity_kind: EntityKind | str,
        entity_id: str,
        content: str,
        *,
        role: ShareRole | None = None,
        share_token: str | None = None,
    ) -> CommentRecord:
        payload = coerce_input(CommentCreate, {"content": content})
        if role is not None and not can_comment(role):
            raise AuthorizationError(f"role_required:commenter:{role.value}")
        return await self._gateway.add_comment(EntityKind(entity_kind), entity_id, payload, share_token=share_token)

    async def list_comments(
        self, entity_kind: EntityKind | str, entity_id: str, *, share_token: str | None = None
    ) -> list[CommentRecord]:
        return await self._gateway.list_comments(EntityKind(entity_kind), entity_id, share_token=share_token)
