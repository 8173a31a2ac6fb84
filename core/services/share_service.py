from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from core.roadmap.errors import ShareLinkExpiredError, ShareLinkNotFoundError
from core.roadmap.models import Identity
from core.services.access_service import (
    active_share_for,
    get_roadmap_row,
    invitations_from_row,
    public_link_from_row,
    require_role,
    to_iso,
)
from core.services.roadmap_service import build_full_tree
from core.sharing.roles import ShareConfig, ShareRole, can_view, normalize_email, resolve_role
from core.storage.schema import Profile, Roadmap, RoadmapShare

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _new_token() -> str:
    return secrets.token_urlsafe(24)


def share_url_for(token: str, base_url: str | None) -> str | None:
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/shared/{token}"


def serialize_share(row: RoadmapShare, *, base_url: str | None = None) -> dict[str, Any]:
    return {
        "id": row.id,
        "roadmap_id": row.roadmap_id,
        "share_token": row.share_token,
        "created_by": row.created_by,
        "invited_emails": [item.model_dump(mode="json") for item in invitations_from_row(row)],
        "default_role": row.default_role,
        "is_active": bool(row.is_active),
        "expires_at": to_iso(row.expires_at),
        "share_url": share_url_for(row.share_token, base_url),
        "created_at": to_iso(row.created_at),
        "updated_at": to_iso(row.updated_at),
    }


def get_share_settings(
    session: Session, *, identity: Identity, roadmap_id: str, base_url: str | None = None
) -> dict[str, Any] | None:
    roadmap = get_roadmap_row(session, roadmap_id)
    require_role(session, roadmap, identity, ShareRole.OWNER)
    row = session.query(RoadmapShare).filter(RoadmapShare.roadmap_id == roadmap_id).one_or_none()
    if row is None or not row.is_active:
        return None
    return serialize_share(row, base_url=base_url)


def upsert_share_settings(
    session: Session,
    *,
    identity: Identity,
    roadmap_id: str,
    config: ShareConfig,
    base_url: str | None = None,
) -> dict[str, Any]:
    """Create or replace a roadmap's sharing configuration and enable its link.

    A disabled record is revived with a fresh token so links handed out
    before the disable keep resolving as not found.
    """
    roadmap = get_roadmap_row(session, roadmap_id)
    require_role(session, roadmap, identity, ShareRole.OWNER)
    invited = [item.model_dump(mode="json") for item in config.invited_emails]
    row = session.query(RoadmapShare).filter(RoadmapShare.roadmap_id == roadmap_id).one_or_none()
    if row is None:
        row = RoadmapShare(
            id=uuid4().hex,
            roadmap_id=roadmap_id,
            share_token=_new_token(),
            created_by=identity.user_id,
        )
        session.add(row)
    elif not row.is_active:
        row.share_token = _new_token()
        row.created_by = identity.user_id
    row.invited_emails = invited
    row.default_role = config.default_role.value
    expires_at = config.expires_at
    if expires_at is not None and expires_at.tzinfo is not None:
        expires_at = expires_at.astimezone(UTC)
    row.expires_at = expires_at
    row.is_active = True
    row.updated_at = _utc_now()
    session.flush()
    session.refresh(row)
    logger.info("share settings saved roadmap=%s invited=%d", roadmap_id, len(invited))
    return serialize_share(row, base_url=base_url)


def disable_share_settings(session: Session, *, identity: Identity, roadmap_id: str) -> dict[str, Any]:
    roadmap = get_roadmap_row(session, roadmap_id)
    require_role(session, roadmap, identity, ShareRole.OWNER)
    row = session.query(RoadmapShare).filter(RoadmapShare.roadmap_id == roadmap_id).one_or_none()
    disabled = row is not None and bool(row.is_active)
    if row is not None:
        row.is_active = False
        row.invited_emails = []
        row.updated_at = _utc_now()
        session.flush()
    logger.info("share settings disabled roadmap=%s changed=%s", roadmap_id, disabled)
    return {"success": True, "disabled": disabled}


def resolve_share_token(
    session: Session,
    *,
    token: str,
    identity: Identity | None = None,
    base_url: str | None = None,
) -> dict[str, Any]:
    row = session.query(RoadmapShare).filter(RoadmapShare.share_token == str(token or "")).one_or_none()
    if row is None or not row.is_active:
        raise ShareLinkNotFoundError(f"share_not_found:{token}")
    link = public_link_from_row(row)
    if link is not None and link.is_expired(_utc_now()):
        raise ShareLinkExpiredError(f"share_expired:{token}")
    roadmap = session.query(Roadmap).filter(Roadmap.id == row.roadmap_id).one_or_none()
    if roadmap is None:
        raise ShareLinkNotFoundError(f"share_not_found:{token}")
    if identity is not None and roadmap.owner_id == identity.user_id:
        role = ShareRole.OWNER
    else:
        role = resolve_role(identity.email if identity else None, invitations_from_row(row), link)
    if not can_view(role):
        raise ShareLinkNotFoundError(f"share_not_found:{token}")
    return {
        "roadmap": build_full_tree(roadmap, role=role),
        "role": role.value,
        "share": serialize_share(row, base_url=base_url),
    }


def list_shared_with_me(session: Session, *, identity: Identity) -> list[dict[str, Any]]:
    email = normalize_email(identity.email)
    if not email:
        return []
    rows = session.query(RoadmapShare).filter(RoadmapShare.is_active.is_(True)).all()
    items: list[dict[str, Any]] = []
    for row in rows:
        if active_share_for(session, row.roadmap_id) is None:
            continue
        invitation = next((item for item in invitations_from_row(row) if item.email == email), None)
        if invitation is None:
            continue
        roadmap = session.query(Roadmap).filter(Roadmap.id == row.roadmap_id).one_or_none()
        if roadmap is None or roadmap.owner_id == identity.user_id:
            continue
        owner = session.query(Profile).filter(Profile.id == roadmap.owner_id).one_or_none()
        items.append(
            {
                "roadmap_id": roadmap.id,
                "name": roadmap.name,
                "owner_id": roadmap.owner_id,
                "owner_name": (owner.full_name or owner.email) if owner is not None else None,
                "access_level": invitation.role.value,
                "shared_at": to_iso(row.updated_at),
            }
        )
    items.sort(key=lambda item: item["shared_at"] or "", reverse=True)
    return items
