from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from core.roadmap.errors import AuthorizationError, EntityNotFoundError
from core.roadmap.models import Identity
from core.sharing.roles import Invitation, PublicLink, ShareRole, find_invitation, resolve_role
from core.storage.schema import Profile, Roadmap, RoadmapShare


def _utc_now() -> datetime:
    return datetime.now(UTC)


def invitations_from_row(share: RoadmapShare | None) -> list[Invitation]:
    if share is None:
        return []
    rows: list[Invitation] = []
    for raw in share.invited_emails or []:
        if not isinstance(raw, dict):
            continue
        try:
            rows.append(Invitation.model_validate(raw))
        except ValueError:
            # Rows written by an older build may carry roles that are no longer grantable.
            continue
    return rows


def public_link_from_row(share: RoadmapShare | None) -> PublicLink | None:
    if share is None:
        return None
    return PublicLink(
        enabled=bool(share.is_active),
        default_role=ShareRole(share.default_role),
        expires_at=share.expires_at,
    )


def active_share_for(session: Session, roadmap_id: str) -> RoadmapShare | None:
    share = session.query(RoadmapShare).filter(RoadmapShare.roadmap_id == roadmap_id).one_or_none()
    if share is None or not share.is_active:
        return None
    link = public_link_from_row(share)
    if link is not None and link.is_expired(_utc_now()):
        return None
    return share


def effective_role_for(
    session: Session,
    roadmap: Roadmap,
    identity: Identity | None,
    *,
    share_token: str | None = None,
) -> ShareRole | None:
    """Role of ``identity`` on ``roadmap``.

    Owners always resolve to ``owner``. Invitations apply while sharing is
    active. The public link's default role applies only when the caller
    presents the roadmap's current share token.
    """
    if identity is not None and roadmap.owner_id == identity.user_id:
        return ShareRole.OWNER
    share = active_share_for(session, roadmap.id)
    if share is None:
        return None
    invitations = invitations_from_row(share)
    email = identity.email if identity is not None else None
    if share_token and share_token == share.share_token:
        return resolve_role(email, invitations, public_link_from_row(share))
    invitation = find_invitation(email, invitations)
    return invitation.role if invitation is not None else None


def require_role(
    session: Session,
    roadmap: Roadmap,
    identity: Identity | None,
    minimum: ShareRole,
    *,
    share_token: str | None = None,
) -> ShareRole:
    role = effective_role_for(session, roadmap, identity, share_token=share_token)
    if role is None or not role.at_least(minimum):
        raise AuthorizationError(f"role_required:{minimum.value}")
    return role


def get_roadmap_row(session: Session, roadmap_id: str) -> Roadmap:
    row = session.query(Roadmap).filter(Roadmap.id == roadmap_id).one_or_none()
    if row is None:
        raise EntityNotFoundError(f"roadmap_not_found:{roadmap_id}", code="roadmap_not_found")
    return row


def ensure_profile(session: Session, identity: Identity) -> Profile:
    profile = session.query(Profile).filter(Profile.id == identity.user_id).one_or_none()
    if profile is None:
        profile = Profile(id=identity.user_id, email=identity.email, is_guest=identity.is_guest)
        session.add(profile)
        session.flush()
    elif identity.email and profile.email != identity.email:
        profile.email = identity.email
    return profile


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    dt = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat().replace("+00:00", "Z")


def date_iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None
