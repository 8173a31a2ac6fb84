from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field, field_validator

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ShareRole(str, Enum):
    VIEWER = "viewer"
    COMMENTER = "commenter"
    EDITOR = "editor"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def at_least(self, other: "ShareRole") -> bool:
        return self.rank >= other.rank


_RANKS = {
    ShareRole.VIEWER: 0,
    ShareRole.COMMENTER: 1,
    ShareRole.EDITOR: 2,
    ShareRole.OWNER: 3,
}

INVITABLE_ROLES = frozenset({ShareRole.VIEWER, ShareRole.COMMENTER, ShareRole.EDITOR})
PUBLIC_LINK_ROLES = frozenset({ShareRole.VIEWER, ShareRole.COMMENTER})


def normalize_email(value: str | None) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: str | None) -> bool:
    return bool(_EMAIL_RE.match(normalize_email(value)))


class Invitation(BaseModel):
    email: str
    role: ShareRole = ShareRole.VIEWER

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        cleaned = normalize_email(value)
        if not _EMAIL_RE.match(cleaned):
            raise ValueError(f"invalid_email:{value}")
        return cleaned

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: ShareRole) -> ShareRole:
        if value not in INVITABLE_ROLES:
            raise ValueError(f"role_not_invitable:{value.value}")
        return value


class PublicLink(BaseModel):
    enabled: bool = False
    default_role: ShareRole = ShareRole.VIEWER
    expires_at: datetime | None = None

    @field_validator("default_role")
    @classmethod
    def _check_ceiling(cls, value: ShareRole) -> ShareRole:
        if value not in PUBLIC_LINK_ROLES:
            raise ValueError(f"public_link_role_not_allowed:{value.value}")
        return value

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now or datetime.now(UTC)
        expires = self.expires_at if self.expires_at.tzinfo else self.expires_at.replace(tzinfo=UTC)
        return expires < current


def dedupe_invitations(invitations: Iterable[Invitation]) -> list[Invitation]:
    # Last entry for an email wins; first-seen order is kept.
    by_email: dict[str, Invitation] = {}
    for row in invitations:
        by_email[row.email] = row
    return list(by_email.values())


def find_invitation(viewer_email: str | None, invitations: Iterable[Invitation]) -> Invitation | None:
    email = normalize_email(viewer_email)
    if not email:
        return None
    return next((row for row in invitations if row.email == email), None)


def resolve_role(
    viewer_email: str | None,
    invitations: Iterable[Invitation],
    public_link: PublicLink | None,
    *,
    is_owner: bool = False,
    now: datetime | None = None,
) -> ShareRole | None:
    """Effective role for a viewer.

    Ownership wins, then an explicit invitation, then the public link's
    default role when the link is enabled. An expired share grants
    nothing, invitations included. ``None`` means no access.
    """
    if is_owner:
        return ShareRole.OWNER
    if public_link is not None and public_link.is_expired(now):
        return None
    invitation = find_invitation(viewer_email, invitations)
    if invitation is not None:
        return invitation.role
    if public_link is not None and public_link.enabled:
        return public_link.default_role
    return None


def can_view(role: ShareRole | None) -> bool:
    return role is not None


def can_comment(role: ShareRole | None) -> bool:
    return role is not None and role.at_least(ShareRole.COMMENTER)


def can_edit(role: ShareRole | None) -> bool:
    return role is not None and role.at_least(ShareRole.EDITOR)


class ShareConfig(BaseModel):
    invited_emails: list[Invitation] = Field(default_factory=list)
    default_role: ShareRole = ShareRole.VIEWER
    expires_at: datetime | None = None

    @field_validator("invited_emails")
    @classmethod
    def _dedupe(cls, value: list[Invitation]) -> list[Invitation]:
        return dedupe_invitations(value)

    @field_validator("default_role")
    @classmethod
    def _check_ceiling(cls, value: ShareRole) -> ShareRole:
        if value not in PUBLIC_LINK_ROLES:
            raise ValueError(f"public_link_role_not_allowed:{value.value}")
        return value


class ShareSettings(BaseModel):
    id: str
    roadmap_id: str
    share_token: str
    created_by: str
    invited_emails: list[Invitation] = Field(default_factory=list)
    default_role: ShareRole = ShareRole.VIEWER
    is_active: bool = True
    expires_at: datetime | None = None
    share_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def public_link(self) -> PublicLink:
        return PublicLink(enabled=self.is_active, default_role=self.default_role, expires_at=self.expires_at)


class SharedRoadmap(BaseModel):
    roadmap_id: str
    name: str
    owner_id: str
    owner_name: str | None = None
    access_level: ShareRole
    shared_at: datetime | None = None
