from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from core.sharing.roles import (
    Invitation,
    PublicLink,
    ShareConfig,
    ShareRole,
    can_comment,
    can_edit,
    resolve_role,
)


def _invites() -> list[Invitation]:
    return [Invitation(email="alice@x.com", role=ShareRole.EDITOR)]


def test_invitation_beats_public_link() -> None:
    link = PublicLink(enabled=True, default_role=ShareRole.VIEWER)
    assert resolve_role("alice@x.com", _invites(), link) == ShareRole.EDITOR


def test_email_match_is_case_insensitive() -> None:
    link = PublicLink(enabled=True, default_role=ShareRole.VIEWER)
    assert resolve_role("  Alice@X.com ", _invites(), link) == ShareRole.EDITOR


def test_uninvited_viewer_falls_back_to_link_role() -> None:
    link = PublicLink(enabled=True, default_role=ShareRole.VIEWER)
    assert resolve_role("bob@x.com", _invites(), link) == ShareRole.VIEWER
    assert resolve_role(None, _invites(), link) == ShareRole.VIEWER


def test_disabled_link_grants_nothing() -> None:
    link = PublicLink(enabled=False, default_role=ShareRole.COMMENTER)
    assert resolve_role("bob@x.com", _invites(), link) is None
    assert resolve_role("bob@x.com", _invites(), None) is None


def test_owner_always_resolves_to_owner() -> None:
    assert resolve_role("bob@x.com", [], None, is_owner=True) == ShareRole.OWNER


def test_public_link_cannot_grant_editor() -> None:
    with pytest.raises(ValidationError):
        PublicLink(enabled=True, default_role=ShareRole.EDITOR)
    with pytest.raises(ValidationError):
        ShareConfig(default_role="editor")


def test_owner_is_never_invitable_and_emails_are_checked() -> None:
    with pytest.raises(ValidationError):
        Invitation(email="carol@x.com", role=ShareRole.OWNER)
    with pytest.raises(ValidationError):
        Invitation(email="not-an-email", role=ShareRole.VIEWER)


def test_share_config_dedupes_last_wins() -> None:
    config = ShareConfig(
        invited_emails=[
            {"email": "alice@x.com", "role": "viewer"},
            {"email": "bob@x.com", "role": "commenter"},
            {"email": "ALICE@x.com", "role": "editor"},
        ]
    )
    assert [(row.email, row.role) for row in config.invited_emails] == [
        ("alice@x.com", ShareRole.EDITOR),
        ("bob@x.com", ShareRole.COMMENTER),
    ]


def test_role_capabilities() -> None:
    assert not can_comment(ShareRole.VIEWER)
    assert can_comment(ShareRole.COMMENTER)
    assert not can_edit(ShareRole.COMMENTER)
    assert can_edit(ShareRole.EDITOR)
    assert can_edit(ShareRole.OWNER)
    assert not can_edit(None)


def test_public_link_expiry() -> None:
    now = datetime.now(UTC)
    assert PublicLink(enabled=True, expires_at=now - timedelta(minutes=1)).is_expired(now)
    assert not PublicLink(enabled=True, expires_at=now + timedelta(days=1)).is_expired(now)
    assert not PublicLink(enabled=True).is_expired(now)


def test_expired_share_grants_nothing() -> None:
    now = datetime.now(UTC)
    expired = PublicLink(enabled=True, default_role=ShareRole.COMMENTER, expires_at=now - timedelta(days=1))

    assert resolve_role("bob@x.com", [], expired, now=now) is None
    assert resolve_role("alice@x.com", _invites(), expired, now=now) is None
    assert resolve_role("alice@x.com", _invites(), expired, is_owner=True, now=now) == ShareRole.OWNER
