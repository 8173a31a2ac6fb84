from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from core.roadmap.errors import AuthorizationError, EntityNotFoundError, InputValidationError
from core.roadmap.models import Identity
from core.services.access_service import ensure_profile
from core.storage.schema import Profile, Roadmap

logger = logging.getLogger(__name__)

GUEST_SESSION_PREFIX = "guest_"


def _check_session_id(session_id: str | None) -> str:
    value = str(session_id or "").strip()
    if not value.startswith(GUEST_SESSION_PREFIX) or len(value) == len(GUEST_SESSION_PREFIX):
        raise InputValidationError(f"session_id:invalid_guest_session:{value}")
    return value


def _guest_by_session(session: Session, session_id: str) -> Profile | None:
    return (
        session.query(Profile)
        .filter(Profile.guest_session_id == session_id, Profile.is_guest.is_(True))
        .one_or_none()
    )


def create_guest_user(session: Session, *, session_id: str) -> dict[str, Any]:
    session_id = _check_session_id(session_id)
    existing = _guest_by_session(session, session_id)
    if existing is not None:
        return {"user_id": existing.id, "is_new": False}
    profile = Profile(
        id=uuid4().hex,
        full_name="Guest User",
        is_guest=True,
        guest_session_id=session_id,
    )
    session.add(profile)
    session.flush()
    logger.info("guest profile created user=%s", profile.id)
    return {"user_id": profile.id, "is_new": True}


def get_guest_user_id(session: Session, *, session_id: str) -> str | None:
    session_id = _check_session_id(session_id)
    profile = _guest_by_session(session, session_id)
    return profile.id if profile is not None else None


def is_guest_user(session: Session, *, user_id: str) -> bool:
    profile = session.query(Profile).filter(Profile.id == user_id).one_or_none()
    return bool(profile is not None and profile.is_guest)


def pending_guest_roadmaps(session: Session, *, session_id: str) -> dict[str, Any]:
    session_id = _check_session_id(session_id)
    profile = _guest_by_session(session, session_id)
    if profile is None:
        return {"has_pending": False, "user_id": None, "roadmap_count": 0}
    count = session.query(Roadmap).filter(Roadmap.owner_id == profile.id).count()
    return {"has_pending": count > 0, "user_id": profile.id, "roadmap_count": count}


def transfer_ownership(
    session: Session,
    *,
    identity: Identity,
    guest_user_id: str,
    target_user_id: str,
) -> dict[str, Any]:
    """Reassign every roadmap owned by a guest profile to ``target_user_id``.

    Runs inside the caller's transaction; a guest that owns nothing
    transfers successfully with a count of zero.
    """
    if not guest_user_id or not target_user_id:
        raise InputValidationError("guest_user_id and target_user_id are required")
    if identity.user_id != target_user_id:
        raise AuthorizationError("migrate_target_mismatch")
    if guest_user_id == target_user_id:
        raise InputValidationError("guest_user_id:same_as_target")
    guest = session.query(Profile).filter(Profile.id == guest_user_id).one_or_none()
    if guest is None:
        raise EntityNotFoundError(f"guest_not_found:{guest_user_id}", code="guest_not_found")
    if not guest.is_guest:
        raise AuthorizationError(f"not_a_guest:{guest_user_id}")

    target = ensure_profile(session, identity)
    migrated = (
        session.query(Roadmap)
        .filter(Roadmap.owner_id == guest_user_id)
        .update({Roadmap.owner_id: target_user_id}, synchronize_session="fetch")
    )
    target.migrated_from_guest_id = guest_user_id
    guest.guest_session_id = None
    session.flush()
    logger.info("guest roadmaps transferred guest=%s target=%s count=%d", guest_user_id, target_user_id, migrated)
    return {"success": True, "migrated_count": int(migrated)}
