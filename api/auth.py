from __future__ import annotations

from fastapi import Header, HTTPException

from core.roadmap.models import Identity


def _truthy(value: str | None) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


async def optional_identity(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
    x_user_guest: str | None = Header(default=None),
) -> Identity | None:
    user_id = str(x_user_id or "").strip()
    if not user_id:
        return None
    return Identity(user_id=user_id, email=x_user_email, is_guest=_truthy(x_user_guest))


async def current_identity(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
    x_user_guest: str | None = Header(default=None),
) -> Identity:
    identity = await optional_identity(x_user_id, x_user_email, x_user_guest)
    if identity is None:
        raise HTTPException(status_code=401, detail="identity_required")
    return identity
