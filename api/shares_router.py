from __future__ import annotations

from fastapi import APIRouter, Depends

from api.auth import current_identity, optional_identity
from api.config import settings
from api.errors import run_in_session
from core.roadmap.models import Identity
from core.services import share_service
from core.sharing.roles import ShareConfig
from core.storage.schema import create_session_factory

router = APIRouter(prefix="/roadmap-shares", tags=["roadmap-shares"])
session_factory = create_session_factory(settings.db_path)


@router.get("/shared-with-me")
async def shared_with_me(identity: Identity = Depends(current_identity)):
    items = run_in_session(session_factory, share_service.list_shared_with_me, identity=identity)
    return {"items": items}


@router.get("/token/{token}")
async def resolve_share_token(token: str, identity: Identity | None = Depends(optional_identity)):
    return run_in_session(
        session_factory,
        share_service.resolve_share_token,
        token=token,
        identity=identity,
        base_url=settings.share_base_url,
    )


@router.get("/roadmap/{roadmap_id}")
async def get_share_settings(roadmap_id: str, identity: Identity = Depends(current_identity)):
    share = run_in_session(
        session_factory,
        share_service.get_share_settings,
        identity=identity,
        roadmap_id=roadmap_id,
        base_url=settings.share_base_url,
    )
    return {"share": share}


@router.put("/roadmap/{roadmap_id}")
async def upsert_share_settings(roadmap_id: str, payload: ShareConfig, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory,
        share_service.upsert_share_settings,
        identity=identity,
        roadmap_id=roadmap_id,
        config=payload,
        base_url=settings.share_base_url,
    )


@router.delete("/roadmap/{roadmap_id}")
async def disable_share_settings(roadmap_id: str, identity: Identity = Depends(current_identity)):
    return run_in_session(
        session_factory, share_service.disable_share_settings, identity=identity, roadmap_id=roadmap_id
    )
