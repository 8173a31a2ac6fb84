from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import requests

from core.gateway.base import RoadmapGateway, ShareLookup
from core.roadmap.errors import GatewayError, error_from_status
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
from core.sharing.roles import ShareConfig, SharedRoadmap, ShareSettings

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "http://127.0.0.1:8090"
_DEFAULT_TIMEOUT_MS = 5000


def _seg(value: str) -> str:
    return quote(str(value), safe="")


def _detail_text(res: requests.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        return (res.text or "").strip()
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list) and detail:
        # FastAPI request validation errors
        first = detail[0] if isinstance(detail[0], dict) else {}
        loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or "input"
        return f"{loc}:{first.get('msg', 'invalid')}"
    return ""


class HttpGateway(RoadmapGateway):
    name = "http"

    def __init__(
        self,
        base_url: str | None = None,
        identity: Identity | None = None,
        *,
        timeout_ms: int | None = None,
    ) -> None:
        super().__init__(identity)
        self._base_url = str(base_url or _DEFAULT_BASE_URL).strip().rstrip("/")
        self._timeout_ms = timeout_ms if isinstance(timeout_ms, int) and timeout_ms > 0 else _DEFAULT_TIMEOUT_MS

    def with_identity(self, identity: Identity) -> "HttpGateway":
        return HttpGateway(self._base_url, identity, timeout_ms=self._timeout_ms)

    def _headers(self, share_token: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.identity is not None:
            headers["X-User-Id"] = self.identity.user_id
            if self.identity.email:
                headers["X-User-Email"] = self.identity.email
            if self.identity.is_guest:
                headers["X-User-Guest"] = "1"
        if share_token:
            headers["X-Share-Token"] = share_token
        return headers

    def _send(self, method: str, path: str, *, json: Any = None, share_token: str | None = None) -> Any:
        url = f"{self._base_url}{path}"
        timeout_s = max(0.1, self._timeout_ms / 1000.0)
        try:
            res = requests.request(method, url, json=json, headers=self._headers(share_token), timeout=timeout_s)
        except requests.Timeout as exc:
            logger.warning("gateway timeout %s %s", method, path)
            raise GatewayError(f"gateway_timeout:{path}", code="gateway_timeout") from exc
        except requests.RequestException as exc:
            logger.warning("gateway unavailable %s %s: %s", method, path, exc)
            raise GatewayError(f"gateway_unavailable:{exc}", code="gateway_unavailable") from exc

        if res.status_code >= 400:
            detail = _detail_text(res)
            logger.info("gateway error %s %s status=%s detail=%s", method, path, res.status_code, detail)
            raise error_from_status(res.status_code, detail)
        if res.status_code == 204 or not res.content:
            return None
        try:
            return res.json()
        except ValueError as exc:
            raise GatewayError("gateway_invalid_json", status_code=res.status_code) from exc

    async def _request(self, method: str, path: str, *, json: Any = None, share_token: str | None = None) -> Any:
        return await asyncio.to_thread(self._send, method, path, json=json, share_token=share_token)

    # roadmaps
    async def create_roadmap(self, payload: RoadmapCreate) -> RoadmapRecord:
        data = await self._request("POST", "/roadmaps", json=payload.model_dump(mode="json"))
        return RoadmapRecord.model_validate(data)

    async def get_roadmap(self, roadmap_id: str) -> RoadmapRecord:
        data = await self._request("GET", f"/roadmaps/{_seg(roadmap_id)}")
        return RoadmapRecord.model_validate(data)

    async def get_roadmap_full(self, roadmap_id: str) -> RoadmapTree:
        data = await self._request("GET", f"/roadmaps/{_seg(roadmap_id)}/full")
        return RoadmapTree.model_validate(data)

    async def update_roadmap(self, roadmap_id: str, changes: RoadmapUpdate) -> RoadmapRecord:
        data = await self._request(
            "PUT", f"/roadmaps/{_seg(roadmap_id)}", json=changes.model_dump(mode="json", exclude_unset=True)
        )
        return RoadmapRecord.model_validate(data)

    async def delete_roadmap(self, roadmap_id: str) -> None:
        await self._request("DELETE", f"/roadmaps/{_seg(roadmap_id)}")

    async def list_roadmaps_by_owner(self, owner_id: str) -> list[RoadmapRecord]:
        data = await self._request("GET", f"/roadmaps/user/{_seg(owner_id)}")
        return [RoadmapRecord.model_validate(row) for row in (data or {}).get("items", [])]

    # milestones
    async def create_milestone(self, roadmap_id: str, payload: MilestoneCreate) -> MilestoneNode:
        data = await self._request(
            "POST", f"/roadmaps/{_seg(roadmap_id)}/milestones", json=payload.model_dump(mode="json", exclude_none=True)
        )
        return MilestoneNode.model_validate(data)

    async def update_milestone(self, milestone_id: str, changes: MilestoneUpdate) -> MilestoneNode:
        data = await self._request(
            "PUT", f"/milestones/{_seg(milestone_id)}", json=changes.model_dump(mode="json", exclude_unset=True)
        )
        return MilestoneNode.model_validate(data)

    async def delete_milestone(self, milestone_id: str) -> None:
        await self._request("DELETE", f"/milestones/{_seg(milestone_id)}")

    async def link_milestone_feature(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        data = await self._request(
            "POST", f"/milestones/{_seg(milestone_id)}/features", json={"feature_id": feature_id}
        )
        return MilestoneNode.model_validate(data)

    async def unlink_milestone_feature(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        data = await self._request("DELETE", f"/milestones/{_seg(milestone_id)}/features/{_seg(feature_id)}")
        return MilestoneNode.model_validate(data)

    # epics / features / tasks
    async def create_epic(self, roadmap_id: str, payload: EpicCreate) -> EpicNode:
        data = await self._request(
            "POST", f"/roadmaps/{_seg(roadmap_id)}/epics", json=payload.model_dump(mode="json", exclude_none=True)
        )
        return EpicNode.model_validate(data)

    async def update_epic(self, epic_id: str, changes: EpicUpdate) -> EpicNode:
        data = await self._request(
            "PUT", f"/epics/{_seg(epic_id)}", json=changes.model_dump(mode="json", exclude_unset=True)
        )
        return EpicNode.model_validate(data)

    async def delete_epic(self, epic_id: str) -> None:
        await self._request("DELETE", f"/epics/{_seg(epic_id)}")

    async def create_feature(self, payload: FeatureCreate) -> FeatureNode:
        data = await self._request("POST", "/features", json=payload.model_dump(mode="json", exclude_none=True))
        return FeatureNode.model_validate(data)

    async def update_feature(self, feature_id: str, changes: FeatureUpdate) -> FeatureNode:
        data = await self._request(
            "PUT", f"/features/{_seg(feature_id)}", json=changes.model_dump(mode="json", exclude_unset=True)
        )
        return FeatureNode.model_validate(data)

    async def delete_feature(self, feature_id: str) -> None:
        await self._request("DELETE", f"/features/{_seg(feature_id)}")

    async def create_task(self, payload: TaskCreate) -> TaskNode:
        data = await self._request("POST", "/tasks", json=payload.model_dump(mode="json", exclude_none=True))
        return TaskNode.model_validate(data)

    async def update_task(self, task_id: str, changes: TaskUpdate) -> TaskNode:
        data = await self._request(
            "PUT", f"/tasks/{_seg(task_id)}", json=changes.model_dump(mode="json", exclude_unset=True)
        )
        return TaskNode.model_validate(data)

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{_seg(task_id)}")

    # comments
    async def add_comment(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        payload: CommentCreate,
        *,
        share_token: str | None = None,
    ) -> CommentRecord:
        data = await self._request(
            "POST",
            f"/{entity_kind.value}s/{_seg(entity_id)}/comments",
            json=payload.model_dump(mode="json"),
            share_token=share_token,
        )
        return CommentRecord.model_validate(data)

    async def list_comments(
        self, entity_kind: EntityKind, entity_id: str, *, share_token: str | None = None
    ) -> list[CommentRecord]:
        data = await self._request(
            "GET", f"/{entity_kind.value}s/{_seg(entity_id)}/comments", share_token=share_token
        )
        return [CommentRecord.model_validate(row) for row in (data or {}).get("items", [])]

    # sharing
    async def get_share_settings(self, roadmap_id: str) -> ShareSettings | None:
        data = await self._request("GET", f"/roadmap-shares/roadmap/{_seg(roadmap_id)}")
        share = (data or {}).get("share")
        return ShareSettings.model_validate(share) if share else None

    async def upsert_share_settings(self, roadmap_id: str, config: ShareConfig) -> ShareSettings:
        data = await self._request(
            "PUT", f"/roadmap-shares/roadmap/{_seg(roadmap_id)}", json=config.model_dump(mode="json")
        )
        return ShareSettings.model_validate(data)

    async def disable_share_settings(self, roadmap_id: str) -> None:
        await self._request("DELETE", f"/roadmap-shares/roadmap/{_seg(roadmap_id)}")

    async def resolve_share_token(self, token: str) -> ShareLookup:
        data = await self._request("GET", f"/roadmap-shares/token/{_seg(token)}")
        return ShareLookup.model_validate(data)

    async def list_shared_with_me(self) -> list[SharedRoadmap]:
        data = await self._request("GET", "/roadmap-shares/shared-with-me")
        return [SharedRoadmap.model_validate(row) for row in (data or {}).get("items", [])]

    # guests / migration
    async def create_guest_user(self, session_id: str) -> GuestUser:
        data = await self._request("POST", "/guests", json={"session_id": session_id})
        return GuestUser.model_validate(data)

    async def get_guest_user_id(self, session_id: str) -> str | None:
        data = await self._request("GET", f"/guests/session/{_seg(session_id)}")
        return (data or {}).get("user_id")

    async def transfer_ownership(self, guest_user_id: str, target_user_id: str) -> TransferResult:
        data = await self._request(
            "POST",
            "/roadmaps/migrate",
            json={"guest_user_id": guest_user_id, "target_user_id": target_user_id},
        )
        return TransferResult.model_validate(data)
