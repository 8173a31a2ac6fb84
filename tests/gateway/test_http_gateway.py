from __future__ import annotations

import json

import pytest
import requests

from core.gateway.http import HttpGateway
from core.roadmap.errors import (
    AuthorizationError,
    ConflictError,
    EntityNotFoundError,
    GatewayError,
    InputValidationError,
    ShareLinkExpiredError,
    ShareLinkNotFoundError,
)
from core.roadmap.models import CommentCreate, EntityKind, EpicUpdate, Identity
from core.sharing.roles import ShareRole

IDENTITY = Identity(user_id="user-1", email="user@example.com")


class _FakeResponse:
    def __init__(self, *, status_code: int, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.text = self.content.decode("utf-8")

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


def _capture(monkeypatch, response: _FakeResponse) -> list[dict]:
    calls: list[dict] = []

    def _request(method, url, **kwargs):
        calls.append({"method": method, "url": url, **kwargs})
        return response

    monkeypatch.setattr("core.gateway.http.requests.request", _request)
    return calls


@pytest.mark.asyncio
async def test_identity_and_share_token_headers(monkeypatch):
    calls = _capture(monkeypatch, _FakeResponse(status_code=200, payload={"items": []}))
    gateway = HttpGateway("http://gateway.test/", IDENTITY, timeout_ms=1500)

    await gateway.list_comments(EntityKind.EPIC, "epic 1", share_token="tok")

    assert calls[0]["method"] == "GET"
    assert calls[0]["url"] == "http://gateway.test/epics/epic%201/comments"
    assert calls[0]["headers"] == {"X-User-Id": "user-1", "X-User-Email": "user@example.com", "X-Share-Token": "tok"}
    assert calls[0]["timeout"] == 1.5


@pytest.mark.asyncio
async def test_update_sends_only_changed_fields(monkeypatch):
    calls = _capture(
        monkeypatch,
        _FakeResponse(status_code=200, payload={"id": "e1", "roadmap_id": "r1", "title": "Renamed", "position": 2}),
    )
    gateway = HttpGateway("http://gateway.test", IDENTITY)

    epic = await gateway.update_epic("e1", EpicUpdate(title="Renamed"))

    assert calls[0]["json"] == {"title": "Renamed"}
    assert epic.position == 2


@pytest.mark.asyncio
async def test_share_lookup_is_parsed(monkeypatch):
    payload = {
        "roadmap": {"id": "r1", "name": "Plan", "owner_id": "o1", "current_user_role": "viewer", "epics": []},
        "role": "viewer",
        "share": {"id": "s1", "roadmap_id": "r1", "share_token": "tok", "created_by": "o1"},
    }
    _capture(monkeypatch, _FakeResponse(status_code=200, payload=payload))

    lookup = await HttpGateway("http://gateway.test").resolve_share_token("tok")

    assert lookup.role == ShareRole.VIEWER
    assert lookup.roadmap.name == "Plan"
    assert lookup.share.share_token == "tok"


@pytest.mark.parametrize(
    ("status_code", "detail", "expected"),
    [
        (404, "share_not_found:tok", ShareLinkNotFoundError),
        (410, "share_expired:tok", ShareLinkExpiredError),
        (403, "role_required:editor", AuthorizationError),
        (404, "epic_not_found:e1", EntityNotFoundError),
        (409, "feature_already_linked:f1", ConflictError),
        (400, "title:required", InputValidationError),
        (500, "boom", GatewayError),
    ],
)
@pytest.mark.asyncio
async def test_error_status_maps_to_domain_error(monkeypatch, status_code, detail, expected):
    _capture(monkeypatch, _FakeResponse(status_code=status_code, payload={"detail": detail}))

    with pytest.raises(expected):
        await HttpGateway("http://gateway.test", IDENTITY).add_comment(
            EntityKind.FEATURE, "f1", CommentCreate(content="hi")
        )


@pytest.mark.asyncio
async def test_validation_detail_list_maps_to_input_error(monkeypatch):
    detail = [{"loc": ["body", "name"], "msg": "Value error, title_required", "type": "value_error"}]
    _capture(monkeypatch, _FakeResponse(status_code=422, payload={"detail": detail}))

    with pytest.raises(InputValidationError) as excinfo:
        await HttpGateway("http://gateway.test", IDENTITY).get_roadmap("r1")

    assert str(excinfo.value).startswith("name:")


@pytest.mark.asyncio
async def test_timeout_and_network_errors(monkeypatch):
    def _timeout(*args, **kwargs):
        raise requests.Timeout("timeout")

    monkeypatch.setattr("core.gateway.http.requests.request", _timeout)
    with pytest.raises(GatewayError) as excinfo:
        await HttpGateway("http://gateway.test", IDENTITY).get_roadmap("r1")
    assert excinfo.value.code == "gateway_timeout"

    def _refused(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr("core.gateway.http.requests.request", _refused)
    with pytest.raises(GatewayError) as excinfo:
        await HttpGateway("http://gateway.test", IDENTITY).get_roadmap("r1")
    assert excinfo.value.code == "gateway_unavailable"


@pytest.mark.asyncio
async def test_empty_share_settings_and_unknown_guest(monkeypatch):
    _capture(monkeypatch, _FakeResponse(status_code=200, payload={"share": None, "user_id": None}))
    gateway = HttpGateway("http://gateway.test", IDENTITY)

    assert await gateway.get_share_settings("r1") is None
    assert await gateway.get_guest_user_id("guest_x") is None
