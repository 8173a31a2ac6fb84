from datetime import UTC, datetime, timedelta

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import roadmaps_router, shares_router
from core.storage.schema import create_session_factory

OWNER = {"X-User-Id": "owner-1", "X-User-Email": "owner@example.com"}
ALICE = {"X-User-Id": "alice-1", "X-User-Email": "Alice@Example.com"}
BOB = {"X-User-Id": "bob-1", "X-User-Email": "bob@example.com"}


def _build_client(tmp_path) -> TestClient:
    session_factory = create_session_factory(db_path=f"sqlite:///{tmp_path / 'shares_api.db'}")
    roadmaps_router.session_factory = session_factory
    shares_router.session_factory = session_factory
    app = FastAPI()
    app.include_router(roadmaps_router.router)
    app.include_router(shares_router.router)
    return TestClient(app)


def _roadmap_id(client: TestClient) -> str:
    return client.post("/roadmaps", json={"name": "Shared"}, headers=OWNER).json()["id"]


def test_share_lifecycle(tmp_path):
    client = _build_client(tmp_path)
    roadmap_id = _roadmap_id(client)

    empty = client.get(f"/roadmap-shares/roadmap/{roadmap_id}", headers=OWNER)
    assert empty.status_code == 200
    assert empty.json() == {"share": None}

    created = client.put(
        f"/roadmap-shares/roadmap/{roadmap_id}",
        json={"invited_emails": [{"email": "alice@example.com", "role": "editor"}], "default_role": "viewer"},
        headers=OWNER,
    )
    assert created.status_code == 200
    share = created.json()
    assert share["is_active"] is True
    assert share["share_url"].endswith(f"/shared/{share['share_token']}")

    as_alice = client.get(f"/roadmap-shares/token/{share['share_token']}", headers=ALICE)
    assert as_alice.status_code == 200
    assert as_alice.json()["role"] == "editor"
    assert as_alice.json()["roadmap"]["current_user_role"] == "editor"

    anonymous = client.get(f"/roadmap-shares/token/{share['share_token']}")
    assert anonymous.json()["role"] == "viewer"

    shared = client.get("/roadmap-shares/shared-with-me", headers=ALICE).json()["items"]
    assert [(row["roadmap_id"], row["access_level"]) for row in shared] == [(roadmap_id, "editor")]

    disabled = client.delete(f"/roadmap-shares/roadmap/{roadmap_id}", headers=OWNER)
    assert disabled.json() == {"success": True, "disabled": True}
    gone = client.get(f"/roadmap-shares/token/{share['share_token']}", headers=ALICE)
    assert gone.status_code == 404
    assert gone.json()["detail"].startswith("share_not_found")
    assert client.get("/roadmap-shares/shared-with-me", headers=ALICE).json()["items"] == []


def test_expired_share_returns_gone(tmp_path):
    client = _build_client(tmp_path)
    roadmap_id = _roadmap_id(client)
    past = (datetime.now(UTC) - timedelta(days=1)).isoformat()
    share = client.put(
        f"/roadmap-shares/roadmap/{roadmap_id}", json={"expires_at": past}, headers=OWNER
    ).json()

    res = client.get(f"/roadmap-shares/token/{share['share_token']}", headers=BOB)

    assert res.status_code == 410
    assert res.json()["detail"].startswith("share_expired")


def test_only_owner_manages_share(tmp_path):
    client = _build_client(tmp_path)
    roadmap_id = _roadmap_id(client)
    client.put(
        f"/roadmap-shares/roadmap/{roadmap_id}",
        json={"invited_emails": [{"email": "alice@example.com", "role": "editor"}]},
        headers=OWNER,
    )

    assert client.get(f"/roadmap-shares/roadmap/{roadmap_id}", headers=ALICE).status_code == 403
    assert client.put(f"/roadmap-shares/roadmap/{roadmap_id}", json={}, headers=ALICE).status_code == 403
    assert client.delete(f"/roadmap-shares/roadmap/{roadmap_id}", headers=BOB).status_code == 403


def test_invalid_share_payloads(tmp_path):
    client = _build_client(tmp_path)
    roadmap_id = _roadmap_id(client)

    editor_link = client.put(f"/roadmap-shares/roadmap/{roadmap_id}", json={"default_role": "editor"}, headers=OWNER)
    owner_invite = client.put(
        f"/roadmap-shares/roadmap/{roadmap_id}",
        json={"invited_emails": [{"email": "carol@example.com", "role": "owner"}]},
        headers=OWNER,
    )
    bad_email = client.put(
        f"/roadmap-shares/roadmap/{roadmap_id}",
        json={"invited_emails": [{"email": "carol", "role": "viewer"}]},
        headers=OWNER,
    )

    assert editor_link.status_code == 422
    assert owner_invite.status_code == 422
    assert bad_email.status_code == 422
    assert client.get("/roadmap-shares/token/unknown").status_code == 404
