from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import guests_router, hierarchy_router, roadmaps_router, shares_router
from core.storage.schema import create_session_factory

OWNER = {"X-User-Id": "owner-1", "X-User-Email": "owner@example.com"}
STRANGER = {"X-User-Id": "stranger-1", "X-User-Email": "stranger@example.com"}


def _build_client(tmp_path) -> TestClient:
    db_url = f"sqlite:///{tmp_path / 'roadmap_api.db'}"
    session_factory = create_session_factory(db_path=db_url)
    for module in (roadmaps_router, hierarchy_router, shares_router, guests_router):
        module.session_factory = session_factory
    app = FastAPI()
    app.include_router(roadmaps_router.router)
    app.include_router(hierarchy_router.router)
    app.include_router(shares_router.router)
    app.include_router(guests_router.router)
    return TestClient(app)


def _create_roadmap(client: TestClient, name: str = "Launch") -> dict:
    res = client.post("/roadmaps", json={"name": name}, headers=OWNER)
    assert res.status_code == 200
    return res.json()


def test_roadmap_hierarchy_crud_flow(tmp_path):
    client = _build_client(tmp_path)
    roadmap = _create_roadmap(client)
    assert roadmap["owner_id"] == "owner-1"
    assert roadmap["status"] == "draft"

    first = client.post(f"/roadmaps/{roadmap['id']}/epics", json={"title": "First"}, headers=OWNER).json()
    front = client.post(
        f"/roadmaps/{roadmap['id']}/epics", json={"title": "Front", "position": 0}, headers=OWNER
    ).json()
    assert front["position"] == 0

    feature_res = client.post("/features", json={"epic_id": first["id"], "title": "Editor"}, headers=OWNER)
    assert feature_res.status_code == 200
    feature = feature_res.json()
    assert feature["roadmap_id"] == roadmap["id"]

    task_res = client.post("/tasks", json={"feature_id": feature["id"], "title": "Wire up"}, headers=OWNER)
    assert task_res.status_code == 200
    task = task_res.json()

    done_res = client.put(f"/tasks/{task['id']}", json={"status": "done"}, headers=OWNER)
    assert done_res.status_code == 200
    assert done_res.json()["completed_at"] is not None

    full = client.get(f"/roadmaps/{roadmap['id']}/full", headers=OWNER).json()
    assert full["current_user_role"] == "owner"
    assert [(epic["title"], epic["position"]) for epic in full["epics"]] == [("Front", 0), ("First", 1)]
    assert full["epics"][1]["features"][0]["tasks"][0]["status"] == "done"

    delete_res = client.delete(f"/epics/{front['id']}", headers=OWNER)
    assert delete_res.status_code == 200
    full = client.get(f"/roadmaps/{roadmap['id']}/full", headers=OWNER).json()
    assert [(epic["title"], epic["position"]) for epic in full["epics"]] == [("First", 0)]


def test_milestone_links(tmp_path):
    client = _build_client(tmp_path)
    roadmap = _create_roadmap(client)
    other = _create_roadmap(client, "Other")
    epic = client.post(f"/roadmaps/{roadmap['id']}/epics", json={"title": "Core"}, headers=OWNER).json()
    other_epic = client.post(f"/roadmaps/{other['id']}/epics", json={"title": "Else"}, headers=OWNER).json()
    feature = client.post("/features", json={"epic_id": epic["id"], "title": "Editor"}, headers=OWNER).json()
    foreign = client.post("/features", json={"epic_id": other_epic["id"], "title": "Far"}, headers=OWNER).json()
    milestone = client.post(
        f"/roadmaps/{roadmap['id']}/milestones",
        json={"title": "Beta", "target_date": "2026-12-01"},
        headers=OWNER,
    ).json()

    linked = client.post(f"/milestones/{milestone['id']}/features", json={"feature_id": feature["id"]}, headers=OWNER)
    assert linked.status_code == 200
    assert linked.json()["feature_ids"] == [feature["id"]]

    duplicate = client.post(
        f"/milestones/{milestone['id']}/features", json={"feature_id": feature["id"]}, headers=OWNER
    )
    assert duplicate.status_code == 409

    cross = client.post(f"/milestones/{milestone['id']}/features", json={"feature_id": foreign["id"]}, headers=OWNER)
    assert cross.status_code == 400

    unlinked = client.delete(f"/milestones/{milestone['id']}/features/{feature['id']}", headers=OWNER)
    assert unlinked.status_code == 200
    assert unlinked.json()["feature_ids"] == []
    missing = client.delete(f"/milestones/{milestone['id']}/features/{feature['id']}", headers=OWNER)
    assert missing.status_code == 404


def test_identity_and_access_errors(tmp_path):
    client = _build_client(tmp_path)
    roadmap = _create_roadmap(client)

    assert client.post("/roadmaps", json={"name": "No identity"}).status_code == 401
    assert client.get(f"/roadmaps/{roadmap['id']}", headers=STRANGER).status_code == 403
    assert client.put(f"/roadmaps/{roadmap['id']}", json={"name": "Hijack"}, headers=STRANGER).status_code == 403
    assert client.get("/roadmaps/missing-id", headers=OWNER).status_code == 404
    assert client.post("/roadmaps", json={"name": "   "}, headers=OWNER).status_code == 422
    assert client.post(
        "/features", json={"epic_id": "nope", "title": "Orphan"}, headers=OWNER
    ).status_code == 404


def test_list_by_owner_and_delete(tmp_path):
    client = _build_client(tmp_path)
    first = _create_roadmap(client, "First")
    _create_roadmap(client, "Second")

    listed = client.get("/roadmaps/user/owner-1")
    assert listed.status_code == 200
    assert {row["name"] for row in listed.json()["items"]} == {"First", "Second"}

    assert client.delete(f"/roadmaps/{first['id']}", headers=OWNER).json() == {"success": True, "id": first["id"]}
    assert [row["name"] for row in client.get("/roadmaps/user/owner-1").json()["items"]] == ["Second"]


def test_comments_follow_share_role(tmp_path):
    client = _build_client(tmp_path)
    roadmap = _create_roadmap(client)
    epic = client.post(f"/roadmaps/{roadmap['id']}/epics", json={"title": "Core"}, headers=OWNER).json()
    share = client.put(
        f"/roadmap-shares/roadmap/{roadmap['id']}",
        json={"invited_emails": [{"email": "stranger@example.com", "role": "commenter"}], "default_role": "viewer"},
        headers=OWNER,
    ).json()

    created = client.post(f"/epics/{epic['id']}/comments", json={"content": "Ship it"}, headers=STRANGER)
    assert created.status_code == 200
    assert created.json()["user_id"] == "stranger-1"

    visitor = {"X-User-Id": "visitor-1", "X-User-Email": "visitor@example.com"}
    blocked = client.post(
        f"/epics/{epic['id']}/comments",
        json={"content": "Me too"},
        headers={**visitor, "X-Share-Token": share["share_token"]},
    )
    assert blocked.status_code == 403

    listed = client.get(
        f"/epics/{epic['id']}/comments", headers={**visitor, "X-Share-Token": share["share_token"]}
    )
    assert listed.status_code == 200
    assert [row["content"] for row in listed.json()["items"]] == ["Ship it"]
