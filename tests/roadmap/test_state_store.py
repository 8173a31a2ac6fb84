import asyncio
from datetime import date

import pytest

from core.gateway.base import RoadmapGateway
from core.roadmap.errors import AuthorizationError, GatewayError, InputValidationError, StoreStateError
from core.roadmap.models import (
    EpicNode,
    FeatureNode,
    MilestoneNode,
    RoadmapTree,
    TaskNode,
)
from core.roadmap.positions import clamp_position
from core.roadmap.state_store import RoadmapStateStore
from core.sharing.roles import ShareRole


class FakeGateway(RoadmapGateway):
    """Hands back server-shaped nodes; optionally fails or stalls the next call."""

    def __init__(self, tree: RoadmapTree) -> None:
        super().__init__(None)
        self.tree = tree
        self.calls: list[str] = []
        self.fail_with: Exception | None = None
        self.gate: asyncio.Event | None = None
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}{self._seq}"

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

    async def get_roadmap_full(self, roadmap_id):
        await self._enter("get_roadmap_full")
        return self.tree

    async def create_epic(self, roadmap_id, payload):
        await self._enter("create_epic")
        count = len(self.tree.epics) + self.calls.count("create_epic") - 1
        return EpicNode(
            id=self._next_id("e"),
            roadmap_id=roadmap_id,
            title=payload.title,
            position=clamp_position(payload.position, count),
        )

    async def update_epic(self, epic_id, changes):
        await self._enter("update_epic")
        return EpicNode(id=epic_id, roadmap_id="r1", title=changes.title or "x", position=changes.position or 0)

    async def delete_epic(self, epic_id):
        await self._enter("delete_epic")

    async def create_feature(self, payload):
        await self._enter("create_feature")
        return FeatureNode(
            id=self._next_id("f"),
            roadmap_id=payload.roadmap_id,
            epic_id=payload.epic_id,
            title=payload.title,
            position=payload.position,
            is_deliverable=payload.is_deliverable,
        )

    async def update_feature(self, feature_id, changes):
        await self._enter("update_feature")
        return FeatureNode(id=feature_id, roadmap_id="r1", epic_id="e-a", title=changes.title or "x", position=0)

    async def delete_feature(self, feature_id):
        await self._enter("delete_feature")

    async def create_task(self, payload):
        await self._enter("create_task")
        return TaskNode(id=self._next_id("t"), feature_id=payload.feature_id, title=payload.title, position=payload.position)

    async def delete_task(self, task_id):
        await self._enter("delete_task")

    async def create_milestone(self, roadmap_id, payload):
        await self._enter("create_milestone")
        return MilestoneNode(
            id=self._next_id("m"),
            roadmap_id=roadmap_id,
            title=payload.title,
            target_date=payload.target_date,
            position=payload.position,
        )

    async def delete_milestone(self, milestone_id):
        await self._enter("delete_milestone")

    async def link_milestone_feature(self, milestone_id, feature_id):
        await self._enter("link_milestone_feature")
        return MilestoneNode(
            id=milestone_id, roadmap_id="r1", title="M", target_date=date(2026, 12, 1), feature_ids=[feature_id]
        )


def _tree() -> RoadmapTree:
    tasks = [
        TaskNode(id="t-a", feature_id="f-a", title="T A", position=0),
        TaskNode(id="t-b", feature_id="f-a", title="T B", position=1),
    ]
    features = [
        FeatureNode(id="f-a", roadmap_id="r1", epic_id="e-a", title="F A", position=0, tasks=tasks),
        FeatureNode(id="f-b", roadmap_id="r1", epic_id="e-a", title="F B", position=1),
    ]
    epics = [
        EpicNode(id="e-a", roadmap_id="r1", title="A", position=0, features=features),
        EpicNode(id="e-b", roadmap_id="r1", title="B", position=1),
        EpicNode(id="e-c", roadmap_id="r1", title="C", position=2),
    ]
    milestones = [
        MilestoneNode(
            id="m-a", roadmap_id="r1", title="Beta", target_date=date(2026, 12, 1), feature_ids=["f-a", "f-b"]
        )
    ]
    return RoadmapTree(id="r1", name="Plan", owner_id="u1", current_user_role="owner", epics=epics, milestones=milestones)


async def _loaded_store(role=None) -> tuple[RoadmapStateStore, FakeGateway]:
    gateway = FakeGateway(_tree())
    store = RoadmapStateStore(gateway, role=role)
    await store.load_roadmap("r1")
    return store, gateway


@pytest.mark.asyncio
async def test_add_epic_at_position_shifts_siblings() -> None:
    store, _ = await _loaded_store()

    created = await store.add_epic({"title": "New", "position": 1})

    epics = store.roadmap.epics
    assert [epic.id for epic in epics] == ["e-a", created.id, "e-b", "e-c"]
    assert [epic.position for epic in epics] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_add_epic_defaults_to_append() -> None:
    store, _ = await _loaded_store()

    created = await store.add_epic({"title": "Tail"})

    assert created.position == 3
    assert [epic.id for epic in store.roadmap.epics][-1] == created.id
    assert [epic.position for epic in store.roadmap.epics] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_update_feature_keeps_loaded_tasks() -> None:
    store, _ = await _loaded_store()

    await store.update_feature("f-a", {"title": "Renamed"})

    feature = store.find_feature("f-a")
    assert feature.title == "Renamed"
    assert [task.id for task in feature.tasks] == ["t-a", "t-b"]


@pytest.mark.asyncio
async def test_update_epic_keeps_loaded_features() -> None:
    store, _ = await _loaded_store()

    await store.update_epic("e-a", {"title": "Renamed"})

    epic = store.find_epic("e-a")
    assert epic.title == "Renamed"
    assert [feature.id for feature in epic.features] == ["f-a", "f-b"]


@pytest.mark.asyncio
async def test_delete_compacts_and_drops_milestone_links() -> None:
    store, _ = await _loaded_store()

    await store.delete_feature("f-a")

    epic = store.find_epic("e-a")
    assert [(feature.id, feature.position) for feature in epic.features] == [("f-b", 0)]
    assert store.find_milestone("m-a").feature_ids == ["f-b"]

    await store.delete_epic("e-b")
    assert [(epic.id, epic.position) for epic in store.roadmap.epics] == [("e-a", 0), ("e-c", 1)]


@pytest.mark.asyncio
async def test_gateway_failure_leaves_tree_untouched() -> None:
    store, gateway = await _loaded_store()
    before = store.roadmap
    gateway.fail_with = GatewayError("gateway_unavailable", status_code=503)

    with pytest.raises(GatewayError):
        await store.add_task({"feature_id": "f-a", "title": "Nope", "position": 0})

    assert store.roadmap is before
    assert store.in_flight["task"] is False


@pytest.mark.asyncio
async def test_validation_runs_before_network() -> None:
    store, gateway = await _loaded_store()
    calls_before = list(gateway.calls)

    with pytest.raises(InputValidationError):
        await store.add_epic({"title": "   "})
    with pytest.raises(InputValidationError):
        await store.add_feature({"epic_id": "e-a", "title": "x" * 201})

    assert gateway.calls == calls_before


@pytest.mark.asyncio
async def test_viewer_role_cannot_mutate() -> None:
    store, gateway = await _loaded_store(role=ShareRole.VIEWER)

    with pytest.raises(AuthorizationError):
        await store.add_epic({"title": "Blocked"})
    assert "create_epic" not in gateway.calls


@pytest.mark.asyncio
async def test_concurrent_adds_do_not_collide() -> None:
    store, _ = await _loaded_store()

    await asyncio.gather(
        store.add_task({"feature_id": "f-a", "title": "One"}),
        store.add_task({"feature_id": "f-a", "title": "Two"}),
    )

    tasks = store.find_feature("f-a").tasks
    assert [task.position for task in tasks] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_in_flight_flag_is_per_kind() -> None:
    store, gateway = await _loaded_store()
    gateway.gate = asyncio.Event()

    pending = asyncio.create_task(store.add_milestone({"title": "GA", "target_date": "2027-01-15"}))
    await asyncio.sleep(0)
    assert store.is_in_flight("milestone") is True
    assert store.is_in_flight("epic") is False

    gateway.gate.set()
    created = await pending
    assert store.is_in_flight("milestone") is False
    assert [row.id for row in store.roadmap.milestones] == ["m-a", created.id]


@pytest.mark.asyncio
async def test_writes_rejected_while_reloading() -> None:
    store, gateway = await _loaded_store()
    gateway.gate = asyncio.Event()

    reload = asyncio.create_task(store.load_roadmap("r1"))
    await asyncio.sleep(0)
    with pytest.raises(StoreStateError):
        await store.add_epic({"title": "Mid reload"})

    gateway.gate.set()
    await reload


@pytest.mark.asyncio
async def test_subscribers_see_each_commit_and_dispose_blocks_use() -> None:
    store, _ = await _loaded_store()
    seen: list[int] = []
    unsubscribe = store.subscribe(lambda tree: seen.append(len(tree.epics)))

    await store.add_epic({"title": "One"})
    unsubscribe()
    await store.add_epic({"title": "Two"})
    assert seen == [4]

    store.dispose()
    assert store.roadmap is None
    with pytest.raises(StoreStateError):
        await store.add_epic({"title": "Gone"})


@pytest.mark.asyncio
async def test_link_and_progress_helpers() -> None:
    store, _ = await _loaded_store()
    await store.add_feature({"epic_id": "e-b", "title": "Ship", "is_deliverable": False})

    milestone = await store.link_feature_to_milestone("m-a", "f-a")

    assert milestone.feature_ids == ["f-a"]
    assert store.feature_progress("f-a") == 0
    assert store.milestone_progress("m-a") == 0
