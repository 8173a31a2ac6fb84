from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable

from core.gateway.base import RoadmapGateway
from core.roadmap import progress
from core.roadmap.errors import AuthorizationError, EntityNotFoundError, InputValidationError, StoreStateError
from core.roadmap.models import (
    EntityKind,
    EpicCreate,
    EpicNode,
    EpicUpdate,
    FeatureCreate,
    FeatureNode,
    FeatureUpdate,
    MilestoneCreate,
    MilestoneNode,
    MilestoneUpdate,
    RoadmapTree,
    RoadmapUpdate,
    TaskCreate,
    TaskNode,
    TaskUpdate,
    coerce_input,
)
from core.roadmap.positions import insert_with_shift, move_to_position, remove_and_compact, replace_node
from core.sharing.roles import ShareRole, can_edit

logger = logging.getLogger(__name__)

Subscriber = Callable[[RoadmapTree | None], None]


def _upsert_sibling(siblings: list, node) -> list:
    # A reload that finished first may already hold the node.
    if any(row.id == node.id for row in siblings):
        return replace_node(siblings, node)
    return insert_with_shift(siblings, node)


def _apply_sibling_update(siblings: list, current, updated) -> list:
    if updated.position == current.position:
        return replace_node(siblings, updated)
    in_place = replace_node(siblings, updated.model_copy(update={"position": current.position}))
    return move_to_position(in_place, updated.id, updated.position)


class RoadmapStateStore:
    """In-memory roadmap tree kept in step with a ``RoadmapGateway``.

    Lifecycle is ``create -> load_roadmap -> mutate* -> dispose``. Every
    mutation awaits the gateway first and patches the tree only on
    success; a failed call leaves the previous tree untouched. Mutations
    on the same sibling set are serialized so position shifts are always
    computed against the latest tree.
    """

    def __init__(self, gateway: RoadmapGateway, *, role: ShareRole | None = None) -> None:
        self._gateway = gateway
        self._fixed_role = role
        self._roadmap: RoadmapTree | None = None
        self._in_flight: dict[EntityKind, int] = {kind: 0 for kind in EntityKind}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._load_lock = asyncio.Lock()
        self._reloading = 0
        self._subscribers: list[Subscriber] = []
        self._disposed = False

    # --- read side ------------------------------------------------------

    @property
    def roadmap(self) -> RoadmapTree | None:
        return self._roadmap

    @property
    def role(self) -> ShareRole | None:
        if self._fixed_role is not None:
            return self._fixed_role
        if self._roadmap is None or not self._roadmap.current_user_role:
            return None
        return ShareRole(self._roadmap.current_user_role)

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_reloading(self) -> bool:
        return self._reloading > 0

    @property
    def in_flight(self) -> dict[str, bool]:
        return {kind.value: count > 0 for kind, count in self._in_flight.items()}

    def is_in_flight(self, kind: EntityKind | str) -> bool:
        return self._in_flight[EntityKind(kind)] > 0

    def find_epic(self, epic_id: str) -> EpicNode | None:
        if self._roadmap is None:
            return None
        return next((epic for epic in self._roadmap.epics if epic.id == epic_id), None)

    def find_feature(self, feature_id: str) -> FeatureNode | None:
        located = self._locate_feature(feature_id)
        return located[1] if located else None

    def find_task(self, task_id: str) -> TaskNode | None:
        located = self._locate_task(task_id)
        return located[2] if located else None

    def find_milestone(self, milestone_id: str) -> MilestoneNode | None:
        if self._roadmap is None:
            return None
        return next((row for row in self._roadmap.milestones if row.id == milestone_id), None)

    def all_features(self) -> list[FeatureNode]:
        if self._roadmap is None:
            return []
        return [feature for epic in self._roadmap.epics for feature in epic.features]

    def feature_progress(self, feature_id: str) -> int:
        feature = self.find_feature(feature_id)
        if feature is None:
            raise EntityNotFoundError(f"feature_not_found:{feature_id}", code="feature_not_found")
        return progress.feature_progress(feature)

    def milestone_progress(self, milestone_id: str) -> int:
        milestone = self.find_milestone(milestone_id)
        if milestone is None:
            raise EntityNotFoundError(f"milestone_not_found:{milestone_id}", code="milestone_not_found")
        return progress.milestone_progress(milestone, self.all_features())

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._ensure_alive()
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def dispose(self) -> None:
        self._disposed = True
        self._subscribers.clear()
        self._locks.clear()
        self._roadmap = None

    # --- internals ------------------------------------------------------

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise StoreStateError("store_disposed")

    def _ensure_writable(self) -> RoadmapTree:
        self._ensure_alive()
        if self._roadmap is None:
            raise StoreStateError("roadmap_not_loaded")
        if self._reloading:
            raise StoreStateError("reload_in_flight")
        if not can_edit(self.role):
            role = self.role.value if self.role is not None else "none"
            raise AuthorizationError(f"role_required:editor:{role}")
        return self._roadmap

    def _ensure_current(self, roadmap_id: str) -> RoadmapTree:
        self._ensure_alive()
        if self._roadmap is None or self._roadmap.id != roadmap_id:
            raise StoreStateError(f"roadmap_changed:{roadmap_id}")
        return self._roadmap

    def _lock_for(self, scope: str, scope_id: str) -> asyncio.Lock:
        key = (scope, scope_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def _mutation(self, kind: EntityKind, scope: str, scope_id: str):
        self._in_flight[kind] += 1
        try:
            async with self._lock_for(scope, scope_id):
                yield
        finally:
            self._in_flight[kind] -= 1

    def _commit(self, tree: RoadmapTree | None) -> None:
        self._roadmap = tree
        for callback in list(self._subscribers):
            try:
                callback(tree)
            except Exception:
                logger.exception("roadmap subscriber failed")

    def _locate_feature(self, feature_id: str) -> tuple[EpicNode, FeatureNode] | None:
        if self._roadmap is None:
            return None
        for epic in self._roadmap.epics:
            for feature in epic.features:
                if feature.id == feature_id:
                    return epic, feature
        return None

    def _locate_task(self, task_id: str) -> tuple[EpicNode, FeatureNode, TaskNode] | None:
        if self._roadmap is None:
            return None
        for epic in self._roadmap.epics:
            for feature in epic.features:
                for task in feature.tasks:
                    if task.id == task_id:
                        return epic, feature, task
        return None

    def _require_epic(self, epic_id: str) -> EpicNode:
        epic = self.find_epic(epic_id)
        if epic is None:
            raise EntityNotFoundError(f"epic_not_found:{epic_id}", code="epic_not_found")
        return epic

    def _require_feature(self, feature_id: str) -> tuple[EpicNode, FeatureNode]:
        located = self._locate_feature(feature_id)
        if located is None:
            raise EntityNotFoundError(f"feature_not_found:{feature_id}", code="feature_not_found")
        return located

    def _require_task(self, task_id: str) -> tuple[EpicNode, FeatureNode, TaskNode]:
        located = self._locate_task(task_id)
        if located is None:
            raise EntityNotFoundError(f"task_not_found:{task_id}", code="task_not_found")
        return located

    def _require_milestone(self, milestone_id: str) -> MilestoneNode:
        milestone = self.find_milestone(milestone_id)
        if milestone is None:
            raise EntityNotFoundError(f"milestone_not_found:{milestone_id}", code="milestone_not_found")
        return milestone

    @staticmethod
    def _with_epic(tree: RoadmapTree, epic_id: str, fn: Callable[[EpicNode], EpicNode]) -> RoadmapTree:
        epics = [fn(epic) if epic.id == epic_id else epic for epic in tree.epics]
        return tree.model_copy(update={"epics": epics})

    @classmethod
    def _with_feature(
        cls, tree: RoadmapTree, epic_id: str, feature_id: str, fn: Callable[[FeatureNode], FeatureNode]
    ) -> RoadmapTree:
        def _patch_epic(epic: EpicNode) -> EpicNode:
            features = [fn(feature) if feature.id == feature_id else feature for feature in epic.features]
            return epic.model_copy(update={"features": features})

        return cls._with_epic(tree, epic_id, _patch_epic)

    @staticmethod
    def _without_milestone_links(tree: RoadmapTree, feature_ids: set[str]) -> RoadmapTree:
        if not feature_ids:
            return tree
        milestones = [
            row.model_copy(update={"feature_ids": [fid for fid in row.feature_ids if fid not in feature_ids]})
            if feature_ids.intersection(row.feature_ids)
            else row
            for row in tree.milestones
        ]
        return tree.model_copy(update={"milestones": milestones})

    # --- lifecycle ------------------------------------------------------

    async def load_roadmap(self, roadmap_id: str) -> RoadmapTree:
        self._ensure_alive()
        async with self._load_lock:
            self._reloading += 1
            self._in_flight[EntityKind.ROADMAP] += 1
            try:
                tree = await self._gateway.get_roadmap_full(roadmap_id)
            finally:
                self._reloading -= 1
                self._in_flight[EntityKind.ROADMAP] -= 1
            self._ensure_alive()
            self._commit(tree)
            logger.debug("roadmap loaded id=%s epics=%d", tree.id, len(tree.epics))
            return tree

    async def update_roadmap(self, changes: RoadmapUpdate | dict[str, Any]) -> RoadmapTree:
        payload = coerce_input(RoadmapUpdate, changes)
        tree = self._ensure_writable()
        roadmap_id = tree.id
        async with self._mutation(EntityKind.ROADMAP, "roadmap", roadmap_id):
            record = await self._gateway.update_roadmap(roadmap_id, payload)
            current = self._ensure_current(roadmap_id)
            patched = current.model_copy(update=record.model_dump())
            self._commit(patched)
            return patched

    # --- epics ----------------------------------------------------------

    async def add_epic(self, data: EpicCreate | dict[str, Any] | None = None) -> EpicNode:
        payload = coerce_input(EpicCreate, data)
        tree = self._ensure_writable()
        roadmap_id = tree.id
        async with self._mutation(EntityKind.EPIC, "epics", roadmap_id):
            if payload.position is None:
                payload = payload.model_copy(update={"position": len(self._ensure_current(roadmap_id).epics)})
            created = await self._gateway.create_epic(roadmap_id, payload)
            current = self._ensure_current(roadmap_id)
            epics = _upsert_sibling(current.epics, created)
            self._commit(current.model_copy(update={"epics": epics}))
            return created

    async def update_epic(self, epic_id: str, changes: EpicUpdate | dict[str, Any]) -> EpicNode:
        payload = coerce_input(EpicUpdate, changes)
        tree = self._ensure_writable()
        self._require_epic(epic_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.EPIC, "epics", roadmap_id):
            updated = await self._gateway.update_epic(epic_id, payload)
            current = self._ensure_current(roadmap_id)
            existing = self._require_epic(epic_id)
            merged = updated.model_copy(update={"features": existing.features})
            epics = _apply_sibling_update(current.epics, existing, merged)
            self._commit(current.model_copy(update={"epics": epics}))
            return merged

    async def delete_epic(self, epic_id: str) -> None:
        tree = self._ensure_writable()
        self._require_epic(epic_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.EPIC, "epics", roadmap_id):
            await self._gateway.delete_epic(epic_id)
            current = self._ensure_current(roadmap_id)
            existing = self.find_epic(epic_id)
            removed_features = {feature.id for feature in existing.features} if existing else set()
            patched = current.model_copy(update={"epics": remove_and_compact(current.epics, epic_id)})
            self._commit(self._without_milestone_links(patched, removed_features))

    # --- features -------------------------------------------------------

    async def add_feature(self, data: FeatureCreate | dict[str, Any]) -> FeatureNode:
        payload = coerce_input(FeatureCreate, data)
        tree = self._ensure_writable()
        if payload.roadmap_id and payload.roadmap_id != tree.id:
            raise InputValidationError(f"roadmap_id:epic_roadmap_mismatch:{payload.roadmap_id}")
        epic = self._require_epic(payload.epic_id)
        roadmap_id = tree.id
        payload = payload.model_copy(update={"roadmap_id": roadmap_id})
        async with self._mutation(EntityKind.FEATURE, "features", epic.id):
            if payload.position is None:
                payload = payload.model_copy(update={"position": len(self._require_epic(epic.id).features)})
            created = await self._gateway.create_feature(payload)
            current = self._ensure_current(roadmap_id)
            self._commit(
                self._with_epic(
                    current,
                    epic.id,
                    lambda row: row.model_copy(update={"features": _upsert_sibling(row.features, created)}),
                )
            )
            return created

    async def update_feature(self, feature_id: str, changes: FeatureUpdate | dict[str, Any]) -> FeatureNode:
        payload = coerce_input(FeatureUpdate, changes)
        tree = self._ensure_writable()
        epic, _ = self._require_feature(feature_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.FEATURE, "features", epic.id):
            updated = await self._gateway.update_feature(feature_id, payload)
            current = self._ensure_current(roadmap_id)
            parent, existing = self._require_feature(feature_id)
            merged = updated.model_copy(update={"tasks": existing.tasks})
            self._commit(
                self._with_epic(
                    current,
                    parent.id,
                    lambda row: row.model_copy(
                        update={"features": _apply_sibling_update(row.features, existing, merged)}
                    ),
                )
            )
            return merged

    async def delete_feature(self, feature_id: str) -> None:
        tree = self._ensure_writable()
        epic, _ = self._require_feature(feature_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.FEATURE, "features", epic.id):
            await self._gateway.delete_feature(feature_id)
            current = self._ensure_current(roadmap_id)
            patched = self._with_epic(
                current,
                epic.id,
                lambda row: row.model_copy(update={"features": remove_and_compact(row.features, feature_id)}),
            )
            self._commit(self._without_milestone_links(patched, {feature_id}))

    # --- tasks ----------------------------------------------------------

    async def add_task(self, data: TaskCreate | dict[str, Any]) -> TaskNode:
        payload = coerce_input(TaskCreate, data)
        tree = self._ensure_writable()
        epic, feature = self._require_feature(payload.feature_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.TASK, "tasks", feature.id):
            if payload.position is None:
                payload = payload.model_copy(update={"position": len(self._require_feature(feature.id)[1].tasks)})
            created = await self._gateway.create_task(payload)
            current = self._ensure_current(roadmap_id)
            parent, _ = self._require_feature(feature.id)
            self._commit(
                self._with_feature(
                    current,
                    parent.id,
                    feature.id,
                    lambda row: row.model_copy(update={"tasks": _upsert_sibling(row.tasks, created)}),
                )
            )
            return created

    async def update_task(self, task_id: str, changes: TaskUpdate | dict[str, Any]) -> TaskNode:
        payload = coerce_input(TaskUpdate, changes)
        tree = self._ensure_writable()
        _, feature, _ = self._require_task(task_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.TASK, "tasks", feature.id):
            updated = await self._gateway.update_task(task_id, payload)
            current = self._ensure_current(roadmap_id)
            epic, parent, existing = self._require_task(task_id)
            self._commit(
                self._with_feature(
                    current,
                    epic.id,
                    parent.id,
                    lambda row: row.model_copy(update={"tasks": _apply_sibling_update(row.tasks, existing, updated)}),
                )
            )
            return updated

    async def delete_task(self, task_id: str) -> None:
        tree = self._ensure_writable()
        epic, feature, _ = self._require_task(task_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.TASK, "tasks", feature.id):
            await self._gateway.delete_task(task_id)
            current = self._ensure_current(roadmap_id)
            self._commit(
                self._with_feature(
                    current,
                    epic.id,
                    feature.id,
                    lambda row: row.model_copy(update={"tasks": remove_and_compact(row.tasks, task_id)}),
                )
            )

    # --- milestones -----------------------------------------------------

    async def add_milestone(self, data: MilestoneCreate | dict[str, Any]) -> MilestoneNode:
        payload = coerce_input(MilestoneCreate, data)
        tree = self._ensure_writable()
        roadmap_id = tree.id
        async with self._mutation(EntityKind.MILESTONE, "milestones", roadmap_id):
            if payload.position is None:
                payload = payload.model_copy(update={"position": len(self._ensure_current(roadmap_id).milestones)})
            created = await self._gateway.create_milestone(roadmap_id, payload)
            current = self._ensure_current(roadmap_id)
            milestones = _upsert_sibling(current.milestones, created)
            self._commit(current.model_copy(update={"milestones": milestones}))
            return created

    async def update_milestone(self, milestone_id: str, changes: MilestoneUpdate | dict[str, Any]) -> MilestoneNode:
        payload = coerce_input(MilestoneUpdate, changes)
        tree = self._ensure_writable()
        self._require_milestone(milestone_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.MILESTONE, "milestones", roadmap_id):
            updated = await self._gateway.update_milestone(milestone_id, payload)
            current = self._ensure_current(roadmap_id)
            existing = self._require_milestone(milestone_id)
            milestones = _apply_sibling_update(current.milestones, existing, updated)
            self._commit(current.model_copy(update={"milestones": milestones}))
            return updated

    async def delete_milestone(self, milestone_id: str) -> None:
        tree = self._ensure_writable()
        self._require_milestone(milestone_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.MILESTONE, "milestones", roadmap_id):
            await self._gateway.delete_milestone(milestone_id)
            current = self._ensure_current(roadmap_id)
            milestones = remove_and_compact(current.milestones, milestone_id)
            self._commit(current.model_copy(update={"milestones": milestones}))

    async def link_feature_to_milestone(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        return await self._relink(milestone_id, feature_id, link=True)

    async def unlink_feature_from_milestone(self, milestone_id: str, feature_id: str) -> MilestoneNode:
        return await self._relink(milestone_id, feature_id, link=False)

    async def _relink(self, milestone_id: str, feature_id: str, *, link: bool) -> MilestoneNode:
        tree = self._ensure_writable()
        self._require_milestone(milestone_id)
        if link:
            self._require_feature(feature_id)
        roadmap_id = tree.id
        async with self._mutation(EntityKind.MILESTONE, "milestones", roadmap_id):
            if link:
                updated = await self._gateway.link_milestone_feature(milestone_id, feature_id)
            else:
                updated = await self._gateway.unlink_milestone_feature(milestone_id, feature_id)
            current = self._ensure_current(roadmap_id)
            milestones = replace_node(current.milestones, updated)
            self._commit(current.model_copy(update={"milestones": milestones}))
            return updated
