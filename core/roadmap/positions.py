"""Sibling ordering helpers.

Every sibling set (milestones and epics of a roadmap, features of an epic,
tasks of a feature) keeps ``position`` as a zero-based, gap-free, unique
sequence. The helpers here never mutate their input; they return new lists
holding copies of any node whose position changed.
"""

from __future__ import annotations

from typing import Iterable, Protocol, TypeVar


class Positioned(Protocol):
    id: str
    position: int

    def model_copy(self, *, update: dict | None = None, deep: bool = False): ...


NodeT = TypeVar("NodeT", bound=Positioned)


def _with_position(node: NodeT, position: int) -> NodeT:
    if node.position == position:
        return node
    return node.model_copy(update={"position": position})


def sort_by_position(nodes: Iterable[NodeT]) -> list[NodeT]:
    return sorted(nodes, key=lambda row: (row.position, str(row.id)))


def clamp_position(position: int | None, count: int) -> int:
    if position is None or position > count:
        return count
    return max(0, int(position))


def insert_with_shift(siblings: list[NodeT], new_node: NodeT) -> list[NodeT]:
    count = len(siblings)
    if new_node.position < count:
        shifted = [
            _with_position(row, row.position + 1) if row.position >= new_node.position else row
            for row in siblings
        ]
    else:
        shifted = list(siblings)
    shifted.append(new_node)
    return sort_by_position(shifted)


def remove_and_compact(siblings: list[NodeT], node_id: str) -> list[NodeT]:
    target = next((row for row in siblings if row.id == node_id), None)
    if target is None:
        return list(siblings)
    remaining = [row for row in siblings if row.id != node_id]
    return sort_by_position(
        _with_position(row, row.position - 1) if row.position > target.position else row
        for row in remaining
    )


def move_to_position(siblings: list[NodeT], node_id: str, new_position: int) -> list[NodeT]:
    target = next((row for row in siblings if row.id == node_id), None)
    if target is None:
        return list(siblings)
    new_position = max(0, min(int(new_position), len(siblings) - 1))
    old_position = target.position
    if new_position == old_position:
        return sort_by_position(siblings)

    moved: list[NodeT] = []
    for row in siblings:
        if row.id == node_id:
            moved.append(_with_position(row, new_position))
        elif new_position > old_position and old_position < row.position <= new_position:
            moved.append(_with_position(row, row.position - 1))
        elif new_position < old_position and new_position <= row.position < old_position:
            moved.append(_with_position(row, row.position + 1))
        else:
            moved.append(row)
    return sort_by_position(moved)


def replace_node(siblings: list[NodeT], updated: NodeT) -> list[NodeT]:
    return [updated if row.id == updated.id else row for row in siblings]


def has_unique_positions(nodes: Iterable[Positioned]) -> bool:
    positions = [row.position for row in nodes]
    return len(positions) == len(set(positions))


def is_contiguous(nodes: Iterable[Positioned]) -> bool:
    positions = sorted(row.position for row in nodes)
    return positions == list(range(len(positions)))
