from core.roadmap.models import EpicNode
from core.roadmap.positions import (
    clamp_position,
    has_unique_positions,
    insert_with_shift,
    is_contiguous,
    move_to_position,
    remove_and_compact,
)


def _epic(epic_id: str, position: int) -> EpicNode:
    return EpicNode(id=epic_id, roadmap_id="r1", title=epic_id.upper(), position=position)


def _ids(rows) -> list[str]:
    return [row.id for row in rows]


def test_insert_in_the_middle_shifts_later_siblings() -> None:
    siblings = [_epic("a", 0), _epic("b", 1), _epic("c", 2)]
    result = insert_with_shift(siblings, _epic("n", 1))

    assert _ids(result) == ["a", "n", "b", "c"]
    assert [row.position for row in result] == [0, 1, 2, 3]
    assert is_contiguous(result)
    # input is untouched
    assert [row.position for row in siblings] == [0, 1, 2]


def test_insert_at_count_appends_without_shifting() -> None:
    siblings = [_epic("a", 0), _epic("b", 1)]
    result = insert_with_shift(siblings, _epic("n", 2))

    assert _ids(result) == ["a", "b", "n"]
    assert result[0] is siblings[0]
    assert result[1] is siblings[1]


def test_insert_at_zero_shifts_everything() -> None:
    siblings = [_epic("a", 0), _epic("b", 1)]
    result = insert_with_shift(siblings, _epic("n", 0))
    assert _ids(result) == ["n", "a", "b"]
    assert is_contiguous(result)


def test_remove_and_compact_closes_gap() -> None:
    siblings = [_epic("a", 0), _epic("b", 1), _epic("c", 2), _epic("d", 3)]
    result = remove_and_compact(siblings, "b")

    assert _ids(result) == ["a", "c", "d"]
    assert [row.position for row in result] == [0, 1, 2]


def test_remove_unknown_id_is_noop() -> None:
    siblings = [_epic("a", 0)]
    assert _ids(remove_and_compact(siblings, "zzz")) == ["a"]


def test_move_down_decrements_nodes_in_between() -> None:
    siblings = [_epic("a", 0), _epic("b", 1), _epic("c", 2), _epic("d", 3)]
    result = move_to_position(siblings, "a", 2)

    assert _ids(result) == ["b", "c", "a", "d"]
    assert is_contiguous(result)


def test_move_up_increments_nodes_in_between() -> None:
    siblings = [_epic("a", 0), _epic("b", 1), _epic("c", 2), _epic("d", 3)]
    result = move_to_position(siblings, "d", 1)

    assert _ids(result) == ["a", "d", "b", "c"]
    assert is_contiguous(result)


def test_move_clamps_to_last_slot() -> None:
    siblings = [_epic("a", 0), _epic("b", 1), _epic("c", 2)]
    result = move_to_position(siblings, "a", 99)
    assert _ids(result) == ["b", "c", "a"]


def test_positions_stay_unique_after_mixed_operations() -> None:
    rows: list[EpicNode] = []
    for index, position in enumerate([0, 0, 1, 3, 2]):
        rows = insert_with_shift(rows, _epic(f"e{index}", min(position, len(rows))))
    rows = remove_and_compact(rows, "e1")
    rows = insert_with_shift(rows, _epic("late", 1))

    assert has_unique_positions(rows)
    assert is_contiguous(rows)


def test_clamp_position() -> None:
    assert clamp_position(None, 3) == 3
    assert clamp_position(7, 3) == 3
    assert clamp_position(-2, 3) == 0
    assert clamp_position(1, 3) == 1
