"""
Comprehensive tests for the hierarchy resolver.

Tests cover:
- Section detection and the child index
- Drop resolution rules (nesting, sibling-join, unnesting, sections)
- No-op gestures (self drops, unknown ids, nesting a section)
- Applying decisions, including section reversion
"""

import pytest

from tasknest.models import DropGesture
from tasknest.services.hierarchy import (
    ChildIndex,
    apply_drop,
    array_move,
    is_section,
    move_task,
    resolve_drop,
    revert_empty_sections,
    revert_section_description,
)
from tests.helpers import assert_valid


def ids(tasks):
    return [task.id for task in tasks]


def by_id(tasks):
    return {task.id: task for task in tasks}


class TestSectionDetection:
    """Tests for derived section status."""

    def test_is_section_scan(self, two_sections, flat_tasks):
        assert is_section(two_sections[0], two_sections) is True
        assert is_section(two_sections[1], two_sections) is False
        assert is_section(flat_tasks[0], flat_tasks) is False

    def test_child_index_matches_scan(self, two_sections):
        index = ChildIndex.from_tasks(two_sections)

        assert index.is_section("A") is True
        assert index.is_section("a1") is False
        assert index.children_of("B") == ["b1"]
        assert index.section_ids() == {"A", "B"}

    def test_child_index_incremental_updates(self, two_sections, make_task):
        index = ChildIndex.from_tasks(two_sections)

        index.add(make_task("a2", order=2, parent_id="A"))
        assert index.children_of("A") == ["a1", "a2"]

        index.reparent("b1", "B", "A")
        assert index.is_section("B") is False
        assert index.children_of("A") == ["a1", "a2", "b1"]

        index.remove("a1", "A")
        assert index.children_of("A") == ["a2", "b1"]

        index.remove("A", None)
        assert index.is_section("A") is False
        assert index.section_ids() == set()

    def test_reparent_to_same_parent_is_noop(self, two_sections):
        index = ChildIndex.from_tasks(two_sections)
        index.reparent("a1", "A", "A")
        assert index.children_of("A") == ["a1"]


class TestSectionReversion:
    """Tests for the display transform applied to emptied sections."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("GROCERIES", "Groceries"),
            ("weekly PLAN for work", "Weekly Plan For Work"),
            ("3RD floor", "3rd Floor"),
        ],
    )
    def test_revert_section_description(self, text, expected):
        assert revert_section_description(text) == expected

    def test_only_emptied_sections_are_reverted(self, two_sections):
        after = [t for t in two_sections if t.id != "b1"]

        result = by_id(revert_empty_sections(two_sections, after))

        assert result["A"].description == "Groceries"
        assert result["B"].description == "Errands"
        assert result["B"].order == 2

    def test_nothing_emptied_returns_same_tasks(self, two_sections):
        result = revert_empty_sections(two_sections, two_sections)
        assert all(a is b for a, b in zip(result, two_sections))


class TestResolveDrop:
    """Tests for gesture resolution rules."""

    def test_drop_onto_itself_is_noop(self, flat_tasks):
        assert resolve_drop(flat_tasks, DropGesture(dragged_id="X", target_id="X")) is None

    def test_unknown_target_is_refused(self, flat_tasks):
        gesture = DropGesture(dragged_id="X", target_id="missing")
        assert resolve_drop(flat_tasks, gesture) is None

    def test_unknown_dragged_task_is_refused(self, flat_tasks):
        gesture = DropGesture(dragged_id="missing", target_id="X")
        assert resolve_drop(flat_tasks, gesture) is None

    def test_section_onto_dropzone_is_noop(self, two_sections, make_task):
        tasks = two_sections + [make_task("C", order=3)]
        gesture = DropGesture(dragged_id="A", target_id="C", is_dropzone=True)

        assert resolve_drop(tasks, gesture) is None

    def test_section_onto_child_stays_root(self, two_sections):
        """Sections never acquire a parent, even when dropped on a child."""
        decision = resolve_drop(two_sections, DropGesture(dragged_id="A", target_id="b1"))

        assert decision is not None
        assert decision.new_parent_id is None
        assert decision.insertion_index == 3

    def test_dropzone_nests_under_root(self, flat_tasks):
        decision = resolve_drop(
            flat_tasks, DropGesture(dragged_id="Z", target_id="X", is_dropzone=True)
        )

        assert decision.new_parent_id == "X"
        assert decision.nesting is True

    def test_dropzone_beneath_child_is_noop(self, two_sections, make_task):
        tasks = two_sections + [make_task("C", order=3)]
        gesture = DropGesture(dragged_id="C", target_id="a1", is_dropzone=True)

        assert resolve_drop(tasks, gesture) is None

    def test_drop_on_child_joins_its_parent(self, two_sections, make_task):
        tasks = two_sections + [make_task("C", order=3)]

        decision = resolve_drop(tasks, DropGesture(dragged_id="C", target_id="a1"))

        assert decision.new_parent_id == "A"
        assert decision.nesting is False

    def test_child_onto_differently_parented_child_joins_target_parent(self, two_sections):
        decision = resolve_drop(two_sections, DropGesture(dragged_id="b1", target_id="a1"))
        assert decision.new_parent_id == "A"

    def test_child_onto_root_unnests(self, two_sections):
        decision = resolve_drop(two_sections, DropGesture(dragged_id="a1", target_id="B"))
        assert decision.new_parent_id is None


class TestApplyDrop:
    """Tests for the resulting collection shape."""

    def test_array_move(self, flat_tasks):
        assert ids(array_move(flat_tasks, 0, 2)) == ["Y", "Z", "X"]
        assert ids(array_move(flat_tasks, 2, 0)) == ["Z", "X", "Y"]

    def test_root_reorder_down(self, flat_tasks):
        result = move_task(flat_tasks, DropGesture(dragged_id="X", target_id="Z"))

        assert ids(result) == ["Y", "Z", "X"]
        assert [t.order for t in result] == [1, 2, 3]
        assert_valid(result)

    def test_root_reorder_up(self, flat_tasks):
        result = move_task(flat_tasks, DropGesture(dragged_id="Z", target_id="X"))

        assert ids(result) == ["Z", "X", "Y"]
        assert_valid(result)

    def test_nesting_creates_section(self, flat_tasks):
        result = move_task(
            flat_tasks, DropGesture(dragged_id="Z", target_id="X", is_dropzone=True)
        )

        tasks = by_id(result)
        assert ids(result) == ["X", "Z", "Y"]
        assert tasks["Z"].parent_id == "X"
        assert tasks["Z"].order == 1
        assert tasks["Y"].order == 2
        assert is_section(tasks["X"], result)
        assert_valid(result)

    def test_nesting_downward_appends_after_existing_children(self, make_task):
        tasks = [
            make_task("P", order=1),
            make_task("R", order=2),
            make_task("r1", order=1, parent_id="R"),
        ]

        result = move_task(tasks, DropGesture(dragged_id="P", target_id="R", is_dropzone=True))

        assert ids(result) == ["R", "r1", "P"]
        assert by_id(result)["P"].order == 2
        assert_valid(result)

    def test_child_to_other_section_dropzone_reverts_old_section(self, two_sections):
        """B's only child moves under A: B becomes a plain task, A gains a second child."""
        result = move_task(
            two_sections, DropGesture(dragged_id="b1", target_id="A", is_dropzone=True)
        )

        tasks = by_id(result)
        assert tasks["b1"].parent_id == "A"
        assert tasks["b1"].order == 2
        assert tasks["a1"].order == 1
        assert tasks["B"].parent_id is None
        assert tasks["B"].description == "Errands"
        assert tasks["B"].order == 2
        assert not is_section(tasks["B"], result)
        assert_valid(result)

    def test_sibling_join_takes_target_position(self, two_sections, make_task):
        tasks = two_sections + [make_task("C", "Read", order=3)]

        result = move_task(tasks, DropGesture(dragged_id="C", target_id="a1"))

        moved = by_id(result)
        assert moved["C"].parent_id == "A"
        assert moved["C"].order == 1
        assert moved["a1"].order == 2
        assert ids(result) == ["A", "C", "a1", "B", "b1"]
        assert_valid(result)

    def test_unnest_last_child_reverts_section(self, make_task):
        tasks = [
            make_task("A", "SHOPPING", order=1),
            make_task("a1", "Milk", order=1, parent_id="A"),
            make_task("B", "Laundry", order=2),
        ]

        result = move_task(tasks, DropGesture(dragged_id="a1", target_id="B"))

        moved = by_id(result)
        assert moved["a1"].parent_id is None
        assert moved["A"].description == "Shopping"
        assert ids(result) == ["A", "B", "a1"]
        assert_valid(result)

    def test_section_dropped_on_child_keeps_children(self, two_sections):
        result = move_task(two_sections, DropGesture(dragged_id="A", target_id="b1"))

        moved = by_id(result)
        assert moved["A"].parent_id is None
        assert moved["a1"].parent_id == "A"
        assert ids(result) == ["B", "b1", "A", "a1"]
        assert_valid(result)

    def test_inputs_are_not_mutated(self, two_sections):
        before = [t.structure() for t in two_sections]
        move_task(two_sections, DropGesture(dragged_id="b1", target_id="A", is_dropzone=True))
        assert [t.structure() for t in two_sections] == before

    def test_apply_drop_uses_decision(self, flat_tasks):
        decision = resolve_drop(flat_tasks, DropGesture(dragged_id="Y", target_id="X"))
        result = apply_drop(flat_tasks, decision)
        assert ids(result) == ["Y", "X", "Z"]
