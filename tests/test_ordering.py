"""
Tests for the order normalizer.

Tests cover dense per-group renumbering, tie breaking by input position,
idempotence, the flattened render sequence and render rows.
"""

from tasknest.services.ordering import (
    build_rows,
    flatten,
    next_order,
    normalize,
    normalize_orders,
    sort_by_order,
)
from tests.helpers import assert_valid


def ids(tasks):
    return [task.id for task in tasks]


class TestNormalizeOrders:
    """Tests for dense renumbering."""

    def test_gaps_are_closed(self, make_task):
        tasks = [
            make_task("a", order=3),
            make_task("b", order=7),
            make_task("c", order=10),
        ]

        result = normalize_orders(tasks)

        assert [t.order for t in result] == [1, 2, 3]
        assert ids(result) == ["a", "b", "c"]

    def test_each_sibling_group_is_numbered_separately(self, make_task):
        tasks = [
            make_task("A", order=5),
            make_task("a1", order=4, parent_id="A"),
            make_task("a2", order=9, parent_id="A"),
            make_task("B", order=6),
        ]

        result = {t.id: t.order for t in normalize_orders(tasks)}

        assert result == {"A": 1, "a1": 1, "a2": 2, "B": 2}

    def test_unchanged_tasks_keep_identity(self, make_task):
        """Tasks already at the right order are returned as-is."""
        task = make_task("a", order=1)
        assert normalize_orders([task])[0] is task

    def test_inputs_are_not_mutated(self, make_task):
        tasks = [make_task("a", order=4)]
        normalize_orders(tasks)
        assert tasks[0].order == 4


class TestFlatten:
    """Tests for the render sequence."""

    def test_roots_followed_by_children(self, make_task):
        tasks = [
            make_task("b1", order=1, parent_id="B"),
            make_task("B", order=2),
            make_task("a2", order=2, parent_id="A"),
            make_task("A", order=1),
            make_task("a1", order=1, parent_id="A"),
        ]

        assert ids(flatten(tasks)) == ["A", "a1", "a2", "B", "b1"]

    def test_ties_broken_by_input_position(self, make_task):
        """Equal orders keep their relative input position, never id order."""
        tasks = [
            make_task("z", "Zebra", order=1),
            make_task("a", "Apple", order=1),
        ]

        assert ids(flatten(tasks)) == ["z", "a"]
        assert ids(sort_by_order(reversed(tasks))) == ["a", "z"]


class TestNormalize:
    """Tests for the combined normalizer."""

    def test_returns_persisted_shape_and_sequence(self, make_task):
        tasks = [
            make_task("a1", order=8, parent_id="A"),
            make_task("A", order=3),
            make_task("B", order=9),
        ]

        persisted, sequence = normalize(tasks)

        assert ids(persisted) == ["a1", "A", "B"]
        assert [t.order for t in persisted] == [1, 1, 2]
        assert ids(sequence) == ["A", "a1", "B"]
        assert_valid(sequence)

    def test_idempotent(self, make_task):
        tasks = [
            make_task("B", order=4),
            make_task("b1", order=2, parent_id="B"),
            make_task("A", order=2),
            make_task("b2", order=2, parent_id="B"),
        ]

        persisted, sequence = normalize(tasks)
        persisted_again, sequence_again = normalize(persisted)

        assert [t.structure() for t in persisted_again] == [t.structure() for t in persisted]
        assert [t.structure() for t in sequence_again] == [t.structure() for t in sequence]

    def test_deterministic(self, make_task):
        tasks = [make_task("a", order=1), make_task("b", order=1), make_task("c", order=1)]

        first = normalize(tasks)[1]
        second = normalize(list(tasks))[1]

        assert ids(first) == ids(second) == ["a", "b", "c"]


class TestNextOrder:

    def test_empty_group_starts_at_one(self, make_task):
        assert next_order([], None) == 1
        assert next_order([make_task("A")], "A") == 1

    def test_next_after_highest_sibling(self, two_sections):
        assert next_order(two_sections, None) == 3
        assert next_order(two_sections, "A") == 2


class TestBuildRows:
    """Tests for render rows."""

    def test_section_and_indent_flags(self, two_sections, make_task):
        tasks = two_sections + [make_task("C", "Read book", order=3)]

        rows = {row.task.id: row for row in build_rows(tasks)}

        assert rows["A"].is_section is True
        assert rows["A"].indent_level == 0
        assert rows["A"].display_description == "GROCERIES"
        assert rows["a1"].is_section is False
        assert rows["a1"].indent_level == 1
        assert rows["a1"].display_description == "Milk"
        assert rows["C"].is_section is False
        assert rows["C"].display_description == "Read book"

    def test_dropzones_only_while_dragging(self, two_sections):
        rows = build_rows(two_sections)
        assert not any(row.show_dropzone for row in rows)

        dragging = {row.task.id: row for row in build_rows(two_sections, dragging_id="b1")}
        assert dragging["A"].show_dropzone is True
        assert dragging["B"].show_dropzone is True
        assert dragging["a1"].show_dropzone is False

    def test_no_dropzone_beneath_dragged_task(self, flat_tasks):
        rows = {row.task.id: row for row in build_rows(flat_tasks, dragging_id="X")}
        assert rows["X"].show_dropzone is False
        assert rows["Y"].show_dropzone is True

    def test_new_task_marker(self, flat_tasks):
        rows = build_rows(flat_tasks, newly_created_id="Y")
        assert [row.is_new for row in rows] == [False, True, False]

    def test_precomputed_sections_are_used(self, flat_tasks):
        rows = build_rows(flat_tasks, sections={"Z"})
        assert [row.is_section for row in rows] == [False, False, True]
