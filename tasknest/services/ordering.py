"""
Order normalizer for tasknest.

Rebuilds dense 1-based ``order`` values per sibling group and produces the
flattened render sequence (each root followed by its children). Every
function here is pure: inputs are never mutated.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from tasknest.logging_config import get_logger
from tasknest.models import Task, TaskRow

logger = get_logger(__name__)


def sort_by_order(tasks: Iterable[Task]) -> List[Task]:
    """
    Sort tasks by ``order``, keeping input position for ties.

    Args:
        tasks: Tasks to sort

    Returns:
        New list sorted by (order, input position)
    """
    indexed = list(enumerate(tasks))
    indexed.sort(key=lambda pair: (pair[1].order, pair[0]))
    return [task for _, task in indexed]


def normalize_orders(tasks: Sequence[Task]) -> List[Task]:
    """
    Recompute dense per-sibling-group orders from input position.

    The rank of a task within its sibling group is its position relative to
    its siblings in ``tasks``. Existing order values are ignored, so callers
    pass either a render sequence or a list already sorted by order.

    Args:
        tasks: Tasks with a structurally valid parent assignment

    Returns:
        Tasks in input order with order values 1..N per sibling group.
        Tasks whose order is already correct are returned unchanged.
    """
    counters: Dict[Optional[str], int] = defaultdict(int)
    result = []
    for task in tasks:
        counters[task.parent_id] += 1
        order = counters[task.parent_id]
        result.append(task if task.order == order else task.model_copy(update={"order": order}))
    return result


def flatten(tasks: Sequence[Task]) -> List[Task]:
    """
    Build the render sequence: roots by order, each followed by its children.

    Children whose parent is missing from ``tasks`` are not part of the
    sequence; validation rejects such collections before they get here.
    """
    children: Dict[str, List[Task]] = defaultdict(list)
    roots = []
    for task in tasks:
        if task.parent_id is None:
            roots.append(task)
        else:
            children[task.parent_id].append(task)

    sequence = []
    for root in sort_by_order(roots):
        sequence.append(root)
        sequence.extend(sort_by_order(children.get(root.id, [])))
    return sequence


def normalize(tasks: Sequence[Task]) -> Tuple[List[Task], List[Task]]:
    """
    Normalize a collection.

    Ranks follow the existing order values, with ties broken by input
    position, so normalizing an already-normalized list changes nothing.

    Args:
        tasks: Tasks with a structurally valid parent assignment

    Returns:
        Tuple of (persisted shape in input order, flattened render sequence)
    """
    sequence = normalize_orders(flatten(tasks))
    by_id = {task.id: task for task in sequence}
    renumbered = sum(1 for task in tasks if task.id in by_id and by_id[task.id].order != task.order)
    if renumbered:
        logger.debug(f"Normalized orders: {renumbered} of {len(tasks)} tasks renumbered")
    persisted = [by_id.get(task.id, task) for task in tasks]
    return persisted, sequence


def next_order(tasks: Iterable[Task], parent_id: Optional[str] = None) -> int:
    """
    Get the next order value for a new task in a sibling group.

    Args:
        tasks: Current tasks of the category
        parent_id: Parent of the target sibling group, None for roots

    Returns:
        Highest sibling order plus one, or 1 for an empty group
    """
    orders = [task.order for task in tasks if task.parent_id == parent_id]
    return max(orders) + 1 if orders else 1


def section_ids(tasks: Iterable[Task]) -> Set[str]:
    """Ids of tasks that currently have at least one child."""
    return {task.parent_id for task in tasks if task.parent_id is not None}


def build_rows(
    tasks: Sequence[Task],
    newly_created_id: Optional[str] = None,
    dragging_id: Optional[str] = None,
    sections: Optional[Set[str]] = None,
) -> List[TaskRow]:
    """
    Build render rows for the UI.

    Sections are displayed upper-cased. A dropzone is offered beneath every
    root task while a drag is in progress, except beneath the dragged task.

    Args:
        tasks: Tasks of the active category
        newly_created_id: Id of the task the UI should focus
        dragging_id: Id of the task currently being dragged, if any
        sections: Precomputed ids of tasks with children; derived from
            ``tasks`` when omitted

    Returns:
        One row per task in render order
    """
    if sections is None:
        sections = section_ids(tasks)
    rows = []
    for task in flatten(tasks):
        is_section = task.id in sections
        rows.append(
            TaskRow(
                task=task,
                is_section=is_section,
                indent_level=0 if task.is_root else 1,
                display_description=task.description.upper() if is_section else task.description,
                show_dropzone=(
                    dragging_id is not None
                    and task.is_root
                    and task.id != dragging_id
                ),
                is_new=newly_created_id is not None and task.id == newly_created_id,
            )
        )
    return rows
