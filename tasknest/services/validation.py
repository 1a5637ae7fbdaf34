"""
Structural validation for tasknest task collections.

Checks the hierarchy invariants (unique ids, resolvable parents within the
same category, single nesting level, dense sibling orders) and repairs
malformed task data received from a remote store.
"""

import math
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from pydantic import ValidationError

from tasknest.logging_config import get_logger
from tasknest.models import Task
from tasknest.services.ordering import flatten, normalize_orders

logger = get_logger(__name__)


class TaskManagerError(Exception):
    """Base exception for task manager errors."""
    pass


class TaskValidationError(TaskManagerError):
    """Raised when a task collection breaks a structural invariant."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid task collection")


class TaskNotFoundError(TaskManagerError):
    """Raised when a task is not found."""
    pass


def clean_description(text: Optional[str]) -> Optional[str]:
    """
    Trim a user-supplied description.

    Returns:
        The trimmed text, or None when nothing is left
    """
    if not isinstance(text, str):
        return None
    text = text.strip()
    return text or None


def validate_task_collection(
    tasks: Sequence[Task],
    category: Optional[str] = None
) -> List[str]:
    """
    Check a collection against the hierarchy invariants.

    Args:
        tasks: Tasks to check
        category: When given, every task must belong to this category

    Returns:
        Descriptions of every violated invariant, empty when valid
    """
    errors: List[str] = []
    by_id: Dict[str, Task] = {}

    for index, task in enumerate(tasks):
        if not isinstance(task, Task):
            errors.append(f"Invalid task at index {index}: {task!r}")
            continue
        if task.id in by_id:
            errors.append(f"Duplicate task ID found: {task.id}")
            continue
        by_id[task.id] = task
        if category is not None and task.category != category:
            errors.append(
                f"Task {task.id} has category '{task.category}', expected '{category}'"
            )

    groups: Dict[Optional[str], List[Task]] = defaultdict(list)
    for task in by_id.values():
        groups[task.parent_id].append(task)
        if task.parent_id is None:
            continue
        parent = by_id.get(task.parent_id)
        if parent is None:
            errors.append(f"Task {task.id} references missing parent {task.parent_id}")
            continue
        if parent.category != task.category:
            errors.append(
                f"Task {task.id} ({task.category}) has parent {parent.id} "
                f"in another category ({parent.category})"
            )
        if parent.parent_id is not None:
            errors.append(
                f"Task {task.id} is nested under child task {parent.id}; "
                f"only one level of nesting is allowed"
            )

    for parent_id in groups:
        if parent_id is None:
            continue
        section = by_id.get(parent_id)
        if section is not None and section.parent_id is not None:
            errors.append(f"Section {section.id} has children and cannot itself be nested")

    for parent_id, siblings in groups.items():
        orders = sorted(task.order for task in siblings)
        expected = list(range(1, len(siblings) + 1))
        if orders != expected:
            group = "root tasks" if parent_id is None else f"children of {parent_id}"
            errors.append(f"Orders of {group} are not dense 1..{len(siblings)}: {orders}")

    return errors


def check_task_collection(tasks: Sequence[Task], category: Optional[str] = None) -> None:
    """
    Validate a collection, raising when any invariant is broken.

    Raises:
        TaskValidationError: With every violated invariant
    """
    errors = validate_task_collection(tasks, category)
    if errors:
        logger.warning(f"Task collection rejected: {errors}")
        raise TaskValidationError(errors)


def _repair_task(
    raw: Any,
    index: int,
    category: str,
    id_factory: Callable[[], str],
    untitled: str,
) -> Optional[Task]:
    """Build a valid Task out of a loosely-shaped remote record."""
    if isinstance(raw, Task):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        logger.warning(f"Dropped malformed task at index {index}: {raw!r}")
        return None

    task_id = raw.get("id")
    if not isinstance(task_id, str) or not task_id.strip():
        task_id = id_factory()
        logger.warning(f"Repaired missing id at index {index}: {task_id}")

    description = clean_description(raw.get("description")) or untitled
    order = raw.get("order")
    if isinstance(order, bool) or not isinstance(order, (int, float)) or not math.isfinite(order):
        order = index + 1
    parent_id = raw.get("parent_id", raw.get("parentId"))
    if not isinstance(parent_id, str) or not parent_id or parent_id == task_id:
        parent_id = None
    completed = raw.get("completed")
    created_at = raw.get("created_at")

    try:
        return Task(
            id=task_id,
            description=description,
            completed=completed if isinstance(completed, bool) else False,
            order=max(1, int(order)),
            parent_id=parent_id,
            category=category,
            created_at=created_at if isinstance(created_at, datetime) else datetime.utcnow(),
        )
    except ValidationError as e:
        logger.warning(f"Dropped unrepairable task at index {index}: {e}")
        return None


def sanitize_tasks(
    raw_tasks: Iterable[Any],
    category: str,
    id_factory: Optional[Callable[[], str]] = None,
    untitled: str = "Untitled Task",
) -> List[Task]:
    """
    Repair task data loaded from a remote store into a valid collection.

    Broken records are fixed where possible and dropped otherwise. Duplicate
    ids keep their first occurrence. Children whose parent is missing or is
    itself nested are promoted to roots. Orders are then made dense
    following the loaded order values.

    Args:
        raw_tasks: Task models or dicts (snake_case or camelCase parent key)
        category: Category the tasks are loaded into
        id_factory: Generator for missing ids
        untitled: Description used for blank records

    Returns:
        Tasks in render order, satisfying every structural invariant
    """
    if id_factory is None:
        id_factory = lambda: str(uuid4())

    tasks: List[Task] = []
    seen = set()
    for index, raw in enumerate(raw_tasks):
        task = _repair_task(raw, index, category, id_factory, untitled)
        if task is None:
            continue
        if task.id in seen:
            logger.warning(f"Dropped duplicate task ID on load: {task.id}")
            continue
        seen.add(task.id)
        tasks.append(task)

    by_id = {task.id: task for task in tasks}
    repaired = []
    for task in tasks:
        parent = by_id.get(task.parent_id) if task.parent_id else None
        if task.parent_id is not None and (parent is None or parent.parent_id is not None):
            logger.warning(f"Promoted task {task.id} to root: parent {task.parent_id} is invalid")
            task = task.model_copy(update={"parent_id": None})
        repaired.append(task)

    return normalize_orders(flatten(repaired))
