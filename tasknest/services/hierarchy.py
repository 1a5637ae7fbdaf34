"""
Hierarchy resolver for tasknest.

Turns a drag-and-drop gesture into a structural decision (new parent and
insertion point) and applies that decision to produce a new, normalized
collection. Nothing here mutates its inputs.

Rules, in priority order:
    - Dropping a task onto itself, or onto an unknown task, is a no-op.
    - A section (a root task with children) never acquires a parent. Dropped
      on a dropzone it is a no-op; dropped on a task it stays a root at the
      target's position.
    - A dropzone beneath root task R nests the dragged task under R, after
      R's existing children.
    - Dropped on a child task, the dragged task joins that child's parent.
      Dropped on a root task, it becomes a root.
"""

import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Set

from tasknest.logging_config import get_logger
from tasknest.models import DropDecision, DropGesture, Task
from tasknest.services.ordering import flatten, normalize_orders, section_ids

logger = get_logger(__name__)

_WORD_START = re.compile(r"\b\w")


class ChildIndex:
    """
    Map from parent id to the ids of its children.

    Answers "is this task a section" without scanning the collection. The
    task manager keeps one index per category and updates it as tasks are
    added, removed or re-parented.
    """

    def __init__(self) -> None:
        self._children: Dict[str, List[str]] = defaultdict(list)

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "ChildIndex":
        """Build an index for a collection."""
        index = cls()
        for task in tasks:
            index.add(task)
        return index

    def add(self, task: Task) -> None:
        """Register a task under its parent, if it has one."""
        if task.parent_id is not None:
            self._children[task.parent_id].append(task.id)

    def remove(self, task_id: str, parent_id: Optional[str]) -> None:
        """
        Forget a task.

        Drops the task from its parent's child list and drops its own child
        list, so removing a section also forgets its children.
        """
        self._children.pop(task_id, None)
        if parent_id is None:
            return
        siblings = self._children.get(parent_id)
        if siblings and task_id in siblings:
            siblings.remove(task_id)
            if not siblings:
                del self._children[parent_id]

    def reparent(self, task_id: str, old_parent_id: Optional[str], new_parent_id: Optional[str]) -> None:
        """Move a task from one parent's child list to another's."""
        if old_parent_id == new_parent_id:
            return
        if old_parent_id is not None:
            siblings = self._children.get(old_parent_id, [])
            if task_id in siblings:
                siblings.remove(task_id)
            if not siblings:
                self._children.pop(old_parent_id, None)
        if new_parent_id is not None:
            self._children[new_parent_id].append(task_id)

    def is_section(self, task_id: str) -> bool:
        """True when at least one task has ``task_id`` as its parent."""
        return bool(self._children.get(task_id))

    def children_of(self, task_id: str) -> List[str]:
        """Ids of the children of ``task_id``, in registration order."""
        return list(self._children.get(task_id, []))

    def section_ids(self) -> Set[str]:
        """Ids of every task that currently has children."""
        return {parent_id for parent_id, children in self._children.items() if children}


def is_section(task: Task, tasks: Iterable[Task]) -> bool:
    """
    Check whether a task currently acts as a section.

    Args:
        task: The task to check
        tasks: The collection it belongs to

    Returns:
        True if any other task has ``task`` as its parent
    """
    return any(other.parent_id == task.id for other in tasks)


def revert_section_description(description: str) -> str:
    """
    Display transform applied when a section loses its last child.

    Sections are displayed upper-cased, so the text is lower-cased and the
    first letter of every word capitalized ("BUY MILK" -> "Buy Milk").
    """
    return _WORD_START.sub(lambda match: match.group().upper(), description.lower())


def revert_empty_sections(before: Iterable[Task], after: Sequence[Task]) -> List[Task]:
    """
    Convert tasks that stopped being sections back into plain tasks.

    Args:
        before: Collection prior to the mutation
        after: Collection after the mutation

    Returns:
        ``after`` with the description transform applied to every task that
        had children in ``before`` and has none in ``after``. Ids and orders
        are never changed.
    """
    emptied = section_ids(before) - section_ids(after)
    if not emptied:
        return list(after)

    result = []
    for task in after:
        if task.id in emptied:
            logger.debug(f"Section {task.id} has no children left, reverting to plain task")
            task = task.model_copy(update={"description": revert_section_description(task.description)})
        result.append(task)
    return result


def array_move(items: Sequence[Task], old_index: int, new_index: int) -> List[Task]:
    """Single-step list move: remove the item at old_index, insert it at new_index."""
    result = list(items)
    result.insert(new_index, result.pop(old_index))
    return result


def resolve_drop(tasks: Sequence[Task], gesture: DropGesture) -> Optional[DropDecision]:
    """
    Resolve a drag gesture into a structural decision.

    Args:
        tasks: Current, validated tasks of the active category
        gesture: The drag gesture reported by the UI

    Returns:
        DropDecision for a valid gesture, None when the gesture must be
        discarded
    """
    if gesture.dragged_id == gesture.target_id:
        logger.debug(f"Drop ignored: task {gesture.dragged_id} dropped onto itself")
        return None

    sequence = flatten(tasks)
    positions = {task.id: index for index, task in enumerate(sequence)}
    by_id = {task.id: task for task in sequence}

    dragged = by_id.get(gesture.dragged_id)
    if dragged is None:
        logger.warning(f"Drop refused: dragged task {gesture.dragged_id} not found")
        return None
    target = by_id.get(gesture.target_id)
    if target is None:
        logger.warning(f"Drop refused: target task {gesture.target_id} not found")
        return None

    index = ChildIndex.from_tasks(sequence)
    old_index = positions[dragged.id]

    if index.is_section(dragged.id):
        if gesture.is_dropzone:
            logger.debug(f"Drop ignored: section {dragged.id} cannot be nested")
            return None
        return DropDecision(
            task_id=dragged.id,
            new_parent_id=None,
            insertion_index=positions[target.id],
        )

    if gesture.is_dropzone:
        if not target.is_root:
            logger.debug(f"Drop ignored: dropzone target {target.id} is not a root task")
            return None
        # Land right after the last task of the target's group
        last_id = target.id
        for child in sequence[positions[target.id] + 1:]:
            if child.parent_id != target.id:
                break
            last_id = child.id
        last_index = positions[last_id]
        return DropDecision(
            task_id=dragged.id,
            new_parent_id=target.id,
            insertion_index=last_index if old_index <= last_index else last_index + 1,
            nesting=True,
        )

    # Join the target's parent, or become a root when the target is one
    return DropDecision(
        task_id=dragged.id,
        new_parent_id=target.parent_id,
        insertion_index=positions[target.id],
    )


def apply_drop(tasks: Sequence[Task], decision: DropDecision) -> List[Task]:
    """
    Apply a drop decision to a collection.

    The dragged task is moved within the flattened pre-gesture sequence,
    given its new parent, emptied sections are reverted, and orders are
    rebuilt from the resulting positions.

    Args:
        tasks: Tasks the decision was resolved against
        decision: Result of resolve_drop()

    Returns:
        New collection in render order
    """
    sequence = flatten(tasks)
    old_index = next(i for i, task in enumerate(sequence) if task.id == decision.task_id)
    moved = array_move(sequence, old_index, decision.insertion_index)

    reparented = []
    for task in moved:
        if task.id == decision.task_id and task.parent_id != decision.new_parent_id:
            logger.debug(
                f"Task {task.id} re-parented: {task.parent_id} -> {decision.new_parent_id}"
            )
            task = task.model_copy(update={"parent_id": decision.new_parent_id})
        reparented.append(task)

    reverted = revert_empty_sections(sequence, reparented)
    return flatten(normalize_orders(reverted))


def move_task(tasks: Sequence[Task], gesture: DropGesture) -> Optional[List[Task]]:
    """
    Resolve and apply a drag gesture.

    Returns:
        New collection in render order, or None when the gesture is a no-op
    """
    decision = resolve_drop(tasks, gesture)
    if decision is None:
        return None
    return apply_drop(tasks, decision)
