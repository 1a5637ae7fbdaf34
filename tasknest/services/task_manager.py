"""
Optimistic task manager for tasknest.

Owns the in-memory task collection. Every user intent is applied locally and
immediately through a single reducer, then persisted through the remote task
store in a background asyncio task. When the remote call fails, the
collection is restored from the snapshot taken just before the intent was
applied and the failure reason is exposed through ``error``.

Rollback restores a full snapshot, not a diff: if a second intent is
committed while the first one's remote call is still in flight and that
call fails, the second intent's change is discarded as well.
"""

import asyncio
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from tasknest.config import TaskNestConfig
from tasknest.logging_config import get_logger
from tasknest.models import DropGesture, ManagerState, Task, TaskRow
from tasknest.services import hierarchy
from tasknest.services.hierarchy import ChildIndex, revert_empty_sections
from tasknest.services.ordering import build_rows, flatten, next_order, normalize_orders
from tasknest.services.remote_store import RemoteTaskStore, describe_failure
from tasknest.services.validation import (
    TaskNotFoundError,
    TaskValidationError,
    check_task_collection,
    clean_description,
    sanitize_tasks,
    validate_task_collection,
)

logger = get_logger(__name__)

RemoteCall = Callable[[], Awaitable[Any]]


class ActionType(Enum):
    """State transitions understood by the reducer."""
    SET_LOADING = "set_loading"
    SET_ERROR = "set_error"
    CLEAR_ERROR = "clear_error"
    SET_TASKS = "set_tasks"
    ROLLBACK = "rollback"
    SET_CATEGORY = "set_category"
    ADD_TASK = "add_task"
    RENAME_TASK = "rename_task"
    COMPLETE_TASK = "complete_task"
    REORDER_TASKS = "reorder_tasks"


# Actions that change the collection and must be mirrored remotely
SYNCED_ACTIONS = frozenset({
    ActionType.ADD_TASK,
    ActionType.RENAME_TASK,
    ActionType.COMPLETE_TASK,
    ActionType.REORDER_TASKS,
})


class Action(BaseModel):
    """A single state transition request."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: ActionType
    payload: Any = None
    error: Optional[str] = None


# ==============================================================================
# REDUCER
# ==============================================================================

def _replace_category(state: ManagerState, category: str, tasks: Sequence[Task], **changes) -> ManagerState:
    all_tasks = dict(state.tasks)
    all_tasks[category] = tuple(tasks)
    return state.model_copy(update={"tasks": all_tasks, **changes})


def _reduce_add(state: ManagerState, payload: Dict[str, Any]) -> ManagerState:
    category = payload["category"]
    current = state.tasks.get(category, ())
    parent_id = payload.get("parent_id")
    if parent_id is not None:
        parent = next((t for t in current if t.id == parent_id), None)
        if parent is None or not parent.is_root:
            logger.warning(f"ADD_TASK dropped: parent {parent_id} is not a root task in {category}")
            return state
    if any(t.id == payload["id"] for tasks in state.tasks.values() for t in tasks):
        logger.warning(f"ADD_TASK dropped: id {payload['id']} already exists")
        return state

    new_task = Task(
        id=payload["id"],
        description=payload["description"],
        category=category,
        order=next_order(current, parent_id),
        parent_id=parent_id,
    )
    return _replace_category(
        state, category, flatten([*current, new_task]), newly_created_id=new_task.id
    )


def _reduce_rename(state: ManagerState, payload: Dict[str, Any]) -> ManagerState:
    description = clean_description(payload.get("description"))
    if description is None:
        return state
    for category, tasks in state.tasks.items():
        if any(t.id == payload["id"] for t in tasks):
            renamed = [
                t.model_copy(update={"description": description}) if t.id == payload["id"] else t
                for t in tasks
            ]
            return _replace_category(state, category, renamed, newly_created_id=None)
    return state


def _reduce_complete(state: ManagerState, task_id: str) -> ManagerState:
    for category, tasks in state.tasks.items():
        if not any(t.id == task_id for t in tasks):
            continue
        # Removing a section removes its children too
        remaining = [t for t in tasks if t.id != task_id and t.parent_id != task_id]
        remaining = revert_empty_sections(tasks, remaining)
        return _replace_category(
            state, category, flatten(normalize_orders(remaining)), newly_created_id=None
        )
    return state


def _reduce_reorder(state: ManagerState, payload: Tuple[str, Sequence[Task]]) -> ManagerState:
    category, tasks = payload
    errors = validate_task_collection(tasks, category)
    if errors:
        logger.warning(f"REORDER_TASKS dropped: {errors}")
        return state
    return _replace_category(state, category, flatten(tasks))


def task_reducer(state: ManagerState, action: Action) -> ManagerState:
    """
    Compute the next state for an action.

    Invalid actions leave the state unchanged (the same object is returned),
    so no invalid collection can be committed.
    """
    if action.type == ActionType.SET_LOADING:
        return state.model_copy(update={"is_loading": bool(action.payload)})

    if action.type == ActionType.SET_ERROR:
        return state.model_copy(update={"error": action.payload})

    if action.type == ActionType.CLEAR_ERROR:
        return state.model_copy(update={"error": None})

    if action.type == ActionType.SET_TASKS:
        tasks = {category: () for category in state.tasks}
        tasks.update({category: tuple(items) for category, items in action.payload.items()})
        return state.model_copy(update={"tasks": tasks, "is_loading": False, "error": None})

    if action.type == ActionType.ROLLBACK:
        marker = state.newly_created_id
        if marker is not None and not any(
            t.id == marker for tasks in action.payload.values() for t in tasks
        ):
            marker = None
        return state.model_copy(
            update={"tasks": action.payload, "error": action.error, "newly_created_id": marker}
        )

    if action.type == ActionType.SET_CATEGORY:
        if action.payload not in state.tasks:
            logger.warning(f"Attempted to set invalid category: {action.payload}")
            return state
        return state.model_copy(update={"category": action.payload})

    if action.type == ActionType.ADD_TASK:
        return _reduce_add(state, action.payload)

    if action.type == ActionType.RENAME_TASK:
        return _reduce_rename(state, action.payload)

    if action.type == ActionType.COMPLETE_TASK:
        return _reduce_complete(state, action.payload)

    if action.type == ActionType.REORDER_TASKS:
        return _reduce_reorder(state, action.payload)

    return state


def changed_fields(
    before: Sequence[Task],
    after: Sequence[Task],
    fields: Tuple[str, ...] = ("order", "parent_id"),
) -> Dict[str, Dict[str, Any]]:
    """
    Diff two versions of a collection.

    Returns:
        For each task present in both whose given fields differ, the new
        values of the differing fields
    """
    previous = {task.id: task for task in before}
    diff = {}
    for task in after:
        old = previous.get(task.id)
        if old is None:
            continue
        changes = {
            field: getattr(task, field)
            for field in fields
            if getattr(task, field) != getattr(old, field)
        }
        if changes:
            diff[task.id] = changes
    return diff


# ==============================================================================
# MANAGER
# ==============================================================================

class TaskManager:
    """
    Single owner of the task collection.

    Intents are synchronous: the local change is committed before the method
    returns. Remote persistence runs in background asyncio tasks, so intents
    must be called from a running event loop when a store is configured.
    Without a store the manager works in local-only mode.
    """

    def __init__(
        self,
        store: Optional[RemoteTaskStore] = None,
        id_factory: Optional[Callable[[], str]] = None,
        config: Optional[TaskNestConfig] = None,
        on_change_callback: Optional[Callable[[ManagerState], None]] = None,
    ) -> None:
        """
        Initialize the task manager.

        Args:
            store: Remote task store, None for local-only mode
            id_factory: Generator for new task ids (UUID4 strings by default)
            config: Categories and defaults, TaskNestConfig() if None
            on_change_callback: Called with the new state after each transition
        """
        self.store = store
        self.config = config or TaskNestConfig()
        self.id_factory = id_factory or (lambda: str(uuid4()))
        self.on_change_callback = on_change_callback

        self._state = ManagerState(
            tasks={category: () for category in self.config.categories},
            category=self.config.default_category,
        )
        self._indexes: Dict[str, ChildIndex] = {
            category: ChildIndex() for category in self.config.categories
        }
        self._queue: Deque[Action] = deque()
        self._dispatching = False
        self._pending: Set["asyncio.Task[None]"] = set()

        logger.info(
            f"TaskManager initialized: categories={self.config.categories}, "
            f"mode={'remote' if store else 'local-only'}"
        )

    # ==============================================================================
    # QUERIES
    # ==============================================================================

    @property
    def state(self) -> ManagerState:
        """Current state snapshot."""
        return self._state

    @property
    def category(self) -> str:
        return self._state.category

    @property
    def tasks(self) -> List[Task]:
        """Tasks of the active category in render order."""
        return list(self._state.current_tasks)

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def newly_created_id(self) -> Optional[str]:
        return self._state.newly_created_id

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def rows(self) -> List[TaskRow]:
        """Render rows for the active category."""
        return self.rows_for()

    def rows_for(self, dragging_id: Optional[str] = None) -> List[TaskRow]:
        """
        Render rows for the active category.

        Args:
            dragging_id: Task being dragged, enables dropzone flags
        """
        return build_rows(
            self._state.current_tasks,
            newly_created_id=self._state.newly_created_id,
            dragging_id=dragging_id,
            sections=self._indexes[self.category].section_ids(),
        )

    def is_section(self, task_id: str) -> bool:
        """True when the task currently has children."""
        return self._indexes[self.category].is_section(task_id)

    def children_of(self, task_id: str) -> List[Task]:
        """Children of a task of the active category, in render order."""
        child_ids = set(self._indexes[self.category].children_of(task_id))
        return [t for t in self._state.current_tasks if t.id in child_ids]

    def get_task(self, task_id: str) -> Optional[Task]:
        """Find a task of the active category."""
        return next((t for t in self._state.current_tasks if t.id == task_id), None)

    @property
    def has_pending_sync(self) -> bool:
        return bool(self._pending)

    # ==============================================================================
    # DISPATCH
    # ==============================================================================

    def dispatch(self, action: Action) -> None:
        """
        Queue an action and process the queue.

        Actions are applied strictly one at a time. An action dispatched while
        another is being processed (from the change callback, for instance)
        is queued and applied afterwards.

        Raises:
            RuntimeError: If a synced action is dispatched with a store
                configured but no running event loop
        """
        if self.store is not None and action.type in SYNCED_ACTIONS:
            asyncio.get_running_loop()

        self._queue.append(action)
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._queue:
                self._process(self._queue.popleft())
        finally:
            self._dispatching = False

    def _process(self, action: Action) -> None:
        before = self._state
        after = task_reducer(before, action)
        if after is before:
            logger.debug(f"Action {action.type.value} left state unchanged")
            return

        self._state = after
        self._update_indexes(action, before, after)
        logger.debug(f"Applied {action.type.value}")

        if self.store is not None and action.type in SYNCED_ACTIONS:
            self._schedule_sync(action, before, after)

        if self.on_change_callback:
            self.on_change_callback(after)

    def _update_indexes(self, action: Action, before: ManagerState, after: ManagerState) -> None:
        if action.type == ActionType.ADD_TASK:
            task_id = after.newly_created_id
            category = action.payload["category"]
            task = next(t for t in after.tasks[category] if t.id == task_id)
            self._indexes[category].add(task)
            return

        if action.type == ActionType.REORDER_TASKS:
            category = action.payload[0]
            previous = {t.id: t.parent_id for t in before.tasks[category]}
            if set(previous) != {t.id for t in after.tasks[category]}:
                self._indexes[category] = ChildIndex.from_tasks(after.tasks[category])
                return
            index = self._indexes[category]
            for task in after.tasks[category]:
                old_parent_id = previous.get(task.id)
                if old_parent_id != task.parent_id:
                    index.reparent(task.id, old_parent_id, task.parent_id)
            return

        for category, tasks in after.tasks.items():
            old_tasks = before.tasks.get(category, ())
            if tasks is old_tasks:
                continue
            if action.type == ActionType.COMPLETE_TASK:
                remaining = {t.id for t in tasks}
                index = self._indexes[category]
                for task in old_tasks:
                    if task.id not in remaining:
                        index.remove(task.id, task.parent_id)
            elif action.type in (ActionType.SET_TASKS, ActionType.ROLLBACK):
                self._indexes[category] = ChildIndex.from_tasks(tasks)

    # ==============================================================================
    # REMOTE SYNCHRONIZATION
    # ==============================================================================

    def _schedule_sync(self, action: Action, before: ManagerState, after: ManagerState) -> None:
        operation, stages = self._remote_calls(action, before, after)
        stages = [stage for stage in stages if stage]
        if not stages:
            return

        task = asyncio.get_running_loop().create_task(
            self._synchronize(operation, stages, before)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _remote_calls(
        self,
        action: Action,
        before: ManagerState,
        after: ManagerState,
    ) -> Tuple[str, List[List[RemoteCall]]]:
        """
        Build the remote calls mirroring an action.

        Returns:
            Operation name and the calls grouped in stages. Calls within a
            stage run concurrently; a stage starts only once the previous one
            has succeeded.
        """
        store = self.store

        if action.type == ActionType.ADD_TASK:
            category = action.payload["category"]
            task = next(t for t in after.tasks[category] if t.id == after.newly_created_id)
            return "create task", [[lambda: store.create(task)]]

        if action.type == ActionType.RENAME_TASK:
            task_id = action.payload["id"]
            description = clean_description(action.payload["description"])
            return "update task", [[lambda: store.update(task_id, {"description": description})]]

        if action.type == ActionType.COMPLETE_TASK:
            task_id = action.payload
            renumbered = []
            for category, tasks in after.tasks.items():
                diff = changed_fields(before.tasks[category], tasks, ("order",))
                renumbered.extend(self._update_calls(diff))
            # Siblings are renumbered remotely only once the removal went through
            return "delete task", [[lambda: store.remove(task_id)], renumbered]

        if action.type == ActionType.REORDER_TASKS:
            category, _ = action.payload
            diff = changed_fields(before.tasks[category], after.tasks[category])
            return "reorder tasks", [self._update_calls(diff)]

        return action.type.value, []

    def _update_calls(self, diff: Dict[str, Dict[str, Any]]) -> List[RemoteCall]:
        store = self.store
        return [
            (lambda task_id=task_id, fields=fields: store.update(task_id, fields))
            for task_id, fields in diff.items()
        ]

    async def _synchronize(
        self,
        operation: str,
        stages: List[List[RemoteCall]],
        snapshot: ManagerState,
    ) -> None:
        """Run the remote calls of one intent, rolling back if any fails."""
        try:
            for calls in stages:
                await asyncio.gather(*(call() for call in calls))
            logger.debug(
                f"Synchronized {operation} ({sum(len(calls) for calls in stages)} calls)"
            )
        except Exception as e:
            reason = describe_failure(e, operation)
            logger.error(f"Failed to {operation}, rolling back: {reason}", exc_info=True)
            self.dispatch(Action(type=ActionType.ROLLBACK, payload=snapshot.tasks, error=reason))

    async def wait_for_sync(self) -> None:
        """Wait until every in-flight remote call has resolved."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ==============================================================================
    # INTENTS
    # ==============================================================================

    def set_category(self, category: str) -> None:
        """Switch the active category; unknown categories are ignored."""
        self.dispatch(Action(type=ActionType.SET_CATEGORY, payload=category))

    def clear_error(self) -> None:
        self.dispatch(Action(type=ActionType.CLEAR_ERROR))

    def add_task(self, description: str, parent_id: Optional[str] = None) -> Optional[str]:
        """
        Add a task to the active category.

        Blank descriptions are ignored without raising.

        Args:
            description: Task text
            parent_id: Root task to nest the new task under

        Returns:
            Id of the new task, or None when the description is blank

        Raises:
            TaskNotFoundError: If parent_id is not a task of the active category
            TaskValidationError: If the parent is itself a child task, or the
                id factory returned an id that is already in use
        """
        text = clean_description(description)
        if text is None:
            logger.debug("add_task ignored: blank description")
            return None

        if parent_id is not None:
            parent = self.get_task(parent_id)
            if parent is None:
                raise TaskNotFoundError(f"Parent task with id {parent_id} not found")
            if not parent.is_root:
                raise TaskValidationError(
                    [f"Task {parent_id} is a child task and cannot have children"]
                )

        task_id = self.id_factory()
        if any(t.id == task_id for tasks in self._state.tasks.values() for t in tasks):
            raise TaskValidationError([f"Task id {task_id} is already in use"])
        logger.info(f"Adding task {task_id} to {self.category} (parent={parent_id})")
        self.dispatch(
            Action(
                type=ActionType.ADD_TASK,
                payload={
                    "id": task_id,
                    "description": text,
                    "parent_id": parent_id,
                    "category": self.category,
                },
            )
        )
        return task_id

    def rename_task(self, task_id: str, description: str) -> bool:
        """
        Change a task's description.

        Returns:
            False when the description is blank or the task is unknown
        """
        text = clean_description(description)
        if text is None or self.get_task(task_id) is None:
            logger.debug(f"rename_task ignored for {task_id}")
            return False
        self.dispatch(
            Action(type=ActionType.RENAME_TASK, payload={"id": task_id, "description": text})
        )
        return True

    def complete_task(self, task_id: str) -> bool:
        """
        Complete a task, removing it (and its children) from the list.

        Returns:
            False when the task is unknown
        """
        if self.get_task(task_id) is None:
            logger.debug(f"complete_task ignored: {task_id} not found")
            return False
        logger.info(f"Completing task {task_id}")
        self.dispatch(Action(type=ActionType.COMPLETE_TASK, payload=task_id))
        return True

    def reorder_tasks(self, tasks: Sequence[Task]) -> List[Task]:
        """
        Replace the active category's collection with a reordered one.

        Only tasks whose order or parent changed are sent to the store.

        Args:
            tasks: Every task of the active category, normalized

        Returns:
            The committed collection in render order

        Raises:
            TaskValidationError: If the list breaks an invariant or does not
                contain exactly the current tasks
        """
        tasks = list(tasks)
        check_task_collection(tasks, self.category)

        current_ids = {t.id for t in self._state.current_tasks}
        new_ids = {t.id for t in tasks if isinstance(t, Task)}
        if new_ids != current_ids:
            errors = []
            if new_ids - current_ids:
                errors.append(f"Unknown tasks in reorder: {sorted(new_ids - current_ids)}")
            if current_ids - new_ids:
                errors.append(f"Tasks missing from reorder: {sorted(current_ids - new_ids)}")
            raise TaskValidationError(errors)

        self.dispatch(Action(type=ActionType.REORDER_TASKS, payload=(self.category, tuple(tasks))))
        return self.tasks

    def move_task(self, dragged_id: str, target_id: str, is_dropzone: bool = False) -> bool:
        """
        Apply a drag-and-drop gesture.

        Gestures that cannot be resolved are discarded without raising.

        Args:
            dragged_id: Task being dragged
            target_id: Task it was dropped on, or whose dropzone it was dropped on
            is_dropzone: True for the "nest under this task" dropzone

        Returns:
            True when the collection changed
        """
        gesture = DropGesture(dragged_id=dragged_id, target_id=target_id, is_dropzone=is_dropzone)
        current = self.tasks
        moved = hierarchy.move_task(current, gesture)
        if moved is None:
            return False
        if [t.structure() for t in moved] == [t.structure() for t in current]:
            logger.debug(f"Drop of {dragged_id} on {target_id} changed nothing")
            return False
        self.reorder_tasks(moved)
        return True

    async def load_tasks(self) -> None:
        """
        Replace the collection with the store's content.

        Loaded data is repaired into a valid collection. Tasks with an
        unknown category go to the default category. On failure the
        collection is left untouched and the reason is exposed via ``error``.
        """
        if self.store is None:
            self.dispatch(Action(type=ActionType.SET_LOADING, payload=False))
            return

        self.dispatch(Action(type=ActionType.SET_LOADING, payload=True))
        self.dispatch(Action(type=ActionType.CLEAR_ERROR))
        try:
            remote_tasks = await self.store.list_all()
        except Exception as e:
            reason = describe_failure(e, "fetch tasks")
            logger.error(f"Failed to load tasks: {reason}", exc_info=True)
            self.dispatch(Action(type=ActionType.SET_ERROR, payload=reason))
            self.dispatch(Action(type=ActionType.SET_LOADING, payload=False))
            return

        grouped: Dict[str, List[Task]] = {category: [] for category in self.config.categories}
        for task in remote_tasks:
            category = task.category if task.category in grouped else self.config.default_category
            grouped[category].append(task)

        loaded = {
            category: sanitize_tasks(
                raw,
                category,
                id_factory=self.id_factory,
                untitled=self.config.untitled_description,
            )
            for category, raw in grouped.items()
        }
        logger.info(
            "Loaded tasks: " + ", ".join(f"{c}={len(t)}" for c, t in loaded.items())
        )
        self.dispatch(Action(type=ActionType.SET_TASKS, payload=loaded))
