"""
Remote task store contract for tasknest.

The task manager persists changes only through RemoteTaskStore. Every
failure is raised as a StoreError subclass carrying a reason string that can
be shown to the user as-is.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from tasknest.logging_config import get_logger
from tasknest.models import Task

logger = get_logger(__name__)

# Fields a partial update may change
UPDATABLE_FIELDS = frozenset({"description", "completed", "order", "parent_id"})


class StoreError(Exception):
    """Base exception for remote store failures."""

    default_reason = "Remote task store request failed."

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class NetworkError(StoreError):
    """Raised when the store cannot be reached."""

    default_reason = "Unable to connect to server. Please check your connection."


class NotFoundError(StoreError):
    """Raised when the referenced task does not exist remotely."""

    default_reason = "Task not found. It may have been deleted."


class StoreValidationError(StoreError):
    """Raised when the store rejects the request payload."""

    default_reason = "Invalid request."


class ServerError(StoreError):
    """Raised when the store fails internally."""

    default_reason = "Server error. Please try again later."


def describe_failure(error: BaseException, operation: str) -> str:
    """
    Turn any exception raised during synchronization into display text.

    Args:
        error: The exception raised by the store call
        operation: Short description of the failed operation ("create task")

    Returns:
        The store's reason for StoreError, a generic message otherwise
    """
    if isinstance(error, StoreError):
        return error.reason
    return f"Failed to {operation}. Please try again."


class RemoteTaskStore(ABC):
    """
    Abstract remote task store.

    Implementations resolve or raise StoreError. Timeouts and retries at the
    transport level are the implementation's concern.
    """

    @abstractmethod
    async def create(self, task: Task) -> Task:
        """
        Create a task remotely.

        Raises:
            NetworkError, StoreValidationError, ServerError
        """

    @abstractmethod
    async def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        """
        Update some fields of a task.

        Args:
            task_id: Task to update
            fields: Subset of UPDATABLE_FIELDS with their new values

        Raises:
            NotFoundError, StoreValidationError, ServerError
        """

    @abstractmethod
    async def remove(self, task_id: str) -> None:
        """
        Delete a task and its children.

        Raises:
            NotFoundError, ServerError
        """

    @abstractmethod
    async def list_all(self) -> List[Task]:
        """
        Fetch every task of every category.

        Raises:
            NetworkError, ServerError
        """


def check_update_fields(fields: Dict[str, Any]) -> None:
    """
    Reject partial updates touching unknown or immutable fields.

    Raises:
        StoreValidationError: If a field cannot be updated
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise StoreValidationError(f"Invalid request: cannot update {sorted(unknown)}")


class InMemoryTaskStore(RemoteTaskStore):
    """
    Dict-backed store.

    Useful for local-only sessions and tests. Mirrors the remote service
    semantics: ids are unique and removal cascades to children.
    """

    def __init__(self, tasks: Optional[List[Task]] = None):
        self._tasks: Dict[str, Task] = {task.id: task for task in tasks or []}

    async def create(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise StoreValidationError(f"Invalid request: task {task.id} already exists")
        self._tasks[task.id] = task
        logger.debug(f"InMemoryTaskStore: created {task.id}")
        return task

    async def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        check_update_fields(fields)
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError()
        updated = task.model_copy(update=fields)
        self._tasks[task_id] = updated
        logger.debug(f"InMemoryTaskStore: updated {task_id} fields={sorted(fields)}")
        return updated

    async def remove(self, task_id: str) -> None:
        if task_id not in self._tasks:
            raise NotFoundError()
        removed = [
            tid for tid, task in self._tasks.items()
            if tid == task_id or task.parent_id == task_id
        ]
        for tid in removed:
            del self._tasks[tid]
        logger.debug(f"InMemoryTaskStore: removed {removed}")

    async def list_all(self) -> List[Task]:
        return list(self._tasks.values())
