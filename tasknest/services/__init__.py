"""tasknest services - hierarchy resolution, ordering, validation and sync."""

from tasknest.services.task_manager import TaskManager
from tasknest.services.remote_store import InMemoryTaskStore, RemoteTaskStore

__all__ = ["TaskManager", "InMemoryTaskStore", "RemoteTaskStore"]
