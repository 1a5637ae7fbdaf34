"""
Pytest configuration and fixtures for tasknest tests.

Provides database fixtures, task factories, and helpers to build
two-level task collections.
"""

from itertools import count
from typing import Callable, List, Optional

import pytest
import pytest_asyncio

from tasknest.database import DatabaseManager
from tasknest.models import Task
from tests.helpers import FakeTaskStore


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database
    """
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest.fixture
def id_factory() -> Callable[[], str]:
    """Deterministic id generator: task-1, task-2, ..."""
    counter = count(1)
    return lambda: f"task-{next(counter)}"


@pytest.fixture
def fake_store():
    """Empty fake remote store."""
    return FakeTaskStore()


@pytest.fixture
def make_task():
    """
    Factory fixture for creating Task models.

    Example:
        def test_something(make_task):
            task = make_task("a", "Buy milk", order=2)
    """
    def _make_task(
        id: str,
        description: Optional[str] = None,
        order: int = 1,
        parent_id: Optional[str] = None,
        category: str = "personal",
        completed: bool = False,
    ) -> Task:
        return Task(
            id=id,
            description=description or f"Task {id}",
            order=order,
            parent_id=parent_id,
            category=category,
            completed=completed,
        )
    return _make_task


@pytest.fixture
def two_sections(make_task) -> List[Task]:
    """
    Two sections with one child each, in render order.

    Creates:
        - A (order 1)
          - a1 (order 1)
        - B (order 2)
          - b1 (order 1)
    """
    return [
        make_task("A", "Groceries", order=1),
        make_task("a1", "Milk", order=1, parent_id="A"),
        make_task("B", "Errands", order=2),
        make_task("b1", "Post office", order=1, parent_id="B"),
    ]


@pytest.fixture
def flat_tasks(make_task) -> List[Task]:
    """Three plain root tasks X, Y, Z in order."""
    return [
        make_task("X", "Call mom", order=1),
        make_task("Y", "Pay rent", order=2),
        make_task("Z", "Water plants", order=3),
    ]

