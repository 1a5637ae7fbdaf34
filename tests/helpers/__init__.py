"""Test helpers for tasknest.

Provides a fake remote store with call recording and failure injection,
and invariant assertions shared by the test modules.
"""

from typing import List, Optional

from tasknest.models import Task
from tasknest.services.validation import validate_task_collection
from tests.helpers.fake_store import FakeTaskStore


def assert_valid(tasks: List[Task], category: Optional[str] = None) -> None:
    """Assert a collection satisfies every structural invariant."""
    errors = validate_task_collection(tasks, category)
    assert errors == [], errors


def structure(tasks: List[Task]) -> list:
    """Structural fingerprint of a collection, ignoring timestamps."""
    return [task.structure() for task in tasks]


__all__ = ["FakeTaskStore", "assert_valid", "structure"]
