"""
Pydantic models for tasknest.

Defines the task entity, the render rows handed to the UI, the drag gesture
and drop decision types used by the hierarchy resolver, and the state owned
by the task manager.
"""

from datetime import datetime
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CATEGORIES = ("personal", "work")


class Task(BaseModel):
    """
    Represents a single task in a two-level hierarchy.

    Root tasks have no parent_id. A root task with at least one child acts as
    a section; that status is derived from the collection and never stored.
    Tasks are immutable, mutations go through ``model_copy(update=...)``.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "0b6f7c1e-2a4d-4c59-9f0e-1d2c3b4a5f60",
                "description": "Buy milk",
                "completed": False,
                "order": 1,
                "parent_id": None,
                "category": "personal",
                "created_at": "2025-01-14T10:00:00",
            }
        },
    )

    id: str = Field(..., min_length=1, description="Opaque unique identifier")
    description: str = Field(..., min_length=1, description="Display text")
    completed: bool = Field(default=False, description="Whether the task is completed")
    order: int = Field(default=1, ge=1, description="1-based position within siblings")
    parent_id: Optional[str] = Field(default=None, description="Parent task ID for nesting")
    category: str = Field(default="personal", min_length=1, description="Partition tag")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        """
        Trim the description and reject whitespace-only text.

        Raises:
            ValueError: If nothing is left after trimming
        """
        v = v.strip()
        if not v:
            raise ValueError("Task description cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_not_own_parent(self) -> "Task":
        """
        Reject tasks that reference themselves as parent.

        Raises:
            ValueError: If parent_id equals id
        """
        if self.parent_id is not None and self.parent_id == self.id:
            raise ValueError(f"Task {self.id} cannot be its own parent")
        return self

    @property
    def is_root(self) -> bool:
        """True when the task has no parent."""
        return self.parent_id is None

    def structure(self) -> Tuple[str, str, bool, int, Optional[str], str]:
        """
        Return the fields that define the task's shape, excluding timestamps.

        Two collections are structurally identical when the structures of
        their tasks are equal in the same order.
        """
        return (
            self.id,
            self.description,
            self.completed,
            self.order,
            self.parent_id,
            self.category,
        )


class TaskRow(BaseModel):
    """A single row of the flattened, render-ready sequence."""

    model_config = ConfigDict(frozen=True)

    task: Task
    is_section: bool = False
    indent_level: int = Field(default=0, ge=0, le=1)
    display_description: str
    show_dropzone: bool = False
    is_new: bool = False


class DropGesture(BaseModel):
    """
    A drag-and-drop gesture as reported by the UI.

    ``is_dropzone`` is set when the task was released over the synthetic
    "nest under this task" affordance rendered beneath ``target_id``.
    """

    model_config = ConfigDict(frozen=True)

    dragged_id: str
    target_id: str
    is_dropzone: bool = False


class DropDecision(BaseModel):
    """Structural outcome of a valid drop gesture."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    new_parent_id: Optional[str] = None
    # Index in the pre-gesture flattened sequence the task moves to
    insertion_index: int = Field(..., ge=0)
    nesting: bool = False


class ManagerState(BaseModel):
    """
    Snapshot of everything owned by the task manager.

    Tasks are kept per category as tuples so that a state object can be
    shared as a rollback snapshot without copying.
    """

    model_config = ConfigDict(frozen=True)

    tasks: Dict[str, Tuple[Task, ...]] = Field(
        default_factory=lambda: {category: () for category in DEFAULT_CATEGORIES}
    )
    category: str = DEFAULT_CATEGORIES[0]
    newly_created_id: Optional[str] = None
    is_loading: bool = False
    error: Optional[str] = None

    @property
    def current_tasks(self) -> Tuple[Task, ...]:
        """Tasks of the active category."""
        return self.tasks.get(self.category, ())
