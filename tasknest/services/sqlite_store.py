"""
SQLite-backed remote task store.

Implements RemoteTaskStore on top of the SQLAlchemy async layer, so the
task manager can persist through a local database file when no remote
service is configured.
"""

from typing import Any, Dict, List

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from tasknest.database import DatabaseManager, TaskORM
from tasknest.logging_config import get_logger
from tasknest.models import Task
from tasknest.services.remote_store import (
    NetworkError,
    NotFoundError,
    RemoteTaskStore,
    ServerError,
    StoreValidationError,
    check_update_fields,
)

logger = get_logger(__name__)


class SqliteTaskStore(RemoteTaskStore):
    """
    Task store persisting to a database through DatabaseManager.

    SQLAlchemy failures are translated into the store error taxonomy:
    integrity errors become StoreValidationError, connection problems
    NetworkError, anything else ServerError.
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        """
        Initialize the store.

        Args:
            db_manager: Initialized database manager
        """
        self.db_manager = db_manager

    # ==============================================================================
    # CONVERSION HELPERS
    # ==============================================================================

    @staticmethod
    def _orm_to_pydantic(task_orm: TaskORM) -> Task:
        return Task(
            id=task_orm.id,
            description=task_orm.description,
            completed=task_orm.completed,
            order=task_orm.order,
            parent_id=task_orm.parent_id,
            category=task_orm.category,
            created_at=task_orm.created_at,
        )

    @staticmethod
    def _pydantic_to_orm(task: Task) -> TaskORM:
        return TaskORM(
            id=task.id,
            description=task.description,
            completed=task.completed,
            order=task.order,
            parent_id=task.parent_id,
            category=task.category,
            created_at=task.created_at,
        )

    # ==============================================================================
    # STORE OPERATIONS
    # ==============================================================================

    async def create(self, task: Task) -> Task:
        try:
            async with self.db_manager.get_session() as session:
                session.add(self._pydantic_to_orm(task))
            logger.debug(f"Created task {task.id} in {task.category}")
            return task
        except IntegrityError as e:
            raise StoreValidationError(f"Invalid request: task {task.id} already exists") from e
        except OperationalError as e:
            raise NetworkError() from e
        except SQLAlchemyError as e:
            raise ServerError() from e

    async def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        check_update_fields(fields)
        updated = None
        try:
            async with self.db_manager.get_session() as session:
                result = await session.execute(select(TaskORM).where(TaskORM.id == task_id))
                task_orm = result.scalar_one_or_none()
                if task_orm is not None:
                    for field, value in fields.items():
                        setattr(task_orm, field, value)
                    updated = self._orm_to_pydantic(task_orm)
        except OperationalError as e:
            raise NetworkError() from e
        except SQLAlchemyError as e:
            raise ServerError() from e

        if updated is None:
            raise NotFoundError()
        logger.debug(f"Updated task {task_id}: fields={sorted(fields)}")
        return updated

    async def remove(self, task_id: str) -> None:
        try:
            async with self.db_manager.get_session() as session:
                result = await session.execute(
                    delete(TaskORM).where(
                        or_(TaskORM.id == task_id, TaskORM.parent_id == task_id)
                    )
                )
                deleted = result.rowcount
        except OperationalError as e:
            raise NetworkError() from e
        except SQLAlchemyError as e:
            raise ServerError() from e

        if deleted == 0:
            raise NotFoundError()
        logger.debug(f"Removed task {task_id} ({deleted} rows)")

    async def list_all(self) -> List[Task]:
        try:
            async with self.db_manager.get_session() as session:
                result = await session.execute(
                    select(TaskORM).order_by(TaskORM.category, TaskORM.order)
                )
                return [self._orm_to_pydantic(task_orm) for task_orm in result.scalars().all()]
        except OperationalError as e:
            raise NetworkError() from e
        except SQLAlchemyError as e:
            raise ServerError() from e
