"""Entry point for tasknest.

Prints the task list of a category from the configured database:
    python -m tasknest [category]

Or as an installed command:
    tasknest [category]
"""

import asyncio
import sys
from typing import List, Optional, Tuple

from tasknest.config import TaskNestConfig
from tasknest.database import init_database
from tasknest.logging_config import get_logger, setup_logging
from tasknest.models import TaskRow
from tasknest.services.sqlite_store import SqliteTaskStore
from tasknest.services.task_manager import TaskManager

logger = get_logger(__name__)


def format_row(row: TaskRow) -> str:
    """One line of output; children are indented under their section."""
    return "    " * row.indent_level + row.display_description


async def load_rows(config: TaskNestConfig, category: str) -> Tuple[List[TaskRow], Optional[str]]:
    """
    Load every task from the database and build the rows of one category.

    Returns:
        The render rows and the load error, if any
    """
    db_manager = await init_database(config.database_url)
    try:
        manager = TaskManager(store=SqliteTaskStore(db_manager), config=config)
        await manager.load_tasks()
        manager.set_category(category)
        return manager.rows, manager.error
    finally:
        await db_manager.close()


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for tasknest.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    # Initialize logging before any other operations
    setup_logging()

    try:
        config = TaskNestConfig.from_toml_file()
        category = args[0] if args else config.default_category
        if category not in config.categories:
            print(
                f"Unknown category '{category}'. Choose from: {', '.join(config.categories)}",
                file=sys.stderr,
            )
            return 2
        rows, error = asyncio.run(load_rows(config, category))
    except KeyboardInterrupt:
        logger.info("tasknest interrupted by user (Ctrl+C)")
        return 0
    except Exception:
        logger.error("Error running tasknest", exc_info=True)
        print("tasknest failed, see the log for details.", file=sys.stderr)
        return 1

    if error:
        print(error, file=sys.stderr)
        return 1

    for row in rows:
        print(format_row(row))
    logger.info(f"Listed {len(rows)} tasks of {category}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
