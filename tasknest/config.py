"""Configuration models for tasknest.

Settings are read from a TOML file (``[tasknest]`` table) with environment
variable overrides, and fall back to defaults when the file is missing.
"""

import os
import sys
from pathlib import Path
from typing import List, Optional

# Use tomllib from stdlib in Python 3.11+, fallback to tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import BaseModel, Field, field_validator, model_validator

from tasknest.logging_config import get_logger
from tasknest.models import DEFAULT_CATEGORIES

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".tasknest" / "config.toml"
DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{Path.home() / '.tasknest' / 'tasknest.db'}"


class TaskNestConfig(BaseModel):
    """Root configuration.

    Attributes:
        categories: Category tags that partition the task collection.
        default_category: Category active when the manager starts.
        database_url: SQLAlchemy URL used by the SQLite task store.
        untitled_description: Description given to loaded tasks with blank text.
    """

    categories: List[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES), min_length=1)
    default_category: str = DEFAULT_CATEGORIES[0]
    database_url: str = DEFAULT_DATABASE_URL
    untitled_description: str = Field(default="Untitled Task", min_length=1)

    @field_validator("categories")
    @classmethod
    def validate_categories(cls, v: List[str]) -> List[str]:
        """Reject blank or repeated category names.

        Raises:
            ValueError: If a category is blank or listed twice.
        """
        seen = set()
        for category in v:
            if not category.strip():
                raise ValueError("Category names cannot be blank")
            if category in seen:
                raise ValueError(f"Duplicate category: '{category}'")
            seen.add(category)
        return v

    @model_validator(mode="after")
    def validate_default_category(self) -> "TaskNestConfig":
        """Ensure the default category is one of the configured categories."""
        if self.default_category not in self.categories:
            raise ValueError(
                f"Default category '{self.default_category}' is not one of {self.categories}"
            )
        return self

    @classmethod
    def from_toml_file(cls, path: Optional[Path] = None) -> "TaskNestConfig":
        """Load configuration from TOML file with fallback to defaults.

        Environment variables take precedence over the file:
        - TASKNEST_DEFAULT_CATEGORY
        - TASKNEST_DATABASE_URL

        Args:
            path: Path to the TOML configuration file. If None, defaults to
                  ~/.tasknest/config.toml.

        Returns:
            TaskNestConfig instance loaded from file or with default values.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        data = {}
        if path.exists():
            with open(path, "rb") as f:
                data = dict(tomllib.load(f).get("tasknest", {}))
            logger.info(f"Loaded configuration from {path}")
        else:
            logger.info(f"Config not found at {path}. Using defaults.")

        env_category = os.getenv("TASKNEST_DEFAULT_CATEGORY")
        if env_category:
            data["default_category"] = env_category
        env_url = os.getenv("TASKNEST_DATABASE_URL")
        if env_url:
            data["database_url"] = env_url

        config = cls(**data)
        logger.debug(
            f"Config: categories={config.categories}, "
            f"default_category={config.default_category}"
        )
        return config
