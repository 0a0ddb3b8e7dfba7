"""Configuration module for snipbook."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from snipbook import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the data it configures
_USER_ENV = Path.home() / ".snipbook" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".snipbook"


class SnipbookConfig(BaseModel):
    """Configuration for a snipbook installation."""

    # Root of everything snipbook writes; other paths are relative to it
    data_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("SNIPBOOK_DATA_DIR", str(DEFAULT_DATA_DIR))
        ).expanduser()
    )
    # Aggregate document (notebooks, snippets, tag index)
    database_file: Path = Field(
        default_factory=lambda: Path(
            os.getenv("SNIPBOOK_DATABASE_FILE", "database.json")
        )
    )
    # One content file per snippet lives below this directory
    snippets_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("SNIPBOOK_SNIPPETS_DIR", "snippets"))
    )
    # Backup configuration
    backup_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("SNIPBOOK_BACKUP_DIR", "backups"))
    )
    max_backups: int = Field(
        default_factory=lambda: int(os.getenv("SNIPBOOK_MAX_BACKUPS", "10"))
    )
    auto_backup_interval_minutes: int = Field(
        default_factory=lambda: int(os.getenv("SNIPBOOK_AUTO_BACKUP_INTERVAL", "60"))
    )
    # Presentation defaults for new notebooks
    default_notebook_color: str = Field(
        default_factory=lambda: os.getenv("SNIPBOOK_NOTEBOOK_COLOR", "#f38ba8")
    )
    # External editor command used by the default editor launcher
    editor: str = Field(
        default_factory=lambda: os.getenv(
            "SNIPBOOK_EDITOR", os.getenv("EDITOR", "vi")
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("SNIPBOOK_LOG_LEVEL", "INFO")
    )
    app_version: str = Field(default=__version__)

    @field_validator("max_backups")
    @classmethod
    def _validate_max_backups(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_backups must be >= 1")
        return v

    @field_validator("auto_backup_interval_minutes")
    @classmethod
    def _validate_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("auto_backup_interval_minutes must be >= 1")
        return v

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on data_dir."""
        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return self.data_dir / path

    def get_database_path(self) -> Path:
        """Get the absolute path of the aggregate document."""
        return self.get_absolute_path(self.database_file)

    def get_snippets_path(self) -> Path:
        """Get the absolute path of the snippet content directory."""
        return self.get_absolute_path(self.snippets_dir)

    def get_backup_path(self) -> Path:
        """Get the absolute path of the backup directory."""
        return self.get_absolute_path(self.backup_dir)

    def get_log_path(self) -> Path:
        return self.data_dir / "logs"


# Create a global config instance
config = SnipbookConfig()
