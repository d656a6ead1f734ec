"""Application-wide settings and configuration."""

import os
from pathlib import Path
from typing import Optional


class Settings:
    """Centralized application settings."""

    # Project paths
    PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
    DATA_DIR = Path(os.environ.get("STARGAZER_DATA_DIR", PROJECT_ROOT / "data"))
    LOGS_DIR = PROJECT_ROOT / "logs"

    # Storage locations
    DEFAULT_DB_PATH = DATA_DIR / "stargazer.duckdb"
    CHECKPOINT_FILE = ".sync-checkpoint.json"
    CONTENT_DIR = "readmes"

    # Environment
    GITHUB_TOKEN_ENV = "GITHUB_TOKEN"

    @classmethod
    def ensure_directories(cls) -> None:
        """Ensure all required directories exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.LOGS_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_db_path(cls, custom_path: Optional[Path] = None) -> Path:
        """Get the database path, with optional override."""
        return custom_path or cls.DEFAULT_DB_PATH

    @classmethod
    def get_github_token(cls) -> str:
        """Read the GitHub token from the environment, empty if unset."""
        return os.environ.get(cls.GITHUB_TOKEN_ENV, "").strip()
