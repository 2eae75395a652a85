"""Application-wide settings and configuration."""

import os
from pathlib import Path
from typing import Optional


class Settings:
    """Centralized application settings."""

    # Project paths
    PROJECT_ROOT = Path(__file__).parent.parent.parent
    DATA_DIR = Path(os.environ.get("EXHIBIT_SYNC_DATA_DIR", PROJECT_ROOT / "data"))
    LOGS_DIR = PROJECT_ROOT / "logs"

    # Local store layout
    APP_DATA_DIR = DATA_DIR / "AppData"
    PHOTOS_DIR = APP_DATA_DIR / "photos"
    DOCUMENTS_DIR = DATA_DIR / "Documents"
    CATALOG_FILE = DATA_DIR / "exhibits.json"

    # Domain limits
    RECENTS_CAP = 10

    # Scheduling
    PUSH_DELAY_SECONDS = 2.0
    PULL_INTERVAL_SECONDS = 30.0

    # Feature flags
    ENABLE_RECORD_SYNC = True
    ENABLE_DOCUMENT_SYNC = True

    @classmethod
    def ensure_directories(cls) -> None:
        """Ensure all required directories exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        cls.APP_DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.PHOTOS_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_app_data_dir(cls, custom_path: Optional[Path] = None) -> Path:
        """Get the local store directory, with optional override."""
        return custom_path or cls.APP_DATA_DIR
