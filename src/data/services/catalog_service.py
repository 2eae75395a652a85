"""Read-only bundled exhibit catalog."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from config.settings import Settings
from data.models import Exhibit


class CatalogLoadError(Exception):
    """Raised when the bundled catalog is missing or cannot be decoded."""


class CatalogService:
    """Loads ``exhibits.json`` once and serves it from memory afterwards."""

    def __init__(self, catalog_file: Optional[Path] = None, logger_obj: Optional[logging.Logger] = None):
        self.catalog_file = catalog_file or Settings.CATALOG_FILE
        self.logger = logger_obj or logging.getLogger(__name__)
        self._cached: Optional[List[Exhibit]] = None

    def load_exhibits(self) -> List[Exhibit]:
        if self._cached is not None:
            return self._cached

        if not self.catalog_file.exists():
            raise CatalogLoadError(f"Catalog file not found: {self.catalog_file}")

        try:
            raw = json.loads(self.catalog_file.read_text(encoding="utf-8"))
            exhibits = [Exhibit.from_dict(entry) for entry in raw]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise CatalogLoadError(f"Could not decode {self.catalog_file.name}: {e}") from e

        self.logger.info(f"Loaded {len(exhibits)} catalog exhibits from {self.catalog_file.name}")
        self._cached = exhibits
        return exhibits
