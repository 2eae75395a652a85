"""Local durable store: one JSON file per domain plus a photo directory."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from config.settings import Settings
from data.domains import SyncDomain, codec_for

PENDING_DELETES_FILE = "pending_deletes.json"


class LocalStore:
    """
    Per-domain file persistence on the device.

    The local store is the source of truth whenever local and remote disagree.
    Reads never fail: a missing, unreadable or corrupt file yields the domain's
    empty default. Writes are atomic per file, and a failure writing one domain
    does not affect the others.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        photos_dir: Optional[Path] = None,
        legacy_photos_dir: Optional[Path] = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.data_dir = Settings.get_app_data_dir(data_dir)
        self.photos_dir = photos_dir or self.data_dir / "photos"
        self.legacy_photos_dir = legacy_photos_dir or Settings.DOCUMENTS_DIR
        self.logger = logger_obj or logging.getLogger(__name__)

    def path_for(self, domain: SyncDomain) -> Path:
        return self.data_dir / domain.file_name

    def load(self, domain: SyncDomain) -> Any:
        """Load a domain, falling back to its empty default."""
        codec = codec_for(domain)
        path = self.path_for(domain)
        if not path.exists():
            return codec.default()

        try:
            return codec.decode(path.read_bytes())
        except ValueError as e:
            self.logger.warning(f"Could not decode {path.name}: {e}. Starting empty.")
            return codec.default()
        except OSError as e:
            self.logger.warning(f"Error reading {path.name}: {e}. Starting empty.")
            return codec.default()

    def save(self, domain: SyncDomain, value: Any) -> bool:
        """Atomically write a domain. Returns False if persistence failed."""
        path = self.path_for(domain)
        try:
            payload = codec_for(domain).encode(value)
            self._atomic_write(path, payload)
            self.logger.debug(f"Saved {path.name} ({len(payload)} bytes)")
            return True
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Could not save {path.name}: {e}")
            return False

    def _atomic_write(self, path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # Pending remote deletes

    @property
    def pending_deletes_path(self) -> Path:
        return self.data_dir / PENDING_DELETES_FILE

    def load_pending_deletes(self) -> Dict[str, Dict[str, Any]]:
        """
        Load deletes not yet confirmed by every remote backend.

        Shape: ``{exhibit_id: {"photo": filename | None, "strategies": [name, ...]}}``.
        Malformed entries are dropped.
        """
        path = self.pending_deletes_path
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_bytes().decode("utf-8"))
        except (OSError, ValueError) as e:
            self.logger.warning(f"Could not read {path.name}: {e}. Starting empty.")
            return {}
        if not isinstance(raw, dict):
            return {}

        pending: Dict[str, Dict[str, Any]] = {}
        for exhibit_id, entry in raw.items():
            if not isinstance(entry, dict):
                continue
            strategies = [name for name in entry.get("strategies") or [] if isinstance(name, str)]
            photo = entry.get("photo")
            if strategies:
                pending[exhibit_id] = {
                    "photo": photo if isinstance(photo, str) else None,
                    "strategies": strategies,
                }
        return pending

    def save_pending_deletes(self, pending: Dict[str, Dict[str, Any]]) -> bool:
        path = self.pending_deletes_path
        try:
            payload = json.dumps(pending, ensure_ascii=False, sort_keys=True).encode("utf-8")
            self._atomic_write(path, payload)
            return True
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Could not save {path.name}: {e}")
            return False

    # Photo blobs

    @staticmethod
    def is_safe_photo_name(filename: Any) -> bool:
        """Photo names come from remote data and must stay a single path component."""
        return (
            isinstance(filename, str)
            and filename not in ("", ".", "..")
            and "\\" not in filename
            and Path(filename).name == filename
        )

    def photo_path(self, filename: str) -> Path:
        if not self.is_safe_photo_name(filename):
            raise ValueError(f"Unsafe photo filename: {filename!r}")
        return self.photos_dir / filename

    def resolve_photo(self, filename: str) -> Optional[Path]:
        """Find a photo in the photo directory, then in the legacy documents directory."""
        if not self.is_safe_photo_name(filename):
            return None
        for folder in (self.photos_dir, self.legacy_photos_dir):
            candidate = folder / filename
            if candidate.exists():
                return candidate
        return None

    def write_photo(self, filename: str, data: bytes) -> Optional[Path]:
        """Write (or overwrite) a photo blob. Returns None on failure."""
        if not self.is_safe_photo_name(filename):
            self.logger.warning(f"Refusing to write photo with unsafe name {filename!r}")
            return None
        path = self.photo_path(filename)
        try:
            self._atomic_write(path, data)
            return path
        except OSError as e:
            self.logger.error(f"Could not write photo {filename}: {e}")
            return None

    def delete_photo(self, filename: str) -> bool:
        path = self.resolve_photo(filename)
        if path is None:
            return False
        try:
            path.unlink()
            return True
        except OSError as e:
            self.logger.warning(f"Could not delete photo {filename}: {e}")
            return False
