"""Data layer modules for models, storage and sync services."""

from .domains import SyncDomain
from .models import Exhibit, LocationRecord
from .storage.cloud_storage import CloudStorageManager
from .storage.local_store import LocalStore

__all__ = [
    "SyncDomain",
    "Exhibit",
    "LocationRecord",
    "CloudStorageManager",
    "LocalStore",
]
