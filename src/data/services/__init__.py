"""Sync services: merging, scheduling, strategies and the engine."""

from .availability import AvailabilityMonitor
from .catalog_service import CatalogLoadError, CatalogService
from .document_sync_service import DocumentSyncStrategy
from .record_sync_service import RecordSyncStrategy
from .sync_engine import SyncEngine
from .sync_scheduler import SyncScheduler
from .sync_strategy import SyncStrategy

__all__ = [
    "AvailabilityMonitor",
    "CatalogLoadError",
    "CatalogService",
    "DocumentSyncStrategy",
    "RecordSyncStrategy",
    "SyncEngine",
    "SyncScheduler",
    "SyncStrategy",
]
