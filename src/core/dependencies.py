"""Dependency injection container for the application."""

import os
import socket
from pathlib import Path
from typing import List, Optional

from api.record_store_client import RecordStoreClient
from config.remote import RemoteConfig
from config.settings import Settings
from data.services.availability import AvailabilityMonitor
from data.services.catalog_service import CatalogService
from data.services.document_sync_service import DocumentSyncStrategy
from data.services.record_sync_service import RecordSyncStrategy
from data.services.sync_engine import SyncEngine
from data.services.sync_strategy import SyncStrategy
from data.storage.cloud_storage import CloudStorageManager, create_gcs_manager_from_config
from data.storage.credential_resolver import GCSCredentialResolver
from data.storage.local_store import LocalStore
from data.storage.remote_mirror import RemoteMirror
from data.storage.sync_token import SyncTokenSignal
from utils.logger_setup import setup_logging

DEVICE_ID_ENV_VAR = "EXHIBIT_SYNC_DEVICE_ID"


class DependencyContainer:
    """Container for managing application dependencies."""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        logger_name: str = "exhibit_sync",
        enable_documents: bool = Settings.ENABLE_DOCUMENT_SYNC,
        enable_records: bool = Settings.ENABLE_RECORD_SYNC,
        show_progress: bool = False,
    ):
        self.data_dir = Settings.get_app_data_dir(data_dir)
        self.logger = setup_logging(logger_name)
        Settings.ensure_directories()

        self.enable_documents = enable_documents
        self.enable_records = enable_records
        self.show_progress = show_progress
        self.device_id = os.environ.get(DEVICE_ID_ENV_VAR) or socket.gethostname()

        self._local_store: Optional[LocalStore] = None
        self._gcs_manager: Optional[CloudStorageManager] = None
        self._gcs_resolved = False
        self._record_client: Optional[RecordStoreClient] = None
        self._engine: Optional[SyncEngine] = None

    @property
    def local_store(self) -> LocalStore:
        if self._local_store is None:
            self._local_store = LocalStore(
                data_dir=self.data_dir,
                photos_dir=self.data_dir / "photos",
                logger_obj=self.logger,
            )
        return self._local_store

    @property
    def gcs_manager(self) -> Optional[CloudStorageManager]:
        """Storage manager for the mirror bucket, or None when no bucket is configured."""
        if not self._gcs_resolved:
            self._gcs_resolved = True
            if self.enable_documents:
                credentials, bucket_name = GCSCredentialResolver.resolve(self.logger)
                if bucket_name:
                    self._gcs_manager = create_gcs_manager_from_config(
                        {"bucket_name": bucket_name, "credentials": credentials},
                        self.logger,
                    )
        return self._gcs_manager

    @property
    def record_client(self) -> Optional[RecordStoreClient]:
        """Record store client, or None when no API token is configured."""
        if self._record_client is None and self.enable_records:
            config = RemoteConfig.from_env()
            if config.get("api_token"):
                self._record_client = RecordStoreClient(**config, logger_obj=self.logger)
            else:
                self.logger.info("RECORD_STORE_API_TOKEN not set, record sync disabled")
        return self._record_client

    @property
    def engine(self) -> SyncEngine:
        """Get or create the sync engine wired to every configured backend."""
        if self._engine is None:
            manager = self.gcs_manager
            mirror = RemoteMirror(manager, logger_obj=self.logger) if manager else None
            token = SyncTokenSignal(manager, self.device_id, logger_obj=self.logger) if manager else None
            client = self.record_client
            availability = AvailabilityMonitor(mirror=mirror, record_store=client, logger_obj=self.logger)

            strategies: List[SyncStrategy] = []
            if mirror is not None:
                strategies.append(DocumentSyncStrategy(mirror, self.local_store, availability, logger_obj=self.logger))
            if client is not None:
                strategies.append(
                    RecordSyncStrategy(
                        client,
                        self.local_store,
                        availability,
                        show_progress=self.show_progress,
                        logger_obj=self.logger,
                    )
                )

            self._engine = SyncEngine(
                self.local_store,
                availability,
                strategies=strategies,
                token=token,
                catalog=CatalogService(logger_obj=self.logger),
                logger_obj=self.logger,
            )
        return self._engine

    async def aclose(self) -> None:
        """Stop the engine and release network sessions."""
        if self._engine is not None:
            await self._engine.stop()
        if self._record_client is not None:
            await self._record_client.close()
