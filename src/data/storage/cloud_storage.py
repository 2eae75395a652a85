"""Google Cloud Storage manager backing the multi-device document mirror."""

import logging
from pathlib import Path
from typing import Optional, Dict, Any

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage
from google.oauth2 import service_account


class CloudStorageManager:
    """
    Manages byte-level object operations against one GCS bucket.

    All methods are blocking; async callers run them in a worker thread.
    Lookups of missing objects return None/False rather than raising, while
    transport failures propagate so the caller can classify them.
    """

    def __init__(
        self,
        bucket_name: str,
        credentials_dict: Optional[Dict[str, Any]] = None,
        credentials_path: Optional[Path] = None,
        logger_obj: Optional[logging.Logger] = None,
        client: Optional[Any] = None,
    ):
        """
        Initialize GCS manager.

        Args:
            bucket_name: Name of the GCS bucket
            credentials_dict: Service account credentials as dict
            credentials_path: Path to service account JSON file
            logger_obj: Logger instance
            client: Pre-built storage client (used instead of building one)
        """
        self.bucket_name = bucket_name
        self.logger = logger_obj or logging.getLogger(__name__)

        if client is not None:
            self.credentials = None
            self.client = client
        else:
            if credentials_dict:
                self.credentials = service_account.Credentials.from_service_account_info(
                    credentials_dict
                )
            elif credentials_path:
                self.credentials = service_account.Credentials.from_service_account_file(
                    str(credentials_path)
                )
            else:
                # Use default credentials (from environment)
                self.credentials = None
            self.client = storage.Client(credentials=self.credentials)

        self.bucket = self.client.bucket(bucket_name)
        self.logger.info(f"Initialized CloudStorageManager for bucket: {bucket_name}")

    def bucket_exists(self) -> bool:
        """Check that the bucket is reachable with the current credentials."""
        return bool(self.bucket.exists())

    def upload_bytes(self, data: bytes, gcs_path: str, content_type: str = "application/json") -> None:
        """Overwrite a single object with ``data``."""
        blob = self.bucket.blob(gcs_path)
        blob.upload_from_string(data, content_type=content_type)
        self.logger.debug(f"Uploaded {len(data)} bytes to gs://{self.bucket_name}/{gcs_path}")

    def download_bytes(self, gcs_path: str) -> Optional[bytes]:
        """Read a single object, or None when it does not exist."""
        blob = self.bucket.blob(gcs_path)
        try:
            data = blob.download_as_bytes()
        except gcs_exceptions.NotFound:
            self.logger.debug(f"File not found in GCS: {gcs_path}")
            return None
        self.logger.debug(f"Downloaded gs://{self.bucket_name}/{gcs_path} ({len(data)} bytes)")
        return data

    def file_exists(self, gcs_path: str) -> bool:
        """Check if a file exists in GCS."""
        return bool(self.bucket.blob(gcs_path).exists())

    def delete_file(self, gcs_path: str) -> bool:
        """
        Delete a file from GCS.

        Returns:
            True if a file was deleted, False if it did not exist
        """
        blob = self.bucket.blob(gcs_path)
        try:
            blob.delete()
        except gcs_exceptions.NotFound:
            return False
        self.logger.info(f"Deleted gs://{self.bucket_name}/{gcs_path}")
        return True


def create_gcs_manager_from_config(
    config: Dict[str, Any],
    logger_obj: Optional[logging.Logger] = None
) -> Optional[CloudStorageManager]:
    """
    Create CloudStorageManager from a configuration dictionary.

    The config dict should have:
    - 'bucket_name': GCS bucket name (required)
    - 'credentials': Dict with service account credentials (optional)
    - 'credentials_path': Path to credentials JSON file (optional)

    Returns:
        CloudStorageManager instance or None if config is invalid
    """
    logger = logger_obj or logging.getLogger(__name__)

    bucket_name = config.get('bucket_name')
    if not bucket_name:
        logger.info("GCS bucket name not configured")
        return None

    credentials_path = config.get('credentials_path')
    if credentials_path:
        credentials_path = Path(credentials_path)

    try:
        return CloudStorageManager(
            bucket_name=bucket_name,
            credentials_dict=config.get('credentials'),
            credentials_path=credentials_path,
            logger_obj=logger
        )
    except Exception as e:
        logger.error(f"Error creating GCS manager from config: {e}", exc_info=True)
        return None
