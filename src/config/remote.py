"""Remote backend configuration for the record store and the document mirror."""

import os
from enum import Enum
from typing import Any, Dict


class CircuitBreakerState(Enum):
    """States for the circuit breaker pattern."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RemoteConfig:
    """Record store and mirror settings."""

    # Record store endpoint (CloudKit Web Services layout)
    RECORD_STORE_URL = "https://api.apple-cloudkit.com/database/1"
    CONTAINER = "iCloud.com.broaden.guide"
    ENVIRONMENT = "development"
    DATABASE = "private"

    # Record layout
    ZONE_NAME = "BroadenZone"
    SUBSCRIPTION_ID = "exhibit-changes"
    EXHIBIT_RECORD_TYPE = "Exhibit"
    PHOTO_RECORD_TYPE = "ArtifactPhoto"
    PHOTO_RECORD_PREFIX = "photo_"

    # Request settings
    PAGE_SIZE = 100
    REQUEST_TIMEOUT = 30

    # Availability check
    CHECK_MAX_TRIES = 3
    CHECK_MAX_TIME = 20
    CHECK_BASE_DELAY = 1

    # Circuit breaker settings
    CIRCUIT_BREAKER_FAILURE_THRESHOLD = 5
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT = 60

    # Document mirror
    MIRROR_PREFIX = "Documents"
    PHOTOS_SUBDIR = "photos"
    SYNC_TOKEN_FILE = "sync_token.json"
    SYNC_TOKEN_MAX_BYTES = 1024

    @classmethod
    def from_env(cls) -> Dict[str, Any]:
        """Collect record store settings from environment variables."""
        return {
            "base_url": os.environ.get("RECORD_STORE_URL", cls.RECORD_STORE_URL),
            "container": os.environ.get("RECORD_STORE_CONTAINER", cls.CONTAINER),
            "environment": os.environ.get("RECORD_STORE_ENVIRONMENT", cls.ENVIRONMENT),
            "api_token": os.environ.get("RECORD_STORE_API_TOKEN"),
            "web_auth_token": os.environ.get("RECORD_STORE_WEB_AUTH_TOKEN"),
            "zone_name": os.environ.get("RECORD_STORE_ZONE", cls.ZONE_NAME),
        }
