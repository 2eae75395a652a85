# tests/conftest.py
import os
import sys

import pytest

# Make sure `src/` and the fixtures directory are on the import path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(0, os.path.join(ROOT, "src"))
sys.path.insert(0, os.path.dirname(__file__))

from api.circuit_breaker import circuit_breaker_manager  # noqa: E402
from fixtures.sync_fixtures import (  # noqa: E402,F401
    availability,
    blob_manager,
    local_store,
    mirror,
    record_store,
    sync_token,
)


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Breakers are process-global; every test starts with all of them closed."""
    circuit_breaker_manager.reset()
    yield
    circuit_breaker_manager.reset()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from real credentials and the developer's data directory."""
    for var in (
        "GCS_BUCKET_NAME",
        "GOOGLE_APPLICATION_CREDENTIALS",
        "GCS_CREDENTIALS_PATH",
        "RECORD_STORE_API_TOKEN",
        "RECORD_STORE_WEB_AUTH_TOKEN",
        "EXHIBIT_SYNC_DEVICE_ID",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
