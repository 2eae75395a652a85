"""API clients and communication modules."""

from .circuit_breaker import CircuitBreaker
from .error_handling import ErrorCategory, RecordConflictError, RecordStoreError, categorize_error
from .record_store_client import RecordStoreClient, RemoteRecord

__all__ = [
    "RecordStoreClient",
    "RemoteRecord",
    "CircuitBreaker",
    "ErrorCategory",
    "RecordStoreError",
    "RecordConflictError",
    "categorize_error",
]
