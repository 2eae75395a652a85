"""Error handling and categorization for remote sync operations."""

import asyncio
import json
from enum import Enum
from typing import Optional

import aiohttp
from google.api_core import exceptions as gcs_exceptions


class ErrorCategory(Enum):
    """Categories for different types of remote errors."""
    NETWORK = "network"
    SERVER = "server"
    CLIENT = "client"
    TIMEOUT = "timeout"
    CONFLICT = "conflict"
    AUTH = "auth"
    DATA = "data"
    UNKNOWN = "unknown"


# Server error codes that are worth retrying on the next sync tick
RETRYABLE_SERVER_CODES = frozenset({
    "THROTTLED",
    "TRY_AGAIN_LATER",
    "ZONE_BUSY",
    "SERVICE_UNAVAILABLE",
    "NETWORK_FAILURE",
    "REQUEST_RATE_LIMITED",
})

RETRYABLE_HTTP_STATUSES = frozenset({429, 502, 503, 504})


class RecordStoreError(Exception):
    """Error reported by the remote record store for a request or a single record."""

    def __init__(
        self,
        message: str,
        server_error_code: Optional[str] = None,
        status: Optional[int] = None,
        record_name: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.message = message
        self.server_error_code = server_error_code
        self.status = status
        self.record_name = record_name
        self.retry_after = retry_after
        super().__init__(self.message)

    @property
    def is_retryable(self) -> bool:
        if self.server_error_code in RETRYABLE_SERVER_CODES:
            return True
        return self.status in RETRYABLE_HTTP_STATUSES


class RecordConflictError(RecordStoreError):
    """The record was modified on the server since it was last fetched."""


class AuthenticationRequiredError(RecordStoreError):
    """The user is not signed in to the record store."""


class CircuitBreakerOpenException(Exception):
    """Exception raised when an operation is attempted while the circuit breaker is open."""
    def __init__(self, message="Circuit breaker is open and cannot accept new calls"):
        self.message = message
        super().__init__(self.message)


def is_retryable(exception: BaseException) -> bool:
    """Whether a failed sync should simply be attempted again on the next tick."""
    if isinstance(exception, RecordStoreError):
        return exception.is_retryable
    return isinstance(exception, (
        aiohttp.ClientConnectionError,
        asyncio.TimeoutError,
        CircuitBreakerOpenException,
        gcs_exceptions.ServerError,
        gcs_exceptions.TooManyRequests,
        gcs_exceptions.RetryError,
    ))


def categorize_error(exception: BaseException) -> ErrorCategory:
    """Categorize an exception into error types for better handling."""
    if isinstance(exception, RecordConflictError):
        return ErrorCategory.CONFLICT
    elif isinstance(exception, AuthenticationRequiredError):
        return ErrorCategory.AUTH
    elif isinstance(exception, RecordStoreError):
        if exception.is_retryable or (exception.status or 0) >= 500:
            return ErrorCategory.SERVER
        return ErrorCategory.CLIENT
    elif isinstance(exception, asyncio.TimeoutError):
        return ErrorCategory.TIMEOUT
    elif isinstance(exception, (gcs_exceptions.ServerError, gcs_exceptions.TooManyRequests)):
        return ErrorCategory.SERVER
    elif isinstance(exception, (gcs_exceptions.Unauthorized, gcs_exceptions.Forbidden)):
        return ErrorCategory.AUTH
    elif isinstance(exception, gcs_exceptions.ClientError):
        return ErrorCategory.CLIENT
    elif isinstance(exception, aiohttp.ClientConnectorError):
        return ErrorCategory.NETWORK
    elif isinstance(exception, aiohttp.ClientResponseError):
        if 400 <= exception.status < 500:
            return ErrorCategory.CLIENT
        elif 500 <= exception.status < 600:
            return ErrorCategory.SERVER
        else:
            return ErrorCategory.UNKNOWN
    elif isinstance(exception, aiohttp.ClientError):
        return ErrorCategory.NETWORK
    elif isinstance(exception, (json.JSONDecodeError, ValueError)):
        return ErrorCategory.DATA
    else:
        return ErrorCategory.UNKNOWN
