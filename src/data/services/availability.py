"""Availability monitor gating every remote operation."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from api.circuit_breaker import circuit_breaker_manager
from api.error_handling import CircuitBreakerOpenException, RecordStoreError, categorize_error
from api.record_store_client import RecordStoreClient
from data.storage.remote_mirror import RemoteMirror

# An open breaker counts as an unavailable store
CHECK_ERRORS = (RecordStoreError, CircuitBreakerOpenException, aiohttp.ClientError, asyncio.TimeoutError)


class AvailabilityMonitor:
    """
    Tracks whether the remote mirror and the record store can be used.

    Each configured backend has its own flag. While a backend is unavailable
    (never confirmed, not authenticated, unreachable, or its circuit breaker is
    open) callers skip it silently. Whenever the record store is confirmed,
    its zone and change subscription are ensured; both operations are no-ops
    when they already exist.
    """

    def __init__(
        self,
        mirror: Optional[RemoteMirror] = None,
        record_store: Optional[RecordStoreClient] = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.mirror = mirror
        self.record_store = record_store
        self.logger = logger_obj or logging.getLogger(__name__)
        self._mirror_ok = False
        self._records_ok = False

    @property
    def mirror_available(self) -> bool:
        return (
            self.mirror is not None
            and self._mirror_ok
            and circuit_breaker_manager.can_attempt(self.mirror.endpoint)
        )

    @property
    def records_available(self) -> bool:
        return (
            self.record_store is not None
            and self._records_ok
            and circuit_breaker_manager.can_attempt(self.record_store.endpoint)
        )

    @property
    def is_available(self) -> bool:
        return self.mirror_available or self.records_available

    async def check_availability(self) -> bool:
        """Check every configured backend and return the overall availability."""
        if self.mirror is None and self.record_store is None:
            self.logger.debug("No remote backend configured, staying local-only")
            return False

        if self.mirror is not None:
            self._mirror_ok = await self._check_mirror()
        if self.record_store is not None:
            self._records_ok = await self._check_record_store()

        self.logger.info(
            f"Remote availability: mirror={self.mirror_available}, records={self.records_available}"
        )
        return self.is_available

    async def _check_mirror(self) -> bool:
        try:
            return await self.mirror.ping()
        except Exception as e:
            self.logger.info(f"Document mirror unavailable ({categorize_error(e).value}): {e}")
            return False

    async def _check_record_store(self) -> bool:
        try:
            if not await self.record_store.check_account():
                return False
        except CHECK_ERRORS as e:
            self.logger.info(f"Record store unavailable ({categorize_error(e).value}): {e}")
            return False

        try:
            await self.record_store.ensure_zone()
            await self.record_store.ensure_subscription()
        except CHECK_ERRORS as e:
            self.logger.warning(f"Could not prepare record zone: {e}")
            return False
        return True
