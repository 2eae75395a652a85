"""Sync token: a tiny shared "something changed at time T" signal."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, List, Optional, TypeVar

from api.circuit_breaker import circuit_breaker_manager
from config.remote import RemoteConfig
from data.storage.cloud_storage import CloudStorageManager

R = TypeVar("R")


class SyncTokenSignal:
    """
    Scalar last-push timestamp stored in a small quota-limited object.

    Devices compare the token with their own last-sync time to decide whether a
    pull is worth attempting. External "changed" notifications (push messages,
    record-store subscriptions) are delivered through ``notify_changed``.
    """

    def __init__(
        self,
        manager: CloudStorageManager,
        device_id: str,
        prefix: str = RemoteConfig.MIRROR_PREFIX,
        max_bytes: int = RemoteConfig.SYNC_TOKEN_MAX_BYTES,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.manager = manager
        self.device_id = device_id
        self.path = f"{prefix.strip('/')}/{RemoteConfig.SYNC_TOKEN_FILE}"
        self.max_bytes = max_bytes
        self.logger = logger_obj or logging.getLogger(__name__)
        self._listeners: List[Callable[[], None]] = []

    @property
    def endpoint(self) -> str:
        """Same breaker key as the mirror in this bucket."""
        return f"gs://{self.manager.bucket_name}"

    async def _call(self, func: Callable[..., R], *args: Any) -> R:
        breaker = circuit_breaker_manager.get_breaker(self.endpoint)
        return await breaker.execute(asyncio.to_thread, func, *args)

    async def read(self) -> float:
        """Return the latest token, 0.0 when none has been written or it is unreadable."""
        payload = await self._call(self.manager.download_bytes, self.path)
        if not payload:
            return 0.0
        try:
            return float(json.loads(payload.decode("utf-8"))["token"])
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Ignoring malformed sync token: {e}")
            return 0.0

    async def write(self, token: float) -> None:
        payload = json.dumps({"token": token, "device": self.device_id}).encode("utf-8")
        if len(payload) > self.max_bytes:
            raise ValueError(f"Sync token payload of {len(payload)} bytes exceeds {self.max_bytes} byte quota")
        await self._call(self.manager.upload_bytes, payload, self.path)
        self.logger.debug(f"Sync token set to {token:.3f}")

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback fired by ``notify_changed``."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def notify_changed(self) -> None:
        """Deliver an external change notification to every listener."""
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                self.logger.warning(f"Sync token listener failed: {e}", exc_info=True)
