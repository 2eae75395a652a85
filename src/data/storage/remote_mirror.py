"""Remote document mirror: one snapshot object per domain plus a photo area."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

from api.circuit_breaker import circuit_breaker_manager
from config.remote import RemoteConfig
from data.domains import SyncDomain, codec_for
from data.storage.cloud_storage import CloudStorageManager

R = TypeVar("R")


class RemoteMirror:
    """
    Whole-document mirror of the lightweight domains in a shared bucket.

    ``push`` overwrites a domain's snapshot; ``pull`` reads it back and returns
    None when it does not exist yet or cannot be decoded. Blocking storage
    calls run in worker threads so they never stall the event loop.
    """

    def __init__(
        self,
        manager: CloudStorageManager,
        prefix: str = RemoteConfig.MIRROR_PREFIX,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.manager = manager
        self.prefix = prefix.strip("/")
        self.logger = logger_obj or logging.getLogger(__name__)

    @property
    def endpoint(self) -> str:
        return f"gs://{self.manager.bucket_name}"

    def domain_path(self, domain: SyncDomain) -> str:
        return f"{self.prefix}/{domain.file_name}"

    def photo_path(self, filename: str) -> str:
        return f"{self.prefix}/{RemoteConfig.PHOTOS_SUBDIR}/{filename}"

    async def _call(self, func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        breaker = circuit_breaker_manager.get_breaker(self.endpoint)
        return await breaker.execute(asyncio.to_thread, func, *args, **kwargs)

    async def ping(self) -> bool:
        return await self._call(self.manager.bucket_exists)

    async def push(self, domain: SyncDomain, value: Any) -> None:
        payload = codec_for(domain).encode(value)
        await self._call(self.manager.upload_bytes, payload, self.domain_path(domain))
        self.logger.debug(f"Pushed {domain.value} snapshot ({len(payload)} bytes)")

    async def pull(self, domain: SyncDomain) -> Optional[Any]:
        payload = await self._call(self.manager.download_bytes, self.domain_path(domain))
        if payload is None:
            return None
        try:
            return codec_for(domain).decode(payload)
        except ValueError as e:
            self.logger.warning(f"Ignoring malformed remote {domain.value} snapshot: {e}")
            return None

    async def push_photo(self, filename: str, data: bytes) -> None:
        await self._call(self.manager.upload_bytes, data, self.photo_path(filename), "image/jpeg")
        self.logger.info(f"Uploaded photo {filename}")

    async def photo_exists(self, filename: str) -> bool:
        return await self._call(self.manager.file_exists, self.photo_path(filename))

    async def fetch_photo(self, filename: str) -> Optional[bytes]:
        return await self._call(self.manager.download_bytes, self.photo_path(filename))

    async def delete_photo(self, filename: str) -> bool:
        return await self._call(self.manager.delete_file, self.photo_path(filename))
