"""Document sync strategy: whole-file snapshots in the remote mirror."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from api.error_handling import categorize_error, is_retryable
from data.domains import SyncDomain
from data.services.availability import AvailabilityMonitor
from data.services.sync_strategy import SyncStrategy
from data.services.sync_types import DomainSnapshot, SyncReport
from data.storage.local_store import LocalStore
from data.storage.remote_mirror import RemoteMirror


class DocumentSyncStrategy(SyncStrategy):
    """
    Mirror the four lightweight domains as JSON documents.

    A push overwrites every domain snapshot and uploads photo files the mirror
    does not have yet. A fetch downloads every snapshot for the engine to merge.
    Photo files referenced by adopted locators are pulled into the local photo
    directory before the engine falls back to the local lookup folders.
    """

    name = "documents"

    def __init__(
        self,
        mirror: RemoteMirror,
        local_store: LocalStore,
        availability: AvailabilityMonitor,
        logger_obj: Optional[logging.Logger] = None,
    ):
        super().__init__(local_store)
        self.mirror = mirror
        self.availability = availability
        self.logger = logger_obj or logging.getLogger(__name__)
        self._known_remote: set[str] = set()

    def is_available(self) -> bool:
        return self.availability.mirror_available

    async def push(self, snapshot: DomainSnapshot) -> SyncReport:
        """Upload every present domain, then any photo the mirror is missing."""
        pushed: list[str] = []
        try:
            for domain, value in self._domains(snapshot):
                await self.mirror.push(domain, value)
                pushed.append(domain.value)

            uploaded = await self._upload_missing_photos(snapshot.artifacts or {})
        except Exception as e:
            category = categorize_error(e)
            self.logger.warning(
                f"Document push aborted after {len(pushed)} domain(s) ({category.value}): {e}",
                exc_info=not is_retryable(e),
            )
            return SyncReport(
                success=False,
                message=str(e),
                deferred=is_retryable(e),
                details={"domains": pushed, "error_category": category.value},
            )

        self.logger.info(f"Pushed {len(pushed)} document(s) and {uploaded} photo(s) to {self.mirror.endpoint}")
        return SyncReport(
            success=True,
            message="Documents pushed",
            details={"domains": pushed, "photos_uploaded": uploaded},
        )

    async def _upload_missing_photos(self, artifacts: dict[str, str]) -> int:
        uploaded = 0
        for filename in sorted(set(artifacts.values())):
            if filename in self._known_remote:
                continue
            path = self.local_store.resolve_photo(filename)
            if path is None:
                continue
            if not await self.mirror.photo_exists(filename):
                await self.mirror.push_photo(filename, path.read_bytes())
                uploaded += 1
            self._known_remote.add(filename)
        return uploaded

    async def fetch(self) -> DomainSnapshot:
        """Pull every domain snapshot. Missing or malformed snapshots stay None."""
        return DomainSnapshot(
            recents=await self.mirror.pull(SyncDomain.RECENTS),
            artifacts=await self.mirror.pull(SyncDomain.ARTIFACTS),
            locations=await self.mirror.pull(SyncDomain.LOCATIONS),
            user_items=await self.mirror.pull(SyncDomain.USER_ITEMS),
        )

    async def materialize_photos(self, filenames: Iterable[str]) -> set[str]:
        """Download photos missing locally, then fall back to the local folders."""
        unresolved: set[str] = set()
        for filename in filenames:
            if not self.local_store.is_safe_photo_name(filename):
                self.logger.warning(f"Ignoring photo locator with unsafe name {filename!r}")
                unresolved.add(filename)
                continue
            if self.local_store.photo_path(filename).exists():
                continue
            data = await self.mirror.fetch_photo(filename)
            if data is not None and self.local_store.write_photo(filename, data) is not None:
                self._known_remote.add(filename)
                self.logger.debug(f"Downloaded photo {filename}")
                continue
            if self.local_store.resolve_photo(filename) is None:
                unresolved.add(filename)
        return unresolved

    async def delete_item(self, exhibit_id: str, photo_filename: Optional[str]) -> None:
        if not photo_filename:
            return
        deleted = await self.mirror.delete_photo(photo_filename)
        self._known_remote.discard(photo_filename)
        self.logger.info(f"Remote photo for {exhibit_id} {'deleted' if deleted else 'already absent'}")

    @staticmethod
    def _domains(snapshot: DomainSnapshot):
        for domain, value in (
            (SyncDomain.RECENTS, snapshot.recents),
            (SyncDomain.ARTIFACTS, snapshot.artifacts),
            (SyncDomain.LOCATIONS, snapshot.locations),
            (SyncDomain.USER_ITEMS, snapshot.user_items),
        ):
            if value is not None:
                yield domain, value
