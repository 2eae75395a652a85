"""Sync engine: the single owner of all synchronized domain state."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, Sequence

from config.settings import Settings
from data.domains import SyncDomain
from data.models import Exhibit, LocationRecord
from data.services.availability import AvailabilityMonitor
from data.services.catalog_service import CatalogLoadError, CatalogService
from data.services.merge import merge_snapshot
from data.services.sync_scheduler import SyncScheduler
from data.services.sync_strategy import SyncStrategy
from data.services.sync_types import DomainSnapshot, SyncStatus
from data.storage.local_store import LocalStore
from data.storage.sync_token import SyncTokenSignal


class SyncEngine:
    """
    Offline-first owner of recents, artifact photos, locations and user items.

    Every mutation updates memory, writes the local store and schedules a push;
    it never waits on the network. Pulls fetch remote candidates from each
    available strategy and merge them additively, local values first. All
    state changes happen on the event loop without suspending between reading
    and writing state, so no locking is needed.
    """

    def __init__(
        self,
        local_store: LocalStore,
        availability: AvailabilityMonitor,
        strategies: Optional[Sequence[SyncStrategy]] = None,
        token: Optional[SyncTokenSignal] = None,
        catalog: Optional[CatalogService] = None,
        recents_cap: int = Settings.RECENTS_CAP,
        push_delay: float = Settings.PUSH_DELAY_SECONDS,
        pull_interval: float = Settings.PULL_INTERVAL_SECONDS,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.local_store = local_store
        self.availability = availability
        self.strategies: List[SyncStrategy] = list(strategies or [])
        self.token = token
        self.catalog = catalog
        self.recents_cap = recents_cap
        self.logger = logger_obj or logging.getLogger(__name__)
        self.scheduler = SyncScheduler(
            self._push_cycle,
            self._pull_cycle,
            push_delay=push_delay,
            pull_interval=pull_interval,
            logger_obj=self.logger,
        )

        self.last_sync: Optional[float] = None
        self._loaded = False
        self._started = False
        self._pending_push = False
        self._recents: List[str] = []
        self._artifacts: Dict[str, str] = {}
        self._locations: Dict[str, LocationRecord] = {}
        self._user_items: List[Exhibit] = []
        self._catalog_items: List[Exhibit] = []
        self._exhibits: List[Exhibit] = []
        self._unresolved_photos: set[str] = set()
        self._pending_deletes: Dict[str, Dict[str, Any]] = {}
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State loading and persistence
    # ------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._recents = list(self.local_store.load(SyncDomain.RECENTS))[: self.recents_cap]
        self._artifacts = dict(self.local_store.load(SyncDomain.ARTIFACTS))
        self._locations = dict(self.local_store.load(SyncDomain.LOCATIONS))
        self._user_items = list(self.local_store.load(SyncDomain.USER_ITEMS))
        self._pending_deletes = self.local_store.load_pending_deletes()
        self._loaded = True
        self._rebuild_exhibits()
        self.logger.debug(
            f"Loaded {len(self._recents)} recents, {len(self._artifacts)} photos, "
            f"{len(self._locations)} locations, {len(self._user_items)} user items"
        )

    def _value_of(self, domain: SyncDomain):
        return {
            SyncDomain.RECENTS: self._recents,
            SyncDomain.ARTIFACTS: self._artifacts,
            SyncDomain.LOCATIONS: self._locations,
            SyncDomain.USER_ITEMS: self._user_items,
        }[domain]

    def _persist(self, *domains: SyncDomain) -> None:
        # In-memory state stays authoritative when a write fails
        for domain in domains:
            self.local_store.save(domain, self._value_of(domain))

    def _snapshot(self) -> DomainSnapshot:
        return DomainSnapshot(
            recents=list(self._recents),
            artifacts=dict(self._artifacts),
            locations=dict(self._locations),
            user_items=list(self._user_items),
        )

    def _rebuild_exhibits(self) -> None:
        merged = list(self._user_items)
        known = {item.id for item in merged}
        merged.extend(item for item in self._catalog_items if item.id not in known)
        self._exhibits = merged

    def _request_push(self) -> None:
        if not self._started:
            self._pending_push = True
            return
        self.scheduler.schedule_push()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_recent(self, exhibit_id: str) -> None:
        """Move an exhibit to the front of the recents list."""
        self._ensure_loaded()
        recents = [item for item in self._recents if item != exhibit_id]
        recents.insert(0, exhibit_id)
        self._recents = recents[: self.recents_cap]
        self._persist(SyncDomain.RECENTS)
        self._request_push()

    def upsert_item(self, exhibit: Exhibit) -> None:
        """Replace a user item in place, or insert a new one at the front."""
        self._ensure_loaded()
        for index, item in enumerate(self._user_items):
            if item.id == exhibit.id:
                self._user_items[index] = exhibit
                break
        else:
            self._user_items.insert(0, exhibit)
        self._rebuild_exhibits()
        self._persist(SyncDomain.USER_ITEMS)
        self._request_push()

    def save_artifact_photo(self, data: bytes, exhibit_id: str) -> Optional[Path]:
        """Store a captured photo locally and point the exhibit at it."""
        self._ensure_loaded()
        filename = f"artifact_{exhibit_id}_{uuid.uuid4()}.jpg"
        path = self.local_store.write_photo(filename, data)
        if path is None:
            return None

        previous = self._artifacts.get(exhibit_id)
        self._artifacts[exhibit_id] = filename
        self._unresolved_photos.discard(filename)
        if previous and previous != filename:
            self.local_store.delete_photo(previous)
        self._persist(SyncDomain.ARTIFACTS)
        self._request_push()
        return path

    def capture_location(self, record: LocationRecord, exhibit_id: str) -> None:
        self._ensure_loaded()
        self._locations[exhibit_id] = record
        self._persist(SyncDomain.LOCATIONS)
        self._request_push()

    def delete_item(self, exhibit_id: str) -> None:
        """Remove an exhibit from every domain, locally and remotely."""
        self._ensure_loaded()
        self._user_items = [item for item in self._user_items if item.id != exhibit_id]
        self._recents = [item for item in self._recents if item != exhibit_id]
        self._locations.pop(exhibit_id, None)
        photo = self._artifacts.pop(exhibit_id, None)
        self._rebuild_exhibits()
        self._exhibits = [item for item in self._exhibits if item.id != exhibit_id]

        if photo:
            self.local_store.delete_photo(photo)
            self._unresolved_photos.discard(photo)
        self._persist(SyncDomain.USER_ITEMS, SyncDomain.RECENTS, SyncDomain.LOCATIONS, SyncDomain.ARTIFACTS)

        # Remote deletes are sent by the next push, even after a restart
        if self.strategies:
            earlier = self._pending_deletes.get(exhibit_id, {})
            self._pending_deletes[exhibit_id] = {
                "photo": photo or earlier.get("photo"),
                "strategies": [strategy.name for strategy in self.strategies],
            }
            self.local_store.save_pending_deletes(self._pending_deletes)
        self._request_push()

    @property
    def pending_deletes(self) -> List[str]:
        """Ids deleted locally whose remote delete has not been confirmed."""
        self._ensure_loaded()
        return sorted(self._pending_deletes)

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _track(self, coro: Coroutine[Any, Any, Any], label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug(f"No running event loop, skipping {label}")
            coro.close()
            return
        task = loop.create_task(self._guarded(coro, label))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _guarded(self, coro: Coroutine[Any, Any, Any], label: str) -> None:
        try:
            await coro
        except Exception as e:
            self.logger.warning(f"Background {label} failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Sync cycles
    # ------------------------------------------------------------------

    async def _push_cycle(self) -> None:
        if not self.availability.is_available:
            self.logger.debug("Remote unavailable, push skipped")
            return

        self._ensure_loaded()
        snapshot = self._snapshot()
        pushed = False
        for strategy in self.strategies:
            if not strategy.is_available():
                continue
            deleted = await self._send_pending_deletes(strategy)
            report = await strategy.push(snapshot)
            if report.success:
                pushed = True
                self._confirm_deletes(strategy.name, deleted)
            elif report.deferred:
                self.logger.info(f"{strategy.name} push deferred to the next cycle: {report.message}")

        if not pushed:
            return

        now = time.time()
        self.last_sync = now
        if self.token is not None and self.availability.mirror_available:
            try:
                await self.token.write(now)
            except Exception as e:
                self.logger.warning(f"Could not update sync token: {e}")

    async def _send_pending_deletes(self, strategy: SyncStrategy) -> List[str]:
        sent = []
        for exhibit_id, entry in list(self._pending_deletes.items()):
            if strategy.name not in entry["strategies"]:
                continue
            try:
                await strategy.delete_item(exhibit_id, entry["photo"])
            except Exception as e:
                self.logger.warning(f"{strategy.name} delete of {exhibit_id} failed, will retry: {e}")
                break
            sent.append(exhibit_id)
        return sent

    def _confirm_deletes(self, strategy_name: str, exhibit_ids: List[str]) -> None:
        # Confirmed only once the pushed snapshot no longer carries the item
        if not exhibit_ids:
            return
        for exhibit_id in exhibit_ids:
            entry = self._pending_deletes.get(exhibit_id)
            if entry is None:
                continue
            entry["strategies"] = [name for name in entry["strategies"] if name != strategy_name]
            if not entry["strategies"]:
                del self._pending_deletes[exhibit_id]
        self.local_store.save_pending_deletes(self._pending_deletes)

    def _without_pending(self, remote: DomainSnapshot) -> DomainSnapshot:
        pending = self._pending_deletes
        if not pending:
            return remote
        return DomainSnapshot(
            recents=None if remote.recents is None else [i for i in remote.recents if i not in pending],
            artifacts=None if remote.artifacts is None else {
                k: v for k, v in remote.artifacts.items() if k not in pending
            },
            locations=None if remote.locations is None else {
                k: v for k, v in remote.locations.items() if k not in pending
            },
            user_items=None if remote.user_items is None else [
                item for item in remote.user_items if item.id not in pending
            ],
        )

    async def _remote_is_newer(self) -> bool:
        if self.token is None or not self.availability.mirror_available:
            return True
        try:
            remote_token = await self.token.read()
        except Exception as e:
            self.logger.warning(f"Could not read sync token: {e}")
            return False
        if remote_token <= (self.last_sync or 0.0):
            self.logger.debug("Remote unchanged since last sync, pull skipped")
            return False
        return True

    async def _pull_cycle(self) -> None:
        if not self.availability.is_available:
            if not await self.availability.check_availability():
                self.logger.debug("Remote unavailable, pull skipped")
                return

        if not await self._remote_is_newer():
            return

        self._ensure_loaded()
        fetched = False
        changed: set[SyncDomain] = set()
        for strategy in self.strategies:
            if not strategy.is_available():
                continue
            try:
                remote = await strategy.fetch()
            except Exception as e:
                self.logger.warning(f"{strategy.name} fetch failed: {e}")
                continue
            fetched = True
            if not remote.is_empty():
                changed |= self._apply_remote(remote)
            await self._materialize_photos(strategy)

        if not fetched:
            return

        if changed:
            self._persist(*sorted(changed, key=lambda domain: domain.value))
            self._rebuild_exhibits()
            self.logger.info(f"Merged remote changes into {', '.join(sorted(d.value for d in changed))}")
            self._request_push()
        self.last_sync = time.time()

    def _apply_remote(self, remote: DomainSnapshot) -> set[SyncDomain]:
        remote = self._without_pending(remote)
        merged, changed = merge_snapshot(self._snapshot(), remote, self.recents_cap)
        if SyncDomain.RECENTS in changed:
            self._recents = merged.recents
        if SyncDomain.ARTIFACTS in changed:
            self._artifacts = merged.artifacts
        if SyncDomain.LOCATIONS in changed:
            self._locations = merged.locations
        if SyncDomain.USER_ITEMS in changed:
            self._user_items = merged.user_items
        return changed

    async def _materialize_photos(self, strategy: SyncStrategy) -> None:
        missing = {name for name in self._artifacts.values() if self.local_store.resolve_photo(name) is None}
        if not missing:
            self._unresolved_photos.clear()
            return
        try:
            unresolved = await strategy.materialize_photos(missing)
        except Exception as e:
            self.logger.warning(f"{strategy.name} photo download failed: {e}")
            unresolved = missing
        for name in unresolved - self._unresolved_photos:
            self.logger.info(f"Photo {name} not found locally or remotely, will retry on a later pull")
        self._unresolved_photos = set(unresolved)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load_catalog(self) -> List[Exhibit]:
        """Merge the bundled catalog with user items; user items come first."""
        self._ensure_loaded()
        if self.catalog is not None:
            try:
                self._catalog_items = list(self.catalog.load_exhibits())
            except CatalogLoadError as e:
                self.logger.warning(f"Catalog unavailable, showing user items only: {e}")
                self._catalog_items = []
        self._rebuild_exhibits()
        return list(self._exhibits)

    async def start(self) -> None:
        """Load local state, check the remote, start timers and pull once."""
        if self._started:
            return
        await self.load_catalog()
        await self.availability.check_availability()
        if self.token is not None:
            self.token.add_listener(self.handle_external_change)
        self.scheduler.start()
        self._started = True
        if self._pending_push:
            self._pending_push = False
            self.scheduler.schedule_push()
        await self.scheduler.pull_now()

    async def stop(self) -> None:
        """Stop timers and wait for the pending push and background pulls."""
        await self.scheduler.stop()
        if self._background:
            await asyncio.gather(*list(self._background))
        self._started = False

    async def force_sync(self) -> bool:
        """Push immediately. Returns False if another sync was running."""
        self._ensure_loaded()
        return await self.scheduler.push_now()

    async def handle_enter_background(self) -> bool:
        return await self.scheduler.push_now()

    async def handle_become_active(self) -> bool:
        await self.availability.check_availability()
        return await self.scheduler.pull_now()

    def handle_external_change(self) -> None:
        """Remote change notification: pull as soon as possible."""
        self._track(self.scheduler.pull_now(), "pull after remote change")

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def exhibits(self) -> List[Exhibit]:
        self._ensure_loaded()
        return list(self._exhibits)

    def exhibit(self, exhibit_id: str) -> Optional[Exhibit]:
        self._ensure_loaded()
        return next((item for item in self._exhibits if item.id == exhibit_id), None)

    @property
    def recent_ids(self) -> List[str]:
        self._ensure_loaded()
        return list(self._recents)

    @property
    def recent_exhibits(self) -> List[Exhibit]:
        found = (self.exhibit(item_id) for item_id in self.recent_ids)
        return [item for item in found if item is not None]

    @property
    def artifact_photos(self) -> Dict[str, str]:
        self._ensure_loaded()
        return dict(self._artifacts)

    def artifact_photo_path(self, exhibit_id: str) -> Optional[Path]:
        """Local path of an exhibit's photo, None when absent or not yet downloaded."""
        self._ensure_loaded()
        filename = self._artifacts.get(exhibit_id)
        if not filename:
            return None
        return self.local_store.resolve_photo(filename)

    @property
    def locations(self) -> Dict[str, LocationRecord]:
        self._ensure_loaded()
        return dict(self._locations)

    def location_record(self, exhibit_id: str) -> Optional[LocationRecord]:
        self._ensure_loaded()
        return self._locations.get(exhibit_id)

    @property
    def user_items(self) -> List[Exhibit]:
        self._ensure_loaded()
        return list(self._user_items)

    @property
    def user_item_count(self) -> int:
        self._ensure_loaded()
        return len(self._user_items)

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            is_syncing=self.scheduler.syncing,
            is_available=self.availability.is_available,
            last_sync_at=self.last_sync,
            phase=self.scheduler.phase,
        )
