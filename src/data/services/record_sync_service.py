"""Record sync strategy: user-authored exhibits and photos as store records."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import Any, Dict, Iterable, Optional

import aiohttp

from api.error_handling import CircuitBreakerOpenException, RecordStoreError, categorize_error, is_retryable
from api.record_store_client import RecordStoreClient, RemoteRecord
from config.remote import RemoteConfig
from data.models import Exhibit, ExhibitMedia, GlossaryItem, ReferenceSnippet
from data.services.availability import AvailabilityMonitor
from data.services.sync_strategy import SyncStrategy
from data.services.sync_types import DomainSnapshot, SyncReport
from data.storage.local_store import LocalStore

DOWNLOAD_ERRORS = (RecordStoreError, CircuitBreakerOpenException, aiohttp.ClientError, asyncio.TimeoutError)


def photo_record_name(exhibit_id: str) -> str:
    return f"{RemoteConfig.PHOTO_RECORD_PREFIX}{exhibit_id}"


def exhibit_to_fields(exhibit: Exhibit) -> Dict[str, Any]:
    """Record fields for an exhibit. Nested values are stored as JSON strings."""
    return {
        "id": exhibit.id,
        "title": exhibit.title,
        "shortIntro": exhibit.short_intro,
        "easyText": exhibit.easy_text,
        "detailText": exhibit.detail_text,
        "glossary": json.dumps([g.to_dict() for g in exhibit.glossary], ensure_ascii=False),
        "media": json.dumps(exhibit.media.to_dict(), ensure_ascii=False),
        "references": json.dumps([r.to_dict() for r in exhibit.references], ensure_ascii=False),
    }


def _json_field(fields: Dict[str, Any], name: str, default: Any) -> Any:
    raw = fields.get(name)
    if not isinstance(raw, str):
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def exhibit_from_record(record: RemoteRecord) -> Optional[Exhibit]:
    """Rebuild an exhibit. Records without an id or title are skipped (None)."""
    fields = record.fields
    if not isinstance(fields.get("id"), str) or not isinstance(fields.get("title"), str):
        return None
    try:
        return Exhibit(
            id=fields["id"],
            title=fields["title"],
            short_intro=fields.get("shortIntro") or "",
            easy_text=fields.get("easyText") or "",
            detail_text=fields.get("detailText") or "",
            glossary=tuple(GlossaryItem.from_dict(g) for g in _json_field(fields, "glossary", [])),
            media=ExhibitMedia.from_dict(_json_field(fields, "media", {})),
            references=tuple(ReferenceSnippet.from_dict(r) for r in _json_field(fields, "references", [])),
        )
    except (KeyError, TypeError, AttributeError):
        return None


class RecordSyncStrategy(SyncStrategy):
    """
    Sync user items and artifact photos through the record store.

    Only records whose content changed since the last successful push are
    saved again. Saves go through ``upsert`` so a concurrent edit from another
    device costs one extra round trip instead of a failed cycle.
    """

    name = "records"

    def __init__(
        self,
        client: RecordStoreClient,
        local_store: LocalStore,
        availability: AvailabilityMonitor,
        show_progress: bool = False,
        logger_obj: Optional[logging.Logger] = None,
    ):
        super().__init__(local_store)
        self.client = client
        self.availability = availability
        self.show_progress = show_progress
        self.logger = logger_obj or logging.getLogger(__name__)
        self._pushed_digests: Dict[str, str] = {}
        self._remote_assets: Dict[str, Dict[str, Any]] = {}

    def is_available(self) -> bool:
        return self.availability.records_available

    @staticmethod
    def _digest(payload: Any) -> str:
        encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    async def push(self, snapshot: DomainSnapshot) -> SyncReport:
        saved_items = 0
        saved_photos = 0
        try:
            for exhibit in snapshot.user_items or []:
                if await self._push_exhibit(exhibit):
                    saved_items += 1
            for exhibit_id, filename in (snapshot.artifacts or {}).items():
                if await self._push_photo(exhibit_id, filename):
                    saved_photos += 1
        except Exception as e:
            category = categorize_error(e)
            self.logger.warning(
                f"Record push aborted ({category.value}): {e}",
                exc_info=not is_retryable(e),
            )
            return SyncReport(
                success=False,
                message=str(e),
                deferred=is_retryable(e),
                details={"items_saved": saved_items, "photos_saved": saved_photos, "error_category": category.value},
            )

        if saved_items or saved_photos:
            self.logger.info(f"Saved {saved_items} exhibit record(s) and {saved_photos} photo record(s)")
        return SyncReport(
            success=True,
            message="Records pushed",
            details={"items_saved": saved_items, "photos_saved": saved_photos},
        )

    async def _push_exhibit(self, exhibit: Exhibit) -> bool:
        fields = exhibit_to_fields(exhibit)
        digest = self._digest(fields)
        if self._pushed_digests.get(exhibit.id) == digest:
            return False
        await self.client.upsert(RemoteRecord(exhibit.id, RemoteConfig.EXHIBIT_RECORD_TYPE, fields))
        self._pushed_digests[exhibit.id] = digest
        return True

    async def _push_photo(self, exhibit_id: str, filename: str) -> bool:
        record_name = photo_record_name(exhibit_id)
        digest = self._digest({"filename": filename})
        if self._pushed_digests.get(record_name) == digest:
            return False
        path = self.local_store.resolve_photo(filename)
        if path is None:
            self.logger.debug(f"Photo {filename} not available locally, not uploading")
            return False

        receipt = await self.client.upload_asset(
            RemoteConfig.PHOTO_RECORD_TYPE, record_name, "photo", path.read_bytes()
        )
        fields = {"exhibitId": exhibit_id, "photo": receipt, "filename": filename}
        await self.client.upsert(RemoteRecord(record_name, RemoteConfig.PHOTO_RECORD_TYPE, fields))
        self._pushed_digests[record_name] = digest
        return True

    async def fetch(self) -> DomainSnapshot:
        """
        Fetch all exhibit and photo records.

        Photo assets are not downloaded here. Their receipts are remembered so
        ``materialize_photos`` can download only the files the engine adopted
        and does not have locally.
        """
        exhibit_records = await self.client.query_all(
            RemoteConfig.EXHIBIT_RECORD_TYPE, show_progress=self.show_progress
        )
        items = [item for item in map(exhibit_from_record, exhibit_records) if item is not None]

        photo_records = await self.client.query_all(
            RemoteConfig.PHOTO_RECORD_TYPE, show_progress=self.show_progress
        )
        artifacts: Dict[str, str] = {}
        assets: Dict[str, Dict[str, Any]] = {}
        for record in photo_records:
            exhibit_id = record.fields.get("exhibitId")
            asset = record.fields.get("photo")
            if not isinstance(exhibit_id, str) or not isinstance(asset, dict):
                continue
            filename = record.fields.get("filename") or f"artifact_{exhibit_id}.jpg"
            if not self.local_store.is_safe_photo_name(filename):
                self.logger.warning(f"Skipping photo record {record.record_name} with unsafe filename {filename!r}")
                continue
            artifacts[exhibit_id] = filename
            assets[filename] = asset
        self._remote_assets = assets

        self.logger.debug(f"Fetched {len(items)} exhibit record(s) and {len(artifacts)} photo record(s)")
        return DomainSnapshot(artifacts=artifacts, user_items=items)

    async def materialize_photos(self, filenames: Iterable[str]) -> set[str]:
        """Download the assets behind adopted photo names. A failed download only skips that photo."""
        unresolved: set[str] = set()
        for filename in filenames:
            if self.local_store.resolve_photo(filename) is not None:
                continue
            asset = self._remote_assets.get(filename)
            if asset is None:
                unresolved.add(filename)
                continue
            try:
                data = await self.client.download_asset(asset, filename)
            except DOWNLOAD_ERRORS as e:
                self.logger.warning(f"Could not download photo {filename} ({categorize_error(e).value}): {e}")
                unresolved.add(filename)
                continue
            if self.local_store.write_photo(filename, data) is None:
                unresolved.add(filename)
            else:
                self.logger.debug(f"Downloaded photo {filename}")
        return unresolved

    async def delete_item(self, exhibit_id: str, photo_filename: Optional[str]) -> None:
        await self.client.delete_record(exhibit_id)
        await self.client.delete_record(photo_record_name(exhibit_id))
        self._pushed_digests.pop(exhibit_id, None)
        self._pushed_digests.pop(photo_record_name(exhibit_id), None)
        self.logger.info(f"Deleted records for {exhibit_id}")
