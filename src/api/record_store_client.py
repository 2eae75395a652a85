"""REST client for the remote record store (CloudKit Web Services layout)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
import backoff
from tqdm import tqdm

from config.remote import RemoteConfig

from .circuit_breaker import circuit_breaker_manager
from .error_handling import (
    AuthenticationRequiredError,
    RecordConflictError,
    RecordStoreError,
    categorize_error,
)

_module_logger = logging.getLogger(__name__)

CONFLICT_CODES = frozenset({"CONFLICT", "EXISTS"})
AUTH_STATUSES = frozenset({401, 421})


def _trips_breaker(exception: BaseException) -> bool:
    """Transport failures and retryable server errors count against the endpoint."""
    if isinstance(exception, AuthenticationRequiredError):
        return False
    if isinstance(exception, RecordStoreError):
        return exception.is_retryable
    return isinstance(exception, (aiohttp.ClientError, asyncio.TimeoutError))


def _backoff_handler(details: Dict[str, Any]) -> None:
    """Log availability check retries with error categorization."""
    exception = details["exception"]
    error_category = categorize_error(exception)
    _module_logger.warning(
        f"Backing off {details['wait']:.1f}s after {error_category.value} error "
        f"(attempt {details['tries']}/{RemoteConfig.CHECK_MAX_TRIES}): {exception}"
    )


@dataclass
class RemoteRecord:
    """A single record in the record store. ``fields`` holds plain (unwrapped) values."""

    record_name: str
    record_type: str
    fields: Dict[str, Any] = field(default_factory=dict)
    change_tag: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "recordName": self.record_name,
            "recordType": self.record_type,
            "fields": {name: {"value": value} for name, value in self.fields.items()},
        }
        if self.change_tag:
            payload["recordChangeTag"] = self.change_tag
        return payload

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "RemoteRecord":
        raw_fields = data.get("fields") or {}
        return cls(
            record_name=data["recordName"],
            record_type=data.get("recordType", ""),
            fields={name: wrapped.get("value") for name, wrapped in raw_fields.items()},
            change_tag=data.get("recordChangeTag"),
        )

    def with_fields(self, fields: Dict[str, Any]) -> "RemoteRecord":
        """Copy of this record with ``fields`` applied on top, keeping the change tag."""
        return replace(self, fields={**self.fields, **fields})


class RecordStoreClient:
    """Client for the per-user record zone.

    Writes use optimistic concurrency: a save carrying a stale change tag is
    rejected with ``RecordConflictError``. ``upsert`` resolves such a conflict by
    reapplying the caller's fields on the server version and saving once more.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        container: Optional[str] = None,
        environment: Optional[str] = None,
        api_token: Optional[str] = None,
        web_auth_token: Optional[str] = None,
        zone_name: Optional[str] = None,
        page_size: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.logger = logger_obj or logging.getLogger(__name__)
        base_url = (base_url or RemoteConfig.RECORD_STORE_URL).rstrip("/")
        self.database_url = (
            f"{base_url}/{container or RemoteConfig.CONTAINER}/"
            f"{environment or RemoteConfig.ENVIRONMENT}/{RemoteConfig.DATABASE}"
        )
        self.api_token = api_token
        self.web_auth_token = web_auth_token
        self.zone_name = zone_name or RemoteConfig.ZONE_NAME
        self.page_size = page_size or RemoteConfig.PAGE_SIZE
        self._session = session
        self._owns_session = session is None

    @property
    def endpoint(self) -> str:
        """Circuit breaker key for this database."""
        return self.database_url

    @property
    def zone_id(self) -> Dict[str, str]:
        return {"zoneName": self.zone_name}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=RemoteConfig.REQUEST_TIMEOUT)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "RecordStoreClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _auth_params(self) -> Dict[str, str]:
        params = {}
        if self.api_token:
            params["ckAPIToken"] = self.api_token
        if self.web_auth_token:
            params["ckWebAuthToken"] = self.web_auth_token
        return params

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one request to the database endpoint and return the decoded JSON body."""
        breaker = circuit_breaker_manager.get_breaker(self.endpoint)
        try:
            return await breaker.execute(self._send, method, path, payload, trips_on=_trips_breaker)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Request to {path} failed with {categorize_error(e).value} error: {e}")
            raise

    async def _send(self, method: str, path: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        url = f"{self.database_url}/{path}"
        session = await self._get_session()
        async with session.request(method, url, json=payload, params=self._auth_params()) as resp:
            body = await resp.json(content_type=None) if resp.content_length != 0 else {}
            body = body or {}
            if resp.status in AUTH_STATUSES or body.get("serverErrorCode") == "AUTHENTICATION_REQUIRED":
                raise AuthenticationRequiredError(
                    body.get("reason", "Authentication required"),
                    server_error_code="AUTHENTICATION_REQUIRED",
                    status=resp.status,
                )
            if resp.status >= 400:
                retry_after = resp.headers.get("Retry-After")
                raise RecordStoreError(
                    body.get("reason", f"HTTP {resp.status} from {path}"),
                    server_error_code=body.get("serverErrorCode"),
                    status=resp.status,
                    retry_after=float(retry_after) if retry_after else body.get("retryAfter"),
                )
        return body

    @staticmethod
    def _record_error(entry: Dict[str, Any]) -> RecordStoreError:
        code = entry.get("serverErrorCode")
        error_cls = RecordConflictError if code in CONFLICT_CODES else RecordStoreError
        return error_cls(
            entry.get("reason", code or "Record operation failed"),
            server_error_code=code,
            record_name=entry.get("recordName"),
            retry_after=entry.get("retryAfter"),
        )

    # ------------------------------------------------------------------
    # Account and zone
    # ------------------------------------------------------------------

    @backoff.on_exception(
        backoff.expo,
        (aiohttp.ClientConnectionError, asyncio.TimeoutError),
        max_tries=RemoteConfig.CHECK_MAX_TRIES,
        max_time=RemoteConfig.CHECK_MAX_TIME,
        on_backoff=_backoff_handler,
        jitter=backoff.full_jitter,
        base=RemoteConfig.CHECK_BASE_DELAY,
    )
    async def check_account(self) -> bool:
        """Return True when the current user is authenticated."""
        try:
            body = await self._request("GET", "users/current")
        except AuthenticationRequiredError:
            self.logger.info("Record store reports no authenticated user")
            return False
        return bool(body.get("userRecordName"))

    async def ensure_zone(self) -> None:
        """Create the user zone. An already existing zone is not an error."""
        payload = {"operations": [{"operationType": "create", "zone": {"zoneID": self.zone_id}}]}
        body = await self._request("POST", "zones/modify", payload)
        for entry in body.get("zones", []):
            code = entry.get("serverErrorCode")
            if code and code not in CONFLICT_CODES:
                raise RecordStoreError(
                    entry.get("reason", f"Could not create zone {self.zone_name}"),
                    server_error_code=code,
                )
        self.logger.debug(f"Zone {self.zone_name} created or already present")

    async def ensure_subscription(self, subscription_id: str = RemoteConfig.SUBSCRIPTION_ID) -> bool:
        """Register a silent change subscription. Returns False if it already existed."""
        lookup = await self._request(
            "POST", "subscriptions/lookup", {"subscriptions": [{"subscriptionID": subscription_id}]}
        )
        for entry in lookup.get("subscriptions", []):
            if entry.get("subscriptionID") == subscription_id and not entry.get("serverErrorCode"):
                self.logger.debug(f"Subscription {subscription_id} already registered")
                return False

        payload = {
            "operations": [{
                "operationType": "create",
                "subscription": {
                    "subscriptionID": subscription_id,
                    "subscriptionType": "zone",
                    "zoneID": self.zone_id,
                    "notificationInfo": {"shouldSendContentAvailable": True},
                },
            }]
        }
        body = await self._request("POST", "subscriptions/modify", payload)
        for entry in body.get("subscriptions", []):
            code = entry.get("serverErrorCode")
            if code and code not in CONFLICT_CODES:
                raise RecordStoreError(entry.get("reason", "Could not create subscription"), server_error_code=code)
        self.logger.info(f"Subscription {subscription_id} registered")
        return True

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def save_record(self, record: RemoteRecord) -> RemoteRecord:
        """Save one record. Raises RecordConflictError when the change tag is stale."""
        operation = "update" if record.change_tag else "create"
        payload = {
            "operations": [{"operationType": operation, "record": record.to_payload()}],
            "zoneID": self.zone_id,
            "atomic": False,
        }
        body = await self._request("POST", "records/modify", payload)
        entries = body.get("records", [])
        if not entries:
            raise RecordStoreError(f"Empty response saving {record.record_name}")
        entry = entries[0]
        if entry.get("serverErrorCode"):
            raise self._record_error(entry)
        return RemoteRecord.from_payload(entry)

    async def lookup_record(self, record_name: str) -> Optional[RemoteRecord]:
        """Fetch the server's current version of a record, or None if it does not exist."""
        payload = {"records": [{"recordName": record_name}], "zoneID": self.zone_id}
        body = await self._request("POST", "records/lookup", payload)
        for entry in body.get("records", []):
            code = entry.get("serverErrorCode")
            if code == "NOT_FOUND":
                return None
            if code:
                raise self._record_error(entry)
            return RemoteRecord.from_payload(entry)
        return None

    async def upsert(self, record: RemoteRecord) -> RemoteRecord:
        """
        Save a record, resolving one optimistic-concurrency conflict.

        On conflict the server version is fetched, the caller's field values are
        reapplied on top of it and the save is retried exactly once. A second
        conflict propagates to the caller.
        """
        try:
            return await self.save_record(record)
        except RecordConflictError:
            self.logger.info(f"Conflict saving {record.record_name}, reapplying local fields")

        server_record = await self.lookup_record(record.record_name)
        if server_record is None:
            retry = replace(record, change_tag=None)
        else:
            retry = server_record.with_fields(record.fields)
        return await self.save_record(retry)

    async def query(self, record_type: str, page_size: Optional[int] = None) -> AsyncIterator[List[RemoteRecord]]:
        """
        Yield pages of records of one type in the zone.

        Pages are requested until the server stops returning a continuation
        marker. The sequence cannot be resumed; call again to restart.
        """
        payload: Dict[str, Any] = {
            "zoneID": self.zone_id,
            "query": {"recordType": record_type},
            "resultsLimit": page_size or self.page_size,
        }
        while True:
            body = await self._request("POST", "records/query", payload)
            page = [
                RemoteRecord.from_payload(entry)
                for entry in body.get("records", [])
                if not entry.get("serverErrorCode")
            ]
            yield page
            marker = body.get("continuationMarker")
            if not marker:
                break
            payload = {**payload, "continuationMarker": marker}

    async def query_all(
        self,
        record_type: str,
        page_size: Optional[int] = None,
        show_progress: bool = False,
    ) -> List[RemoteRecord]:
        """Collect every page of a query, dropping duplicate record names."""
        records: Dict[str, RemoteRecord] = {}
        with tqdm(desc=f"Fetching {record_type}", unit=" records", leave=False, disable=not show_progress) as pbar:
            async for page in self.query(record_type, page_size):
                for record in page:
                    records.setdefault(record.record_name, record)
                pbar.update(len(page))
        return list(records.values())

    async def delete_record(self, record_name: str) -> None:
        """Delete a record. Deleting a record that does not exist succeeds."""
        payload = {
            "operations": [{"operationType": "forceDelete", "record": {"recordName": record_name}}],
            "zoneID": self.zone_id,
        }
        body = await self._request("POST", "records/modify", payload)
        for entry in body.get("records", []):
            code = entry.get("serverErrorCode")
            if code and code != "NOT_FOUND":
                raise self._record_error(entry)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def upload_asset(self, record_type: str, record_name: str, field_name: str, data: bytes) -> Dict[str, Any]:
        """Upload a binary asset and return the receipt to store in the record field."""
        body = await self._request(
            "POST",
            "assets/upload",
            {
                "zoneID": self.zone_id,
                "tokens": [{"recordType": record_type, "recordName": record_name, "fieldName": field_name}],
            },
        )
        tokens = body.get("tokens", [])
        if not tokens or "url" not in tokens[0]:
            raise RecordStoreError(f"No upload URL returned for {record_name}")

        session = await self._get_session()
        async with session.post(tokens[0]["url"], data=data) as resp:
            resp.raise_for_status()
            receipt = await resp.json(content_type=None)
        return receipt.get("singleFile", receipt)

    async def download_asset(self, asset: Dict[str, Any], filename: str = "") -> bytes:
        """Download the bytes behind an asset field value."""
        url = asset.get("downloadURL")
        if not url:
            raise RecordStoreError("Asset has no download URL")
        session = await self._get_session()
        async with session.get(url.replace("${f}", filename or "asset")) as resp:
            resp.raise_for_status()
            return await resp.read()
