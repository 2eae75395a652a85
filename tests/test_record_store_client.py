"""
Unit tests for RecordStoreClient.

Tests cover:
- Conflict resolution (fetch, reapply, retry exactly once)
- Query pagination via continuation markers
- Idempotent zone, subscription and delete operations
- Account probing and the backoff handler
"""

import asyncio
import math
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import aiohttp
import pytest

from api.circuit_breaker import circuit_breaker_manager
from api.error_handling import (
    AuthenticationRequiredError,
    CircuitBreakerOpenException,
    RecordConflictError,
    RecordStoreError,
)
from api.record_store_client import RecordStoreClient, RemoteRecord


def record_entry(name, record_type="Exhibit", tag="t1", **fields):
    return {
        "recordName": name,
        "recordType": record_type,
        "recordChangeTag": tag,
        "fields": {key: {"value": value} for key, value in fields.items()},
    }


@pytest.fixture
def client():
    return RecordStoreClient(api_token="token", logger_obj=Mock())


class TestRecordStoreClientInit:
    def test_database_url(self):
        client = RecordStoreClient(base_url="https://records.test/db/1/", container="c", environment="production")
        assert client.database_url == "https://records.test/db/1/c/production/private"

    def test_auth_params(self):
        client = RecordStoreClient(api_token="a", web_auth_token="w")
        assert client._auth_params() == {"ckAPIToken": "a", "ckWebAuthToken": "w"}

    def test_custom_logger(self):
        mock_logger = Mock()
        assert RecordStoreClient(logger_obj=mock_logger).logger is mock_logger


class TestRemoteRecord:
    def test_payload_wraps_field_values(self):
        payload = RemoteRecord("u1", "Exhibit", {"title": "T"}, change_tag="t9").to_payload()
        assert payload["fields"] == {"title": {"value": "T"}}
        assert payload["recordChangeTag"] == "t9"

    def test_with_fields_keeps_change_tag(self):
        server = RemoteRecord("u1", "Exhibit", {"title": "server", "extra": 1}, change_tag="t2")
        merged = server.with_fields({"title": "local"})
        assert merged.fields == {"title": "local", "extra": 1}
        assert merged.change_tag == "t2"


class TestUpsert:
    @pytest.mark.asyncio
    async def test_conflict_reapplies_fields_and_retries_once(self, client):
        conflict = {"records": [{"recordName": "u1", "serverErrorCode": "CONFLICT", "reason": "stale"}]}
        lookup = {"records": [record_entry("u1", tag="server-tag", title="server", easyText="kept")]}
        saved = {"records": [record_entry("u1", tag="new-tag", title="local", easyText="kept")]}
        client._request = AsyncMock(side_effect=[conflict, lookup, saved])

        result = await client.upsert(RemoteRecord("u1", "Exhibit", {"title": "local"}))

        assert result.change_tag == "new-tag"
        methods = [c.args[1] for c in client._request.await_args_list]
        assert methods == ["records/modify", "records/lookup", "records/modify"]
        retry_payload = client._request.await_args_list[2].args[2]
        retried = retry_payload["operations"][0]
        assert retried["operationType"] == "update"
        assert retried["record"]["recordChangeTag"] == "server-tag"
        assert retried["record"]["fields"]["title"] == {"value": "local"}
        assert retried["record"]["fields"]["easyText"] == {"value": "kept"}

    @pytest.mark.asyncio
    async def test_second_conflict_propagates(self, client):
        conflict = {"records": [{"recordName": "u1", "serverErrorCode": "CONFLICT"}]}
        lookup = {"records": [record_entry("u1")]}
        client._request = AsyncMock(side_effect=[conflict, lookup, conflict])

        with pytest.raises(RecordConflictError):
            await client.upsert(RemoteRecord("u1", "Exhibit", {"title": "local"}))
        assert client._request.await_count == 3

    @pytest.mark.asyncio
    async def test_conflict_on_vanished_record_recreates_it(self, client):
        conflict = {"records": [{"recordName": "u1", "serverErrorCode": "CONFLICT"}]}
        not_found = {"records": [{"recordName": "u1", "serverErrorCode": "NOT_FOUND"}]}
        saved = {"records": [record_entry("u1", title="local")]}
        client._request = AsyncMock(side_effect=[conflict, not_found, saved])

        await client.upsert(RemoteRecord("u1", "Exhibit", {"title": "local"}, change_tag="old"))

        retried = client._request.await_args_list[2].args[2]["operations"][0]
        assert retried["operationType"] == "create"


class TestQuery:
    @pytest.mark.parametrize("total,page_size", [(0, 100), (1, 100), (250, 100), (300, 100)])
    @pytest.mark.asyncio
    async def test_page_count_follows_continuation_markers(self, client, total, page_size):
        pages = max(1, math.ceil(total / page_size))
        responses = []
        for index in range(pages):
            start = index * page_size
            entries = [record_entry(f"r{n}") for n in range(start, min(start + page_size, total))]
            body = {"records": entries}
            if index < pages - 1:
                body["continuationMarker"] = f"marker-{index}"
            responses.append(body)
        client._request = AsyncMock(side_effect=responses)

        records = await client.query_all("Exhibit", page_size=page_size)

        assert len(records) == total
        assert client._request.await_count == pages
        if pages > 1:
            assert client._request.await_args_list[1].args[2]["continuationMarker"] == "marker-0"

    @pytest.mark.asyncio
    async def test_query_restarts_from_scratch(self, client):
        client._request = AsyncMock(return_value={"records": [record_entry("r1")]})
        await client.query_all("Exhibit")
        await client.query_all("Exhibit")
        for call in client._request.await_args_list:
            assert "continuationMarker" not in call.args[2]


class TestIdempotentOperations:
    @pytest.mark.asyncio
    async def test_existing_zone_is_success(self, client):
        client._request = AsyncMock(return_value={"zones": [{"serverErrorCode": "EXISTS"}]})
        await client.ensure_zone()

    @pytest.mark.asyncio
    async def test_zone_error_raises(self, client):
        client._request = AsyncMock(return_value={"zones": [{"serverErrorCode": "QUOTA_EXCEEDED"}]})
        with pytest.raises(RecordStoreError):
            await client.ensure_zone()

    @pytest.mark.asyncio
    async def test_existing_subscription_is_not_recreated(self, client):
        client._request = AsyncMock(return_value={"subscriptions": [{"subscriptionID": "exhibit-changes"}]})
        assert await client.ensure_subscription("exhibit-changes") is False
        assert client._request.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_subscription_is_created(self, client):
        client._request = AsyncMock(side_effect=[
            {"subscriptions": [{"subscriptionID": "exhibit-changes", "serverErrorCode": "NOT_FOUND"}]},
            {"subscriptions": [{"subscriptionID": "exhibit-changes"}]},
        ])
        assert await client.ensure_subscription("exhibit-changes") is True
        created = client._request.await_args_list[1].args[2]["operations"][0]["subscription"]
        assert created["notificationInfo"] == {"shouldSendContentAvailable": True}

    @pytest.mark.asyncio
    async def test_delete_of_missing_record_succeeds(self, client):
        client._request = AsyncMock(return_value={"records": [{"recordName": "u1", "serverErrorCode": "NOT_FOUND"}]})
        await client.delete_record("u1")

    @pytest.mark.asyncio
    async def test_lookup_missing_returns_none(self, client):
        client._request = AsyncMock(return_value={"records": [{"recordName": "u1", "serverErrorCode": "NOT_FOUND"}]})
        assert await client.lookup_record("u1") is None


class TestCheckAccount:
    @pytest.mark.asyncio
    async def test_authenticated(self, client):
        client._request = AsyncMock(return_value={"userRecordName": "_abc"})
        assert await client.check_account() is True

    @pytest.mark.asyncio
    async def test_authentication_required(self, client):
        client._request = AsyncMock(side_effect=AuthenticationRequiredError("login", status=421))
        assert await client.check_account() is False

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self, client):
        client._request = AsyncMock(side_effect=[
            aiohttp.ClientConnectionError("down"),
            {"userRecordName": "_abc"},
        ])
        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await client.check_account() is True
        assert client._request.await_count == 2


class TestRequest:
    @pytest.mark.asyncio
    async def test_open_breaker_blocks_requests(self, client):
        breaker = circuit_breaker_manager.get_breaker(client.endpoint)
        for _ in range(breaker.failure_threshold):
            breaker.record_failure()

        with pytest.raises(CircuitBreakerOpenException):
            await client._request("POST", "records/query", {})

    @pytest.mark.asyncio
    async def test_http_error_maps_to_record_store_error(self, client):
        response = MagicMock()
        response.status = 503
        response.content_length = None
        response.headers = {"Retry-After": "7"}
        response.json = AsyncMock(return_value={"serverErrorCode": "SERVICE_UNAVAILABLE", "reason": "busy"})
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.closed = False
        session.request = MagicMock(return_value=context)
        client._session = session

        with pytest.raises(RecordStoreError) as exc_info:
            await client._request("POST", "records/modify", {})

        assert exc_info.value.is_retryable
        assert exc_info.value.retry_after == 7.0
        assert circuit_breaker_manager.get_breaker(client.endpoint).failure_count == 1


class TestBackoffHandler:
    def test_backoff_handler_logs_error(self):
        from api.record_store_client import _backoff_handler, _module_logger

        with patch.object(_module_logger, "warning") as mock_warning:
            details = {
                "exception": aiohttp.ClientConnectionError("Connection failed"),
                "wait": 5.0,
                "tries": 2,
            }

            _backoff_handler(details)

            mock_warning.assert_called_once()
            call_args = mock_warning.call_args[0][0]
            assert "Backing off" in call_args
            assert "5.0s" in call_args
            assert "attempt 2" in call_args

    def test_backoff_handler_timeout_error(self):
        from api.record_store_client import _backoff_handler, _module_logger

        with patch.object(_module_logger, "warning") as mock_warning:
            _backoff_handler({"exception": asyncio.TimeoutError("Request timeout"), "wait": 1.0, "tries": 1})
            assert "timeout" in mock_warning.call_args[0][0]
