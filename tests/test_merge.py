"""Tests for the local-priority additive merge."""

from datetime import datetime, timezone

import pytest

from data.domains import SyncDomain
from data.models import Exhibit, LocationRecord
from data.services.merge import merge_keyed, merge_recents, merge_snapshot, merge_user_items
from data.services.sync_types import DomainSnapshot


def loc(lat):
    return LocationRecord(lat, 0.0, datetime(2024, 1, 1, tzinfo=timezone.utc))


class TestMergeRecents:
    def test_local_order_first_then_remote_only(self):
        result = merge_recents(["b", "a"], ["a", "c", "d"])
        assert result.value == ["b", "a", "c", "d"]
        assert result.changed

    def test_truncated_to_cap(self):
        local = [f"l{i}" for i in range(8)]
        result = merge_recents(local, ["r1", "r2", "r3"], cap=10)
        assert result.value == local + ["r1", "r2"]

    def test_nothing_new_is_unchanged(self):
        result = merge_recents(["a", "b"], ["b"])
        assert result.value == ["a", "b"]
        assert not result.changed

    def test_idempotent(self):
        once = merge_recents(["a"], ["b", "c"]).value
        twice = merge_recents(once, ["b", "c"])
        assert twice.value == once
        assert not twice.changed


class TestMergeKeyed:
    def test_local_value_wins(self):
        result = merge_keyed({"e1": "local.jpg"}, {"e1": "remote.jpg", "e2": "other.jpg"})
        assert result.value == {"e1": "local.jpg", "e2": "other.jpg"}
        assert result.changed

    def test_locations_never_overwritten(self):
        result = merge_keyed({"e1": loc(1.0)}, {"e1": loc(2.0)})
        assert result.value["e1"].latitude == 1.0
        assert not result.changed


class TestMergeUserItems:
    def test_appends_unknown_ids_only(self):
        local = [Exhibit("u1", "local title")]
        remote = [Exhibit("u1", "remote title"), Exhibit("u2", "new")]
        result = merge_user_items(local, remote)
        assert [(e.id, e.title) for e in result.value] == [("u1", "local title"), ("u2", "new")]


class TestMergeSnapshot:
    def test_absent_remote_domains_keep_local(self):
        local = DomainSnapshot(recents=["a"], artifacts={"a": "a.jpg"}, locations={}, user_items=[])
        merged, changed = merge_snapshot(local, DomainSnapshot(recents=["b"]))
        assert merged.recents == ["a", "b"]
        assert merged.artifacts == {"a": "a.jpg"}
        assert changed == {SyncDomain.RECENTS}

    @pytest.mark.parametrize("remote", [
        DomainSnapshot(),
        DomainSnapshot(recents=[], artifacts={}, locations={}, user_items=[]),
    ])
    def test_empty_remote_changes_nothing(self, remote):
        local = DomainSnapshot(recents=["a"], artifacts={}, locations={}, user_items=[])
        merged, changed = merge_snapshot(local, remote)
        assert merged.recents == ["a"]
        assert changed == set()

    def test_snapshot_merge_is_idempotent(self):
        local = DomainSnapshot(recents=["a"], artifacts={}, locations={}, user_items=[])
        remote = DomainSnapshot(
            recents=["b"], artifacts={"b": "b.jpg"}, locations={"b": loc(3.0)}, user_items=[Exhibit("u9", "x")]
        )
        first, first_changed = merge_snapshot(local, remote)
        second, second_changed = merge_snapshot(first, remote)
        assert first_changed == set(SyncDomain)
        assert second == first
        assert second_changed == set()
