"""Local-priority, additive merge of remote snapshots into local state.

Existing local values are never overwritten or removed by a merge; remote data
only extends what is already present. Every function is idempotent: merging the
same remote input twice yields the same value as merging it once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Mapping, Sequence, TypeVar

from config.settings import Settings
from data.domains import SyncDomain
from data.models import Exhibit
from data.services.sync_types import DomainSnapshot

T = TypeVar("T")
V = TypeVar("V")


@dataclass(frozen=True)
class MergeResult(Generic[T]):
    value: T
    changed: bool


def merge_recents(
    local: Sequence[str],
    remote: Sequence[str],
    cap: int = Settings.RECENTS_CAP,
) -> MergeResult[list[str]]:
    """Keep local order, append remote-only ids, truncate to the cap."""
    merged = list(local)
    for item_id in remote:
        if item_id not in merged:
            merged.append(item_id)
    merged = merged[:cap]
    return MergeResult(merged, merged != list(local))


def merge_keyed(local: Mapping[str, V], remote: Mapping[str, V]) -> MergeResult[dict[str, V]]:
    """Adopt remote keys that are absent locally; local keys always win."""
    merged = dict(local)
    changed = False
    for key, value in remote.items():
        if key not in merged:
            merged[key] = value
            changed = True
    return MergeResult(merged, changed)


def merge_user_items(
    local: Sequence[Exhibit],
    remote: Sequence[Exhibit],
) -> MergeResult[list[Exhibit]]:
    """Append remote items whose id is not present locally."""
    merged = list(local)
    known = {item.id for item in merged}
    for item in remote:
        if item.id not in known:
            known.add(item.id)
            merged.append(item)
    return MergeResult(merged, len(merged) != len(local))


def merge_snapshot(
    local: DomainSnapshot,
    remote: DomainSnapshot,
    cap: int = Settings.RECENTS_CAP,
) -> tuple[DomainSnapshot, set[SyncDomain]]:
    """
    Merge every domain present in ``remote`` into ``local``.

    Returns the merged snapshot (domains absent remotely keep their local value)
    and the domains whose value changed.
    """
    merged = DomainSnapshot(
        recents=local.recents,
        artifacts=local.artifacts,
        locations=local.locations,
        user_items=local.user_items,
    )
    changed: set[SyncDomain] = set()

    if remote.recents is not None:
        result = merge_recents(local.recents or [], remote.recents, cap)
        merged.recents = result.value
        if result.changed:
            changed.add(SyncDomain.RECENTS)

    if remote.artifacts is not None:
        result_map = merge_keyed(local.artifacts or {}, remote.artifacts)
        merged.artifacts = result_map.value
        if result_map.changed:
            changed.add(SyncDomain.ARTIFACTS)

    if remote.locations is not None:
        result_loc = merge_keyed(local.locations or {}, remote.locations)
        merged.locations = result_loc.value
        if result_loc.changed:
            changed.add(SyncDomain.LOCATIONS)

    if remote.user_items is not None:
        result_items = merge_user_items(local.user_items or [], remote.user_items)
        merged.user_items = result_items.value
        if result_items.changed:
            changed.add(SyncDomain.USER_ITEMS)

    return merged, changed
