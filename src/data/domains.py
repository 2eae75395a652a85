"""The four document-synced domains and their JSON codecs.

The same codec serves the local store and the remote mirror, so a snapshot
written on one device reads back byte-compatible on another.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from data.models import Exhibit, LocationRecord


class SyncDomain(str, Enum):
    """Independently persisted and independently synced category of user data."""

    RECENTS = "recents"
    ARTIFACTS = "artifacts"
    LOCATIONS = "locations"
    USER_ITEMS = "user_items"

    @property
    def file_name(self) -> str:
        return f"{self.value}.json"


def _decode_recents(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        raise ValueError("recents must be a JSON list")
    ids: list[str] = []
    for item in raw:
        item = str(item)
        if item not in ids:
            ids.append(item)
    return ids


def _decode_artifacts(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        raise ValueError("artifacts must be a JSON object")
    return {str(k): str(v) for k, v in raw.items()}


def _decode_locations(raw: Any) -> dict[str, LocationRecord]:
    if not isinstance(raw, dict):
        raise ValueError("locations must be a JSON object")
    return {str(k): LocationRecord.from_dict(v) for k, v in raw.items()}


def _decode_user_items(raw: Any) -> list[Exhibit]:
    if not isinstance(raw, list):
        raise ValueError("user items must be a JSON list")
    items: list[Exhibit] = []
    seen: set[str] = set()
    for entry in raw:
        exhibit = Exhibit.from_dict(entry)
        if exhibit.id not in seen:
            seen.add(exhibit.id)
            items.append(exhibit)
    return items


@dataclass(frozen=True)
class DomainCodec:
    default: Callable[[], Any]
    to_json: Callable[[Any], Any]
    from_json: Callable[[Any], Any]

    def encode(self, value: Any) -> bytes:
        return json.dumps(self.to_json(value), ensure_ascii=False, indent=2).encode("utf-8")

    def decode(self, payload: bytes) -> Any:
        """Decode a snapshot. Raises ValueError (or a subclass) on malformed input."""
        try:
            return self.from_json(json.loads(payload.decode("utf-8")))
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"Malformed snapshot: {exc}") from exc


CODECS: dict[SyncDomain, DomainCodec] = {
    SyncDomain.RECENTS: DomainCodec(
        default=list,
        to_json=list,
        from_json=_decode_recents,
    ),
    SyncDomain.ARTIFACTS: DomainCodec(
        default=dict,
        to_json=dict,
        from_json=_decode_artifacts,
    ),
    SyncDomain.LOCATIONS: DomainCodec(
        default=dict,
        to_json=lambda value: {k: v.to_dict() for k, v in value.items()},
        from_json=_decode_locations,
    ),
    SyncDomain.USER_ITEMS: DomainCodec(
        default=list,
        to_json=lambda value: [item.to_dict() for item in value],
        from_json=_decode_user_items,
    ),
}


def codec_for(domain: SyncDomain) -> DomainCodec:
    return CODECS[domain]
