"""Domain models for exhibits, captured locations and their JSON shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class GlossaryItem:
    term: str
    definition: str

    def to_dict(self) -> dict[str, Any]:
        return {"term": self.term, "def": self.definition}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GlossaryItem":
        return cls(term=str(data["term"]), definition=str(data.get("def", "")))


@dataclass(frozen=True)
class ExhibitMedia:
    sign_video_filename: str = ""
    captions_filename: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "signVideoFilename": self.sign_video_filename,
            "captionsVttOrSrtFilename": self.captions_filename,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExhibitMedia":
        return cls(
            sign_video_filename=str(data.get("signVideoFilename", "")),
            captions_filename=str(data.get("captionsVttOrSrtFilename", "")),
        )


@dataclass(frozen=True)
class ReferenceSnippet:
    ref_id: str
    snippet: str

    def to_dict(self) -> dict[str, Any]:
        return {"refId": self.ref_id, "snippet": self.snippet}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReferenceSnippet":
        return cls(ref_id=str(data["refId"]), snippet=str(data.get("snippet", "")))


@dataclass(frozen=True)
class Exhibit:
    """A catalog item, either bundled read-only or authored by the visitor."""

    id: str
    title: str
    short_intro: str = ""
    easy_text: str = ""
    detail_text: str = ""
    glossary: tuple[GlossaryItem, ...] = ()
    media: ExhibitMedia = field(default_factory=ExhibitMedia)
    references: tuple[ReferenceSnippet, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "shortIntro": self.short_intro,
            "easyText": self.easy_text,
            "detailText": self.detail_text,
            "glossary": [item.to_dict() for item in self.glossary],
            "media": self.media.to_dict(),
            "references": [ref.to_dict() for ref in self.references],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Exhibit":
        """Build an exhibit from its JSON form. Raises KeyError/TypeError on bad input."""
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            short_intro=str(data.get("shortIntro", "")),
            easy_text=str(data.get("easyText", "")),
            detail_text=str(data.get("detailText", "")),
            glossary=tuple(GlossaryItem.from_dict(g) for g in data.get("glossary") or []),
            media=ExhibitMedia.from_dict(data.get("media") or {}),
            references=tuple(ReferenceSnippet.from_dict(r) for r in data.get("references") or []),
        )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


@dataclass(frozen=True)
class LocationRecord:
    """Where a visitor was when an exhibit was captured."""

    latitude: float
    longitude: float
    timestamp: datetime
    name: Optional[str] = None
    locality: Optional[str] = None
    administrative_area: Optional[str] = None
    country: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        parts = [p for p in (self.locality, self.administrative_area, self.country) if p]
        return " · ".join(parts) if parts else "Unknown location"

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "name": self.name,
            "locality": self.locality,
            "administrativeArea": self.administrative_area,
            "country": self.country,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocationRecord":
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            timestamp=_parse_timestamp(data["timestamp"]),
            name=data.get("name"),
            locality=data.get("locality"),
            administrative_area=data.get("administrativeArea"),
            country=data.get("country"),
        )
