"""Typed contracts for local/remote synchronization flows."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from data.models import Exhibit, LocationRecord


class SchedulerPhase(str, Enum):
    """Debounce cycle state of the sync scheduler."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    PUSHING = "pushing"


@dataclass
class DomainSnapshot:
    """Values of the document domains. ``None`` marks a domain that is absent."""

    recents: Optional[list[str]] = None
    artifacts: Optional[dict[str, str]] = None
    locations: Optional[dict[str, LocationRecord]] = None
    user_items: Optional[list[Exhibit]] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.recents, self.artifacts, self.locations, self.user_items)
        )


@dataclass(frozen=True)
class SyncStatus:
    """Sync indicator exposed to the UI."""

    is_syncing: bool
    is_available: bool
    last_sync_at: Optional[float]
    phase: SchedulerPhase


@dataclass(frozen=True)
class SyncReport:
    """Result of one strategy push."""

    success: bool
    message: str
    deferred: bool = False
    details: dict[str, Any] = field(default_factory=dict)
