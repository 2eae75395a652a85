"""Common interface for the document and record sync strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from data.services.sync_types import DomainSnapshot, SyncReport
from data.storage.local_store import LocalStore


class SyncStrategy(ABC):
    """
    One way of propagating local domain state to a remote backend.

    Strategies never touch engine state: ``push`` receives a snapshot taken by
    the engine and ``fetch`` returns remote values for the engine to merge.
    """

    name: str = "strategy"

    def __init__(self, local_store: LocalStore):
        self.local_store = local_store

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend may be contacted right now."""

    @abstractmethod
    async def push(self, snapshot: DomainSnapshot) -> SyncReport:
        """Send the local snapshot outward."""

    @abstractmethod
    async def fetch(self) -> DomainSnapshot:
        """Read remote candidates for merging. Absent domains stay None."""

    @abstractmethod
    async def delete_item(self, exhibit_id: str, photo_filename: Optional[str]) -> None:
        """Remove every remote trace of one exhibit."""

    async def materialize_photos(self, filenames: Iterable[str]) -> set[str]:
        """Make adopted photo files available locally. Returns the unresolved names."""
        return {name for name in filenames if self.local_store.resolve_photo(name) is None}
