from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Tuple

from common.events import ARCHIVES_UPDATED, EventBus
from common.storage import PersistentStore
from sync.client import RESOURCE_ARCHIVES
from sync.gateway import SyncGateway

from .local import ARCHIVES_KEY, load_versioned, save_versioned
from .models import Archive, VersionedPayload, archives_from_wire, archives_to_wire, unique_archive_id


logger = logging.getLogger(__name__)

ARCHIVE_PAGE_SIZE = 6


@dataclass(frozen=True)
class ArchivePage:
    items: Tuple[Archive, ...]
    index: int
    total_pages: int


class ArchiveStore:
    """
    Sealed jars, newest first.

    A remote snapshot replaces the whole list; there is no per-entry merge.
    """

    def __init__(self, *, storage: PersistentStore, gateway: SyncGateway, events: EventBus) -> None:
        self._storage = storage
        self._gateway = gateway
        self._events = events
        self._entries: List[Archive] = []

        local = load_versioned(storage, ARCHIVES_KEY)
        if local is not None:
            self._entries = archives_from_wire(local.payload)
            gateway.seed(RESOURCE_ARCHIVES, local)
            logger.debug("Loaded %d local archives", len(self._entries))

        self._unsubscribe = gateway.subscribe(RESOURCE_ARCHIVES, self._apply_remote)

    @property
    def entries(self) -> Tuple[Archive, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def next_id(self, now: datetime) -> str:
        """Millisecond timestamp of `now`, bumped until it is unused."""
        return unique_archive_id(str(int(now.timestamp() * 1000)), {a.id for a in self._entries})

    def add(self, archive: Archive) -> None:
        self._entries.insert(0, archive)
        self._save()

    def page(self, index: int, size: int = ARCHIVE_PAGE_SIZE) -> ArchivePage:
        if size < 1:
            raise ValueError("size must be >= 1")
        total_pages = max(1, math.ceil(len(self._entries) / size))
        index = min(max(0, index), total_pages - 1)
        start = index * size
        return ArchivePage(items=tuple(self._entries[start : start + size]), index=index, total_pages=total_pages)

    def total_coins(self) -> int:
        return sum(a.coins for a in self._entries)

    def total_tasks(self) -> int:
        return sum(len(a.tasks) for a in self._entries)

    def _save(self) -> None:
        versioned = self._gateway.stamp(RESOURCE_ARCHIVES, archives_to_wire(self._entries))
        save_versioned(self._storage, ARCHIVES_KEY, versioned)
        self._gateway.push(RESOURCE_ARCHIVES, versioned)

    def _apply_remote(self, incoming: VersionedPayload) -> None:
        self._entries = archives_from_wire(incoming.payload)
        save_versioned(
            self._storage,
            ARCHIVES_KEY,
            VersionedPayload(payload=archives_to_wire(self._entries), updated_at=incoming.updated_at),
        )
        self._events.emit(ARCHIVES_UPDATED, self.entries)

    def close(self) -> None:
        self._unsubscribe()


__all__ = ["ARCHIVE_PAGE_SIZE", "ArchivePage", "ArchiveStore"]
