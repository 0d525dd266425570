from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from common.events import (
    ARCHIVES_UPDATED,
    CAPACITY_CHANGED,
    COINS_CHANGED,
    JAR_FILLED,
    TOTALS_CHANGED,
    EventBus,
)
from common.storage import PersistentStore
from sync.client import RESOURCE_STATE
from sync.gateway import SyncGateway

from .archive_store import ArchiveStore
from .local import STATE_KEY, load_versioned, save_versioned
from .models import (
    DEFAULT_THUMBNAIL,
    Archive,
    JarSnapshot,
    PendingTask,
    VersionedPayload,
    clamp_capacity,
    utcnow,
)
from .tasks import TaskRegistry


logger = logging.getLogger(__name__)

# (title, sealed_at, capacity) -> opaque thumbnail reference
Thumbnailer = Callable[[str, datetime, int], str]


@dataclass(frozen=True)
class AddResult:
    added: int
    overflow: int
    sealed: bool
    archive: Optional[Archive] = None


@dataclass(frozen=True)
class Totals:
    coins: int
    tasks: int


def default_title(now: datetime) -> str:
    return f"{now:%Y/%m/%d}の成果"


def _coin_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return 0
    if not math.isfinite(amount):
        return 0
    return int(amount)


class JarStateMachine:
    """
    The open jar: a coin counter bound to the current capacity.

    Reaching capacity seals the jar into an Archive and starts a new cycle at
    zero. Every mutation persists the `state` resource locally and pushes it
    through the gateway. Events are emitted only after the mutation (including
    a seal) is complete, so a `coinsChanged` argument always equals `coins`;
    the count a sealed jar reached is `archive.coins` on `jarFilled`.
    """

    def __init__(
        self,
        *,
        capacity: int,
        archives: ArchiveStore,
        tasks: TaskRegistry,
        storage: PersistentStore,
        gateway: SyncGateway,
        events: EventBus,
        thumbnailer: Optional[Thumbnailer] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._capacity = clamp_capacity(capacity, 100)
        self._coins = 0
        self._pending_title: Optional[str] = None
        self._archives = archives
        self._tasks = tasks
        self._storage = storage
        self._gateway = gateway
        self._events = events
        self._thumbnailer = thumbnailer
        self._clock = clock
        self._last_totals: Optional[Totals] = None

        local = load_versioned(storage, STATE_KEY)
        if local is not None:
            snap = JarSnapshot.from_wire(local.payload)
            self._coins = min(snap.coins, self._capacity)
            self._tasks.replace(snap.tasks)
            self._pending_title = snap.pending_title
            gateway.seed(RESOURCE_STATE, local)
            logger.debug("Loaded local jar state: %d/%d coins", self._coins, self._capacity)

        self._last_totals = self._totals()
        self._unsubscribers = [
            gateway.subscribe(RESOURCE_STATE, self._apply_remote),
            events.on(ARCHIVES_UPDATED, self._on_archives_updated),
        ]

    # -------- Getters --------
    @property
    def coins(self) -> int:
        return self._coins

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        return max(0, self._capacity - self._coins)

    @property
    def pending_title(self) -> Optional[str]:
        return self._pending_title

    @property
    def pending_tasks(self) -> Tuple[PendingTask, ...]:
        return self._tasks.tasks

    @property
    def archives(self) -> Tuple[Archive, ...]:
        return self._archives.entries

    def total_coins(self) -> int:
        return self._archives.total_coins() + self._coins

    def total_tasks(self) -> int:
        return self._archives.total_tasks() + len(self._tasks)

    def snapshot(self) -> JarSnapshot:
        return JarSnapshot(coins=self._coins, tasks=self._tasks.tasks, pending_title=self._pending_title)

    # -------- Mutations --------
    def add_coins(self, amount: Any, *, thumbnail: Optional[str] = None) -> AddResult:
        """
        Add up to the free space; the rest is returned as overflow.

        When the jar reaches capacity it is sealed. A jar that was already over
        capacity (a remote snapshot raced a capacity shrink) accepts nothing and
        is not sealed, so the caller's retry of the same overflow cannot produce
        a phantom archive.
        """
        amount = _coin_amount(amount)
        if amount <= 0:
            logger.debug("Ignored non-positive coin addition: %r", amount)
            return AddResult(0, 0, False)

        was_at_capacity = self._coins >= self._capacity
        added = max(0, min(self._capacity - self._coins, amount))
        overflow = amount - added
        self._coins += added
        logger.debug("Coins added: amount=%d added=%d overflow=%d total=%d", amount, added, overflow, self._coins)

        if was_at_capacity and self._coins > self._capacity and added == 0:
            logger.warning(
                "Jar holds %d coins over capacity %d; not sealing a stale observation",
                self._coins,
                self._capacity,
            )
            self._events.emit(COINS_CHANGED, self._coins)
            return AddResult(0, overflow, False)

        if self._coins < self._capacity:
            self._save()
            self._events.emit(COINS_CHANGED, self._coins)
            self._emit_totals()
            return AddResult(added, overflow, False)

        archive = self._seal(thumbnail)
        self._events.emit(JAR_FILLED, archive, overflow)
        self._events.emit(ARCHIVES_UPDATED, self._archives.entries)
        self._events.emit(COINS_CHANGED, self._coins)
        self._emit_totals()
        return AddResult(added, overflow, True, archive)

    def _seal(self, thumbnail: Optional[str]) -> Archive:
        now = self._clock()
        title = (self._pending_title or "").strip() or default_title(now)
        archive = Archive(
            id=self._archives.next_id(now),
            title=title,
            coins=self._capacity,
            created_at=now,
            thumbnail_ref=thumbnail or self._thumbnail_for(title, now),
            tasks=self._tasks.drain(),
        )
        self._archives.add(archive)
        self._pending_title = None
        self._coins = 0
        self._save()
        logger.info("Jar sealed: %s (%d coins, %d tasks)", archive.title, archive.coins, len(archive.tasks))
        return archive

    def _thumbnail_for(self, title: str, now: datetime) -> str:
        if self._thumbnailer is None:
            return DEFAULT_THUMBNAIL
        try:
            return self._thumbnailer(title, now, self._capacity) or DEFAULT_THUMBNAIL
        except Exception:
            logger.exception("Thumbnail generation failed; using the default")
            return DEFAULT_THUMBNAIL

    def set_capacity(self, value: Any) -> None:
        """Clamp to 20..500; truncates coins without sealing when shrinking below them."""
        capacity = clamp_capacity(value, self._capacity)
        if capacity == self._capacity:
            return
        self._capacity = capacity
        truncated = self._coins > capacity
        if truncated:
            self._coins = capacity
            self._save()
            self._events.emit(COINS_CHANGED, self._coins)
        self._events.emit(CAPACITY_CHANGED, capacity)
        logger.info("Capacity updated to %d", capacity)
        if truncated:
            self._emit_totals()

    def reset_coins(self, initial: int = 0) -> None:
        self._coins = max(0, min(_coin_amount(initial), self._capacity))
        self._save()
        self._events.emit(COINS_CHANGED, self._coins)
        self._emit_totals()

    def register_task(self, title: Any, detail: Any = None) -> Optional[PendingTask]:
        task = self._tasks.register(title, detail)
        if task is not None:
            self._save()
            self._emit_totals()
        return task

    def register_task_text(self, text: Optional[str]) -> List[PendingTask]:
        tasks = self._tasks.register_text(text)
        if tasks:
            self._save()
            self._emit_totals()
        return tasks

    def set_pending_title(self, title: Optional[str]) -> None:
        cleaned = title.strip() if isinstance(title, str) else ""
        new = cleaned or None
        if new == self._pending_title:
            return
        self._pending_title = new
        self._save()

    # -------- Persistence / sync --------
    def _save(self) -> None:
        versioned = self._gateway.stamp(RESOURCE_STATE, self.snapshot().to_wire())
        save_versioned(self._storage, STATE_KEY, versioned)
        self._gateway.push(RESOURCE_STATE, versioned)

    def _apply_remote(self, incoming: VersionedPayload) -> None:
        snap = JarSnapshot.from_wire(incoming.payload)
        # Not clamped: a remote jar may briefly exceed a capacity that shrank locally
        self._coins = snap.coins
        self._tasks.replace(snap.tasks)
        self._pending_title = snap.pending_title
        save_versioned(
            self._storage,
            STATE_KEY,
            VersionedPayload(payload=self.snapshot().to_wire(), updated_at=incoming.updated_at),
        )
        self._events.emit(COINS_CHANGED, self._coins)
        self._emit_totals()

    def _on_archives_updated(self, _entries: Any) -> None:
        self._emit_totals()

    # -------- Totals --------
    def _totals(self) -> Totals:
        return Totals(coins=self.total_coins(), tasks=self.total_tasks())

    def _emit_totals(self) -> None:
        totals = self._totals()
        if totals == self._last_totals:
            return
        self._last_totals = totals
        self._events.emit(TOTALS_CHANGED, totals)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []


__all__ = ["AddResult", "JarStateMachine", "Thumbnailer", "Totals", "default_title"]
