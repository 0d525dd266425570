from __future__ import annotations

import asyncio
import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Coroutine, Dict, Iterable, List, Optional, Set

from state.models import EPOCH, VersionedPayload, format_timestamp, utcnow

from .client import RESOURCES, RoomClient, SyncError, check_resource


logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL = 5.0
DEFAULT_POLL_INTERVAL = 15.0

_ONE_MS = timedelta(milliseconds=1)

Listener = Callable[[VersionedPayload], None]


def _noop() -> None:
    return None


class SyncGateway:
    """
    Last-write-wins synchronization of whole resources through a shared room.

    Each resource (`state`, `archives`, `settings`) is versioned independently by
    its `updatedAt`. A pulled snapshot is applied only when it is strictly newer
    than the last version seen for that resource, so duplicate or out-of-order
    pulls are no-ops. Local writes bump the version before any network I/O.

    All methods must be called from the event loop that owns the stores; the
    gateway never blocks it. Pushes run as background tasks and are serialized
    per resource. Constructed without a client, the gateway is disabled and every
    method is a no-op.
    """

    def __init__(
        self,
        client: Optional[RoomClient] = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        resources: Iterable[str] = RESOURCES,
    ) -> None:
        self._client = client
        self._poll_interval = max(MIN_POLL_INTERVAL, float(poll_interval))
        self._resources = tuple(check_resource(r) for r in resources)
        self._versions: Dict[str, datetime] = {}
        self._cache: Dict[str, VersionedPayload] = {}
        self._listeners: Dict[str, List[Listener]] = {r: [] for r in self._resources}
        self._unsent: Dict[str, VersionedPayload] = {}
        self._send_locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._ticker: Optional[asyncio.Task[None]] = None

    @classmethod
    def disabled(cls) -> "SyncGateway":
        return cls(None)

    # -------- Introspection --------
    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def resources(self) -> tuple[str, ...]:
        return self._resources

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def version(self, resource: str) -> datetime:
        """Last applied or pushed `updatedAt` for `resource` (EPOCH if none)."""
        return self._versions.get(self._check(resource), EPOCH)

    def cached(self, resource: str) -> Optional[VersionedPayload]:
        cached = self._cache.get(self._check(resource))
        return cached.model_copy(deep=True) if cached is not None else None

    def has_unsent(self, resource: str) -> bool:
        return self._check(resource) in self._unsent

    def _check(self, resource: str) -> str:
        if resource not in self._listeners:
            raise ValueError(f"Unknown resource: {resource!r}")
        return resource

    # -------- Subscriptions --------
    def subscribe(self, resource: str, listener: Listener) -> Callable[[], None]:
        """
        Register `listener` for strictly newer snapshots of `resource`.

        If a snapshot is already cached, it is delivered immediately. Returns an
        unsubscribe handle.
        """
        if not self.enabled:
            return _noop
        self._check(resource)
        self._listeners[resource].append(listener)
        cached = self._cache.get(resource)
        if cached is not None:
            self._deliver(resource, listener, cached)

        def unsubscribe() -> None:
            try:
                self._listeners[resource].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _deliver(self, resource: str, listener: Listener, versioned: VersionedPayload) -> None:
        try:
            listener(versioned.model_copy(update={"payload": copy.deepcopy(versioned.payload)}))
        except Exception:
            logger.exception("Sync listener for %s failed", resource)

    # -------- Versions --------
    def stamp(self, resource: str, payload: Any) -> VersionedPayload:
        """
        Wrap a fresh local `payload` with a version that beats everything seen so far.

        Normally the current time; if the clock is behind the last applied
        version (skew between devices), one millisecond past that version.
        """
        now = utcnow()
        if self.enabled:
            current = self._versions.get(self._check(resource), EPOCH)
            try:
                floor = current + _ONE_MS
            except OverflowError:
                logger.warning("Cannot stamp %s past %s; keeping the current time", resource, current)
                floor = now
            if now < floor:
                now = floor
        return VersionedPayload.stamp(payload, now=now)

    def seed(self, resource: str, versioned: VersionedPayload) -> None:
        """Record the version of a locally loaded snapshot without pushing it."""
        if not self.enabled:
            return
        self._check(resource)
        if versioned.is_newer_than(self._versions.get(resource)):
            self._versions[resource] = versioned.updated_at

    def apply(self, resource: str, incoming: VersionedPayload) -> bool:
        """Apply `incoming` iff strictly newer than the last version; returns True if applied."""
        if not self.enabled:
            return False
        self._check(resource)
        current = self._versions.get(resource, EPOCH)
        if not incoming.is_newer_than(current):
            logger.debug(
                "Skipping %s snapshot at %s (have %s)",
                resource,
                format_timestamp(incoming.updated_at),
                format_timestamp(current),
            )
            return False

        self._versions[resource] = incoming.updated_at
        self._cache[resource] = incoming
        logger.info("Applying remote %s snapshot from %s", resource, format_timestamp(incoming.updated_at))
        for listener in list(self._listeners[resource]):
            self._deliver(resource, listener, incoming)
        return True

    # -------- Pull --------
    async def pull(self, resource: str) -> Optional[VersionedPayload]:
        """Fetch the remote snapshot; None when absent, disabled, or on any failure."""
        if not self.enabled:
            return None
        self._check(resource)
        assert self._client is not None
        try:
            raw = await self._client.fetch(resource)
        except SyncError as exc:
            logger.warning("Pull of %s failed: %s", resource, exc)
            return None
        if raw is None:
            return None
        return VersionedPayload.from_wire(raw)

    async def refresh(self, resource: str) -> bool:
        incoming = await self.pull(resource)
        if incoming is None:
            return False
        return self.apply(resource, incoming)

    async def pull_all(self) -> Dict[str, bool]:
        """Start pending pushes in the background, then pull every resource; maps resource -> applied."""
        if not self.enabled:
            return {}
        for resource in self._resources:
            lock = self._send_locks.get(resource)
            # Still sending; whatever stays unsent goes out on a later tick
            if resource in self._unsent and not (lock is not None and lock.locked()):
                self._spawn(self._send(resource))
        results = await asyncio.gather(*(self.refresh(r) for r in self._resources))
        return dict(zip(self._resources, results))

    # -------- Push --------
    def push(self, resource: str, versioned: VersionedPayload) -> None:
        """
        Record `versioned` as the freshest local snapshot and send it in the background.

        The version is bumped before the request starts, so a pull that resolves
        later with an older snapshot cannot overwrite this write. Never raises for
        network problems.
        """
        if not self.enabled:
            return
        self._check(resource)
        if versioned.is_newer_than(self._versions.get(resource)):
            self._versions[resource] = versioned.updated_at
        self._cache[resource] = versioned
        self._unsent[resource] = versioned
        if not self._spawn(self._send(resource)):
            logger.debug("No running event loop; %s push deferred to the next poll", resource)

    async def _send(self, resource: str) -> None:
        assert self._client is not None
        lock = self._send_locks.setdefault(resource, asyncio.Lock())
        async with lock:
            versioned = self._unsent.pop(resource, None)
            if versioned is None:
                # Coalesced into an earlier send
                return
            if versioned.updated_at < self._versions.get(resource, EPOCH):
                logger.info("Dropping stale %s push; a newer snapshot was applied", resource)
                return
            try:
                await self._client.store(resource, versioned.to_wire())
            except SyncError as exc:
                logger.warning("Push of %s failed: %s", resource, exc)
                # Retry on the next poll unless a newer local write superseded it
                self._unsent.setdefault(resource, versioned)
                return
            logger.debug("Pushed %s snapshot at %s", resource, format_timestamp(versioned.updated_at))

    async def _send_unsent(self) -> None:
        pending = [r for r in self._resources if r in self._unsent]
        if pending:
            await asyncio.gather(*(self._send(r) for r in pending))

    async def flush(self) -> None:
        """Send everything unsent and wait for in-flight background work."""
        if not self.enabled:
            return
        await self._send_unsent()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------- Polling --------
    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return False
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return True

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background sync task failed", exc_info=exc)

    def request_immediate_pull(self) -> bool:
        """Start a pull of every resource now; returns False when it could not start."""
        if not self.enabled:
            return False
        return self._spawn(self.pull_all())

    def start(self) -> None:
        """Pull once eagerly, then on every poll tick. Requires a running loop."""
        if not self.enabled or self.running:
            return
        loop = asyncio.get_running_loop()
        self.request_immediate_pull()
        self._ticker = loop.create_task(self._tick_forever())
        logger.info("Sync polling started every %.1fs", self._poll_interval)

    async def _tick_forever(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            # Each tick is its own task so a hung request never delays the next one
            self.request_immediate_pull()

    async def stop(self) -> None:
        if self._ticker is None:
            return
        self._ticker.cancel()
        try:
            await self._ticker
        except asyncio.CancelledError:
            pass
        self._ticker = None
        logger.info("Sync polling stopped")

    async def close(self) -> None:
        """Stop polling, drain background work and release the HTTP client."""
        await self.stop()
        if self._client is None:
            return
        await self.flush()
        await self._client.aclose()


__all__ = ["DEFAULT_POLL_INTERVAL", "MIN_POLL_INTERVAL", "SyncGateway"]
