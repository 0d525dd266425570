from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import httpx

from common.config import AppConfig, load_config
from common.debug_log import DebugLogBuffer, configure_logging
from common.events import SETTINGS_CHANGED, EventBus
from common.storage import FileStore, PersistentStore
from state.archive_store import ArchiveStore
from state.jar import AddResult, JarStateMachine
from state.models import Settings, clamp_settings
from state.record import RecordConverter, SliderInput
from state.settings_store import SettingsStore
from state.tasks import TaskRegistry
from sync.client import RoomClient
from sync.gateway import SyncGateway

from .commands import handle_command


logger = logging.getLogger(__name__)


@dataclass
class JarRuntime:
    """Everything one host process needs, wired once at startup."""

    config: AppConfig
    events: EventBus
    gateway: SyncGateway
    settings: SettingsStore
    archives: ArchiveStore
    tasks: TaskRegistry
    jar: JarStateMachine
    converter: RecordConverter
    debug_log: Optional[DebugLogBuffer] = None
    _unsubscribers: List[Callable[[], None]] = field(default_factory=list, repr=False)

    def feed(self, amount: int) -> List[AddResult]:
        """
        Add `amount` coins, carrying overflow into the next jar until it is used up.

        Stops early when a call makes no progress (a stale over-capacity jar).
        """
        results: List[AddResult] = []
        remaining = amount
        while remaining > 0:
            result = self.jar.add_coins(remaining)
            results.append(result)
            if result.added == 0 and not result.sealed:
                if result.overflow:
                    logger.warning("Dropped %d coins: jar did not accept them", result.overflow)
                break
            remaining = result.overflow
        return results

    def drop_keyboard_coin(self) -> List[AddResult]:
        return self.feed(self.config.ui.keyboard_coin_increment)

    def record(self, sliders: Iterable[SliderInput], title: Optional[str] = None) -> List[AddResult]:
        """Convert slider input to coins and feed them; nothing happens for zero coins."""
        coins = self.converter.preview(list(sliders), self.jar.available)
        if coins <= 0:
            self.jar.set_pending_title(None)
            return []
        self.jar.set_pending_title(title)
        return self.feed(coins)

    def start(self) -> None:
        self.gateway.start()

    async def aclose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.jar.close()
        self.archives.close()
        self.settings.close()
        await self.gateway.close()


def _default_settings(config: AppConfig) -> Settings:
    coins = config.coins
    return clamp_settings(
        {
            "jar_capacity": coins.jar_capacity,
            "drop_interval": coins.spawn_interval_ms,
            "coin_bounciness": coins.coin_bounciness,
            "coin_friction": coins.coin_friction,
            "coin_static_friction": coins.coin_static_friction,
        }
    )


def _build_gateway(config: AppConfig, http_client: Optional[httpx.AsyncClient]) -> SyncGateway:
    sync = config.sync
    if not sync.active:
        logger.info("Sync disabled; running local-only")
        return SyncGateway.disabled()
    client = RoomClient(
        sync.base_url,
        sync.room_code,
        auth_token=sync.auth_token,
        timeout=sync.timeout_ms / 1000,
        client=http_client,
    )
    return SyncGateway(client, poll_interval=sync.poll_interval_ms / 1000)


def build_runtime(
    config: Optional[AppConfig] = None,
    *,
    storage: Optional[PersistentStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    debug_log: Optional[DebugLogBuffer] = None,
) -> JarRuntime:
    cfg = config or AppConfig()
    store = storage or FileStore(cfg.storage.directory, fernet_key=cfg.storage.fernet_key)
    events = EventBus()
    gateway = _build_gateway(cfg, http_client)

    settings = SettingsStore(storage=store, gateway=gateway, events=events, defaults=_default_settings(cfg))
    archives = ArchiveStore(storage=store, gateway=gateway, events=events)
    tasks = TaskRegistry()
    jar = JarStateMachine(
        capacity=settings.get().jar_capacity,
        archives=archives,
        tasks=tasks,
        storage=store,
        gateway=gateway,
        events=events,
    )
    converter = RecordConverter(
        cfg.ui.record_slider_formula,
        conversion_base=cfg.ui.record_conversion_base,
        max_coins=cfg.ui.max_record_coins,
    )

    runtime = JarRuntime(
        config=cfg,
        events=events,
        gateway=gateway,
        settings=settings,
        archives=archives,
        tasks=tasks,
        jar=jar,
        converter=converter,
        debug_log=debug_log,
    )
    runtime._unsubscribers.append(
        events.on(SETTINGS_CHANGED, lambda s: jar.set_capacity(s.jar_capacity))
    )
    return runtime


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def run(config: Optional[AppConfig] = None) -> None:
    """Run a host process: sync in the background, commands from stdin until EOF."""
    cfg = config or load_config()
    storage = FileStore(cfg.storage.directory, fernet_key=cfg.storage.fernet_key)
    buffer = configure_logging(cfg.logging, storage=storage)
    runtime = build_runtime(cfg, storage=storage, debug_log=buffer)
    runtime.start()
    logger.info("Coin jar ready: %d/%d coins", runtime.jar.coins, runtime.jar.capacity)
    try:
        reader = await _stdin_reader()
        while True:
            raw = await reader.readline()
            if not raw:
                break
            reply = handle_command(runtime, raw.decode("utf-8", errors="replace"))
            if reply:
                print(reply, flush=True)
    finally:
        await runtime.aclose()


def main() -> int:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        return 130
    return 0


__all__ = ["JarRuntime", "build_runtime", "main", "run"]
