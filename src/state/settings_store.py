from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from common.events import SETTINGS_CHANGED, EventBus
from common.storage import PersistentStore
from sync.client import RESOURCE_SETTINGS
from sync.gateway import SyncGateway

from .local import SETTINGS_KEY, load_versioned, save_versioned
from .models import Settings, VersionedPayload, clamp_settings


logger = logging.getLogger(__name__)


def _unwrap(payload: Any) -> Any:
    # Older clients stored {"settings": {...}}
    if isinstance(payload, Mapping) and isinstance(payload.get("settings"), Mapping):
        return payload["settings"]
    return payload


class SettingsStore:
    """
    Room-wide tunables with clamping and last-write-wins sync.

    `update` persists and pushes only when the clamped result actually differs
    from the current value. Remote snapshots are persisted locally but never
    pushed back.
    """

    def __init__(
        self,
        *,
        storage: PersistentStore,
        gateway: SyncGateway,
        events: EventBus,
        defaults: Optional[Settings] = None,
    ) -> None:
        self._storage = storage
        self._gateway = gateway
        self._events = events
        self._settings = defaults or Settings()

        local = load_versioned(storage, SETTINGS_KEY)
        if local is not None:
            self._settings = clamp_settings(_unwrap(local.payload), self._settings)
            gateway.seed(RESOURCE_SETTINGS, local)
            logger.debug("Loaded local settings: %s", self._settings.to_wire())

        self._unsubscribe = gateway.subscribe(RESOURCE_SETTINGS, self._apply_remote)

    def get(self) -> Settings:
        return self._settings

    def update(self, partial: Optional[Mapping[str, Any]] = None, **changes: Any) -> Settings:
        """Merge `partial` (field names or camelCase keys) into the current settings."""
        merged = dict(partial or {})
        merged.update(changes)
        candidate = clamp_settings(merged, self._settings)
        if candidate.close_to(self._settings):
            return self._settings

        self._settings = candidate
        self._events.emit(SETTINGS_CHANGED, candidate)
        versioned = self._gateway.stamp(RESOURCE_SETTINGS, candidate.to_wire())
        save_versioned(self._storage, SETTINGS_KEY, versioned)
        self._gateway.push(RESOURCE_SETTINGS, versioned)
        return candidate

    def _apply_remote(self, incoming: VersionedPayload) -> None:
        candidate = clamp_settings(_unwrap(incoming.payload), self._settings)
        save_versioned(
            self._storage,
            SETTINGS_KEY,
            VersionedPayload(payload=candidate.to_wire(), updated_at=incoming.updated_at),
        )
        if candidate.close_to(self._settings):
            return
        self._settings = candidate
        self._events.emit(SETTINGS_CHANGED, candidate)

    def close(self) -> None:
        self._unsubscribe()


__all__ = ["SettingsStore"]
