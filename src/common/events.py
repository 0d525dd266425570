from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List


logger = logging.getLogger(__name__)

COINS_CHANGED = "coinsChanged"
JAR_FILLED = "jarFilled"
ARCHIVES_UPDATED = "archivesUpdated"
CAPACITY_CHANGED = "capacityChanged"
TOTALS_CHANGED = "totalsChanged"
SETTINGS_CHANGED = "settingsChanged"

EVENTS = frozenset(
    {
        COINS_CHANGED,
        JAR_FILLED,
        ARCHIVES_UPDATED,
        CAPACITY_CHANGED,
        TOTALS_CHANGED,
        SETTINGS_CHANGED,
    }
)

Listener = Callable[..., Any]


class EventBus:
    """
    In-process publish/subscribe registry keyed by event name.

    - `on(event, listener)` returns an unsubscribe handle.
    - `emit(event, *args)` calls listeners in registration order. A listener that
      raises is logged and skipped; the remaining listeners still run.
    - Only names in `EVENTS` are accepted.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in EVENTS}

    @staticmethod
    def _check(event: str) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event!r}")

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        self._check(event)
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            self.off(event, listener)

        return unsubscribe

    def off(self, event: str, listener: Listener) -> None:
        self._check(event)
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass

    def emit(self, event: str, *args: Any) -> int:
        """Notify listeners of `event`; returns how many were called."""
        self._check(event)
        # Snapshot so listeners may unsubscribe while being notified
        listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for %s failed", event)
        return len(listeners)

    def listener_count(self, event: str) -> int:
        self._check(event)
        return len(self._listeners[event])


__all__ = [
    "ARCHIVES_UPDATED",
    "CAPACITY_CHANGED",
    "COINS_CHANGED",
    "EVENTS",
    "EventBus",
    "JAR_FILLED",
    "SETTINGS_CHANGED",
    "TOTALS_CHANGED",
]
