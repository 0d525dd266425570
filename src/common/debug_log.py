from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

from .config import LoggingConfig
from .storage import PersistentStore


DEBUG_LOG_KEY = "coinjar-debug-log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class DebugLogBuffer(logging.Handler):
    """
    Logging handler that keeps the most recent formatted records in memory.

    - Holds at most `max_entries` lines; older lines are dropped first.
    - When a `storage` is given, the whole buffer is mirrored under `key` after
      every record and restored from it on construction, so a debug trail
      survives restarts. Mirroring is best-effort.
    """

    def __init__(
        self,
        max_entries: int = 500,
        *,
        storage: Optional[PersistentStore] = None,
        key: str = DEBUG_LOG_KEY,
        level: int = logging.NOTSET,
    ) -> None:
        super().__init__(level=level)
        self._lines: Deque[str] = deque(maxlen=max(1, max_entries))
        self._storage = storage
        self._key = key
        self._persisting = False
        self.setFormatter(logging.Formatter(LOG_FORMAT))
        self._restore()

    @property
    def max_entries(self) -> int:
        return self._lines.maxlen or 0

    def _restore(self) -> None:
        if self._storage is None:
            return
        raw = self._storage.read(self._key)
        if not raw:
            return
        self._lines.extend(line for line in raw.split("\n") if line.strip())

    def _persist(self, record: Optional[logging.LogRecord] = None) -> None:
        if self._storage is None or self._persisting:
            return
        # The store logs its own failures, which would land back here
        self._persisting = True
        try:
            self._storage.write(self._key, self.snapshot())
        except Exception:
            if record is None:
                raise
            self.handleError(record)
        finally:
            self._persisting = False

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self._lines.append(line)
        self._persist(record)

    def lines(self) -> list[str]:
        return list(self._lines)

    def snapshot(self) -> str:
        return "\n".join(self._lines)

    def clear(self) -> None:
        self._lines.clear()
        self._persist()


def configure_logging(
    config: Optional[LoggingConfig] = None,
    *,
    storage: Optional[PersistentStore] = None,
    logger: Optional[logging.Logger] = None,
) -> DebugLogBuffer:
    """Attach a DebugLogBuffer (and a console handler if enabled) to `logger`.

    Defaults to the root logger. Calling it again replaces the previous buffer.
    """
    cfg = config or LoggingConfig()
    target = logger or logging.getLogger()
    level = logging.getLevelName(cfg.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    target.setLevel(level)

    for handler in list(target.handlers):
        if isinstance(handler, DebugLogBuffer):
            target.removeHandler(handler)

    if cfg.console_enabled and not any(
        type(h) is logging.StreamHandler for h in target.handlers
    ):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        target.addHandler(console)

    buffer = DebugLogBuffer(cfg.max_entries, storage=storage if cfg.persist else None)
    target.addHandler(buffer)
    return buffer


__all__ = ["DEBUG_LOG_KEY", "DebugLogBuffer", "configure_logging"]
