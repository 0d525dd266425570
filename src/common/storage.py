from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional, Protocol
from uuid import uuid4

from cryptography.fernet import Fernet, InvalidToken


logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR_ENV = "COINJAR_DATA_DIR"
DEFAULT_FERNET_KEY_ENV = "COINJAR_FERNET_KEY"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class PersistentStore(Protocol):
    """Narrow key/value view over a durable, possibly unavailable medium."""

    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, value: str) -> None: ...


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


def _default_data_dir() -> Path:
    # Prefer explicit env var, else project-local .coinjar folder
    base = os.environ.get(DEFAULT_DATA_DIR_ENV)
    if base:
        return Path(base)
    return Path(".coinjar")


class MemoryStore:
    """Dict-backed store; useful for tests and for hosts without a disk."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        self._data[key] = value

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileStore:
    """
    One file per key under a directory, optionally encrypted at rest with Fernet.

    - Reads return None when the file is missing, unreadable or fails to decrypt;
      failures are logged and never raised.
    - Writes go to a temporary sibling first and are moved into place, so a reader
      never sees a half-written blob. Write failures are logged and dropped.
    """

    def __init__(
        self,
        directory: Optional[os.PathLike[str] | str] = None,
        *,
        fernet_key: str | bytes | None = None,
    ) -> None:
        self._dir = Path(directory) if directory else _default_data_dir()
        self._fernet = _to_fernet(fernet_key) if fernet_key else None

    @classmethod
    def from_env(cls) -> "FileStore":
        return cls(
            os.environ.get(DEFAULT_DATA_DIR_ENV) or None,
            fernet_key=os.environ.get(DEFAULT_FERNET_KEY_ENV) or None,
        )

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key) or "_"
        suffix = ".bin" if self._fernet else ".json"
        return self._dir / f"{safe}{suffix}"

    def read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Failed to read %s: %s", path, exc)
            return None

        if self._fernet is not None:
            try:
                data = self._fernet.decrypt(data)
            except InvalidToken:
                logger.warning("Failed to decrypt %s: invalid Fernet token", path)
                return None

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("Stored value at %s is not UTF-8: %s", path, exc)
            return None

    def write(self, key: str, value: str) -> None:
        path = self.path_for(key)
        data = value.encode("utf-8")
        if self._fernet is not None:
            data = self._fernet.encrypt(data)

        tmp = path.with_name(f"{path.name}.tmp-{uuid4().hex}")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            logger.warning("Failed to write %s: %s", path, exc)
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass


__all__ = ["FileStore", "MemoryStore", "PersistentStore"]
