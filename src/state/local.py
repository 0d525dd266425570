from __future__ import annotations

import json
import logging
from typing import Optional

from common.storage import PersistentStore

from .models import VersionedPayload


logger = logging.getLogger(__name__)

STATE_KEY = "coinjar-state"
ARCHIVES_KEY = "coinjar-archives"
SETTINGS_KEY = "coinjar-settings"


def _dump(versioned: VersionedPayload) -> str:
    # Same document the remote endpoint stores, so local and remote blobs are interchangeable
    return json.dumps(versioned.to_wire(), ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def load_versioned(storage: PersistentStore, key: str) -> Optional[VersionedPayload]:
    """Read one local blob; missing, unreadable or malformed blobs yield None."""
    try:
        raw = storage.read(key)
    except Exception:
        logger.exception("Local storage read failed for %s", key)
        return None
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring corrupt local blob %s: %s", key, exc)
        return None
    versioned = VersionedPayload.from_wire(data)
    if versioned is None:
        logger.warning("Ignoring local blob %s: not a JSON object", key)
    return versioned


def save_versioned(storage: PersistentStore, key: str, versioned: VersionedPayload) -> None:
    """Best-effort write of one local blob."""
    try:
        storage.write(key, _dump(versioned))
    except Exception:
        logger.exception("Local storage write failed for %s", key)


__all__ = ["ARCHIVES_KEY", "SETTINGS_KEY", "STATE_KEY", "load_versioned", "save_versioned"]
