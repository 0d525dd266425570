from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Optional

import pytest

from common.storage import MemoryStore
from state.local import STATE_KEY, load_versioned, save_versioned
from state.models import EPOCH, VersionedPayload


class _BrokenStore:
    def read(self, key: str) -> Optional[str]:
        raise PermissionError("storage disabled")

    def write(self, key: str, value: str) -> None:
        raise PermissionError("storage disabled")


def test_save_then_load():
    store = MemoryStore()
    v = VersionedPayload(payload={"coins": 4}, updated_at=datetime(2024, 3, 1, tzinfo=UTC))

    save_versioned(store, STATE_KEY, v)

    assert json.loads(store.read(STATE_KEY)) == {"payload": {"coins": 4}, "updatedAt": "2024-03-01T00:00:00.000Z"}
    assert load_versioned(store, STATE_KEY) == v


def test_missing_and_corrupt_blobs_load_as_none(caplog: pytest.LogCaptureFixture):
    store = MemoryStore({STATE_KEY: "{not json"})
    assert load_versioned(store, "absent") is None
    with caplog.at_level(logging.WARNING, logger="state.local"):
        assert load_versioned(store, STATE_KEY) is None
    assert any("corrupt" in r.getMessage() for r in caplog.records)


def test_non_object_blob_loads_as_none():
    store = MemoryStore({STATE_KEY: "[1, 2]"})
    assert load_versioned(store, STATE_KEY) is None


def test_broken_storage_is_logged_not_raised(caplog: pytest.LogCaptureFixture):
    store = _BrokenStore()
    with caplog.at_level(logging.ERROR, logger="state.local"):
        assert load_versioned(store, STATE_KEY) is None
        save_versioned(store, STATE_KEY, VersionedPayload(payload={}))
    assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 2


def test_out_of_range_timestamp_loads_as_epoch():
    store = MemoryStore({STATE_KEY: json.dumps({"payload": {"coins": 2}, "updatedAt": "0001-01-01T00:00:00+05:00"})})

    loaded = load_versioned(store, STATE_KEY)

    assert loaded is not None
    assert loaded.payload == {"coins": 2}
    assert loaded.updated_at == EPOCH
