from __future__ import annotations

import math
from datetime import UTC, datetime

import pytest

from state.models import (
    DEFAULT_THUMBNAIL,
    EPOCH,
    Archive,
    JarSnapshot,
    PendingTask,
    Settings,
    VersionedPayload,
    archives_from_wire,
    clamp_capacity,
    clamp_settings,
    format_timestamp,
    parse_timestamp,
)


@pytest.mark.parametrize(
    "settings",
    [
        Settings(),
        Settings(jar_capacity=20, drop_interval=30, coin_bounciness=0.0, coin_friction=0.0, coin_static_friction=0.0),
        Settings(jar_capacity=500, drop_interval=400, coin_bounciness=0.8, coin_friction=1.0, coin_static_friction=1.0),
        Settings(jar_capacity=237, drop_interval=111, coin_bounciness=0.333, coin_friction=0.71, coin_static_friction=0.05),
    ],
)
def test_clamping_a_valid_settings_is_a_fixed_point(settings: Settings):
    assert clamp_settings(settings.model_dump()) == settings
    assert clamp_settings(settings.to_wire()) == settings
    assert clamp_settings(settings.to_wire(), settings) == settings


def test_clamp_settings_bounds_and_rounding():
    s = clamp_settings(
        {
            "jarCapacity": 1000,
            "dropInterval": 29.5,
            "coinBounciness": 2,
            "coinFriction": -1,
            "coinStaticFriction": "0.25",
        }
    )
    assert s.jar_capacity == 500
    assert s.drop_interval == 30
    assert s.coin_bounciness == 0.8
    assert s.coin_friction == 0.0
    assert s.coin_static_friction == 0.25


def test_clamp_settings_rounds_half_up():
    assert clamp_settings({"jarCapacity": 120.5}).jar_capacity == 121
    assert clamp_settings({"jarCapacity": 121.5}).jar_capacity == 122


@pytest.mark.parametrize("bad", [None, True, "abc", math.nan, math.inf, [], {}])
def test_invalid_values_keep_previous(bad):
    previous = Settings(jar_capacity=150, coin_friction=0.2)
    s = clamp_settings({"jarCapacity": bad, "coinFriction": bad}, previous)
    assert s.jar_capacity == 150
    assert s.coin_friction == 0.2


def test_clamp_settings_ignores_non_mapping():
    previous = Settings(jar_capacity=42)
    assert clamp_settings("junk", previous) == previous


def test_settings_close_to_uses_epsilon_for_floats_only():
    base = Settings()
    assert base.close_to(base.model_copy(update={"coin_friction": 0.45 + 5e-5}))
    assert not base.close_to(base.model_copy(update={"coin_friction": 0.46}))
    assert not base.close_to(base.model_copy(update={"jar_capacity": 101}))


def test_clamp_capacity():
    assert clamp_capacity(10, 100) == 20
    assert clamp_capacity(999, 100) == 500
    assert clamp_capacity(49.5, 100) == 50
    assert clamp_capacity(math.nan, 77) == 77
    assert clamp_capacity("x", 77) == 77


def test_timestamps_roundtrip_at_millisecond_precision():
    dt = datetime(2024, 5, 1, 12, 30, 45, 123000, tzinfo=UTC)
    text = format_timestamp(dt)
    assert text == "2024-05-01T12:30:45.123Z"
    assert parse_timestamp(text) == dt


@pytest.mark.parametrize("raw", [None, "", "yesterday", 12345, {}])
def test_unparsable_timestamp_is_epoch(raw):
    assert parse_timestamp(raw) == EPOCH


@pytest.mark.parametrize("raw", ["0001-01-01T00:00:00+05:00", "9999-12-31T23:59:59-05:00"])
def test_out_of_range_offsets_are_epoch(raw):
    assert parse_timestamp(raw) == EPOCH


def test_naive_timestamp_is_utc():
    assert parse_timestamp("2024-01-01T00:00:00") == datetime(2024, 1, 1, tzinfo=UTC)


def test_versioned_payload_wire_shape():
    v = VersionedPayload.from_wire({"payload": {"coins": 3}, "updatedAt": "2024-01-01T00:00:00.000Z"})
    assert v is not None
    assert v.payload == {"coins": 3}
    assert v.to_wire() == {"payload": {"coins": 3}, "updatedAt": "2024-01-01T00:00:00.000Z"}


def test_versioned_payload_accepts_legacy_flat_bodies():
    v = VersionedPayload.from_wire({"coins": 7, "tasks": [], "updatedAt": "2024-01-01T00:00:00Z"})
    assert v is not None
    assert v.payload == {"coins": 7, "tasks": []}
    assert v.updated_at == datetime(2024, 1, 1, tzinfo=UTC)


def test_versioned_payload_without_timestamp_never_wins():
    v = VersionedPayload.from_wire({"payload": {"coins": 1}})
    assert v is not None
    assert v.updated_at == EPOCH
    assert not v.is_newer_than(EPOCH)
    assert VersionedPayload.from_wire(["not", "a", "dict"]) is None


def test_pending_task_normalize():
    assert PendingTask.normalize("  買い物 ", "  ") == PendingTask(title="買い物", detail=None)
    assert PendingTask.normalize("", "") is None
    assert PendingTask.normalize(None, " detail ") == PendingTask(title="", detail="detail")


def test_archive_from_wire_tolerates_older_shapes():
    archives = archives_from_wire(
        {
            "entries": [
                {
                    "id": 1700000000000,
                    "title": "旧データ",
                    "coins": "100",
                    "createdAt": "2023-11-14T22:13:20.000Z",
                    "thumbnailUrl": "data:image/png;base64,AAAA",
                    "tasks": ["散歩", {"title": "掃除", "detail": "窓"}, 5],
                },
                {"createdAt": "2024-01-01T00:00:00.000Z"},
                "garbage",
            ]
        }
    )

    assert len(archives) == 2
    first, second = archives
    assert first.id == "1700000000000"
    assert first.coins == 100
    assert first.thumbnail_ref.startswith("data:image/png")
    assert first.tasks == (PendingTask(title="散歩"), PendingTask(title="掃除", detail="窓"))
    assert second.id == str(int(datetime(2024, 1, 1, tzinfo=UTC).timestamp() * 1000))
    assert second.coins == 0
    assert second.thumbnail_ref == DEFAULT_THUMBNAIL


def test_archive_wire_roundtrip():
    archive = Archive(
        id="1",
        title="t",
        coins=100,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        tasks=(PendingTask(title="a", detail="b"),),
    )
    assert Archive.from_wire(archive.to_wire()) == archive


def test_jar_snapshot_from_wire_defaults():
    snap = JarSnapshot.from_wire({"coins": -3, "tasks": None, "pendingTitle": 5})
    assert snap == JarSnapshot()
    assert JarSnapshot.from_wire(None) == JarSnapshot()


def test_archives_without_id_or_timestamp_get_distinct_ids():
    archives = archives_from_wire(
        [
            {"title": "a", "coins": 20},
            {"title": "b", "coins": 20, "createdAt": "0001-01-01T00:00:00+05:00"},
            {"title": "c", "coins": 20, "id": "0"},
            {"title": "d", "id": "x"},
            {"title": "e", "id": "x"},
        ]
    )

    assert [a.id for a in archives] == ["0", "1", "2", "x", "x-2"]
    assert [a.title for a in archives] == ["a", "b", "c", "d", "e"]
    assert archives[1].created_at == EPOCH
