from __future__ import annotations

from pathlib import Path

from common.config import AppConfig, build_config, load_config, parse_raw_config


_SAMPLE = """
# coin jar settings
[Coins]
jarCapacity = 120
spawnIntervalMs = abc
coinBounciness = 0.3

[ui]
keyboardCoinIncrement = 2
recordSliderFormula = value * weight * 2

[logging]
consoleEnabled = off
maxEntries = 3
level = debug

[sync]
baseUrl = https://room.example/functions/v1/coin3
roomCode = family
pollIntervalMs = 1000
; comment line
timeoutMs = 2500
"""


def test_defaults_without_file():
    cfg = load_config(environ={})
    assert cfg == AppConfig()
    assert cfg.coins.jar_capacity == 100
    assert cfg.ui.record_conversion_base == 45
    assert not cfg.sync.active


def test_parse_raw_config_lowercases_sections_and_keeps_key_case():
    raw = parse_raw_config(_SAMPLE)
    assert raw["coins"]["jarCapacity"] == "120"
    assert raw["sync"]["roomCode"] == "family"


def test_build_config_parses_and_falls_back_per_field():
    cfg = build_config(parse_raw_config(_SAMPLE))

    assert cfg.coins.jar_capacity == 120
    assert cfg.coins.spawn_interval_ms == 90  # unparsable -> default
    assert cfg.coins.coin_bounciness == 0.3
    assert cfg.ui.keyboard_coin_increment == 2
    assert cfg.ui.record_slider_formula == "value * weight * 2"
    assert cfg.logging.console_enabled is False
    assert cfg.logging.max_entries == 10  # minimum
    assert cfg.logging.level == "DEBUG"
    assert cfg.sync.poll_interval_ms == 5000  # minimum
    assert cfg.sync.timeout_ms == 2500
    assert cfg.sync.active


def test_malformed_ini_falls_back_to_defaults():
    assert parse_raw_config("jarCapacity = 3\n[broken") == {}
    assert build_config(parse_raw_config("no sections at all")) == AppConfig()


def test_env_overrides(tmp_path: Path):
    path = tmp_path / "coinjar.ini"
    path.write_text("[sync]\nenabled = true\n", encoding="utf-8")
    env = {
        "COINJAR_CONFIG": str(path),
        "COINJAR_SYNC_BASE_URL": " https://room.example ",
        "COINJAR_ROOM_CODE": "room-1",
        "COINJAR_AUTH_TOKEN": "tok",
        "COINJAR_POLL_INTERVAL_MS": "20000",
        "COINJAR_DATA_DIR": str(tmp_path / "data"),
        "COINJAR_LOG_LEVEL": "warning",
    }

    cfg = load_config(environ=env)

    assert cfg.sync.base_url == "https://room.example"
    assert cfg.sync.room_code == "room-1"
    assert cfg.sync.auth_token == "tok"
    assert cfg.sync.poll_interval_ms == 20000
    assert cfg.sync.active
    assert cfg.storage.directory == str(tmp_path / "data")
    assert cfg.logging.level == "WARNING"


def test_sync_disabled_flag_wins_over_endpoint():
    cfg = build_config(
        parse_raw_config("[sync]\nenabled = no\nbaseUrl = https://x\nroomCode = r\n")
    )
    assert not cfg.sync.active


def test_unreadable_config_path_uses_defaults(tmp_path: Path):
    cfg = load_config(tmp_path / "missing.ini", environ={})
    assert cfg == AppConfig()
