"""
Application configuration loaded from an INI file plus environment overrides.

Example file:

    [coins]
    jarCapacity = 100
    spawnIntervalMs = 90

    [sync]
    baseUrl = https://example.invalid/functions/v1/coin3
    roomCode = family
    pollIntervalMs = 15000

Section names are case-insensitive, keys are camelCase, `#` and `;` start
comments. A value that does not parse falls back to its default; a broken file
falls back to defaults entirely. Nothing here raises on bad input.
"""

from __future__ import annotations

import configparser
import logging
import math
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "COINJAR_CONFIG"
ENV_SYNC_BASE_URL = "COINJAR_SYNC_BASE_URL"
ENV_ROOM_CODE = "COINJAR_ROOM_CODE"
ENV_AUTH_TOKEN = "COINJAR_AUTH_TOKEN"
ENV_POLL_INTERVAL_MS = "COINJAR_POLL_INTERVAL_MS"
ENV_DATA_DIR = "COINJAR_DATA_DIR"
ENV_FERNET_KEY = "COINJAR_FERNET_KEY"
ENV_LOG_LEVEL = "COINJAR_LOG_LEVEL"

MIN_POLL_INTERVAL_MS = 5000

RawConfig = Dict[str, Dict[str, str]]


class CoinsConfig(BaseModel):
    jar_capacity: int = Field(default=100, description="Default jar capacity before user settings")
    spawn_interval_ms: int = Field(default=90, description="Default delay between coin drops")
    coin_bounciness: float = 0.12
    coin_friction: float = 0.45
    coin_static_friction: float = 0.9


class UIConfig(BaseModel):
    keyboard_coin_increment: int = 1
    max_record_coins: int = 15
    record_conversion_base: int = 45
    record_slider_formula: str = "value * weight"


class LoggingConfig(BaseModel):
    console_enabled: bool = True
    max_entries: int = 500
    level: str = "INFO"
    persist: bool = True


class SyncConfig(BaseModel):
    enabled: bool = True
    base_url: str = ""
    room_code: str = ""
    auth_token: Optional[str] = None
    poll_interval_ms: int = 15000
    timeout_ms: int = 10000

    @property
    def active(self) -> bool:
        """True when the remote endpoint is fully configured and not switched off."""
        return self.enabled and bool(self.base_url) and bool(self.room_code)


class StorageConfig(BaseModel):
    directory: str = ".coinjar"
    fernet_key: Optional[str] = None


class AppConfig(BaseModel):
    coins: CoinsConfig = Field(default_factory=CoinsConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def parse_raw_config(text: str) -> RawConfig:
    """Parse INI text into {section: {key: value}}; unparsable text yields {}."""
    parser = configparser.ConfigParser(
        strict=False,
        interpolation=None,
        comment_prefixes=("#", ";"),
        inline_comment_prefixes=None,
    )
    parser.optionxform = str  # type: ignore[assignment,method-assign]  # keep camelCase keys
    try:
        parser.read_string(text or "")
    except configparser.Error as exc:
        logger.warning("Ignoring malformed configuration: %s", exc)
        return {}

    out: RawConfig = {}
    for section in parser.sections():
        bucket = out.setdefault(section.strip().lower(), {})
        for key, value in parser.items(section):
            bucket[key.strip()] = value.strip()
    return out


def _parse_number(value: Optional[str], fallback: float) -> float:
    if value is None:
        return fallback
    try:
        num = float(value)
    except ValueError:
        return fallback
    return num if math.isfinite(num) else fallback


def _parse_int(value: Optional[str], fallback: int, *, minimum: int) -> int:
    return max(minimum, int(math.floor(_parse_number(value, fallback) + 0.5)))


def _parse_bool(value: Optional[str], fallback: bool) -> bool:
    if value is None:
        return fallback
    v = value.strip().lower()
    if v in ("true", "1", "yes", "on"):
        return True
    if v in ("false", "0", "no", "off"):
        return False
    return fallback


def _parse_string(value: Optional[str], fallback: str) -> str:
    if value is None:
        return fallback
    trimmed = value.strip()
    return trimmed if trimmed else fallback


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def build_config(raw: RawConfig) -> AppConfig:
    defaults = AppConfig()
    coins = raw.get("coins", {})
    ui = raw.get("ui", {})
    log = raw.get("logging", {})
    sync = raw.get("sync", {})
    storage = raw.get("storage", {})

    d_coins = defaults.coins
    d_ui = defaults.ui
    d_log = defaults.logging
    d_sync = defaults.sync
    d_storage = defaults.storage

    return AppConfig(
        coins=CoinsConfig(
            jar_capacity=_parse_int(coins.get("jarCapacity"), d_coins.jar_capacity, minimum=1),
            spawn_interval_ms=_parse_int(coins.get("spawnIntervalMs"), d_coins.spawn_interval_ms, minimum=16),
            coin_bounciness=max(0.0, _parse_number(coins.get("coinBounciness"), d_coins.coin_bounciness)),
            coin_friction=max(0.0, _parse_number(coins.get("coinFriction"), d_coins.coin_friction)),
            coin_static_friction=max(
                0.0, _parse_number(coins.get("coinStaticFriction"), d_coins.coin_static_friction)
            ),
        ),
        ui=UIConfig(
            keyboard_coin_increment=_parse_int(
                ui.get("keyboardCoinIncrement"), d_ui.keyboard_coin_increment, minimum=1
            ),
            max_record_coins=_parse_int(ui.get("maxRecordCoins"), d_ui.max_record_coins, minimum=1),
            record_conversion_base=_parse_int(
                ui.get("recordConversionBase"), d_ui.record_conversion_base, minimum=1
            ),
            record_slider_formula=_parse_string(ui.get("recordSliderFormula"), d_ui.record_slider_formula),
        ),
        logging=LoggingConfig(
            console_enabled=_parse_bool(log.get("consoleEnabled"), d_log.console_enabled),
            max_entries=_parse_int(log.get("maxEntries"), d_log.max_entries, minimum=10),
            level=_parse_string(log.get("level"), d_log.level).upper(),
            persist=_parse_bool(log.get("persist"), d_log.persist),
        ),
        sync=SyncConfig(
            enabled=_parse_bool(sync.get("enabled"), d_sync.enabled),
            base_url=_parse_string(sync.get("baseUrl"), d_sync.base_url),
            room_code=_parse_string(sync.get("roomCode"), d_sync.room_code),
            auth_token=_optional(sync.get("authToken")),
            poll_interval_ms=_parse_int(
                sync.get("pollIntervalMs"), d_sync.poll_interval_ms, minimum=MIN_POLL_INTERVAL_MS
            ),
            timeout_ms=_parse_int(sync.get("timeoutMs"), d_sync.timeout_ms, minimum=100),
        ),
        storage=StorageConfig(
            directory=_parse_string(storage.get("directory"), d_storage.directory),
            fernet_key=_optional(storage.get("fernetKey")),
        ),
    )


def _getenv(environ: Mapping[str, str], name: str) -> Optional[str]:
    v = environ.get(name)
    return v if v not in (None, "") else None


def apply_env_overrides(config: AppConfig, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    env = os.environ if environ is None else environ

    sync_updates: Dict[str, object] = {}
    base_url = _getenv(env, ENV_SYNC_BASE_URL)
    if base_url is not None:
        sync_updates["base_url"] = base_url.strip()
    room = _getenv(env, ENV_ROOM_CODE)
    if room is not None:
        sync_updates["room_code"] = room.strip()
    token = _getenv(env, ENV_AUTH_TOKEN)
    if token is not None:
        sync_updates["auth_token"] = token.strip()
    interval = _getenv(env, ENV_POLL_INTERVAL_MS)
    if interval is not None:
        sync_updates["poll_interval_ms"] = _parse_int(
            interval, config.sync.poll_interval_ms, minimum=MIN_POLL_INTERVAL_MS
        )

    storage_updates: Dict[str, object] = {}
    data_dir = _getenv(env, ENV_DATA_DIR)
    if data_dir is not None:
        storage_updates["directory"] = data_dir
    fernet_key = _getenv(env, ENV_FERNET_KEY)
    if fernet_key is not None:
        storage_updates["fernet_key"] = fernet_key

    logging_updates: Dict[str, object] = {}
    level = _getenv(env, ENV_LOG_LEVEL)
    if level is not None:
        logging_updates["level"] = level.strip().upper()

    return config.model_copy(
        update={
            "sync": config.sync.model_copy(update=sync_updates),
            "storage": config.storage.model_copy(update=storage_updates),
            "logging": config.logging.model_copy(update=logging_updates),
        }
    )


def load_config(
    path: Optional[os.PathLike[str] | str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """
    Load configuration from `path` (or `$COINJAR_CONFIG`) and apply env overrides.

    A missing or unreadable file is not an error: defaults are used instead.
    """
    env = os.environ if environ is None else environ
    source = path or _getenv(env, ENV_CONFIG_PATH)

    raw: RawConfig = {}
    if source:
        try:
            text = Path(source).read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not read config file %s: %s", source, exc)
        else:
            raw = parse_raw_config(text)

    return apply_env_overrides(build_config(raw), env)


__all__ = [
    "AppConfig",
    "CoinsConfig",
    "LoggingConfig",
    "StorageConfig",
    "SyncConfig",
    "UIConfig",
    "build_config",
    "load_config",
    "parse_raw_config",
]
