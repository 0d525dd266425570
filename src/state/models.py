from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field


EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

CAPACITY_MIN = 20
CAPACITY_MAX = 500

DEFAULT_THUMBNAIL = "/default-thumb.svg"

# Floats closer than this are treated as the same setting value
SETTINGS_EPSILON = 1e-4


# -------- Timestamps --------
def utcnow() -> datetime:
    """Current UTC time truncated to milliseconds (the wire precision)."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 instant; anything missing or unparsable becomes EPOCH.

    Naive values are taken to be UTC.
    """
    if isinstance(value, str) and value.strip():
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            return EPOCH
    if not isinstance(value, datetime):
        return EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    try:
        return value.astimezone(UTC)
    except OverflowError:
        # offsets that push year 1 or 9999 out of range
        return EPOCH


def format_timestamp(dt: datetime) -> str:
    """Render as `YYYY-MM-DDTHH:MM:SS.mmmZ`."""
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _finite_number(value: Any) -> Optional[float]:
    """Return `value` as a finite float, or None for bools, junk and NaN/inf."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return num if math.isfinite(num) else None


def clamp_capacity(value: Any, previous: int) -> int:
    num = _finite_number(value)
    if num is None:
        return previous
    return min(CAPACITY_MAX, max(CAPACITY_MIN, round_half_up(num)))


# -------- Versioned payload --------
class VersionedPayload(BaseModel):
    """
    A whole resource snapshot plus the instant it was produced.

    Wire form: {"payload": ..., "updatedAt": "2024-01-01T00:00:00.000Z"}.
    Bodies written by older clients carry their fields flat next to
    `updatedAt`; `from_wire` accepts both shapes.
    """

    model_config = ConfigDict(populate_by_name=True)

    payload: Any = None
    updated_at: datetime = Field(default=EPOCH, alias="updatedAt")

    @classmethod
    def stamp(cls, payload: Any, *, now: Optional[datetime] = None) -> "VersionedPayload":
        return cls(payload=payload, updated_at=now or utcnow())

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["VersionedPayload"]:
        if not isinstance(raw, Mapping):
            return None
        if "payload" in raw:
            payload = raw["payload"]
        else:
            payload = {k: v for k, v in raw.items() if k != "updatedAt"}
        return cls(payload=payload, updated_at=parse_timestamp(raw.get("updatedAt")))

    def to_wire(self) -> Dict[str, Any]:
        return {"payload": self.payload, "updatedAt": format_timestamp(self.updated_at)}

    def is_newer_than(self, other: Optional[datetime]) -> bool:
        return self.updated_at > (other or EPOCH)


# -------- Tasks --------
class PendingTask(BaseModel):
    """A free-text task recorded during the open jar cycle."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    detail: Optional[str] = None

    @classmethod
    def normalize(cls, title: Any, detail: Any = None) -> Optional["PendingTask"]:
        """Trim both fields; returns None when neither has content."""
        t = title.strip() if isinstance(title, str) else ""
        d = detail.strip() if isinstance(detail, str) else ""
        if not t and not d:
            return None
        return cls(title=t, detail=d or None)

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["PendingTask"]:
        # Older archives stored tasks as plain strings
        if isinstance(raw, str):
            return cls.normalize(raw)
        if isinstance(raw, Mapping):
            return cls.normalize(raw.get("title"), raw.get("detail"))
        return None

    def to_wire(self) -> Dict[str, Any]:
        return {"title": self.title, "detail": self.detail}


def tasks_from_wire(raw: Any) -> Tuple[PendingTask, ...]:
    if not isinstance(raw, list):
        return ()
    out: List[PendingTask] = []
    for item in raw:
        task = PendingTask.from_wire(item)
        if task is not None:
            out.append(task)
    return tuple(out)


# -------- Archives --------
class Archive(BaseModel):
    """An immutable record of one sealed jar cycle."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str
    coins: int
    created_at: datetime = Field(alias="createdAt")
    thumbnail_ref: str = Field(default=DEFAULT_THUMBNAIL, alias="thumbnailRef")
    tasks: Tuple[PendingTask, ...] = ()

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["Archive"]:
        if not isinstance(raw, Mapping):
            return None
        created_at = parse_timestamp(raw.get("createdAt"))
        raw_id = raw.get("id")
        archive_id = str(raw_id).strip() if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) else ""
        if not archive_id:
            archive_id = str(int(created_at.timestamp() * 1000))
        coins = _finite_number(raw.get("coins"))
        thumb = raw.get("thumbnailRef", raw.get("thumbnailUrl"))
        title = raw.get("title")
        return cls(
            id=archive_id,
            title=title if isinstance(title, str) else "",
            coins=max(0, int(coins)) if coins is not None else 0,
            created_at=created_at,
            thumbnail_ref=thumb if isinstance(thumb, str) and thumb else DEFAULT_THUMBNAIL,
            tasks=tasks_from_wire(raw.get("tasks")),
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "coins": self.coins,
            "createdAt": format_timestamp(self.created_at),
            "thumbnailRef": self.thumbnail_ref,
            "tasks": [t.to_wire() for t in self.tasks],
        }


def unique_archive_id(candidate: str, taken: Set[str]) -> str:
    """Return `candidate`, or the next unused id: numeric ids count up, others get a suffix."""
    if candidate not in taken:
        return candidate
    if candidate.isdigit():
        number = int(candidate)
        while str(number) in taken:
            number += 1
        return str(number)
    n = 2
    while f"{candidate}-{n}" in taken:
        n += 1
    return f"{candidate}-{n}"


def archives_from_wire(raw: Any) -> List[Archive]:
    """Accept {"entries": [...]} or a bare list; drop entries that are not objects.

    Duplicate ids (older entries without `id` or `createdAt` all fall back to
    the same one) are made unique in list order.
    """
    if isinstance(raw, Mapping):
        raw = raw.get("entries")
    if not isinstance(raw, list):
        return []
    out: List[Archive] = []
    taken: Set[str] = set()
    for item in raw:
        archive = Archive.from_wire(item)
        if archive is None:
            continue
        archive_id = unique_archive_id(archive.id, taken)
        if archive_id != archive.id:
            archive = archive.model_copy(update={"id": archive_id})
        taken.add(archive_id)
        out.append(archive)
    return out


def archives_to_wire(entries: List[Archive]) -> Dict[str, Any]:
    return {"entries": [a.to_wire() for a in entries]}


# -------- Jar snapshot --------
class JarSnapshot(BaseModel):
    """Payload of the `state` resource: the open cycle's counter and pending records."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    coins: int = 0
    tasks: Tuple[PendingTask, ...] = ()
    pending_title: Optional[str] = Field(default=None, alias="pendingTitle")

    @classmethod
    def from_wire(cls, raw: Any) -> "JarSnapshot":
        if not isinstance(raw, Mapping):
            return cls()
        coins = _finite_number(raw.get("coins"))
        title = raw.get("pendingTitle")
        return cls(
            coins=max(0, int(coins)) if coins is not None else 0,
            tasks=tasks_from_wire(raw.get("tasks")),
            pending_title=title if isinstance(title, str) else None,
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "coins": self.coins,
            "tasks": [t.to_wire() for t in self.tasks],
            "pendingTitle": self.pending_title,
        }


# -------- Settings --------
class Settings(BaseModel):
    """
    Tunable parameters shared by every client in a room.

    Fields
    - jar_capacity: coins needed to seal a jar, 20..500.
    - drop_interval: milliseconds between animated coin drops, 30..400.
    - coin_bounciness: restitution of a coin body, 0..0.8.
    - coin_friction / coin_static_friction: 0..1.

    Use `clamp_settings` to build one from untrusted input.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    jar_capacity: int = Field(default=100, alias="jarCapacity")
    drop_interval: int = Field(default=90, alias="dropInterval")
    coin_bounciness: float = Field(default=0.12, alias="coinBounciness")
    coin_friction: float = Field(default=0.45, alias="coinFriction")
    coin_static_friction: float = Field(default=0.9, alias="coinStaticFriction")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def close_to(self, other: "Settings", *, epsilon: float = SETTINGS_EPSILON) -> bool:
        return (
            self.jar_capacity == other.jar_capacity
            and self.drop_interval == other.drop_interval
            and abs(self.coin_bounciness - other.coin_bounciness) < epsilon
            and abs(self.coin_friction - other.coin_friction) < epsilon
            and abs(self.coin_static_friction - other.coin_static_friction) < epsilon
        )


# field name -> (wire alias, min, max, integral)
SETTINGS_BOUNDS: Dict[str, Tuple[str, float, float, bool]] = {
    "jar_capacity": ("jarCapacity", CAPACITY_MIN, CAPACITY_MAX, True),
    "drop_interval": ("dropInterval", 30, 400, True),
    "coin_bounciness": ("coinBounciness", 0.0, 0.8, False),
    "coin_friction": ("coinFriction", 0.0, 1.0, False),
    "coin_static_friction": ("coinStaticFriction", 0.0, 1.0, False),
}


def clamp_settings(raw: Any, previous: Optional[Settings] = None) -> Settings:
    """
    Merge `raw` over `previous`, clamping every field independently.

    Keys may use either the snake_case field names or the camelCase wire
    aliases. Missing, boolean, non-numeric and non-finite values keep the
    previous value. Integral fields are rounded half-up before clamping.
    """
    base = previous or Settings()
    source: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    values: Dict[str, Any] = {}
    for name, (alias, lo, hi, integral) in SETTINGS_BOUNDS.items():
        current = getattr(base, name)
        if name in source:
            candidate = source[name]
        elif alias in source:
            candidate = source[alias]
        else:
            values[name] = current
            continue
        num = _finite_number(candidate)
        if num is None:
            values[name] = current
            continue
        if integral:
            values[name] = int(min(hi, max(lo, round_half_up(num))))
        else:
            values[name] = float(min(hi, max(lo, num)))
    return Settings(**values)


__all__ = [
    "Archive",
    "CAPACITY_MAX",
    "CAPACITY_MIN",
    "DEFAULT_THUMBNAIL",
    "EPOCH",
    "JarSnapshot",
    "PendingTask",
    "Settings",
    "VersionedPayload",
    "archives_from_wire",
    "archives_to_wire",
    "clamp_capacity",
    "clamp_settings",
    "format_timestamp",
    "parse_timestamp",
    "round_half_up",
    "unique_archive_id",
    "utcnow",
]
