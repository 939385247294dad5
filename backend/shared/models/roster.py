"""Data models for roll-call games (接龍) and their sections."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from datetime import timedelta, timezone
from typing import Any

# Group members are in Taiwan; schedules and display times use UTC+8
TZ_UTC8 = timezone(timedelta(hours=8))

# Wire token for an anonymous slot, kept for compatibility with stored data
ANON_TOKEN = "__ANON__"

DEFAULT_TITLE = "羽球接龍"
DEFAULT_LIMIT = 20
DEFAULT_BACKUP_LIMIT = 5
PRIMARY_SECTION_TITLE = "報名名單"


class AnonymousSlot:
    """An unnamed participant. One shared instance, compared by identity."""

    _instance: AnonymousSlot | None = None

    def __new__(cls) -> AnonymousSlot:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ANONYMOUS"


ANONYMOUS = AnonymousSlot()

Entry = str | AnonymousSlot


def now_ms() -> int:
    return int(time.time() * 1000)


def entry_to_wire(entry: Entry) -> str:
    return ANON_TOKEN if entry is ANONYMOUS else entry


def entry_from_wire(value: Any) -> Entry:
    if value == ANON_TOKEN:
        return ANONYMOUS
    return str(value)


def schedule_ms(raw: Any) -> float | None:
    """Numeric value of a stored ``scheduleTime``.

    None for "no schedule" (missing, empty, zero). Raises ValueError for a
    value that cannot be a timestamp.
    """
    if raw is None or raw == "" or raw is False or raw == 0:
        return None
    if isinstance(raw, bool):
        raise ValueError(f"not a timestamp: {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"not a timestamp: {raw!r}") from e
    if not math.isfinite(value):
        raise ValueError(f"not a timestamp: {raw!r}")
    return value


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_timestamp(value: Any) -> int | None:
    """Epoch milliseconds from a stored value; None when it is not one."""
    try:
        ms = schedule_ms(value)
    except ValueError:
        return None
    return int(ms) if ms is not None else None


@dataclass
class Section:
    """A numbered sub-list with its own capacity and waitlist."""

    title: str
    limit: int
    backup_limit: int
    label: str = ""
    entries: list[Entry] = field(default_factory=list)

    def real_names(self) -> list[str]:
        return [e for e in self.entries if e is not ANONYMOUS]

    def contains(self, name: str) -> bool:
        return name in self.real_names()

    def remove_name(self, name: str) -> bool:
        """Remove the first occurrence of a real name. Returns True if removed."""
        for i, entry in enumerate(self.entries):
            if entry is not ANONYMOUS and entry == name:
                del self.entries[i]
                return True
        return False

    def remove_last_anonymous(self) -> bool:
        for i in range(len(self.entries) - 1, -1, -1):
            if self.entries[i] is ANONYMOUS:
                del self.entries[i]
                return True
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "limit": self.limit,
            "backupLimit": self.backup_limit,
            "label": self.label,
            "list": [entry_to_wire(e) for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Section:
        return cls(
            title=str(data.get("title") or ""),
            limit=max(0, _as_int(data.get("limit"), DEFAULT_LIMIT)),
            backup_limit=max(0, _as_int(data.get("backupLimit"), 0)),
            label=str(data.get("label") or ""),
            entries=[entry_from_wire(v) for v in data.get("list") or []],
        )


def primary_section(
    limit: int = DEFAULT_LIMIT,
    backup_limit: int = DEFAULT_BACKUP_LIMIT,
    entries: list[Entry] | None = None,
) -> Section:
    return Section(
        title=PRIMARY_SECTION_TITLE,
        limit=limit,
        backup_limit=backup_limit,
        entries=list(entries or []),
    )


@dataclass
class Game:
    """Roll-call state for one conversation.

    ``schedule_time`` is kept as loaded (it may be a malformed value from an
    older store); the reminder scheduler validates it before use.
    ``anonymous`` holds legacy explicit names that render masked.
    """

    title: str = DEFAULT_TITLE
    note: str = ""
    active: bool = True
    start_time: int | None = None
    last_active_time: int | None = None
    schedule_time: Any = None
    schedule_input: str | None = None
    anonymous: list[str] = field(default_factory=list)
    anonymous_count: int = 0
    sections: list[Section] = field(default_factory=lambda: [primary_section()])

    @property
    def primary(self) -> Section:
        return self.sections[0]

    def touch(self, now: int | None = None) -> None:
        self.last_active_time = now if now is not None else now_ms()

    def is_anonymous(self, entry: Entry | None) -> bool:
        if entry is ANONYMOUS:
            return True
        return isinstance(entry, str) and entry in self.anonymous

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "note": self.note,
            "active": self.active,
            "startTime": self.start_time,
            "lastActiveTime": self.last_active_time,
            "scheduleTime": self.schedule_time,
            "scheduleInput": self.schedule_input,
            "anonymous": list(self.anonymous),
            "anonymousCount": self.anonymous_count,
            "sections": [s.to_dict() for s in self.sections],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Game:
        sections = [
            Section.from_dict(s) for s in data.get("sections") or [] if isinstance(s, dict)
        ]
        return cls(
            title=str(data.get("title") or DEFAULT_TITLE),
            note=str(data.get("note") or ""),
            active=bool(data.get("active", True)),
            start_time=_as_timestamp(data.get("startTime")),
            last_active_time=_as_timestamp(data.get("lastActiveTime")),
            schedule_time=data.get("scheduleTime"),
            schedule_input=data.get("scheduleInput"),
            anonymous=[str(n) for n in data.get("anonymous") or []],
            anonymous_count=_as_int(data.get("anonymousCount"), 0),
            sections=sections or [primary_section()],
        )
