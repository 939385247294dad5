"""Text command grammar: one trimmed chat line -> one intent (or None).

Patterns overlap on purpose, so the table at the bottom is ordered and the
first matching entry wins:

    接龍開始 ...            create (keyed fields 標題 人數 候補 名單 匿名名單 時間)
    接龍結束                end
    接龍修改 / 接龍修正 ...  modify
    +N [names] / names +N   join   (N is a single digit 1-9)
    -N [name]  / name -N    leave
    接龍狀態 / 接龍查詢      status
    接龍名單 [names]        show list, or append names
    接龍[2]{..}{..}{..}{..} configure section 1 or 2
    接龍清空 / 接龍刪除      clear / delete
    管理員登入 系統狀態 資料庫列表 排程檢查 測試推播 強制檢查排程   admin
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from dateutil import parser as dtparser

from shared.models.roster import TZ_UTC8

LOGGER = logging.getLogger("Commands")

ROOT = "接龍"
RESERVED_PREFIXES = (
    "接龍開始",
    "接龍結束",
    "接龍修改",
    "接龍修正",
    "接龍名單",
    "接龍清空",
    "接龍刪除",
)


# ----------------------------------------------------------------------
# Intents
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class CreateGame:
    title: str | None = None
    limit: int | None = None
    backup_limit: int | None = None
    names: tuple[str, ...] = ()
    has_list: bool = False
    anonymous_count: int = 0
    anonymous_names: tuple[str, ...] = ()
    schedule_time: int | None = None
    schedule_input: str | None = None


@dataclass(frozen=True)
class EndGame:
    pass


@dataclass(frozen=True)
class DeleteGame:
    pass


@dataclass(frozen=True)
class ModifyGame:
    title: str | None = None
    limit: int | None = None
    backup_limit: int | None = None
    names: tuple[str, ...] | None = None

    @property
    def empty(self) -> bool:
        return (
            self.title is None
            and self.limit is None
            and self.backup_limit is None
            and self.names is None
        )


@dataclass(frozen=True)
class Join:
    count: int
    names: tuple[str, ...] = ()
    anonymous: bool = False

    @property
    def uses_caller_name(self) -> bool:
        return not self.anonymous and not self.names and self.count == 1


@dataclass(frozen=True)
class Leave:
    name: str | None = None
    anonymous: bool = False

    @property
    def uses_caller_name(self) -> bool:
        return not self.anonymous and not self.name


@dataclass(frozen=True)
class BulkList:
    names: tuple[str, ...]


@dataclass(frozen=True)
class ConfigureSection:
    index: int
    title: str | None = None
    limit: int | None = None
    backup_limit: int | None = None
    label: str | None = None


@dataclass(frozen=True)
class ClearList:
    pass


@dataclass(frozen=True)
class StatusQuery:
    pass


@dataclass(frozen=True)
class ListQuery:
    pass


@dataclass(frozen=True)
class AdminLogin:
    password: str


@dataclass(frozen=True)
class AdminStatus:
    pass


@dataclass(frozen=True)
class AdminDbList:
    pass


@dataclass(frozen=True)
class AdminScheduleDebug:
    pass


@dataclass(frozen=True)
class AdminTestPush:
    pass


@dataclass(frozen=True)
class AdminForceCheck:
    pass


Intent = (
    CreateGame
    | EndGame
    | DeleteGame
    | ModifyGame
    | Join
    | Leave
    | BulkList
    | ConfigureSection
    | ClearList
    | StatusQuery
    | ListQuery
    | AdminLogin
    | AdminStatus
    | AdminDbList
    | AdminScheduleDebug
    | AdminTestPush
    | AdminForceCheck
)

ADMIN_INTENTS = (AdminStatus, AdminDbList, AdminScheduleDebug, AdminTestPush, AdminForceCheck)


# ----------------------------------------------------------------------
# Field extraction
# ----------------------------------------------------------------------


def _keyed(label: str, body: str) -> re.Pattern[str]:
    return re.compile(label + r"\s*[:：]?\s*[{｛]" + body + r"[}｝]")


_TITLE = _keyed("標題", r"([\s\S]*?)")
_LIMIT = _keyed("人數", r"([0-9]+)")
_BACKUP = _keyed("候補", r"([0-9]+)")
_LIST = _keyed("名單", r"([\s\S]*?)")
_ANON_LIST = _keyed("匿名名單", r"([\s\S]*?)")
_TIME = _keyed("時間", r"([\s\S]*?)")

_ORDINAL = re.compile(r"^[0-9]+[.\s]*\s*")
_LIST_SPLIT = re.compile(r"[,\n]+")
_NAME_SPLIT = re.compile(r"[\s,]+")
_DATETIME = re.compile(r"([0-9]{4})[-/]([0-9]{1,2})[-/]([0-9]{1,2})\s+([0-9]{1,2}):([0-9]{2})")
_POSITIONAL = re.compile(r"\{(.+?)\}")
_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")

_JOIN_START = re.compile(r"^\+([1-9])(?![0-9])\s*(.*)")
_JOIN_END = re.compile(r"^(.+?)\s*\+([1-9])$")
_LEAVE_START = re.compile(r"^-([1-9])(?![0-9])\s*(.*)")
_LEAVE_END = re.compile(r"^(.+?)\s*-([1-9])$")


def split_names(raw: str) -> list[str]:
    """Split a pasted list on commas/newlines and drop leading ordinals.

    ``"1. Amy\\n2. Ben"`` -> ``["Amy", "Ben"]``
    """
    names = []
    for line in _LIST_SPLIT.split(raw):
        line = line.strip()
        if line:
            names.append(_ORDINAL.sub("", line, count=1))
    return names


def leading_int(raw: str | None) -> int | None:
    """Integer prefix of *raw* (``"12人"`` -> 12), or None."""
    if raw is None:
        return None
    m = _LEADING_INT.match(raw)
    return int(m.group(1)) if m else None


def parse_schedule(raw: str) -> tuple[int | None, str | None]:
    """Parse a 時間{...} value into ``(utc_ms, original_text)``.

    ``YYYY/MM/DD HH:mm`` (or with ``-``) is read as UTC+8 wall time. Anything
    else goes through dateutil, first as written and then with ``-``
    replaced by ``/``; naive results are taken as UTC+8 as well.
    """
    raw = raw.strip()
    m = _DATETIME.search(raw)
    if m:
        year, month, day, hour, minute = (int(g) for g in m.groups())
        try:
            local = datetime(year, month, day, hour, minute, tzinfo=TZ_UTC8)
        except ValueError:
            LOGGER.debug(f"Out-of-range schedule time: {raw!r}")
        else:
            return int(local.timestamp() * 1000), raw

    for candidate in (raw, raw.replace("-", "/")):
        try:
            parsed = dtparser.parse(candidate)
        except (ValueError, OverflowError):
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=TZ_UTC8)
        return int(parsed.timestamp() * 1000), raw

    LOGGER.debug(f"Unparseable schedule time: {raw!r}")
    return None, None


# ----------------------------------------------------------------------
# Parsers
# ----------------------------------------------------------------------


def _parse_create(text: str) -> CreateGame:
    title = _TITLE.search(text)
    limit = _LIMIT.search(text)
    backup = _BACKUP.search(text)
    anon = _ANON_LIST.search(text)
    when = _TIME.search(text)

    text_for_list = text.replace(anon.group(0), "", 1) if anon else text
    listed = _LIST.search(text_for_list)

    anonymous_count = 0
    anonymous_names: tuple[str, ...] = ()
    if anon:
        raw_anon = anon.group(1).strip()
        if raw_anon.isascii() and raw_anon.isdigit():
            anonymous_count = int(raw_anon)
        else:
            anonymous_names = tuple(split_names(anon.group(1)))

    schedule_time, schedule_input = parse_schedule(when.group(1)) if when else (None, None)

    return CreateGame(
        title=title.group(1).strip() if title else None,
        limit=int(limit.group(1)) if limit else None,
        backup_limit=int(backup.group(1)) if backup else None,
        names=tuple(split_names(listed.group(1))) if listed else (),
        has_list=listed is not None,
        anonymous_count=anonymous_count,
        anonymous_names=anonymous_names,
        schedule_time=schedule_time,
        schedule_input=schedule_input,
    )


def _parse_modify(text: str) -> ModifyGame:
    title = _TITLE.search(text)
    limit = _LIMIT.search(text)
    backup = _BACKUP.search(text)
    listed = _LIST.search(text)
    return ModifyGame(
        title=title.group(1).strip() if title else None,
        limit=int(limit.group(1)) if limit else None,
        backup_limit=int(backup.group(1)) if backup else None,
        names=tuple(split_names(listed.group(1).strip())) if listed else None,
    )


def _sigil(text: str, start: re.Pattern[str], end: re.Pattern[str]) -> tuple[int, str] | None:
    """Match ``<sigil>N rest`` first, then ``name <sigil>N``."""
    m = start.match(text)
    if m:
        return int(m.group(1)), m.group(2).strip()
    m = end.match(text)
    if m and m.group(1).strip():
        return int(m.group(2)), m.group(1).strip()
    return None


def _parse_join(text: str) -> Join | None:
    found = _sigil(text, _JOIN_START, _JOIN_END)
    if found is None:
        return None
    count, content = found
    if "匿名" in content:
        return Join(count=count, anonymous=True)
    names = tuple(n for n in _NAME_SPLIT.split(content) if n)
    return Join(count=count, names=names)


def _parse_leave(text: str) -> Leave | None:
    found = _sigil(text, _LEAVE_START, _LEAVE_END)
    if found is None:
        return None
    _, content = found
    if "匿名" in content:
        return Leave(anonymous=True)
    return Leave(name=content or None)


def _parse_list(text: str) -> ListQuery | BulkList:
    rest = text.replace("接龍名單", "", 1).strip()
    if rest in ("", "#"):
        return ListQuery()
    return BulkList(names=tuple(rest.split()))


def _parse_configure(text: str) -> ConfigureSection:
    params = _POSITIONAL.findall(text)

    def param(i: int) -> str | None:
        return params[i] if i < len(params) else None

    return ConfigureSection(
        index=1 if text.startswith("接龍2") else 0,
        title=param(0),
        limit=leading_int(param(1)),
        backup_limit=leading_int(param(2)),
        label=param(3),
    )


def _is_configure(text: str) -> bool:
    return text.startswith(ROOT) and "{" in text and not text.startswith(RESERVED_PREFIXES)


def _exact(*words: str) -> Callable[[str], bool]:
    return lambda text: text in words


def _const(intent: Intent) -> Callable[[str], Intent]:
    return lambda text: intent


Parser = Callable[[str], "Intent | None"]

# Order matters: see module docstring.
COMMAND_TABLE: list[tuple[Callable[[str], bool], Parser]] = [
    (lambda t: t.startswith("接龍開始"), _parse_create),
    (_exact("接龍結束"), _const(EndGame())),
    (lambda t: t.startswith(("接龍修改", "接龍修正")), _parse_modify),
    (lambda t: True, _parse_join),
    (lambda t: True, _parse_leave),
    (_exact("接龍狀態", "接龍查詢"), _const(StatusQuery())),
    (lambda t: t.startswith("接龍名單"), _parse_list),
    (_is_configure, _parse_configure),
    (_exact("接龍清空"), _const(ClearList())),
    (_exact("接龍刪除"), _const(DeleteGame())),
    (
        lambda t: t.startswith("管理員登入"),
        lambda t: AdminLogin(password=t.replace("管理員登入", "", 1).strip()),
    ),
    (_exact("系統狀態"), _const(AdminStatus())),
    (_exact("資料庫列表"), _const(AdminDbList())),
    (_exact("排程檢查"), _const(AdminScheduleDebug())),
    (_exact("測試推播"), _const(AdminTestPush())),
    (_exact("強制檢查排程"), _const(AdminForceCheck())),
]


def parse_command(text: str) -> Intent | None:
    """Return the first matching intent for *text*, or None to ignore it."""
    text = text.strip()
    if not text:
        return None
    for matches, parse in COMMAND_TABLE:
        if matches(text):
            intent = parse(text)
            if intent is not None:
                return intent
    return None
