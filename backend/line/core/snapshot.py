"""Flattened CSV snapshot of every real participant across all games.

One row per named entry: ``gid,sectionIdx,name,limit,backupLimit``.
Anonymous placeholders are not written, so a game rebuilt from the snapshot
only has its named participants back.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterable

from shared.models.roster import (
    ANONYMOUS,
    DEFAULT_BACKUP_LIMIT,
    DEFAULT_LIMIT,
    DEFAULT_TITLE,
    PRIMARY_SECTION_TITLE,
    Game,
    Section,
    now_ms,
)

logger = logging.getLogger(__name__)

HEADER = "gid,sectionIdx,name,limit,backupLimit"

_NEEDS_QUOTES = re.compile(r'[",\r\n]')


def escape_field(value: object) -> str:
    """Quote a field when it contains a comma, a quote or a line break."""
    if value is None:
        return ""
    s = str(value)
    if _NEEDS_QUOTES.search(s):
        return '"' + s.replace('"', '""') + '"'
    return s


def section_title(idx: int) -> str:
    return PRIMARY_SECTION_TITLE if idx == 0 else f"區段{idx + 1}"


def build_snapshot(games: Iterable[tuple[str, Game]]) -> tuple[str, int]:
    """Return ``(csv_text, row_count)`` for the given ``(gid, game)`` pairs."""
    rows: list[str] = []
    for gid, game in games:
        for idx, section in enumerate(game.sections):
            for entry in section.entries:
                if entry is ANONYMOUS:
                    continue
                fields = [gid, idx, entry, section.limit or "", section.backup_limit]
                rows.append(",".join(escape_field(f) for f in fields))
    body = "".join(f"{row}\n" for row in rows)
    return f"{HEADER}\n{body}", len(rows)


def count_records(content: str) -> int:
    """Data rows in a snapshot, not counting the header."""
    text = (content or "").strip()
    if not text:
        return 0
    rows = sum(1 for row in csv.reader(io.StringIO(text)) if row)
    return max(0, rows - 1)


def _int_or_none(value: str) -> int | None:
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        return None


def restore_games(content: str, now: int | None = None) -> dict[str, Game]:
    """Rebuild games from snapshot text.

    Per section the largest positive ``limit`` seen wins (otherwise
    ``max(20, members)``) and the largest ``backupLimit`` seen wins
    (otherwise 5). Repeated names within a section are kept once.
    """
    text = (content or "").strip()
    if not text:
        return {}

    reader = csv.reader(io.StringIO(text))
    header_row = next(reader, None)
    if not header_row:
        return {}
    header = [h.strip().lower() for h in header_row]

    def column(name: str) -> int:
        return header.index(name) if name in header else -1

    idx_gid = column("gid")
    idx_section = column("sectionidx")
    idx_name = column("name")
    idx_limit = column("limit")
    idx_backup = column("backuplimit")
    if idx_gid < 0 or idx_section < 0 or idx_name < 0:
        logger.warning(f"Snapshot header not recognised: {header_row}")
        return {}

    def cell(cols: list[str], i: int) -> str:
        return cols[i] if 0 <= i < len(cols) else ""

    members: dict[str, dict[int, list[str]]] = {}
    limits: dict[str, dict[int, int]] = {}
    backups: dict[str, dict[int, int]] = {}

    for cols in reader:
        gid = cell(cols, idx_gid).strip()
        name = cell(cols, idx_name).strip()
        if not gid or not name:
            continue
        section_idx = _int_or_none(cell(cols, idx_section) or "0")
        if section_idx is None or section_idx < 0:
            section_idx = 0

        names = members.setdefault(gid, {}).setdefault(section_idx, [])
        if name not in names:
            names.append(name)

        raw_limit = _int_or_none(cell(cols, idx_limit))
        if raw_limit is not None and raw_limit > 0:
            section_limits = limits.setdefault(gid, {})
            section_limits[section_idx] = max(section_limits.get(section_idx, 0), raw_limit)

        raw_backup = _int_or_none(cell(cols, idx_backup))
        if raw_backup is not None and raw_backup >= 0:
            section_backups = backups.setdefault(gid, {})
            section_backups[section_idx] = max(section_backups.get(section_idx, 0), raw_backup)

    stamp = now if now is not None else now_ms()
    games: dict[str, Game] = {}
    for gid, by_section in members.items():
        sections: list[Section] = []
        for idx in range(max(by_section) + 1):
            names = by_section.get(idx, [])
            sections.append(
                Section(
                    title=section_title(idx),
                    limit=limits.get(gid, {}).get(idx) or max(DEFAULT_LIMIT, len(names)),
                    backup_limit=backups.get(gid, {}).get(idx, DEFAULT_BACKUP_LIMIT),
                    entries=list(names),
                )
            )
        games[gid] = Game(
            title=DEFAULT_TITLE,
            start_time=stamp,
            last_active_time=stamp,
            sections=sections,
        )
    return games
