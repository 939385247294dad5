"""Turn a Game into the chat message shown after every list change."""

from __future__ import annotations

from datetime import datetime

from shared.models.roster import TZ_UTC8, Entry, Game, Section

MASK = "***"
WAITLIST_DIVIDER = "--- 候補 ---"
REMINDER_PREFIX = "⏰ 定時提醒"


def format_schedule(ms: int | float) -> str:
    """``YYYY/MM/DD HH:mm`` in UTC+8."""
    return datetime.fromtimestamp(ms / 1000, TZ_UTC8).strftime("%Y/%m/%d %H:%M")


def format_local(ms: int | float) -> str:
    """Long UTC+8 timestamp used by the status query."""
    return datetime.fromtimestamp(ms / 1000, TZ_UTC8).strftime("%Y/%m/%d %H:%M:%S")


def _display(game: Game, entry: Entry) -> str:
    return MASK if game.is_anonymous(entry) else str(entry)


def _render_section(game: Game, section: Section) -> list[str]:
    entries = section.entries
    lines = [f"【{section.title}】"]

    for i in range(section.limit):
        if i < len(entries):
            entry = entries[i]
            # A run of anonymous entries shows only its last member, at that
            # member's own position. Look ahead only.
            nxt = entries[i + 1] if i + 1 < len(entries) else None
            if game.is_anonymous(entry) and game.is_anonymous(nxt):
                continue
            lines.append(f"{section.label}{i + 1}. {_display(game, entry)}")
        elif i == section.limit - 1:
            lines.append(f"{section.label}{i + 1}. ")
        elif i == len(entries):
            lines.append("..")

    if len(entries) >= section.limit:
        lines.append(WAITLIST_DIVIDER)
        waitlist = entries[section.limit : section.limit + section.backup_limit]
        for k, entry in enumerate(waitlist, start=1):
            lines.append(f"候補{k}. {_display(game, entry)}")

    return lines


def render_game(game: Game, prefix: str = "") -> str:
    """Full roster message; entries beyond limit + backup are never shown."""
    parts = [prefix, game.title, ""]
    for section in game.sections:
        parts.extend(_render_section(game, section))
        parts.append("")
    text = "\n".join(parts)
    if game.note:
        text += f"\n📝 {game.note}"
    return text.strip()
