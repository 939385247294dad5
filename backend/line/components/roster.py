"""Roster engine: applies parsed intents to the game registry.

Every method here runs without awaiting, so the read-check-mutate sequence
for one intent cannot interleave with another. Anything that needs I/O
(display names, storage, sending) happens in the handler before or after.
Rejections raise ``RosterError`` carrying the reply text.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from shared.models.roster import (
    ANONYMOUS,
    DEFAULT_BACKUP_LIMIT,
    DEFAULT_LIMIT,
    DEFAULT_TITLE,
    Entry,
    Game,
    Section,
    now_ms,
    primary_section,
    schedule_ms,
)

from line.components.commands import BulkList, ConfigureSection, CreateGame, Join, Leave, ModifyGame
from line.components.render import REMINDER_PREFIX, format_local, format_schedule, render_game
from line.core.errors import RosterError
from line.core.registry import GameRegistry

LOGGER = logging.getLogger("Roster")

DAY_MS = 24 * 60 * 60 * 1000
EXPIRY_MS = 7 * DAY_MS
SECTION_DEFAULT_LIMIT = 10

NO_GAME = "❌ 目前沒有進行中的接龍\n請先使用「接龍開始」建立接龍"
NO_GAME_TO_MODIFY = "❌ 目前沒有進行中的接龍，請先使用「接龍開始」建立接龍"
GAME_ENDED = "❌ 此接龍已結束\n請使用「接龍開始」建立新的接龍"
DUPLICATE = "名單已重複"
DUPLICATE_IN_LIST = "❌ 名單中有重複的項目"
NOTHING_TO_MODIFY = "❌ 請指定要修改的項目（標題、人數、候補或名單）"


def _has_duplicates(names: list[str]) -> bool:
    return len(set(names)) != len(names)


@dataclass
class Outcome:
    """What the handler should do after a successful intent."""

    reply: str
    save: bool = False
    snapshot: bool = False
    deleted: bool = False
    push_reminder: bool = False


class RosterEngine:
    def __init__(self, registry: GameRegistry, clock: Callable[[], int] = now_ms) -> None:
        self.registry = registry
        self.clock = clock

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def has_game(self, gid: str) -> bool:
        return gid in self.registry

    def _existing(self, gid: str) -> Game:
        game = self.registry.get(gid)
        if game is None:
            raise RosterError(NO_GAME)
        return game

    def open_game(self, gid: str) -> Game:
        """The game if +/- may be used on it right now."""
        game = self._existing(gid)
        if not game.active:
            raise RosterError(GAME_ENDED)
        try:
            scheduled = schedule_ms(game.schedule_time)
        except ValueError:
            scheduled = None
        if scheduled is not None and scheduled > self.clock():
            raise RosterError(
                f"尚未開始，將會在 {format_schedule(scheduled)} 開始接龍，請在機器人開始後再使用 + / - 指令"
            )
        return game

    @staticmethod
    def _check_new_names(section: Section, new: list[Entry]) -> None:
        real = [n for n in new if n is not ANONYMOUS]
        if _has_duplicates(real) or any(section.contains(n) for n in real):
            raise RosterError(DUPLICATE)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, gid: str, intent: CreateGame) -> Outcome:
        """Start a new game, replacing whatever this conversation had."""
        entries: list[Entry] = list(intent.names)
        entries.extend([ANONYMOUS] * intent.anonymous_count)
        entries.extend(intent.anonymous_names)
        if _has_duplicates([e for e in entries if e is not ANONYMOUS]):
            raise RosterError(DUPLICATE)

        now = self.clock()
        game = Game(
            title=intent.title if intent.title is not None else DEFAULT_TITLE,
            note="",
            active=True,
            start_time=now,
            last_active_time=now,
            schedule_time=intent.schedule_time,
            schedule_input=intent.schedule_input,
            anonymous=list(intent.anonymous_names),
            anonymous_count=intent.anonymous_count,
            sections=[
                primary_section(
                    limit=intent.limit if intent.limit is not None else DEFAULT_LIMIT,
                    backup_limit=(
                        intent.backup_limit
                        if intent.backup_limit is not None
                        else DEFAULT_BACKUP_LIMIT
                    ),
                    entries=entries,
                )
            ],
        )
        self.registry.put(gid, game)
        LOGGER.info(f"Game created for {gid}: {game.title} ({len(entries)} initial entries)")

        if intent.schedule_time:
            shown = intent.schedule_input or format_schedule(intent.schedule_time)
            due_now = intent.schedule_time <= now
            if due_now:
                # Pushed by the handler right away; the scan must not fire it again
                game.schedule_time = None
            return Outcome(
                reply=f"設定完成，將會在 {shown} 開始接龍",
                save=True,
                snapshot=True,
                push_reminder=due_now,
            )
        return Outcome(reply=render_game(game, "🚀 接龍設定成功！"), save=True, snapshot=True)

    def end(self, gid: str) -> Outcome:
        self.registry.pop(gid)
        return Outcome(reply="✅ 已結束", deleted=True, snapshot=True)

    def delete(self, gid: str) -> Outcome:
        self.registry.pop(gid)
        return Outcome(reply="🗑️ 設置已移除", deleted=True, snapshot=True)

    def modify(self, gid: str, intent: ModifyGame) -> Outcome:
        game = self.registry.get(gid)
        if game is None or not game.active:
            raise RosterError(NO_GAME_TO_MODIFY)
        if intent.names is not None and _has_duplicates(list(intent.names)):
            raise RosterError(DUPLICATE_IN_LIST)

        section = game.primary
        old_limit = section.limit
        old_size = len(section.entries)
        changed = False

        if intent.title is not None:
            game.title = intent.title
            changed = True
        if intent.limit is not None and intent.limit > 0:
            section.limit = intent.limit
            changed = True
        if intent.backup_limit is not None and intent.backup_limit >= 0:
            section.backup_limit = intent.backup_limit
            changed = True
        if intent.names is not None:
            section.entries = list(intent.names)
            changed = True

        if not changed:
            raise RosterError(NOTHING_TO_MODIFY)

        game.touch(self.clock())
        message = "✏️ 接龍已更新"
        if intent.limit is not None and 0 < intent.limit < old_limit and old_size > intent.limit:
            message += f"\n📋 人數已從 {old_limit} 調整為 {intent.limit}，超出的人員將顯示為候補"
        return Outcome(
            reply=render_game(game, message), save=True, snapshot=intent.names is not None
        )

    def configure_section(self, gid: str, intent: ConfigureSection) -> Outcome | None:
        """Reset one section's metadata, keeping its entries.

        Returns None when the conversation has no game.
        """
        game = self.registry.get(gid)
        if game is None:
            return None

        idx = intent.index
        entries = game.sections[idx].entries if idx < len(game.sections) else []
        section = Section(
            title=intent.title or f"區段{idx + 1}",
            limit=intent.limit if intent.limit and intent.limit > 0 else SECTION_DEFAULT_LIMIT,
            backup_limit=max(0, intent.backup_limit or 0),
            label=intent.label or "",
            entries=entries,
        )
        if idx < len(game.sections):
            game.sections[idx] = section
        else:
            game.sections.append(section)

        game.touch(self.clock())
        return Outcome(
            reply=render_game(game, f"⚙️ 區段{idx + 1} 更新成功"), save=True, snapshot=True
        )

    def clear(self, gid: str) -> Outcome:
        game = self._existing(gid)
        for section in game.sections:
            section.entries = []
        game.touch(self.clock())
        return Outcome(reply="🧹 名單已清空", save=True, snapshot=True)

    # ------------------------------------------------------------------
    # Sign-up
    # ------------------------------------------------------------------

    def join(self, gid: str, intent: Join, caller_name: str | None = None) -> Outcome:
        """Append to section 0. All names are added, or none are."""
        game = self.open_game(gid)
        section = game.primary

        new: list[Entry]
        if intent.anonymous:
            new = [ANONYMOUS] * intent.count
        elif intent.names:
            new = list(intent.names)
        elif intent.uses_caller_name and caller_name:
            new = [caller_name]
        else:
            new = []

        self._check_new_names(section, new)
        section.entries.extend(new)
        game.touch(self.clock())
        return Outcome(reply=render_game(game), save=True, snapshot=True)

    def leave(self, gid: str, intent: Leave, caller_name: str | None = None) -> Outcome:
        """Drop the last placeholder in section 0, or a name from every section."""
        game = self.open_game(gid)
        if intent.anonymous:
            game.primary.remove_last_anonymous()
        else:
            name = intent.name or caller_name
            if name:
                for section in game.sections:
                    section.remove_name(name)
        game.touch(self.clock())
        return Outcome(reply=render_game(game), save=True, snapshot=True)

    def bulk_list(self, gid: str, intent: BulkList) -> Outcome:
        game = self.registry.get(gid)
        if game is None or not game.active:
            raise RosterError(NO_GAME)
        section = game.primary
        self._check_new_names(section, list(intent.names))
        section.entries.extend(intent.names)
        game.touch(self.clock())
        return Outcome(reply=render_game(game), save=True, snapshot=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def show(self, gid: str, prefix: str = "") -> str:
        return render_game(self._existing(gid), prefix)

    def reminder(self, gid: str) -> str | None:
        game = self.registry.get(gid)
        return render_game(game, REMINDER_PREFIX) if game else None

    def status(self, gid: str) -> str:
        game = self._existing(gid)
        now = self.clock()
        if game.start_time:
            started = format_local(game.start_time)
            age = int((now - game.start_time) // DAY_MS)
        else:
            started, age = "未知", 0

        lines = [
            "📋 接龍狀態",
            "",
            f"標題：{game.title or '未設定'}",
            f"狀態：{'✅ 進行中' if game.active else '❌ 已結束'}",
            f"開始時間：{started}",
            f"已進行：{age} 天",
        ]
        try:
            scheduled = schedule_ms(game.schedule_time)
        except ValueError:
            scheduled = None
        if scheduled is not None:
            lines.append(f"定時推播：{format_local(scheduled)}")
        primary = game.primary
        lines.append(f"報名人數：{len(primary.entries)} / {primary.limit}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep_expired(self) -> tuple[list[str], list[str]]:
        """Remove games idle for more than 7 days.

        Returns ``(expired, backfilled)``: gids removed, and legacy gids that
        had no ``startTime`` and were stamped with the current time.
        """
        now = self.clock()
        expired: list[str] = []
        backfilled: list[str] = []
        for gid, game in self.registry.items():
            if not game.start_time:
                game.start_time = now
                game.last_active_time = now
                backfilled.append(gid)
            last_active = game.last_active_time or game.start_time or now
            if now - last_active > EXPIRY_MS:
                self.registry.pop(gid)
                expired.append(gid)
                LOGGER.info(f"Game for {gid} expired and was removed")
        return expired, backfilled
