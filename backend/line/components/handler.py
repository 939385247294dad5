"""Webhook event handling: text -> intent -> roster engine -> storage -> reply."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from shared.models.roster import TZ_UTC8, schedule_ms

from line.components.commands import (
    ADMIN_INTENTS,
    AdminDbList,
    AdminForceCheck,
    AdminLogin,
    AdminScheduleDebug,
    AdminStatus,
    AdminTestPush,
    BulkList,
    ClearList,
    ConfigureSection,
    CreateGame,
    DeleteGame,
    EndGame,
    Intent,
    Join,
    Leave,
    ListQuery,
    ModifyGame,
    StatusQuery,
    parse_command,
)
from line.components.names import NameResolver
from line.components.roster import Outcome, RosterEngine
from line.core.errors import RosterError
from line.core.interfaces import MessageTransport
from line.core.line_api import is_shared_chat
from line.core.persistence import PersistenceCoordinator
from line.core.scheduler import ReminderScheduler

LOGGER = logging.getLogger("Handler")

GROUP_WELCOME = "👋 大家好！我是羽球接龍機器人。\n\n"
FOLLOW_WELCOME = (
    "👋 您好！感謝加我為好友。\n\n"
    "我是羽球接龍機器人，請邀請我加入群組後使用「接龍開始」來建立接龍活動。\n\n"
    "在群組中可以使用以下功能：\n"
    "📖 接龍開始 - 建立新接龍\n"
    "💡 +1 / -1 - 報名/取消\n"
    "📋 接龍名單 - 查看名單"
)


class LineEventHandler:
    """Handles LINE webhook events for every conversation.

    One instance per process. Admin logins and the set of groups that have
    already seen the welcome line live in memory and reset on restart.
    """

    def __init__(
        self,
        engine: RosterEngine,
        persistence: PersistenceCoordinator,
        transport: MessageTransport,
        names: NameResolver,
        scheduler: ReminderScheduler | None = None,
        admin_password: str = "",
    ) -> None:
        self.engine = engine
        self.persistence = persistence
        self.transport = transport
        self.names = names
        self.scheduler = scheduler
        self.admin_password = admin_password
        self.admin_users: set[str] = set()
        self.greeted: set[str] = set()

        self._handlers: dict[type, Callable[[str, str, Any], Awaitable[str | None]]] = {
            CreateGame: self._create,
            EndGame: self._end,
            DeleteGame: self._delete,
            ModifyGame: self._modify,
            Join: self._join,
            Leave: self._leave,
            BulkList: self._bulk_list,
            ConfigureSection: self._configure_section,
            ClearList: self._clear,
            StatusQuery: self._status,
            ListQuery: self._list,
            AdminLogin: self._admin_login,
            AdminStatus: self._admin_status,
            AdminDbList: self._admin_db_list,
            AdminScheduleDebug: self._admin_schedule_debug,
            AdminTestPush: self._admin_test_push,
            AdminForceCheck: self._admin_force_check,
        }

    @property
    def registry(self):
        return self.engine.registry

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def handle_events(self, events: list[dict[str, Any]]) -> None:
        """Handle a webhook batch. Never raises."""
        await asyncio.gather(*(self._handle_safely(event) for event in events))

    async def _handle_safely(self, event: dict[str, Any]) -> None:
        try:
            await self.handle_event(event)
        except Exception as e:
            LOGGER.exception(f"Error handling {event.get('type')} event: {e}")

    async def handle_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        source = event.get("source") or {}

        if event_type in ("join", "memberJoined"):
            gid = source.get("groupId") or source.get("roomId")
            if gid:
                LOGGER.info(f"Bot joined group/room {gid} - waiting for first command")
            return

        if event_type == "follow":
            uid = source.get("userId")
            try:
                await self.transport.reply(event["replyToken"], FOLLOW_WELCOME)
                LOGGER.info(f"Bot followed by user {uid}", extra={"audit": True})
            except Exception as e:
                LOGGER.error(f"Failed to respond to follow event: {e}")
            return

        message = event.get("message") or {}
        if event_type != "message" or message.get("type") != "text":
            return

        gid = source.get("groupId") or source.get("roomId") or source.get("userId")
        uid = source.get("userId") or ""
        if not gid:
            return

        intent = parse_command(message.get("text") or "")
        if intent is None:
            return

        reply = await self.dispatch(gid, uid, intent)
        if reply is None:
            return
        await self.transport.reply(event["replyToken"], self._welcome(gid) + reply)

    def _welcome(self, gid: str) -> str:
        """Greeting shown once per group/room, on the first reply there."""
        if not is_shared_chat(gid) or gid in self.greeted:
            return ""
        self.greeted.add(gid)
        return GROUP_WELCOME

    async def dispatch(self, gid: str, uid: str, intent: Intent) -> str | None:
        """Apply *intent* and return the reply text, or None for no reply."""
        if isinstance(intent, ADMIN_INTENTS) and uid not in self.admin_users:
            return None
        handler = self._handlers[type(intent)]
        try:
            return await handler(gid, uid, intent)
        except RosterError as e:
            return str(e)

    # ------------------------------------------------------------------
    # Storage / push helpers
    # ------------------------------------------------------------------

    def _label(self, gid: str) -> str:
        game = self.registry.get(gid)
        return game.title if game and game.title else gid

    async def _persist(self, gid: str, outcome: Outcome) -> None:
        label = self._label(gid) if not outcome.deleted else "all-groups"
        if outcome.deleted:
            await self.persistence.delete(gid)
        elif outcome.save:
            await self.persistence.save(gid, immediate=True)
        if outcome.snapshot:
            await self.persistence.save_snapshot(label)

    async def push_reminder(self, gid: str) -> None:
        text = self.engine.reminder(gid)
        if text is not None:
            await self.transport.push(gid, text)

    # ------------------------------------------------------------------
    # Roster commands
    # ------------------------------------------------------------------

    async def _create(self, gid: str, uid: str, intent: CreateGame) -> str:
        outcome = self.engine.create(gid, intent)
        await self._persist(gid, outcome)
        if outcome.push_reminder:
            try:
                await self.push_reminder(gid)
            except Exception as e:
                LOGGER.error(f"Immediate scheduled send failed for {gid}: {e}")
        return outcome.reply

    async def _end(self, gid: str, uid: str, intent: EndGame) -> str:
        if self.engine.has_game(gid):
            # Final list goes into the snapshot history before it disappears
            await self.persistence.save_snapshot(self._label(gid), wait=True)
        outcome = self.engine.end(gid)
        await self._persist(gid, outcome)
        return outcome.reply

    async def _delete(self, gid: str, uid: str, intent: DeleteGame) -> str:
        outcome = self.engine.delete(gid)
        await self._persist(gid, outcome)
        return outcome.reply

    async def _modify(self, gid: str, uid: str, intent: ModifyGame) -> str:
        outcome = self.engine.modify(gid, intent)
        await self._persist(gid, outcome)
        return outcome.reply

    async def _join(self, gid: str, uid: str, intent: Join) -> str:
        caller_name = None
        if intent.uses_caller_name:
            game = self.engine.open_game(gid)
            caller_name = await self.names.resolve(gid, uid, game.primary.real_names())
        outcome = self.engine.join(gid, intent, caller_name)
        await self._persist(gid, outcome)
        return outcome.reply

    async def _leave(self, gid: str, uid: str, intent: Leave) -> str:
        caller_name = None
        if intent.uses_caller_name:
            game = self.engine.open_game(gid)
            caller_name = await self.names.resolve(gid, uid, game.primary.real_names())
        outcome = self.engine.leave(gid, intent, caller_name)
        await self._persist(gid, outcome)
        return outcome.reply

    async def _bulk_list(self, gid: str, uid: str, intent: BulkList) -> str:
        outcome = self.engine.bulk_list(gid, intent)
        await self._persist(gid, outcome)
        return outcome.reply

    async def _configure_section(self, gid: str, uid: str, intent: ConfigureSection) -> str | None:
        outcome = self.engine.configure_section(gid, intent)
        if outcome is None:
            LOGGER.debug(f"Section config ignored for {gid}: no game")
            return None
        await self._persist(gid, outcome)
        return outcome.reply

    async def _clear(self, gid: str, uid: str, intent: ClearList) -> str:
        outcome = self.engine.clear(gid)
        await self._persist(gid, outcome)
        return outcome.reply

    async def _status(self, gid: str, uid: str, intent: StatusQuery) -> str:
        return self.engine.status(gid)

    async def _list(self, gid: str, uid: str, intent: ListQuery) -> str:
        return self.engine.show(gid)

    # ------------------------------------------------------------------
    # Admin commands (silent unless the caller has logged in)
    # ------------------------------------------------------------------

    async def _admin_login(self, gid: str, uid: str, intent: AdminLogin) -> str | None:
        if not self.admin_password or intent.password != self.admin_password:
            return None
        self.admin_users.add(uid)
        LOGGER.info(f"Admin login: {uid}")
        return "🔓 管理員登入成功，已開啟查詢權限"

    async def _admin_status(self, gid: str, uid: str, intent: AdminStatus) -> str:
        db_status = await self.persistence.database_status()
        csv_status = await self.persistence.snapshot_status()
        return f"📊 系統狀態\n\n{db_status}\n\n{csv_status}\n\n目前載入接龍數: {len(self.registry)}"

    async def _admin_db_list(self, gid: str, uid: str, intent: AdminDbList) -> str:
        try:
            rows = await self.persistence.list_stored()
        except Exception as e:
            return f"❌ 查詢失敗: {e}"
        if rows is None:
            return "⚠️ 無資料庫連線"
        if not rows:
            return "📭 資料庫內無資料"
        lines = ["📦 資料庫存檔列表:"]
        for i, (row_gid, data) in enumerate(rows, start=1):
            lines.append(f"{i}. {data.get('title') or '未命名'} ({row_gid})")
        return "\n".join(lines)

    async def _admin_schedule_debug(self, gid: str, uid: str, intent: AdminScheduleDebug) -> str:
        now = self.engine.clock()
        lines = [f"📋 目前有 {len(self.registry)} 筆接龍資料"]
        for game_gid, game in self.registry.items():
            if not game.schedule_time:
                continue
            lines.append("")
            lines.append(f"{game.title or '未命名'} ({game_gid})")
            try:
                due = schedule_ms(game.schedule_time)
            except ValueError:
                lines.append(f"排程時間: {game.schedule_time!r} (無效)")
            else:
                if due is None:
                    continue
                diff = int(due - now)
                when = datetime.fromtimestamp(due / 1000, TZ_UTC8)
                lines.append(f"排程時間: {when.isoformat()}")
                lines.append(f"距離現在: {diff}ms ({diff / 1000 / 60:.1f} 分鐘)")
            lines.append(f"active: {'true' if game.active else 'false'}")
        if len(lines) == 1:
            lines.extend(["", "無排程設定"])
        return "\n".join(lines)

    async def _admin_test_push(self, gid: str, uid: str, intent: AdminTestPush) -> str:
        try:
            await self.transport.push(gid, "✅ 測試推播成功！")
        except Exception as e:
            LOGGER.warning(f"Test push failed for {gid}: {e}")
            return f"❌ 推播失敗: {e}"
        LOGGER.info(f"Test push succeeded for {gid}", extra={"audit": True})
        return "✅ 推播測試成功！群組應已收到訊息"

    async def _admin_force_check(self, gid: str, uid: str, intent: AdminForceCheck) -> str:
        LOGGER.info("Manual schedule check triggered", extra={"audit": True})
        if self.scheduler is not None:
            await self.scheduler.scan()
        return "✅ 已執行排程檢查，請查看日誌"
