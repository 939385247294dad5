"""End-to-end tests for webhook event handling."""

from __future__ import annotations

import pytest

from line.components.handler import FOLLOW_WELCOME, GROUP_WELCOME, LineEventHandler
from line.components.names import NameResolver
from line.components.render import REMINDER_PREFIX, render_game
from line.components.roster import NO_GAME, RosterEngine
from line.core.scheduler import ReminderScheduler

GROUP = "C123"


@pytest.fixture
def handler(registry, file_persistence, transport, profiles, clock) -> LineEventHandler:
    engine = RosterEngine(registry, clock=clock)
    scheduler = ReminderScheduler(
        registry,
        file_persistence,
        transport,
        render=lambda game: render_game(game, REMINDER_PREFIX),
        clock=clock,
    )
    return LineEventHandler(
        engine,
        file_persistence,
        transport,
        NameResolver(profiles),
        scheduler=scheduler,
        admin_password="pw",
    )


def _text(text: str, uid: str = "U1", group: str | None = GROUP, token: str = "tok") -> dict:
    source = {"type": "group", "groupId": group, "userId": uid} if group else {"userId": uid}
    return {
        "type": "message",
        "replyToken": token,
        "source": source,
        "message": {"type": "text", "text": text},
    }


async def _say(handler, transport, text, **kwargs) -> str | None:
    before = len(transport.replies)
    await handler.handle_events([_text(text, **kwargs)])
    if len(transport.replies) == before:
        return None
    return transport.replies[-1][1]


@pytest.mark.asyncio
async def test_sign_up_flow(handler, transport, registry, file_persistence):
    first = await _say(handler, transport, "接龍開始 標題{週三} 人數{2} 候補{1}")
    assert first.startswith(GROUP_WELCOME + "🚀 接龍設定成功！")

    await _say(handler, transport, "+1", uid="U1")
    await _say(handler, transport, "+1", uid="U2")
    reply = await _say(handler, transport, "+1", uid="U3")

    assert not reply.startswith(GROUP_WELCOME)
    assert registry.get(GROUP).primary.entries == ["Amy", "Ben", "Cat"]
    assert "候補1. Cat" in reply

    reply = await _say(handler, transport, "-1", uid="U1")
    assert registry.get(GROUP).primary.entries == ["Ben", "Cat"]
    await file_persistence.close()


@pytest.mark.asyncio
async def test_rejection_is_replied(handler, transport):
    reply = await _say(handler, transport, "+1")

    assert reply == GROUP_WELCOME + NO_GAME


@pytest.mark.asyncio
async def test_unrecognised_text_gets_no_reply(handler, transport):
    assert await _say(handler, transport, "hello") is None


@pytest.mark.asyncio
async def test_direct_chat_has_no_welcome_prefix(handler, transport):
    reply = await _say(handler, transport, "接龍名單", group=None)

    assert reply == NO_GAME


@pytest.mark.asyncio
async def test_room_is_keyed_by_room_id(handler, transport, registry, file_persistence):
    event = _text("接龍開始")
    event["source"] = {"type": "room", "roomId": "R9", "userId": "U1"}

    await handler.handle_events([event])
    await file_persistence.close()

    assert "R9" in registry
    assert "U1" not in registry


@pytest.mark.asyncio
async def test_admin_commands_are_silent_until_login(handler, transport):
    assert await _say(handler, transport, "系統狀態") is None
    assert await _say(handler, transport, "管理員登入 wrong") is None

    login = await _say(handler, transport, "管理員登入 pw")
    assert login.endswith("🔓 管理員登入成功，已開啟查詢權限")

    status = await _say(handler, transport, "系統狀態")
    assert status.startswith("📊 系統狀態")
    assert "目前載入接龍數: 0" in status

    assert await _say(handler, transport, "系統狀態", uid="U2") is None


@pytest.mark.asyncio
async def test_admin_disabled_without_password(handler, transport):
    handler.admin_password = ""

    assert await _say(handler, transport, "管理員登入 ") is None
    assert handler.admin_users == set()


@pytest.mark.asyncio
async def test_admin_test_push_and_force_check(handler, transport, registry, clock, file_persistence):
    await _say(handler, transport, "管理員登入 pw")

    assert await _say(handler, transport, "測試推播") == "✅ 推播測試成功！群組應已收到訊息"
    assert transport.pushes[-1] == (GROUP, "✅ 測試推播成功！")

    await _say(handler, transport, "接龍開始")
    registry.get(GROUP).schedule_time = clock.now
    assert await _say(handler, transport, "強制檢查排程") == "✅ 已執行排程檢查，請查看日誌"
    assert transport.pushes[-1][1].startswith(REMINDER_PREFIX)

    assert await _say(handler, transport, "資料庫列表") == "⚠️ 無資料庫連線"
    await file_persistence.close()


@pytest.mark.asyncio
async def test_create_with_past_schedule_pushes_immediately(handler, transport, registry, file_persistence):
    reply = await _say(handler, transport, "接龍開始 時間{2020/01/01 20:00}")
    await handler.scheduler.scan()
    await file_persistence.close()

    assert reply.endswith("設定完成，將會在 2020/01/01 20:00 開始接龍")
    assert len(transport.pushes) == 1
    assert transport.pushes[0][1].startswith(REMINDER_PREFIX)


@pytest.mark.asyncio
async def test_end_snapshots_then_removes(handler, transport, registry, tmp_path, file_persistence):
    await _say(handler, transport, "接龍開始 名單{Amy}")

    assert await _say(handler, transport, "接龍結束") == "✅ 已結束"
    await file_persistence.close()

    assert GROUP not in registry
    assert "Amy" not in (tmp_path / "registrations.csv").read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_follow_event_gets_welcome(handler, transport):
    await handler.handle_events(
        [{"type": "follow", "replyToken": "t", "source": {"type": "user", "userId": "U1"}}]
    )

    assert transport.replies == [("t", FOLLOW_WELCOME)]


@pytest.mark.asyncio
async def test_non_text_and_join_events_are_ignored(handler, transport):
    await handler.handle_events(
        [
            {"type": "join", "source": {"type": "group", "groupId": GROUP}},
            {
                "type": "message",
                "replyToken": "t",
                "source": {"groupId": GROUP, "userId": "U1"},
                "message": {"type": "sticker"},
            },
        ]
    )

    assert transport.replies == []


@pytest.mark.asyncio
async def test_handler_errors_do_not_escape(handler, transport):
    async def broken_reply(token, text):
        raise RuntimeError("network down")

    transport.reply = broken_reply

    await handler.handle_events([_text("接龍狀態")])
