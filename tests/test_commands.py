"""Tests for the chat command grammar."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from line.components.commands import (
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
    Join,
    Leave,
    ListQuery,
    ModifyGame,
    StatusQuery,
    leading_int,
    parse_command,
    parse_schedule,
    split_names,
)


def test_create_with_all_keyed_fields():
    intent = parse_command("接龍開始 標題{週三羽球} 人數{12} 候補{3} 名單{1. Amy\n2. Ben}")

    assert isinstance(intent, CreateGame)
    assert intent.title == "週三羽球"
    assert intent.limit == 12
    assert intent.backup_limit == 3
    assert intent.names == ("Amy", "Ben")
    assert intent.has_list is True


def test_create_accepts_full_width_braces_and_colon():
    intent = parse_command("接龍開始 標題：｛晚場｝ 人數:{8}")

    assert isinstance(intent, CreateGame)
    assert intent.title == "晚場"
    assert intent.limit == 8


def test_create_without_fields_keeps_defaults():
    intent = parse_command("接龍開始")

    assert intent == CreateGame()


def test_anonymous_count_does_not_leak_into_name_list():
    intent = parse_command("接龍開始 匿名名單{3}")

    assert isinstance(intent, CreateGame)
    assert intent.anonymous_count == 3
    assert intent.anonymous_names == ()
    assert intent.names == ()
    assert intent.has_list is False


def test_anonymous_names_are_legacy_mode():
    intent = parse_command("接龍開始 名單{Amy} 匿名名單{Ghost, Shadow}")

    assert isinstance(intent, CreateGame)
    assert intent.names == ("Amy",)
    assert intent.anonymous_names == ("Ghost", "Shadow")
    assert intent.anonymous_count == 0


def test_create_time_is_read_as_utc8():
    intent = parse_command("接龍開始 時間{2025/01/01 20:00}")

    expected = int(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)
    assert isinstance(intent, CreateGame)
    assert intent.schedule_time == expected
    assert intent.schedule_input == "2025/01/01 20:00"


def test_schedule_accepts_dashes():
    ms, raw = parse_schedule("2025-01-01 20:00")

    assert ms == int(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)
    assert raw == "2025-01-01 20:00"


def test_unparseable_schedule_is_unset():
    assert parse_schedule("abc") == (None, None)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("+1", Join(count=1)),
        ("+2 Amy Ben", Join(count=2, names=("Amy", "Ben"))),
        ("Amy +1", Join(count=1, names=("Amy",))),
        ("+3 匿名", Join(count=3, anonymous=True)),
        ("-1", Leave()),
        ("-1 Amy", Leave(name="Amy")),
        ("Amy -1", Leave(name="Amy")),
        ("-1 匿名", Leave(anonymous=True)),
    ],
)
def test_join_and_leave_forms(text, expected):
    assert parse_command(text) == expected


def test_caller_name_used_only_for_bare_plus_one():
    assert Join(count=1).uses_caller_name is True
    assert Join(count=2).uses_caller_name is False
    assert Join(count=1, names=("Amy",)).uses_caller_name is False
    assert Leave().uses_caller_name is True
    assert Leave(anonymous=True).uses_caller_name is False


@pytest.mark.parametrize("text", ["+10", "-10", "+0", "hello", "", "   "])
def test_unrecognised_text_is_ignored(text):
    assert parse_command(text) is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("接龍結束", EndGame()),
        ("接龍狀態", StatusQuery()),
        ("接龍查詢", StatusQuery()),
        ("接龍名單", ListQuery()),
        ("接龍名單 #", ListQuery()),
        ("接龍清空", ClearList()),
        ("接龍刪除", DeleteGame()),
        ("系統狀態", AdminStatus()),
        ("資料庫列表", AdminDbList()),
        ("排程檢查", AdminScheduleDebug()),
        ("測試推播", AdminTestPush()),
        ("強制檢查排程", AdminForceCheck()),
        ("管理員登入 secret", AdminLogin(password="secret")),
    ],
)
def test_fixed_commands(text, expected):
    assert parse_command(text) == expected


def test_list_with_names_is_bulk_append():
    assert parse_command("接龍名單 Amy Ben") == BulkList(names=("Amy", "Ben"))


def test_modify_fields():
    intent = parse_command("接龍修正 人數{8} 名單{Amy,Ben}")

    assert intent == ModifyGame(limit=8, names=("Amy", "Ben"))


def test_modify_without_fields_is_empty():
    intent = parse_command("接龍修改")

    assert isinstance(intent, ModifyGame)
    assert intent.empty


def test_configure_positional_parameters():
    assert parse_command("接龍{早場}{8}{2}{A}") == ConfigureSection(
        index=0, title="早場", limit=8, backup_limit=2, label="A"
    )
    assert parse_command("接龍2{晚場}{6人}") == ConfigureSection(
        index=1, title="晚場", limit=6, backup_limit=None, label=None
    )


def test_reserved_prefix_is_not_section_config():
    assert isinstance(parse_command("接龍開始 標題{x}"), CreateGame)


def test_split_names_strips_ordinals_and_blanks():
    assert split_names("1. Amy\n2. Ben, Cat\n\n") == ["Amy", "Ben", "Cat"]


def test_leading_int():
    assert leading_int("12人") == 12
    assert leading_int("abc") is None
    assert leading_int(None) is None
