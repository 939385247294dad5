"""Tests for the persistence coordinator (full state + CSV snapshot)."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from shared.models.roster import TZ_UTC8, Game, primary_section

from line.core.persistence import PersistenceCoordinator
from line.core.registry import GameRegistry
from line.core.snapshot import HEADER


def _coordinator(tmp_path, registry, store=None, remote=None) -> PersistenceCoordinator:
    return PersistenceCoordinator(
        registry,
        games_file=tmp_path / "games.json",
        snapshot_file=tmp_path / "registrations.csv",
        backup_dir=tmp_path / "backups",
        store=store,
        remote=remote,
        debounce=0.01,
    )


def _put(registry, gid="C1", names=("Amy",)) -> Game:
    game = Game(sections=[primary_section(entries=list(names))])
    registry.put(gid, game)
    return game


# ----------------------------------------------------------------------
# Full state
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_debounced_saves_coalesce_into_one_write(tmp_path, registry, file_persistence):
    for gid in ("C1", "C2", "C3"):
        _put(registry, gid)
        await file_persistence.save(gid)

    await asyncio.sleep(0.1)

    assert file_persistence.files.writes == 1
    saved = json.loads((tmp_path / "games.json").read_text(encoding="utf-8"))
    assert sorted(saved) == ["C1", "C2", "C3"]


@pytest.mark.asyncio
async def test_immediate_save_writes_before_returning(tmp_path, registry, file_persistence):
    _put(registry, names=("Amy", "Ben"))

    await file_persistence.save("C1", immediate=True)

    saved = json.loads((tmp_path / "games.json").read_text(encoding="utf-8"))
    assert saved["C1"]["sections"][0]["list"] == ["Amy", "Ben"]


@pytest.mark.asyncio
async def test_file_round_trip(tmp_path, registry, file_persistence):
    _put(registry, names=("Amy",))
    await file_persistence.save("C1", immediate=True)

    loaded = await _coordinator(tmp_path, GameRegistry()).load()

    assert loaded["C1"].primary.entries == ["Amy"]


@pytest.mark.asyncio
async def test_corrupt_games_file_loads_empty(tmp_path, registry, file_persistence):
    (tmp_path / "games.json").write_text("{not json", encoding="utf-8")

    assert await file_persistence.load() == {}


@pytest.mark.asyncio
async def test_delete_rewrites_file_without_game(tmp_path, registry, file_persistence):
    _put(registry, "C1")
    _put(registry, "C2")
    await file_persistence.save("C1", immediate=True)
    registry.pop("C1")

    await file_persistence.delete("C1")
    await file_persistence.close()

    saved = json.loads((tmp_path / "games.json").read_text(encoding="utf-8"))
    assert sorted(saved) == ["C2"]


@pytest.mark.asyncio
async def test_database_mode_upserts_rows(tmp_path, registry, kv):
    persistence = _coordinator(tmp_path, registry, store=kv)
    _put(registry)

    await persistence.save("C1", immediate=True)

    assert kv.rows["C1"]["sections"][0]["list"] == ["Amy"]
    assert not (tmp_path / "games.json").exists()
    assert persistence.using_database


@pytest.mark.asyncio
async def test_database_failure_downgrades_to_file(tmp_path, registry, kv):
    persistence = _coordinator(tmp_path, registry, store=kv)
    _put(registry)
    kv.fail = True

    await persistence.save("C1", immediate=True)
    kv.fail = False
    await persistence.save("C1", immediate=True)

    assert not persistence.using_database
    assert kv.rows == {}
    assert (tmp_path / "games.json").exists()


@pytest.mark.asyncio
async def test_load_falls_back_to_file_when_database_unreachable(tmp_path, registry, kv):
    (tmp_path / "games.json").write_text(
        json.dumps({"C9": {"title": "檔案"}}, ensure_ascii=False), encoding="utf-8"
    )
    kv.fail = True
    persistence = _coordinator(tmp_path, registry, store=kv)

    loaded = await persistence.load()

    assert loaded["C9"].title == "檔案"
    assert await persistence.list_stored() is None


@pytest.mark.asyncio
async def test_database_delete(tmp_path, registry, kv):
    persistence = _coordinator(tmp_path, registry, store=kv)
    _put(registry)
    await persistence.save("C1")
    registry.pop("C1")

    await persistence.delete("C1")
    await persistence.close()

    assert kv.deleted == ["C1"]
    assert "C1" not in kv.rows


# ----------------------------------------------------------------------
# Snapshot
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_snapshot_written_to_remote(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    await persistence.load_snapshot()
    _put(registry, names=("Amy", "Ben"))

    assert await persistence.save_snapshot("週三", wait=True) is True

    assert blob_store.content == f"{HEADER}\nC1,0,Amy,20,5\nC1,0,Ben,20,5\n"
    assert blob_store.messages == ["Update current list snapshot: 週三 (2 人)"]


@pytest.mark.asyncio
async def test_version_conflict_retries_once(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    _put(registry)
    blob_store.conflicts = 1

    assert await persistence.save_snapshot(wait=True) is True

    assert blob_store.attempts == 2
    assert blob_store.reads == 1
    assert not (tmp_path / "registrations.csv").exists()


@pytest.mark.asyncio
async def test_second_conflict_falls_back_to_local_file(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    _put(registry)
    blob_store.conflicts = 2

    assert await persistence.save_snapshot(wait=True) is False

    assert blob_store.attempts == 2
    local = (tmp_path / "registrations.csv").read_text(encoding="utf-8")
    assert local == f"{HEADER}\nC1,0,Amy,20,5\n"


@pytest.mark.asyncio
async def test_remote_failure_falls_back_to_local_file(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    _put(registry)
    blob_store.fail_writes = True

    assert await persistence.save_snapshot(wait=True) is False

    assert blob_store.attempts == 1
    assert (tmp_path / "registrations.csv").exists()


@pytest.mark.asyncio
async def test_snapshot_writes_are_fifo(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    _put(registry, names=("Amy",))
    await persistence.save_snapshot("first")
    registry.get("C1").primary.entries.append("Ben")
    await persistence.save_snapshot("second")

    await persistence.snapshots.drain()

    assert [m.split(": ")[1] for m in blob_store.messages] == ["first (1 人)", "second (2 人)"]
    assert blob_store.content.endswith("C1,0,Ben,20,5\n")


@pytest.mark.asyncio
async def test_concurrent_snapshot_writes_never_overlap(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    game = _put(registry, names=())
    labels = []
    for i in range(5):
        game.primary.entries.append(f"P{i}")
        labels.append(f"batch{i}")

    results = await asyncio.gather(
        *(persistence.save_snapshot(label, wait=True) for label in labels)
    )

    assert results == [True] * 5
    assert blob_store.max_in_flight == 1
    assert [m.split(": ")[1].split(" ")[0] for m in blob_store.messages] == labels


@pytest.mark.asyncio
async def test_local_snapshot_keeps_daily_backup(tmp_path, registry, file_persistence):
    (tmp_path / "registrations.csv").write_text(f"{HEADER}\nC0,0,Old,20,5\n", encoding="utf-8")
    _put(registry)

    await file_persistence.save_snapshot(wait=True)

    today = datetime.now(TZ_UTC8).strftime("%Y-%m-%d")
    backup = tmp_path / "backups" / f"registrations-{today}.csv"
    assert "Old" in backup.read_text(encoding="utf-8")
    assert "Amy" in (tmp_path / "registrations.csv").read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_backup_day_follows_taipei_midnight(tmp_path, file_persistence):
    (tmp_path / "registrations.csv").write_text(f"{HEADER}\n", encoding="utf-8")

    # 17:00 UTC on Jan 1 is already Jan 2 in UTC+8
    await file_persistence._maybe_backup(datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc))

    assert (tmp_path / "backups" / "registrations-2025-01-02.csv").exists()
    assert not (tmp_path / "backups" / "registrations-2025-01-01.csv").exists()


@pytest.mark.asyncio
async def test_load_snapshot_sources(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    assert await persistence.load_snapshot() == ""

    blob_store.content, blob_store.version = f"{HEADER}\nC1,0,Amy,8,2\n", 3
    assert "Amy" in await persistence.load_snapshot()

    blob_store.fail_reads = True
    (tmp_path / "registrations.csv").write_text(f"{HEADER}\nC2,0,Local,8,2\n", encoding="utf-8")
    assert "Local" in await persistence.load_snapshot()


@pytest.mark.asyncio
async def test_restore_from_snapshot_only_when_registry_empty(tmp_path, registry, kv):
    persistence = _coordinator(tmp_path, registry, store=kv)
    content = f"{HEADER}\nC1,0,Amy,8,2\nC1,0,Ben,8,2\n"

    assert await persistence.restore_from_snapshot(content) is True
    assert registry.get("C1").primary.entries == ["Amy", "Ben"]
    assert "C1" in kv.rows

    assert await persistence.restore_from_snapshot(f"{HEADER}\nC2,0,Cat,8,2\n") is False
    assert "C2" not in registry


@pytest.mark.asyncio
async def test_close_flushes_and_writes_final_snapshot(tmp_path, registry, blob_store):
    persistence = _coordinator(tmp_path, registry, remote=blob_store)
    _put(registry)
    await persistence.save("C1")
    await persistence.save_snapshot("pending")

    await persistence.close()

    assert (tmp_path / "games.json").exists()
    assert blob_store.messages[-1] == "Final save before shutdown"
    assert blob_store.messages[0].startswith("Update current list snapshot: pending")


@pytest.mark.asyncio
async def test_status_strings(tmp_path, registry, kv, blob_store):
    persistence = _coordinator(tmp_path, registry, store=kv, remote=blob_store)
    assert await persistence.database_status() == "✅ 資料庫連線正常"
    assert (await persistence.snapshot_status()).startswith("✅ GitHub CSV 正常")

    kv.fail = True
    assert await persistence.database_status() == "❌ 資料庫連線異常"

    local = _coordinator(tmp_path, registry)
    assert await local.database_status() == "⚠️ 僅使用記憶體 (無資料庫)"
    assert await local.snapshot_status() == "📁 本地 CSV 模式（尚未建立檔案）"
