"""Durable storage for the game registry.

Two independent projections of the registry are kept:

- Full state: one JSON blob per conversation in the ``games`` table, or the
  whole registry in ``games.json`` when there is no database (or after the
  database has failed once, for the rest of the process lifetime).
- Flattened snapshot: the CSV from ``line.core.snapshot``, mirrored to a
  remote versioned store when one is configured, otherwise written locally.
  It is the recovery source of last resort.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from shared.models.roster import TZ_UTC8, Game

from line.core.errors import RemoteStoreError, VersionConflictError
from line.core.interfaces import KeyValueStore, VersionedBlobStore
from line.core.registry import GameRegistry
from line.core.snapshot import HEADER, build_snapshot, count_records, restore_games

logger = logging.getLogger(__name__)

# Pending-save mark for "the registry changed shape" (a game was deleted)
ALL_GAMES = "__all__"


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


def _read_text(path: Path) -> str | None:
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")


class DebouncedFileWriter:
    """Single writer for ``games.json``.

    ``schedule()`` coalesces every save requested within *delay* seconds into
    one write; ``flush()`` writes now. Marks survive a failed write so the
    next flush tries again.
    """

    def __init__(self, path: Path, dump: Callable[[], dict[str, Any]], delay: float = 0.5):
        self.path = path
        self.delay = delay
        self._dump = dump
        self._pending: set[str] = set()
        self._timer: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self.writes = 0

    def mark(self, key: str) -> None:
        self._pending.add(key)

    def schedule(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        self._timer = asyncio.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.delay)
        self._timer = None
        await self.flush()

    async def flush(self) -> bool:
        async with self._lock:
            if not self._pending:
                return True
            marks = set(self._pending)
            content = json.dumps(self._dump(), ensure_ascii=False, indent=2)
            try:
                await asyncio.to_thread(_write_text, self.path, content)
            except OSError as e:
                logger.error(f"Failed to save {self.path.name}: {e}")
                return False
            self._pending -= marks
            self.writes += 1
            logger.debug(f"Saved {self.path.name} ({len(marks)} pending marks)")
            return True

    async def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        await self.flush()


class SnapshotWriter:
    """FIFO single writer for the flattened snapshot.

    Every submitted snapshot is written in submission order by one worker
    task, so two writes to the remote store never overlap. ``submit`` returns
    a future resolving to whether that write reached its primary target.
    """

    def __init__(self, write: Callable[[str, str], Awaitable[bool]]):
        self._write = write
        self._queue: asyncio.Queue[tuple[str, str, asyncio.Future[bool]]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    def submit(self, content: str, label: str) -> asyncio.Future[bool]:
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((content, label, future))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
        return future

    async def _run(self) -> None:
        while True:
            content, label, future = await self._queue.get()
            ok = False
            try:
                ok = await self._write(content, label)
            except Exception as e:
                logger.exception(f"Snapshot write failed ({label}): {e}")
            finally:
                if not future.done():
                    future.set_result(ok)
                self._queue.task_done()

    async def drain(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None


class PersistenceCoordinator:
    """Loads the registry at startup and keeps both projections current."""

    def __init__(
        self,
        registry: GameRegistry,
        *,
        games_file: Path,
        snapshot_file: Path,
        backup_dir: Path | None = None,
        store: KeyValueStore | None = None,
        remote: VersionedBlobStore | None = None,
        remote_path: str = "data/registrations.csv",
        debounce: float = 0.5,
    ):
        self.registry = registry
        self.store = store
        self.remote = remote
        self.remote_path = remote_path
        self.snapshot_file = snapshot_file
        self.backup_dir = backup_dir
        self.files = DebouncedFileWriter(games_file, registry.to_dict, debounce)
        self.snapshots = SnapshotWriter(self._write_snapshot)
        self._remote_sha: str | None = None
        self._remote_content = ""
        self._last_backup_day: str | None = None
        self._closing = False

    @property
    def using_database(self) -> bool:
        return self.store is not None

    def _downgrade(self, error: Exception) -> None:
        logger.error(f"Database unavailable, switching to file storage: {error}")
        self.store = None

    # ------------------------------------------------------------------
    # Full state
    # ------------------------------------------------------------------

    async def load(self) -> dict[str, Game]:
        """Read the full-state store; an unreachable database falls back to the file."""
        if self.store is not None:
            try:
                rows = await self.store.fetch_all()
            except Exception as e:
                self._downgrade(e)
            else:
                games = {gid: Game.from_dict(data) for gid, data in rows}
                logger.info(f"Loaded {len(games)} games from database")
                return games
        return await self._load_file()

    async def _load_file(self) -> dict[str, Game]:
        path = self.files.path
        try:
            content = await asyncio.to_thread(_read_text, path)
        except OSError as e:
            logger.error(f"Failed to read {path.name}: {e}")
            return {}
        if content is None:
            return {}
        try:
            raw = json.loads(content or "{}")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse {path.name}: {e}")
            return {}
        games = {
            str(gid): Game.from_dict(data)
            for gid, data in (raw or {}).items()
            if isinstance(data, dict)
        }
        logger.info(f"Loaded {len(games)} games from {path.name}")
        return games

    async def save(self, gid: str, immediate: bool = False) -> None:
        """Persist one game.

        *immediate* writes the file now instead of within the debounce window.
        """
        game = self.registry.get(gid)
        if game is None:
            return
        if self.store is not None:
            try:
                await self.store.upsert(gid, game.to_dict())
                return
            except Exception as e:
                self._downgrade(e)

        self.files.mark(gid)
        if immediate or self._closing:
            await self.files.flush()
        else:
            self.files.schedule()

    async def delete(self, gid: str) -> None:
        """Drop a game that is already gone from the registry."""
        if self.store is not None:
            try:
                await self.store.delete(gid)
            except Exception as e:
                self._downgrade(e)
        self.files.mark(ALL_GAMES)
        self.files.schedule()

    async def list_stored(self) -> list[tuple[str, dict[str, Any]]] | None:
        """Rows in the database, or None in file mode."""
        if self.store is None:
            return None
        return await self.store.fetch_all()

    # ------------------------------------------------------------------
    # Flattened snapshot
    # ------------------------------------------------------------------

    async def load_snapshot(self) -> str:
        """Fetch the latest snapshot text ("" when there is none)."""
        if self.remote is None:
            return await self._read_local_snapshot()

        try:
            result = await self.remote.read(self.remote_path)
        except RemoteStoreError as e:
            logger.error(f"Failed to load snapshot from {self.remote.location}: {e}")
            content = await self._read_local_snapshot()
            if content:
                logger.warning("Loaded snapshot from local file instead")
            self._remote_content = content
            return content

        if result is None:
            logger.info("No snapshot in remote store yet, a new file will be created")
            self._remote_content = f"{HEADER}\n"
            self._remote_sha = None
            return ""

        content, sha = result
        self._remote_content, self._remote_sha = content, sha
        logger.info(
            f"Loaded snapshot from {self.remote.location}: {count_records(content)} records",
            extra={"audit": True},
        )
        return content

    async def _read_local_snapshot(self) -> str:
        try:
            return await asyncio.to_thread(_read_text, self.snapshot_file) or ""
        except OSError as e:
            logger.error(f"Failed to read {self.snapshot_file.name}: {e}")
            return ""

    async def restore_from_snapshot(self, content: str) -> bool:
        """Rebuild the registry from snapshot text when nothing else was loaded."""
        if len(self.registry) > 0:
            return False
        games = restore_games(content)
        if not games:
            return False
        for gid, game in games.items():
            self.registry.put(gid, game)
            await self.save(gid, immediate=True)
        logger.info(f"Restored {len(games)} games from snapshot", extra={"audit": True})
        return True

    async def save_snapshot(self, label: str = "all-groups", wait: bool = False) -> bool:
        """Queue a snapshot of the whole registry as it is right now.

        Returns immediately unless *wait* is set, in which case the result
        of this particular write is returned.
        """
        content, rows = build_snapshot(self.registry.items())
        future = self.snapshots.submit(content, f"{label} ({rows} 人)")
        if wait:
            return await future
        return True

    async def _write_snapshot(self, content: str, label: str) -> bool:
        if self.remote is not None:
            return await self._write_remote(content, f"Update current list snapshot: {label}")

        try:
            await self._maybe_backup()
            await asyncio.to_thread(_write_text, self.snapshot_file, content)
        except OSError as e:
            logger.error(f"Failed to save list snapshot: {e}")
            return False
        logger.info(f"Saved list snapshot: {label}")
        return True

    async def _write_remote(self, content: str, message: str, allow_retry: bool = True) -> bool:
        remote = self.remote
        if remote is None:
            return False
        try:
            sha = await remote.write(self.remote_path, content, self._remote_sha, message)
        except VersionConflictError as e:
            if allow_retry:
                logger.warning(f"Snapshot version conflict, reloading and retrying once: {e}")
                try:
                    result = await remote.read(self.remote_path)
                    self._remote_sha = result[1] if result else None
                except RemoteStoreError as reload_error:
                    logger.error(f"Failed to reload remote snapshot: {reload_error}")
                return await self._write_remote(content, message, allow_retry=False)
            failure: Exception = e
        except RemoteStoreError as e:
            failure = e
        else:
            self._remote_sha = sha
            self._remote_content = content
            logger.info(
                f"Snapshot written to {remote.location}: {count_records(content)} records",
                extra={"audit": True},
            )
            return True

        logger.error(f"Failed to write snapshot to {remote.location}: {failure}")
        try:
            await asyncio.to_thread(_write_text, self.snapshot_file, content)
            logger.warning("Snapshot saved to local file instead")
        except OSError as e:
            logger.error(f"Local snapshot fallback failed too: {e}")
        return False

    async def _maybe_backup(self, now: datetime | None = None) -> None:
        """Copy the local snapshot aside once per calendar day."""
        backup_dir = self.backup_dir
        if backup_dir is None:
            return
        today = (now or datetime.now(TZ_UTC8)).astimezone(TZ_UTC8).strftime("%Y-%m-%d")
        if self._last_backup_day == today:
            return
        self._last_backup_day = today

        target = backup_dir / f"registrations-{today}.csv"

        def copy() -> None:
            if not self.snapshot_file.exists() or target.exists():
                return
            backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.snapshot_file, target)

        try:
            await asyncio.to_thread(copy)
        except OSError as e:
            logger.warning(f"Failed to back up {self.snapshot_file.name}: {e}")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def database_status(self) -> str:
        if self.store is None:
            return "⚠️ 僅使用記憶體 (無資料庫)"
        try:
            await self.store.ping()
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return "❌ 資料庫連線異常"
        return "✅ 資料庫連線正常"

    async def snapshot_status(self) -> str:
        if self.remote is not None:
            try:
                await self.remote.ping()
            except RemoteStoreError as e:
                return f"❌ GitHub CSV 連線失敗: {e}"
            return (
                "✅ GitHub CSV 正常\n"
                f"   倉庫: {self.remote.location}\n"
                f"   路徑: {self.remote_path}\n"
                f"   記錄數: {count_records(self._remote_content)}"
            )

        if not self.snapshot_file.exists():
            return "📁 本地 CSV 模式（尚未建立檔案）"
        content = await self._read_local_snapshot()
        return f"📁 本地 CSV 模式\n   記錄數: {count_records(content)}"

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Flush pending file saves, drain the snapshot queue, write once more."""
        self._closing = True
        await self.files.close()
        await self.snapshots.close()
        if self.remote is not None:
            content, _ = build_snapshot(self.registry.items())
            await self._write_remote(content, "Final save before shutdown")
        logger.info("All data flushed")
