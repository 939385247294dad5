"""Shared fakes for the roll-call bot tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from line.core.errors import RemoteStoreError, TransportError, VersionConflictError
from line.core.persistence import PersistenceCoordinator
from line.core.registry import GameRegistry

# 2025-01-01 12:00:00 UTC (20:00 in UTC+8)
BASE_MS = 1735732800000


class Clock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = BASE_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeTransport:
    def __init__(self) -> None:
        self.replies: list[tuple[str, str]] = []
        self.pushes: list[tuple[str, str]] = []
        self.fail_push = False

    async def reply(self, reply_token: str, text: str) -> None:
        self.replies.append((reply_token, text))

    async def push(self, to: str, text: str) -> None:
        if self.fail_push:
            raise TransportError("push rejected")
        self.pushes.append((to, text))


class FakeProfiles:
    def __init__(self, names: dict[str, str] | None = None) -> None:
        self.names = dict(names or {})
        self.calls = 0
        self.fail = False

    async def display_name(self, gid: str, uid: str) -> str:
        self.calls += 1
        if self.fail:
            raise TransportError("profile lookup failed")
        return self.names.get(uid, uid)


class FakeKV:
    """In-memory stand-in for the games table."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.fail = False
        self.deleted: list[str] = []

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("database down")

    async def fetch_all(self) -> list[tuple[str, dict[str, Any]]]:
        self._check()
        return sorted(self.rows.items())

    async def upsert(self, gid: str, data: dict[str, Any]) -> None:
        self._check()
        self.rows[gid] = data

    async def delete(self, gid: str) -> bool:
        self._check()
        self.deleted.append(gid)
        return self.rows.pop(gid, None) is not None

    async def ping(self) -> None:
        self._check()


class FakeBlobStore:
    """Versioned remote file; versions are "v1", "v2", ..."""

    def __init__(self, content: str | None = None) -> None:
        self.content = content
        self.version = 1 if content is not None else 0
        self.conflicts = 0
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0
        self.attempts = 0
        self.messages: list[str] = []
        self.history: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def location(self) -> str:
        return "owner/repo@main"

    @property
    def sha(self) -> str | None:
        return f"v{self.version}" if self.version else None

    async def read(self, path: str) -> tuple[str, str] | None:
        self.reads += 1
        if self.fail_reads:
            raise RemoteStoreError("remote unreachable")
        if self.content is None:
            return None
        return self.content, self.sha  # type: ignore[return-value]

    async def write(self, path: str, content: str, version: str | None, message: str) -> str:
        self.attempts += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            return self._commit(content, version, message)
        finally:
            self.in_flight -= 1

    def _commit(self, content: str, version: str | None, message: str) -> str:
        if self.fail_writes:
            raise RemoteStoreError("remote rejected write")
        if self.conflicts > 0:
            self.conflicts -= 1
            # Someone else committed in between
            self.version += 1
            if self.content is None:
                self.content = ""
            raise VersionConflictError("409 - sha does not match")
        if version != self.sha:
            raise VersionConflictError("409 - sha does not match")
        self.version += 1
        self.content = content
        self.messages.append(message)
        self.history.append(content)
        return self.sha  # type: ignore[return-value]

    async def ping(self) -> None:
        if self.fail_reads:
            raise RemoteStoreError("remote unreachable")


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def registry() -> GameRegistry:
    return GameRegistry()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def file_persistence(tmp_path, registry) -> PersistenceCoordinator:
    """File-mode coordinator with a short debounce."""
    return PersistenceCoordinator(
        registry,
        games_file=tmp_path / "games.json",
        snapshot_file=tmp_path / "registrations.csv",
        backup_dir=tmp_path / "backups",
        debounce=0.01,
    )


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles({"U1": "Amy", "U2": "Ben", "U3": "Cat"})


@pytest.fixture
def kv() -> FakeKV:
    return FakeKV()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()
