"""Capabilities the roster core needs from the outside world."""

from __future__ import annotations

from typing import Any, Protocol


class MessageTransport(Protocol):
    async def reply(self, reply_token: str, text: str) -> None: ...

    async def push(self, to: str, text: str) -> None: ...


class ProfileLookup(Protocol):
    async def display_name(self, gid: str, uid: str) -> str: ...


class KeyValueStore(Protocol):
    async def fetch_all(self) -> list[tuple[str, dict[str, Any]]]: ...

    async def upsert(self, gid: str, data: dict[str, Any]) -> None: ...

    async def delete(self, gid: str) -> bool: ...

    async def ping(self) -> None: ...


class VersionedBlobStore(Protocol):
    """A remote file that can only be overwritten by naming its current version."""

    @property
    def location(self) -> str: ...

    async def read(self, path: str) -> tuple[str, str] | None:
        """Return ``(content, version)``, or None when the blob does not exist."""
        ...

    async def write(self, path: str, content: str, version: str | None, message: str) -> str:
        """Write and return the new version; raise VersionConflictError on a stale one."""
        ...

    async def ping(self) -> None: ...
