"""Repository for the games key/value table (one JSONB blob per conversation)."""

from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)


class GameStateRepository:
    """Pure SQL operations for ``games(gid, data)``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def ensure_table(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS games (
                    gid TEXT PRIMARY KEY,
                    data JSONB
                )
                """
            )

    async def fetch_all(self) -> list[tuple[str, dict[str, Any]]]:
        """Return every stored ``(gid, data)`` pair."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT gid, data FROM games ORDER BY gid")
        result: list[tuple[str, dict[str, Any]]] = []
        for row in rows:
            data = row["data"]
            if isinstance(data, str):
                data = json.loads(data)
            if not isinstance(data, dict):
                logger.warning(f"Skipping malformed games row {row['gid']}")
                continue
            result.append((row["gid"], data))
        return result

    async def upsert(self, gid: str, data: dict[str, Any]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO games (gid, data) VALUES ($1, $2::jsonb)
                ON CONFLICT (gid) DO UPDATE SET data = EXCLUDED.data
                """,
                gid,
                json.dumps(data, ensure_ascii=False),
            )

    async def delete(self, gid: str) -> bool:
        """Delete one conversation's row. Returns True if a row was removed."""
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM games WHERE gid = $1", gid)
            return result == "DELETE 1"

    async def ping(self) -> None:
        """Raise if the database cannot answer a trivial query."""
        async with self.pool.acquire(timeout=5.0) as conn:
            await conn.fetchval("SELECT 1")
