"""PostgreSQL pool management for the roll-call bot.

The database is optional: when it cannot be reached the bot keeps running
from memory and persists to local files instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, ClassVar
from urllib.parse import urlparse

import asyncpg

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Pool sizing, timeouts and connect retry policy."""

    min_size: int = 0
    max_size: int = 2
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 30.0
    max_retries: int = 2
    retry_delay: float = 2.0
    ssl: str | None = "require"

    # Free-tier hosts cap connections, so the bot keeps its pool tiny
    _SERVICE_PRESETS: ClassVar[dict[str, dict]] = {
        "line": {"min_size": 0, "max_size": 2},
        "local": {"min_size": 0, "max_size": 2, "ssl": None},
    }

    @classmethod
    def for_service(cls, service: str, **overrides) -> PoolConfig:
        valid_keys = {f.name for f in fields(cls) if not f.name.startswith("_")}
        preset = dict(cls._SERVICE_PRESETS.get(service, {}))
        preset.update(overrides)
        return cls(**{k: v for k, v in preset.items() if k in valid_keys})


class DatabaseManager:
    """Owns the asyncpg pool: connect with retry, health check, close."""

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None

    def _pool_kwargs(self) -> dict[str, Any]:
        cfg = self.config
        kwargs: dict[str, Any] = {
            "dsn": self.database_url,
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "max_inactive_connection_lifetime": cfg.max_inactive_connection_lifetime,
            # PgBouncer-style poolers reject prepared statements
            "statement_cache_size": 0,
        }
        if cfg.ssl:
            kwargs["ssl"] = cfg.ssl
        return kwargs

    def describe(self) -> str:
        """Connection target with the password masked, for logs."""
        parsed = urlparse(self.database_url)
        host = parsed.hostname or "unknown"
        port = parsed.port or 5432
        user = parsed.username or "unknown"
        return f"{user}:****@{host}:{port}{parsed.path}"

    async def connect(self) -> None:
        """Create the pool and verify it with ``SELECT 1``."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        cfg = self.config
        logger.info(f"Connecting to database {self.describe()}")
        for attempt in range(1, cfg.max_retries + 1):
            try:
                self._pool = await asyncpg.create_pool(**self._pool_kwargs())
                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                logger.info(f"Database pool ready (size={cfg.min_size}-{cfg.max_size})")
                return
            except Exception as e:
                if self._pool is not None:
                    try:
                        await self._pool.close()
                    except Exception:
                        logger.debug("Ignoring error while closing a failed pool")
                    self._pool = None
                if attempt < cfg.max_retries:
                    delay = cfg.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"Database connection attempt {attempt}/{cfg.max_retries} failed: "
                        f"{type(e).__name__}: {e or repr(e)}, retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Database connection failed after {cfg.max_retries} attempts: "
                        f"{type(e).__name__}: {e or repr(e)}"
                    )
                    raise

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        try:
            await self._pool.close()
            logger.info("Database pool closed")
        except Exception as e:
            logger.exception(f"Error closing database pool: {e}")
        finally:
            self._pool = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool
