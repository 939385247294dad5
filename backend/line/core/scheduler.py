"""Background timers: minute-aligned reminder scan and daily expiry sweep."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from shared.models.roster import TZ_UTC8, Game, now_ms, schedule_ms

from line.core.interfaces import MessageTransport
from line.core.persistence import PersistenceCoordinator
from line.core.registry import GameRegistry

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60


def seconds_to_next_minute(now: float | None = None) -> float:
    now = time.time() if now is None else now
    delay = 60 - (now % 60)
    return delay if delay > 0 else 60.0


def seconds_to_midnight(now: datetime | None = None) -> float:
    """Seconds until the next 00:00 in UTC+8."""
    now = now or datetime.now(TZ_UTC8)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


class ReminderScheduler:
    """Fires each game's pending reminder at most once.

    A scan clears and saves ``scheduleTime`` before pushing, so a crash or a
    failed push never sends the same reminder twice. Runs at the top of every
    minute; a tick that finds the previous scan still running does nothing.
    """

    def __init__(
        self,
        registry: GameRegistry,
        persistence: PersistenceCoordinator,
        transport: MessageTransport,
        render: Callable[[Game], str],
        clock: Callable[[], int] = now_ms,
        interval: float = 60.0,
    ) -> None:
        self.registry = registry
        self.persistence = persistence
        self.transport = transport
        self.render = render
        self.clock = clock
        self.interval = interval
        self._running = False
        self._task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()

    async def scan(self) -> int:
        """Run one pass and return how many reminders were pushed."""
        if self._running:
            logger.debug("Previous schedule scan still running, skipping")
            return 0
        self._running = True
        try:
            return await self._scan()
        finally:
            self._running = False

    async def _scan(self) -> int:
        now = self.clock()
        pushed = 0
        for gid in self.registry.gids():
            game = self.registry.get(gid)
            if game is None:
                continue
            try:
                due = schedule_ms(game.schedule_time)
            except ValueError:
                logger.warning(f"Invalid scheduleTime for {gid}: {game.schedule_time!r}")
                game.schedule_time = None
                await self.persistence.save(gid)
                continue
            if due is None or due > now:
                continue

            logger.info(f"TRIGGER! Sending scheduled list for {gid}", extra={"audit": True})
            game.schedule_time = None
            await self.persistence.save(gid, immediate=True)
            game = self.registry.get(gid)
            if game is None:
                continue
            try:
                await self.transport.push(gid, self.render(game))
            except Exception as e:
                logger.error(f"Failed to push scheduled list for {gid}: {e}")
                continue
            pushed += 1
            logger.info(f"Scheduled push sent for {gid}", extra={"audit": True})
        return pushed

    async def _tick(self) -> None:
        try:
            await self.scan()
        except Exception as e:
            logger.exception(f"Schedule scan error: {e}")

    async def _loop(self) -> None:
        await asyncio.sleep(seconds_to_next_minute())
        while True:
            task = asyncio.create_task(self._tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info("Reminder scheduler started (every minute at :00)")

    async def stop(self) -> None:
        tasks = [t for t in (self._task, *self._ticks) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None


class ExpirySweeper:
    """Deletes idle games: once at startup, then daily at midnight (UTC+8)."""

    def __init__(
        self,
        sweep: Callable[[], tuple[list[str], list[str]]],
        persistence: PersistenceCoordinator,
        hooks: Iterable[Callable[[], None]] = (),
    ) -> None:
        self._sweep = sweep
        self.persistence = persistence
        self.hooks = list(hooks)
        self._task: asyncio.Task | None = None

    async def run_once(self) -> list[str]:
        expired, backfilled = self._sweep()
        for gid in backfilled:
            await self.persistence.save(gid, immediate=True)
        for gid in expired:
            await self.persistence.delete(gid)
        if expired:
            logger.info(f"Expired {len(expired)} idle games", extra={"audit": True})
            await self.persistence.save_snapshot("expired")
        for hook in self.hooks:
            hook()
        return expired

    async def run_safely(self) -> None:
        try:
            await self.run_once()
        except Exception as e:
            logger.exception(f"Expiry sweep error: {e}")

    async def _loop(self) -> None:
        await asyncio.sleep(seconds_to_midnight())
        while True:
            await self.run_safely()
            await asyncio.sleep(DAY_SECONDS)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
