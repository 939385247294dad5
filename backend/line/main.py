"""LINE roll-call bot entry point.

Startup: load full state (database or games.json), fall back to rebuilding
from the CSV snapshot, sweep expired games, fire reminders that came due
while the process was down, then serve the webhook. SIGINT/SIGTERM flush
storage (bounded by SHUTDOWN_TIMEOUT) before exit.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path

from dotenv import load_dotenv

from shared.database import DatabaseManager, PoolConfig
from shared.repositories.game_state import GameStateRepository

from line.components.handler import LineEventHandler
from line.components.names import NameResolver
from line.components.render import REMINDER_PREFIX, render_game
from line.components.roster import RosterEngine
from line.core.config import LineBotSettings, get_settings
from line.core.github_store import GitHubContentsStore
from line.core.http_server import WebhookServer
from line.core.line_api import LineMessagingClient
from line.core.logging import setup_logging
from line.core.persistence import PersistenceCoordinator
from line.core.registry import GameRegistry
from line.core.scheduler import ExpirySweeper, ReminderScheduler

LOGGER = logging.getLogger("RollCall")

env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


async def connect_database(settings: LineBotSettings) -> tuple[DatabaseManager | None, GameStateRepository | None]:
    """Connect when DATABASE_URL is set; any failure means file mode."""
    if not settings.database_url:
        LOGGER.info("No DATABASE_URL, using file storage (games.json + registrations.csv)")
        return None, None

    db = DatabaseManager(settings.database_url, PoolConfig.for_service("line"))
    try:
        await db.connect()
        repo = GameStateRepository(db.pool)
        await repo.ensure_table()
    except Exception as e:
        LOGGER.warning(f"Database unavailable, switching to file storage: {e}")
        await db.disconnect()
        return None, None
    return db, repo


def build_remote_store(settings: LineBotSettings) -> GitHubContentsStore | None:
    if not settings.github_enabled:
        LOGGER.warning(
            "GitHub snapshot mirror disabled (needs GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO); "
            "using local registrations.csv"
        )
        return None
    owner, repo = settings.github_target
    store = GitHubContentsStore(settings.github_token, owner, repo, settings.github_branch)
    LOGGER.info(f"Snapshot mirror: {store.location}/{settings.github_csv_path}")
    return store


async def run(settings: LineBotSettings) -> None:
    db, repo = await connect_database(settings)
    remote = build_remote_store(settings)
    line_client = LineMessagingClient(settings.line_channel_access_token)

    registry = GameRegistry()
    persistence = PersistenceCoordinator(
        registry,
        games_file=settings.games_file,
        snapshot_file=settings.snapshot_file,
        backup_dir=settings.snapshot_backup_dir,
        store=repo,
        remote=remote,
        remote_path=settings.github_csv_path,
    )

    registry.replace_all(await persistence.load())
    snapshot = await persistence.load_snapshot()
    if await persistence.restore_from_snapshot(snapshot):
        LOGGER.info("Roster restored from CSV snapshot")

    engine = RosterEngine(registry)
    names = NameResolver(line_client)
    scheduler = ReminderScheduler(
        registry,
        persistence,
        line_client,
        render=lambda game: render_game(game, REMINDER_PREFIX),
    )
    sweeper = ExpirySweeper(engine.sweep_expired, persistence, hooks=[names.sweep])
    handler = LineEventHandler(
        engine,
        persistence,
        line_client,
        names,
        scheduler=scheduler,
        admin_password=settings.admin_password,
    )
    if not settings.admin_password:
        LOGGER.info("ADMIN_PASSWORD not set, admin commands disabled")

    await sweeper.run_safely()
    LOGGER.info("Data loaded, performing initial schedule check")
    await scheduler.scan()
    scheduler.start()
    sweeper.start()

    server = WebhookServer(
        settings.line_channel_secret,
        handler.handle_events,
        games_count=lambda: len(registry),
        host=settings.host,
        port=settings.port,
        self_ping_url=settings.self_ping_url if settings.auto_wake_enabled else None,
        self_ping_minutes=settings.auto_wake_interval_minutes,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError) as e:
            LOGGER.warning(f"Could not register handler for signal {sig}: {e}")

    try:
        await server.start()
        LOGGER.info(f"Roll-call bot running on port {settings.port} with {len(registry)} games")
        await stop.wait()
    finally:
        LOGGER.info("Shutting down, flushing data...")
        await server.stop()
        await scheduler.stop()
        await sweeper.stop()
        try:
            await asyncio.wait_for(persistence.close(), timeout=settings.shutdown_timeout)
        except asyncio.TimeoutError:
            LOGGER.error(f"Shutdown flush did not finish within {settings.shutdown_timeout}s")
        await line_client.close()
        if remote is not None:
            await remote.close()
        if db is not None:
            await db.disconnect()


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, schedule_log=settings.schedule_log_file)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")


if __name__ == "__main__":
    main()
