"""Logging configuration"""

import logging
import logging.handlers
import os
from pathlib import Path

try:
    from rich.console import Console
    from rich.logging import RichHandler

    RICH_AVAILABLE = True
except ImportError:
    RICH_AVAILABLE = False

SCHEDULE_LOG_MAX_BYTES = 1024 * 1024


class AuditFilter(logging.Filter):
    """Pass warnings and above, plus records logged with ``extra={"audit": True}``.

    Keeps schedule.log to errors, reminder triggers and storage successes.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.WARNING or bool(getattr(record, "audit", False))


def _schedule_log_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=SCHEDULE_LOG_MAX_BYTES, backupCount=1, encoding="utf-8"
    )
    handler.addFilter(AuditFilter())
    handler.setFormatter(
        logging.Formatter(
            fmt="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    return handler


def setup_logging(level_name: str | None = None, schedule_log: Path | None = None) -> None:
    level = getattr(logging, (level_name or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if RICH_AVAILABLE:
        try:
            console = Console(force_terminal=True, width=120)
            rich_handler = RichHandler(
                console=console,
                show_time=True,
                show_level=True,
                show_path=False,
                markup=False,
                rich_tracebacks=True,
                tracebacks_show_locals=False,
                tracebacks_width=120,
            )
            rich_handler.setFormatter(
                logging.Formatter(fmt="%(message)s", datefmt="[%Y-%m-%d %H:%M:%S]")
            )
            handlers.append(rich_handler)
        except Exception as e:
            handlers = []
            logging.getLogger("RollCall").warning(
                f"Rich logging setup failed: {e}, using standard logging"
            )

    if not handlers:
        stream = logging.StreamHandler()
        stream.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        handlers.append(stream)

    if schedule_log is not None:
        try:
            handlers.append(_schedule_log_handler(schedule_log))
        except OSError as e:
            logging.getLogger("RollCall").warning(f"schedule.log unavailable: {e}")

    logging.basicConfig(level=level, handlers=handlers, force=True)

    if level == logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.INFO)
    else:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("asyncio").setLevel(logging.ERROR)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
