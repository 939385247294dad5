"""Core modules for the LINE roll-call bot."""

from .config import BACKEND_DIR, DATA_DIR, LINE_DIR, LineBotSettings, get_settings
from .errors import RemoteStoreError, RosterError, TransportError, VersionConflictError
from .github_store import GitHubContentsStore
from .http_server import WebhookServer
from .line_api import LineMessagingClient, is_shared_chat, verify_signature
from .logging import setup_logging
from .persistence import PersistenceCoordinator
from .registry import GameRegistry
from .scheduler import ExpirySweeper, ReminderScheduler

__all__ = [
    # Settings
    "LineBotSettings",
    "get_settings",
    # Path Constants
    "LINE_DIR",
    "BACKEND_DIR",
    "DATA_DIR",
    # Errors
    "RosterError",
    "TransportError",
    "RemoteStoreError",
    "VersionConflictError",
    # Setup functions
    "setup_logging",
    # Services
    "WebhookServer",
    "LineMessagingClient",
    "GitHubContentsStore",
    "PersistenceCoordinator",
    "ReminderScheduler",
    "ExpirySweeper",
    # State
    "GameRegistry",
    # LINE specific
    "is_shared_chat",
    "verify_signature",
]
