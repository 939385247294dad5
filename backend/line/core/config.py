"""LINE roll-call bot configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# === Path Configuration ===
LINE_DIR = Path(__file__).parent.parent
BACKEND_DIR = LINE_DIR.parent
DATA_DIR = BACKEND_DIR / "data"


class LineBotSettings(BaseSettings):
    """LINE bot settings"""

    model_config = SettingsConfigDict(
        env_file=LINE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LINE Messaging API
    line_channel_access_token: str = Field(..., description="LINE channel access token")
    line_channel_secret: str = Field(..., description="LINE channel secret (webhook signature)")

    # Admin commands are disabled while the password is empty
    admin_password: str = Field(default="", description="Shared secret for 管理員登入")

    # Database (optional; file mode when empty)
    database_url: str = Field(default="", description="PostgreSQL database URL")

    # GitHub snapshot mirror (optional)
    github_token: str = Field(default="", description="GitHub token with contents:write")
    github_owner: str = Field(default="", description="Repository owner")
    github_repo: str = Field(default="", description="Repository name")
    github_repository: str = Field(default="", description="owner/repo fallback")
    github_csv_path: str = Field(default="data/registrations.csv", description="CSV path in repo")
    github_branch: str = Field(default="main", description="Branch to commit to")

    # Storage
    data_dir: Path = Field(default=DATA_DIR, description="Directory for local state files")

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")

    # Keep-alive (Render free tier sleeps when idle)
    auto_wake_enabled: bool = Field(default=True, description="Ping own /health periodically")
    auto_wake_interval_minutes: int = Field(default=60, description="Self-ping interval")
    render_external_url: str = Field(default="", description="Public URL set by Render")
    app_url: str = Field(default="", description="Public URL")
    url: str = Field(default="", description="Public URL")

    shutdown_timeout: float = Field(default=10.0, description="Max seconds for shutdown flush")

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL scheme when one is given"""
        v = v.strip()
        if v and not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("auto_wake_interval_minutes")
    @classmethod
    def validate_wake_interval(cls, v: int) -> int:
        return max(5, v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @property
    def github_target(self) -> tuple[str, str]:
        """(owner, repo), falling back to GITHUB_REPOSITORY."""
        owner, repo = self.github_owner, self.github_repo
        if "/" in self.github_repository:
            fallback_owner, fallback_repo = self.github_repository.split("/", 1)
            owner = owner or fallback_owner
            repo = repo or fallback_repo
        return owner, repo

    @property
    def github_enabled(self) -> bool:
        owner, repo = self.github_target
        return bool(self.github_token and owner and repo)

    @property
    def self_ping_url(self) -> str:
        base = self.render_external_url or self.app_url or self.url or f"http://localhost:{self.port}"
        return f"{base.rstrip('/')}/health"

    @property
    def games_file(self) -> Path:
        return self.data_dir / "games.json"

    @property
    def snapshot_file(self) -> Path:
        return self.data_dir / "registrations.csv"

    @property
    def snapshot_backup_dir(self) -> Path:
        return self.data_dir / "backups"

    @property
    def schedule_log_file(self) -> Path:
        return self.data_dir / "schedule.log"


@lru_cache
def get_settings() -> LineBotSettings:
    """Get cached settings instance"""
    return LineBotSettings()  # type: ignore[call-arg]
