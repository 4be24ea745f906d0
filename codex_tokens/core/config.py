"""
Application settings loaded from environment variables.

Uses pydantic-settings so that every config value is validated at startup.
The CLI builds one Settings instance per invocation; nothing here is cached
across processes.

Environments:
  • prod — store under DATA_DIR, credentials under CODEX_HOME (~/.codex)
  • dev  — everything isolated under "<DATA_DIR>-dev", including a private
           .codex folder, so experiments never touch the real auth.json
"""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ─────────────────────────────────────────
    ENVIRONMENT: Literal["prod", "dev"] = "prod"
    DEBUG: bool = False
    LOG_LEVEL: str = "WARNING"

    # ── Locations ───────────────────────────────────────────
    DATA_DIR: Path = Path.home() / ".codex-manager"
    CODEX_HOME: Path | None = None

    # Empty means "derive a SQLite URL from DATA_DIR".
    DATABASE_URL: str = ""

    # ── Usage stats helper ──────────────────────────────────
    CODEX_COMMAND: str = "codex"
    STATS_TIMEOUT_SECONDS: float = 30.0

    # ── Backups ─────────────────────────────────────────────
    BACKUP_KEEP_COUNT: int = 10

    @property
    def is_dev(self) -> bool:
        return self.ENVIRONMENT == "dev"

    @property
    def base_dir(self) -> Path:
        base = self.DATA_DIR.expanduser()
        if self.is_dev:
            base = base.with_name(base.name + "-dev")
        return base

    @property
    def database_path(self) -> Path:
        name = "tokens-dev.db" if self.is_dev else "tokens.db"
        return self.base_dir / name

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite+aiosqlite:///{self.database_path}"

    @property
    def backup_dir(self) -> Path:
        return self.base_dir / "backups"

    @property
    def codex_dir(self) -> Path:
        if self.CODEX_HOME is not None:
            return self.CODEX_HOME.expanduser()
        if self.is_dev:
            return self.base_dir / ".codex"
        return Path.home() / ".codex"

    @property
    def active_auth_path(self) -> Path:
        return self.codex_dir / "auth.json"

    @property
    def sessions_dir(self) -> Path:
        return self.codex_dir / "sessions"

    def ensure_directories(self) -> None:
        """Create the data and backup folders if missing."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
