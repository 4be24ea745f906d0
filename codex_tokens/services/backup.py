"""
Store backups.

Backups are plain byte copies of the SQLite file taken before every
mutating command. The source is opened with an ordinary read handle, which
shares with the live connection, so a backup never blocks or disturbs the
store in use. Only the newest BACKUP_KEEP_COUNT files are retained.
"""

import datetime
import logging
import os
import shutil
from pathlib import Path

from sqlalchemy.engine import make_url

from codex_tokens.core.config import Settings
from codex_tokens.core.errors import NotFoundError

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "tokens-backup-"
BACKUP_PATTERN = f"{BACKUP_PREFIX}*.db"


def store_file(settings: Settings) -> Path | None:
    """The SQLite file behind database_url; None for in-memory stores."""
    database = make_url(settings.database_url).database
    if not database or database == ":memory:":
        return None
    return Path(database)


def create_backup(settings: Settings) -> Path:
    """
    Copy the store into the backup folder.

    Raises:
        NotFoundError: the store file does not exist yet.
    """
    source = store_file(settings)
    if source is None:
        raise NotFoundError(f"Store has no database file to back up: {settings.database_url}")
    if not source.exists():
        raise NotFoundError(f"Database file not found: {source}")

    settings.backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d-%H%M%S")
    destination = settings.backup_dir / f"{BACKUP_PREFIX}{stamp}.db"

    with open(source, "rb") as src, open(destination, "wb") as dst:
        shutil.copyfileobj(src, dst)
        dst.flush()
        os.fsync(dst.fileno())

    logger.info("Backup written to %s", destination)
    prune_backups(settings)
    return destination


def list_backups(settings: Settings) -> list[Path]:
    """Backup files, newest first (names sort chronologically)."""
    if not settings.backup_dir.is_dir():
        return []
    return sorted(settings.backup_dir.glob(BACKUP_PATTERN), reverse=True)


def prune_backups(settings: Settings) -> list[Path]:
    """Delete all but the newest BACKUP_KEEP_COUNT backups; returns what went."""
    stale = list_backups(settings)[settings.BACKUP_KEEP_COUNT:]
    removed = []
    for path in stale:
        try:
            path.unlink()
            removed.append(path)
        except OSError as exc:
            logger.warning("Could not remove old backup %s: %s", path, exc)
    return removed
