"""
CLI runtime — per-invocation store lifecycle and shared command plumbing.

Lifecycle of every command:
  • On startup: create the data folders, open the engine, ensure the schema,
    run the maintenance sweep. A failed sweep aborts the command.
  • On shutdown: dispose the engine.

Exit codes: 0 on success, 1 on any CodexTokensError (not found, validation,
decode, stats capture), on a filesystem OSError, or on a partially failed
batch.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

from rich.console import Console
from rich.markup import escape
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codex_tokens.core.config import Settings
from codex_tokens.core.database import create_engine, create_session_factory, init_models
from codex_tokens.core.errors import CodexTokensError, NotFoundError, ValidationError
from codex_tokens.models.identity import Identity
from codex_tokens.services import auth_json, backup, storage
from codex_tokens.services.maintenance import deduplicate_and_fix_current_versions

console = Console(stderr=True)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


# ── Store lifecycle ─────────────────────────────────────────
@asynccontextmanager
async def open_store(settings: Settings) -> AsyncIterator[AsyncSession]:
    """Yield a session on a swept, schema-complete store."""
    settings.ensure_directories()
    engine = create_engine(settings.database_url, echo=settings.DEBUG)
    try:
        await init_models(engine)
        session_factory = create_session_factory(engine)
        async with session_factory() as session:
            try:
                await deduplicate_and_fix_current_versions(session)
            except SQLAlchemyError as exc:
                logger.exception("Startup maintenance failed")
                raise CodexTokensError(f"Startup maintenance failed: {exc}") from exc
            yield session
    finally:
        await engine.dispose()


def run(coro: Coroutine[Any, Any, int | None]) -> None:
    """Run one command coroutine; CodexTokensError or OSError becomes exit code 1."""
    try:
        exit_code = asyncio.run(coro)
    except (CodexTokensError, OSError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)


# ── Shared steps ────────────────────────────────────────────
def take_backup(settings: Settings, *, required: bool = True) -> None:
    """Back up the store before a mutating command."""
    try:
        path = backup.create_backup(settings)
    except NotFoundError:
        if required:
            raise
        logger.info("No store to back up yet")
        return
    console.print(f"[dim]Backup created: {path.name}[/dim]")


async def resolve_identity(
    session: AsyncSession,
    settings: Settings,
    identifier: str | None,
) -> Identity:
    """
    Map a user-supplied identifier onto an identity.

    digits -> id, anything else -> email, empty -> the identity whose account
    id matches the live auth.json, falling back to the stored active flag.

    Raises:
        NotFoundError: nothing matched.
    """
    if not identifier:
        identity = await _live_identity(session, settings)
        if identity is None:
            identity = await storage.get_active_identity(session)
        if identity is None:
            raise NotFoundError("No active identity found. Please specify an ID or email.")
        return identity

    if identifier.isdigit():
        identity = await storage.get_identity(session, int(identifier))
    else:
        identity = await storage.get_identity_by_email(session, identifier)
    if identity is None:
        raise NotFoundError(f"Identity not found: {identifier}")
    return identity


async def _live_identity(session: AsyncSession, settings: Settings) -> Identity | None:
    try:
        live = auth_json.read_active_auth_token(settings)
    except ValidationError as exc:
        logger.warning("Ignoring unreadable live auth.json: %s", exc)
        return None
    if live is None or not live.tokens.account_id:
        return None
    return await storage.get_identity_by_account_id(session, live.tokens.account_id)
