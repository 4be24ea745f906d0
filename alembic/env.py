"""
Alembic migration environment — async variant for the SQLite token store.

Key design:
  • DB URL comes from codex_tokens.core.config (single source of truth),
    NOT from alembic.ini, so dev and prod stores resolve the same way the
    CLI resolves them.
  • target_metadata points to Base.metadata so `alembic revision
    --autogenerate` can diff the ORM models against the live schema.
  • SQLite cannot ALTER most constraints in place, so both modes render
    batch operations (copy-and-move table rebuilds).
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from codex_tokens.core.config import Settings
from codex_tokens.core.database import Base

# Import all models so Base.metadata is fully populated
import codex_tokens.models  # noqa: F401

config = context.config

# The store folder must exist before SQLite can create the file
settings = Settings()
settings.ensure_directories()
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(**kwargs) -> None:  # type: ignore[no-untyped-def]
    """Shared context options for both modes."""
    context.configure(
        target_metadata=target_metadata,
        render_as_batch=True,
        compare_type=True,
        **kwargs,
    )


# ── Offline mode ────────────────────────────────────────────
def run_migrations_offline() -> None:
    """Emit the migration SQL for the configured store without connecting."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


# ── Online mode ─────────────────────────────────────────────
def do_run_migrations(connection) -> None:  # type: ignore[no-untyped-def]
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Open an aiosqlite engine (no pooling) and migrate over one connection."""
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
