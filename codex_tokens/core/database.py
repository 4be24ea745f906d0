"""
Async database engine, session factory, ORM base and time helpers.

Rules enforced:
  • Every DB call goes through AsyncSession.
  • One engine per CLI invocation; sessions are scoped to a single command.
  • The declarative Base is shared across all models so Alembic can
    auto-detect schema changes from a single metadata object.
  • Every datetime column stores UTC and reads back timezone-aware UTC.
"""

import datetime

from sqlalchemy import DateTime, event
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


# ── Time helpers ────────────────────────────────────────────
def utcnow() -> datetime.datetime:
    """Current wall-clock time, timezone-aware UTC."""
    return datetime.datetime.now(datetime.timezone.utc)


def to_utc(value: datetime.datetime) -> datetime.datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are taken to already be UTC (that is how the store writes
    them); aware values in any other offset are converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that always round-trips as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(
        self, value: datetime.datetime | None, dialect: Dialect,
    ) -> datetime.datetime | None:
        if value is None:
            return None
        return to_utc(value).replace(tzinfo=None)

    def process_result_value(
        self, value: datetime.datetime | None, dialect: Dialect,
    ) -> datetime.datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=datetime.timezone.utc)


# ── ORM Base ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy models."""


# ── Engine ──────────────────────────────────────────────────
def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Build the async engine for one store.

    SQLite only enforces ON DELETE CASCADE when foreign keys are switched
    on per connection, so the pragma is issued on every connect.
    """
    engine = create_async_engine(url, echo=echo)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


# ── Session factory ─────────────────────────────────────────
def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # avoid lazy-load issues after commit
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables (first-run bootstrap)."""
    # Import all models so Base.metadata is fully populated
    import codex_tokens.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
