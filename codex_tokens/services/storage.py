"""
Storage layer — reads, writes and atomic flag swaps for the three tables.

Transaction rules:
  • create_identity / create_version only add + flush (the row gets an id but
    nothing is committed). The calling engine decides when its unit of work
    ends, usually by calling set_exclusive_flag().
  • set_exclusive_flag() is the ONLY way to change is_active / is_current.
    It clears the flag across its scope and sets it on the target in one
    transaction, committing everything pending in the session with it. Any
    failure rolls the whole session back and re-raises.
  • delete_identity and create_usage_stats commit themselves; delete_version
    leaves the commit to the maintenance sweep that batches it.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codex_tokens.core.database import Base, utcnow
from codex_tokens.core.errors import NotFoundError
from codex_tokens.models.identity import Identity
from codex_tokens.models.token_version import TokenVersion
from codex_tokens.models.usage_stats import UsageStats
from codex_tokens.schemas.usage import UsageStatsCreate

logger = logging.getLogger(__name__)


# ── Exclusive flags ─────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class FlagScope:
    """
    Where an exclusive boolean flag lives.

    Attributes:
        model:     ORM class holding the flag.
        flag:      Boolean column name.
        partition: Column that groups rows into independent scopes
                   (None = the whole table is one scope).
    """

    model: type[Base]
    flag: str
    partition: str | None = None


IDENTITY_ACTIVE = FlagScope(model=Identity, flag="is_active")
VERSION_CURRENT = FlagScope(model=TokenVersion, flag="is_current", partition="identity_id")


async def set_exclusive_flag(
    session: AsyncSession,
    scope: FlagScope,
    target_id: int,
    scope_key: int | None = None,
) -> None:
    """
    Make target_id the single flagged row within its scope.

    Clear-then-set runs inside one transaction. If the target is not a row
    of the scope (unknown id, or a version of another identity) nothing is
    changed and NotFoundError is raised.
    """
    model = scope.model
    in_scope = [model.id == target_id]
    clear_stmt = update(model).values({scope.flag: False})

    if scope.partition is not None:
        if scope_key is None:
            raise ValueError(f"{model.__tablename__}.{scope.flag} needs a scope key")
        partition_column = getattr(model, scope.partition)
        in_scope.append(partition_column == scope_key)
        clear_stmt = clear_stmt.where(partition_column == scope_key)

    set_stmt = update(model).where(*in_scope).values({scope.flag: True})
    sync = {"synchronize_session": "evaluate"}

    try:
        found = await session.execute(select(model.id).where(*in_scope))
        if found.scalar_one_or_none() is None:
            raise NotFoundError(
                f"{model.__tablename__} row {target_id} not found"
                + (f" in scope {scope_key}" if scope_key is not None else "")
            )
        await session.execute(clear_stmt, execution_options=sync)
        await session.execute(set_stmt, execution_options=sync)
        await session.commit()
    except Exception:
        await session.rollback()
        raise


async def set_identity_active(session: AsyncSession, identity_id: int) -> None:
    """Mark one identity active and every other identity inactive."""
    await set_exclusive_flag(session, IDENTITY_ACTIVE, identity_id)
    logger.info("Identity %s is now active", identity_id)


async def set_version_current(
    session: AsyncSession,
    identity_id: int,
    version_id: int,
) -> None:
    """Mark one version current within its identity."""
    await set_exclusive_flag(session, VERSION_CURRENT, version_id, scope_key=identity_id)


# ── Identities ──────────────────────────────────────────────
async def get_identity(session: AsyncSession, identity_id: int) -> Identity | None:
    return await session.get(Identity, identity_id)


async def get_identity_by_email(session: AsyncSession, email: str) -> Identity | None:
    stmt = select(Identity).where(Identity.email == email).order_by(Identity.id).limit(1)
    return (await session.execute(stmt)).scalars().first()


async def get_identity_by_account_id(
    session: AsyncSession,
    account_id: str,
) -> Identity | None:
    stmt = (
        select(Identity)
        .where(Identity.account_id == account_id)
        .order_by(Identity.id)
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_identity_by_keys(
    session: AsyncSession,
    email: str,
    account_id: str,
) -> Identity | None:
    """Exact match on the unique (email, account_id) pair."""
    stmt = select(Identity).where(
        Identity.email == email, Identity.account_id == account_id,
    )
    return (await session.execute(stmt)).scalars().first()


async def get_active_identity(session: AsyncSession) -> Identity | None:
    stmt = select(Identity).where(Identity.is_active.is_(True)).order_by(Identity.id).limit(1)
    return (await session.execute(stmt)).scalars().first()


async def list_identities(session: AsyncSession) -> list[Identity]:
    stmt = select(Identity).order_by(Identity.email, Identity.id)
    return list((await session.execute(stmt)).scalars().all())


async def create_identity(
    session: AsyncSession,
    *,
    email: str = "",
    account_id: str = "",
    user_id: str = "",
    plan_type: str = "",
) -> Identity:
    """Add an inactive identity and flush it so it has an id."""
    now = utcnow()
    identity = Identity(
        email=email,
        account_id=account_id,
        user_id=user_id,
        plan_type=plan_type,
        is_active=False,
        created_at=now,
        updated_at=now,
    )
    session.add(identity)
    await session.flush()
    return identity


async def delete_identity(session: AsyncSession, identity_id: int) -> bool:
    """
    Delete an identity; its versions and stats go with it (FK cascade).

    Returns False when no such identity existed.
    """
    try:
        result = await session.execute(
            delete(Identity).where(Identity.id == identity_id)
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return result.rowcount > 0


# ── Token versions ──────────────────────────────────────────
async def get_version(session: AsyncSession, version_id: int) -> TokenVersion | None:
    return await session.get(TokenVersion, version_id)


async def get_current_version(
    session: AsyncSession,
    identity_id: int,
) -> TokenVersion | None:
    """
    The version flagged current for an identity.

    If an inconsistent store has several flagged rows, the highest version
    number wins; the maintenance sweep repairs such stores at startup.
    """
    stmt = (
        select(TokenVersion)
        .where(
            TokenVersion.identity_id == identity_id,
            TokenVersion.is_current.is_(True),
        )
        .order_by(TokenVersion.version_number.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def list_versions(session: AsyncSession, identity_id: int) -> list[TokenVersion]:
    """All versions of an identity, newest version number first."""
    stmt = (
        select(TokenVersion)
        .where(TokenVersion.identity_id == identity_id)
        .order_by(TokenVersion.version_number.desc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def find_version_by_tokens(
    session: AsyncSession,
    identity_id: int,
    triple: tuple[str, str, str],
) -> TokenVersion | None:
    """Newest version of an identity holding exactly this token triple."""
    id_token, access_token, refresh_token = triple
    stmt = (
        select(TokenVersion)
        .where(
            TokenVersion.identity_id == identity_id,
            TokenVersion.id_token == id_token,
            TokenVersion.access_token == access_token,
            TokenVersion.refresh_token == refresh_token,
        )
        .order_by(TokenVersion.version_number.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def next_version_number(session: AsyncSession, identity_id: int) -> int:
    """max(version_number) + 1 for the identity; 1 when it has none."""
    stmt = select(func.coalesce(func.max(TokenVersion.version_number), 0)).where(
        TokenVersion.identity_id == identity_id
    )
    return int((await session.execute(stmt)).scalar_one()) + 1


async def create_version(
    session: AsyncSession,
    *,
    identity_id: int,
    id_token: str,
    access_token: str,
    refresh_token: str,
    account_id: str,
    openai_api_key: str | None,
    last_refresh: datetime.datetime,
) -> TokenVersion:
    """
    Add the next numbered version (not current) and flush it.

    The caller promotes it with set_version_current(), which also commits.
    """
    version = TokenVersion(
        identity_id=identity_id,
        version_number=await next_version_number(session, identity_id),
        id_token=id_token,
        access_token=access_token,
        refresh_token=refresh_token,
        account_id=account_id,
        openai_api_key=openai_api_key,
        last_refresh=last_refresh,
        created_at=utcnow(),
        is_current=False,
    )
    session.add(version)
    await session.flush()
    return version


async def delete_version(session: AsyncSession, version_id: int) -> None:
    await session.execute(delete(TokenVersion).where(TokenVersion.id == version_id))


# ── Usage stats ─────────────────────────────────────────────
async def create_usage_stats(session: AsyncSession, stats: UsageStatsCreate) -> UsageStats:
    row = UsageStats(**stats.model_dump())
    try:
        session.add(row)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return row


async def get_latest_usage_stats(
    session: AsyncSession,
    identity_id: int,
) -> UsageStats | None:
    history = await get_usage_stats_history(session, identity_id, limit=1)
    return history[0] if history else None


async def get_usage_stats_history(
    session: AsyncSession,
    identity_id: int,
    limit: int = 10,
) -> list[UsageStats]:
    stmt = (
        select(UsageStats)
        .where(UsageStats.identity_id == identity_id)
        .order_by(UsageStats.captured_at.desc(), UsageStats.id.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())
