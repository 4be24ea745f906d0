"""
Startup maintenance sweep — deduplicate versions, repair current flags.

IDEMPOTENCY:
  Versions are ordered newest-content-first by
  (last_refresh, created_at, version_number). The first version seen for
  each token triple survives; later duplicates are deleted. When the
  survivors carry no current flag, or more than one, the first survivor is
  made the single current version. A lone flag is left where it is, so a
  promotion or rollback from an earlier run is not undone.
  A second run therefore finds nothing to delete and nothing to repair.

Runs once per CLI invocation before any command. A failure here is fatal:
every other command relies on "at most one current version per identity".
"""

import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from codex_tokens.core.database import to_utc
from codex_tokens.models.token_version import TokenVersion
from codex_tokens.services import storage

logger = logging.getLogger(__name__)


def freshness_key(version: TokenVersion) -> tuple[datetime.datetime, datetime.datetime, int]:
    """Sort key; larger means newer semantic content."""
    return (
        to_utc(version.last_refresh),
        to_utc(version.created_at),
        version.version_number,
    )


async def deduplicate_and_fix_current_versions(session: AsyncSession) -> int:
    """
    Sweep every identity.

    Returns:
        Number of duplicate version rows deleted.
    """
    deleted = 0
    repaired = 0

    for identity in await storage.list_identities(session):
        versions = await storage.list_versions(session, identity.id)
        if not versions:
            continue

        ordered = sorted(versions, key=freshness_key, reverse=True)

        survivors: list[TokenVersion] = []
        seen: set[tuple[str, str, str]] = set()
        duplicates: list[TokenVersion] = []
        for version in ordered:
            if version.token_triple in seen:
                duplicates.append(version)
            else:
                seen.add(version.token_triple)
                survivors.append(version)

        try:
            for version in duplicates:
                await storage.delete_version(session, version.id)

            rightful = survivors[0]
            flagged = [v for v in survivors if v.is_current]
            if len(flagged) != 1:
                await storage.set_version_current(session, identity.id, rightful.id)
                repaired += 1
                logger.info(
                    "Identity %s: v%d set as current version",
                    identity.id, rightful.version_number,
                )
            elif duplicates:
                await session.commit()
        except Exception:
            await session.rollback()
            raise

        if duplicates:
            deleted += len(duplicates)
            logger.info(
                "Identity %s: removed %d duplicate version(s)",
                identity.id, len(duplicates),
            )

    if deleted or repaired:
        logger.info(
            "Maintenance sweep: %d duplicate(s) deleted, %d identit(ies) repaired",
            deleted, repaired,
        )
    return deleted
