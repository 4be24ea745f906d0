"""
Identity reconciliation — map decoded claims onto a stored identity.

Lookup order:
  1. exact email match (when the credential carries an email)
  2. exact account-id match (when the email lookup found nothing)
  3. otherwise a new, inactive identity is created

Merging rules for a matched identity:
  • email / account_id / user_id / plan_type are only FILLED when the stored
    value is blank; a partial credential never erases a known field.
  • plan_type is the exception: a non-empty incoming plan that differs from
    the stored one overwrites it (plan upgrades/downgrades are account
    state, not token identity).

Nothing here commits. The token engine owns the unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from codex_tokens.core.database import utcnow
from codex_tokens.models.identity import Identity
from codex_tokens.schemas.credential import JwtMetadata
from codex_tokens.services import storage

logger = logging.getLogger(__name__)

_BACKFILL_FIELDS = ("email", "account_id", "user_id", "plan_type")


@dataclass(frozen=True, slots=True)
class Reconciliation:
    """Outcome of matching a credential to an identity."""

    identity: Identity
    was_created: bool
    fields_updated: bool


async def find_identity(session: AsyncSession, metadata: JwtMetadata) -> Identity | None:
    """
    Email first, then account id.

    A credential carrying neither key maps onto the one identity stored
    with both keys blank, so repeated anonymous imports share it.
    """
    if not metadata.email and not metadata.account_id:
        return await storage.get_identity_by_keys(session, "", "")

    identity = None
    if metadata.email:
        identity = await storage.get_identity_by_email(session, metadata.email)
    if identity is None and metadata.account_id:
        identity = await storage.get_identity_by_account_id(session, metadata.account_id)
    return identity


def merge_metadata(identity: Identity, metadata: JwtMetadata) -> bool:
    """
    Backfill blank fields and apply plan changes in place.

    Returns True when anything on the identity changed.
    """
    updated = False

    for field in _BACKFILL_FIELDS:
        incoming = getattr(metadata, field)
        stored = getattr(identity, field) or ""
        if incoming and not stored.strip():
            setattr(identity, field, incoming)
            updated = True

    if metadata.plan_type and metadata.plan_type != identity.plan_type:
        logger.info(
            "Plan for identity %s changed: %r -> %r",
            identity.id, identity.plan_type, metadata.plan_type,
        )
        identity.plan_type = metadata.plan_type
        updated = True

    if updated:
        identity.updated_at = utcnow()
    return updated


async def reconcile_identity(
    session: AsyncSession,
    metadata: JwtMetadata,
) -> Reconciliation:
    """
    Find or create the identity a credential belongs to.

    Changes are flushed to the session but not committed.
    """
    identity = await find_identity(session, metadata)

    if identity is None:
        identity = await storage.create_identity(
            session,
            email=metadata.email,
            account_id=metadata.account_id,
            user_id=metadata.user_id,
            plan_type=metadata.plan_type,
        )
        logger.info("Created identity %s (%s)", identity.id, identity.label)
        return Reconciliation(identity=identity, was_created=True, fields_updated=False)

    updated = merge_metadata(identity, metadata)
    if updated:
        await session.flush()
    return Reconciliation(identity=identity, was_created=False, fields_updated=updated)
