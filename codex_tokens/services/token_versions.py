"""
Token version engine — decides what an imported credential means.

For each incoming credential, in this order:

  1. decode claims, reconcile the identity
  2. UNCHANGED     — triple equals the current version's: no new row
  3. PROMOTED      — triple equals an older version's: that row becomes
                     current again (no duplicate is inserted)
  4. STALE_IGNORED — credential is older than the current version's
                     last_refresh: nothing changes except identity metadata
  5. CREATED       — next version number, inserted and made current

The staleness check compares ONLY the credential timestamp against the
current version's last_refresh. created_at is not a tiebreaker here; the
maintenance sweep uses its own three-way ordering.

History is append-only. Rollback copies an old version into a brand-new
row rather than re-flagging or editing the old one.
"""

from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from codex_tokens.core.database import to_utc, utcnow
from codex_tokens.core.errors import NotFoundError, ValidationError
from codex_tokens.models.token_version import TokenVersion
from codex_tokens.schemas.credential import AuthToken, JwtMetadata, TokenData
from codex_tokens.services import storage
from codex_tokens.services.identities import Reconciliation, reconcile_identity
from codex_tokens.services.jwt_decoder import decode_id_token

logger = logging.getLogger(__name__)


class ImportOutcome(str, enum.Enum):
    CREATED = "created"
    UNCHANGED = "unchanged"
    PROMOTED = "promoted"
    STALE_IGNORED = "stale_ignored"


@dataclass(frozen=True, slots=True)
class ImportResult:
    """
    What import_or_update_token() did.

    Attributes:
        identity_id:     Identity the credential was matched to.
        version_id:      The version that is current afterwards.
        is_new_identity: True only when step 1 created the identity.
        outcome:         Which branch ran; STALE_IGNORED is a deliberate no-op.
    """

    identity_id: int
    version_id: int
    is_new_identity: bool
    outcome: ImportOutcome


def credential_timestamp(auth_token: AuthToken, metadata: JwtMetadata) -> datetime.datetime:
    """last_refresh if present, else the id_token's iat, else now (all UTC)."""
    if auth_token.last_refresh is not None:
        return to_utc(auth_token.last_refresh)
    if metadata.issued_at is not None:
        return to_utc(metadata.issued_at)
    return utcnow()


async def _persist_metadata(session: AsyncSession, reconciliation: Reconciliation) -> None:
    if reconciliation.fields_updated:
        await session.commit()


async def import_or_update_token(session: AsyncSession, auth_token: AuthToken) -> ImportResult:
    """
    Import one credential document.

    Raises:
        DecodeError: the id_token cannot be decoded (nothing is written).
    """
    metadata = decode_id_token(auth_token.tokens.id_token)

    try:
        reconciliation = await reconcile_identity(session, metadata)
        identity = reconciliation.identity
        current = await storage.get_current_version(session, identity.id)
        incoming_at = credential_timestamp(auth_token, metadata)
        triple = auth_token.tokens.triple

        # ── Same content as current ─────────────────────────
        if current is not None and current.token_triple == triple:
            await _persist_metadata(session, reconciliation)
            return ImportResult(identity.id, current.id, False, ImportOutcome.UNCHANGED)

        # ── Same content as an older version ────────────────
        existing = await storage.find_version_by_tokens(session, identity.id, triple)
        if existing is not None:
            await storage.set_version_current(session, identity.id, existing.id)
            logger.info(
                "Identity %s: re-imported content of v%d, promoted it to current",
                identity.id, existing.version_number,
            )
            return ImportResult(identity.id, existing.id, False, ImportOutcome.PROMOTED)

        # ── Older than what we already have ─────────────────
        if current is not None and incoming_at < to_utc(current.last_refresh):
            await _persist_metadata(session, reconciliation)
            logger.info(
                "Identity %s: ignored stale credential (%s < current v%d at %s)",
                identity.id, incoming_at.isoformat(),
                current.version_number, to_utc(current.last_refresh).isoformat(),
            )
            return ImportResult(identity.id, current.id, False, ImportOutcome.STALE_IGNORED)

        # ── Genuinely new content ───────────────────────────
        version = await storage.create_version(
            session,
            identity_id=identity.id,
            id_token=auth_token.tokens.id_token,
            access_token=auth_token.tokens.access_token,
            refresh_token=auth_token.tokens.refresh_token,
            account_id=auth_token.tokens.account_id or metadata.account_id,
            openai_api_key=auth_token.openai_api_key,
            last_refresh=incoming_at,
        )
        identity.updated_at = utcnow()
        await storage.set_version_current(session, identity.id, version.id)
    except Exception:
        await session.rollback()
        raise

    logger.info("Identity %s: created v%d", identity.id, version.version_number)
    return ImportResult(
        identity.id, version.id, reconciliation.was_created, ImportOutcome.CREATED,
    )


async def rollback_to_version(
    session: AsyncSession,
    identity_id: int,
    version_id: int,
) -> int:
    """
    Make a copy of an old version the new current version.

    The copy keeps the target's tokens, account id, API key and last_refresh;
    only its number and created_at are new. The target row is untouched.

    Returns:
        The id of the newly inserted version.

    Raises:
        NotFoundError: version missing, or owned by a different identity.
    """
    target = await storage.get_version(session, version_id)
    if target is None or target.identity_id != identity_id:
        raise NotFoundError(
            f"Version {version_id} not found for identity {identity_id}"
        )

    try:
        restored = await storage.create_version(
            session,
            identity_id=identity_id,
            id_token=target.id_token,
            access_token=target.access_token,
            refresh_token=target.refresh_token,
            account_id=target.account_id,
            openai_api_key=target.openai_api_key,
            last_refresh=target.last_refresh,
        )
        await storage.set_version_current(session, identity_id, restored.id)
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Identity %s: rolled back to v%d as v%d",
        identity_id, target.version_number, restored.version_number,
    )
    return restored.id


async def pick_rollback_target(
    session: AsyncSession,
    identity_id: int,
    version_number: int | None = None,
) -> TokenVersion:
    """
    Resolve which version a rollback should restore.

    Defaults to the second-newest version number.

    Raises:
        ValidationError: fewer than two versions exist.
        NotFoundError:   the requested version number does not exist.
    """
    versions = await storage.list_versions(session, identity_id)
    if len(versions) < 2:
        raise ValidationError("Cannot rollback: only one version exists")

    if version_number is None:
        return versions[1]

    for version in versions:
        if version.version_number == version_number:
            return version
    raise NotFoundError(f"Version {version_number} not found")


async def get_current_token(session: AsyncSession, identity_id: int) -> AuthToken | None:
    """Rebuild the credential document of an identity's current version."""
    version = await storage.get_current_version(session, identity_id)
    if version is None:
        return None

    return AuthToken(
        openai_api_key=version.openai_api_key,
        tokens=TokenData(
            id_token=version.id_token,
            access_token=version.access_token,
            refresh_token=version.refresh_token,
            account_id=version.account_id,
        ),
        last_refresh=version.last_refresh,
    )
