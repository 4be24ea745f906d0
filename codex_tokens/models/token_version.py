"""
TokenVersion model — one immutable snapshot of an identity's credential.

Design notes:
  • version_number starts at 1 per identity and only grows;
    (identity_id, version_number) is unique.
  • Rows are written once. Corrections (rollback, re-import of old content)
    insert a new row instead of editing an old one; the only column that
    ever changes after insert is is_current.
  • last_refresh is the credential's own freshness marker, distinct from
    created_at (when this row was written).
  • Deleting the owning identity cascades to its versions.
"""

import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from codex_tokens.core.database import Base, UTCDateTime, utcnow


class TokenVersion(Base):
    """Numbered credential snapshot for one identity."""

    __tablename__ = "token_versions"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True,
    )
    identity_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("identities.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Token triple ────────────────────────────────────────
    id_token: Mapped[str] = mapped_column(Text, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Credential metadata ─────────────────────────────────
    account_id: Mapped[str] = mapped_column(
        String(255), nullable=False, default="",
    )
    openai_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_refresh: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow,
    )
    is_current: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="0",
    )

    __table_args__ = (
        UniqueConstraint(
            "identity_id", "version_number", name="uq_token_versions_identity_number",
        ),
        Index("ix_token_versions_identity_id", "identity_id"),
        Index("ix_token_versions_is_current", "is_current"),
    )

    @property
    def token_triple(self) -> tuple[str, str, str]:
        return (self.id_token, self.access_token, self.refresh_token)

    def __repr__(self) -> str:
        return (
            f"<TokenVersion id={self.id} identity={self.identity_id} "
            f"v{self.version_number} current={self.is_current}>"
        )
