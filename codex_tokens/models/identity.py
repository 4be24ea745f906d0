"""
Identity model — one reconciled Codex account.

Design notes:
  • Fields are never NULL; an unknown value is stored as "" so that
    reconciliation can test "is this field missing" with a single check.
  • (email, account_id) is unique: the same email may legitimately hold
    several workspaces, each with its own account id.
  • is_active marks the identity currently written to auth.json. At most one
    row is active; only storage.set_identity_active() may change it.
"""

import datetime

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from codex_tokens.core.database import Base, UTCDateTime, utcnow


class Identity(Base):
    """A person/account derived from credential claims."""

    __tablename__ = "identities"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True,
    )
    email: Mapped[str] = mapped_column(
        String(320), nullable=False, default="",
    )
    account_id: Mapped[str] = mapped_column(
        String(255), nullable=False, default="",
    )
    user_id: Mapped[str] = mapped_column(
        String(255), nullable=False, default="",
    )
    plan_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="0",
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow,
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("email", "account_id", name="uq_identities_email_account"),
        Index("ix_identities_email", "email"),
        Index("ix_identities_account_id", "account_id"),
        Index("ix_identities_is_active", "is_active"),
    )

    @property
    def label(self) -> str:
        """Human-readable name: email, else account id, else #id."""
        return self.email or self.account_id or f"#{self.id}"

    def __repr__(self) -> str:
        return (
            f"<Identity id={self.id} email={self.email!r} "
            f"plan={self.plan_type!r} active={self.is_active}>"
        )
