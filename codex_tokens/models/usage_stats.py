"""
UsageStats model — point-in-time rate-limit consumption for an identity.

Many rows per identity, ordered by captured_at; the newest one is what the
CLI shows. Percentages are whole numbers in 0..100.
"""

import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from codex_tokens.core.database import Base, UTCDateTime, utcnow


class UsageStats(Base):
    """Five-hour and weekly limit usage captured at one moment."""

    __tablename__ = "usage_stats"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True,
    )
    identity_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("identities.id", ondelete="CASCADE"),
        nullable=False,
    )
    five_hour_limit_percent: Mapped[int] = mapped_column(Integer, nullable=False)
    five_hour_limit_reset_time: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False,
    )
    weekly_limit_percent: Mapped[int] = mapped_column(Integer, nullable=False)
    weekly_limit_reset_time: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False,
    )
    captured_at: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "five_hour_limit_percent BETWEEN 0 AND 100",
            name="ck_five_hour_percent_range",
        ),
        CheckConstraint(
            "weekly_limit_percent BETWEEN 0 AND 100",
            name="ck_weekly_percent_range",
        ),
        Index("ix_usage_stats_identity_captured", "identity_id", "captured_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageStats identity={self.identity_id} "
            f"5h={self.five_hour_limit_percent}% weekly={self.weekly_limit_percent}%>"
        )
