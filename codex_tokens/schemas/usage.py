"""
Pydantic v2 schema for recording usage-limit statistics.

Both capture paths (helper process and manual entry) produce a
UsageStatsCreate; only storage turns it into an ORM row.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from codex_tokens.core.database import utcnow


class UsageStatsCreate(BaseModel):
    """One rate-limit snapshot for an identity."""

    model_config = ConfigDict(extra="forbid")

    identity_id: int = Field(..., ge=1)
    five_hour_limit_percent: int = Field(
        ...,
        ge=0,
        le=100,
        description="Share of the rolling five-hour limit already used.",
    )
    five_hour_limit_reset_time: datetime
    weekly_limit_percent: int = Field(
        ...,
        ge=0,
        le=100,
        description="Share of the weekly limit already used.",
    )
    weekly_limit_reset_time: datetime
    captured_at: datetime = Field(default_factory=utcnow)
