"""
Pydantic v2 schemas for the Codex credential document (auth.json).

Wire format (snake_case on the wire, API key in upper case):

    {
      "OPENAI_API_KEY": null,
      "tokens": {
        "id_token": "<jwt>",
        "access_token": "...",
        "refresh_token": "...",
        "account_id": "..."
      },
      "last_refresh": "2025-10-01T12:00:00Z"
    }

JwtMetadata is the decoded view of an id_token's claims. It is derived,
never persisted as-is.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer


# ── auth.json ───────────────────────────────────────────────
class TokenData(BaseModel):
    """The nested token object of a credential file."""

    model_config = ConfigDict(extra="ignore")

    id_token: str = Field(..., min_length=1)
    access_token: str = ""
    refresh_token: str = ""
    account_id: str = ""

    @property
    def triple(self) -> tuple[str, str, str]:
        return (self.id_token, self.access_token, self.refresh_token)


class AuthToken(BaseModel):
    """
    A complete credential document.

    last_refresh is optional on input: older exports omit it, in which case
    the engine falls back to the id_token's issued-at claim.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    tokens: TokenData
    last_refresh: datetime | None = None

    @field_serializer("last_refresh")
    def _serialize_last_refresh(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return value.isoformat().replace("+00:00", "Z")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


# ── Decoded claims ──────────────────────────────────────────
class JwtMetadata(BaseModel):
    """Identity metadata extracted from an id_token's claims payload."""

    email: str = ""
    email_verified: bool = False
    account_id: str = ""
    user_id: str = ""
    plan_type: str = ""
    subscription_active_start: datetime | None = None
    subscription_active_until: datetime | None = None
    issued_at: datetime
    expires_at: datetime
