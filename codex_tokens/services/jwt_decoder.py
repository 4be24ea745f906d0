"""
Credential decoder — reads identity metadata out of an id_token.

The token is NOT verified: PyJWT decodes it with signature and claim
checks switched off, so only the claims payload is read. Signature checking is the issuer's job; here the
claims only tell us WHO a credential belongs to.

Claim shapes seen in the wild:
  • nested   — one vendor claim ("https://api.openai.com/auth") whose value
               is an object (or a JSON string) holding chatgpt_* fields
  • flattened — the same fields as individual claims whose names merely
               CONTAIN a recognizable substring (e.g. "...account_id")

Extraction is an ordered list of strategies. Each returns partial metadata;
results are merged with "first non-empty wins", so the nested form is
authoritative and the substring scan only fills gaps.
"""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Callable
from typing import Any

import jwt

from codex_tokens.core.errors import DecodeError
from codex_tokens.schemas.credential import JwtMetadata

logger = logging.getLogger(__name__)

AUTH_CLAIM = "https://api.openai.com/auth"

# metadata field -> claim-name substrings, checked in this order
_FIELD_MARKERS: dict[str, tuple[str, ...]] = {
    "account_id": ("account_id",),
    "user_id": ("chatgpt_user_id", "user_id"),
    "plan_type": ("plan_type",),
    "subscription_active_start": ("subscription_active_start",),
    "subscription_active_until": ("subscription_active_until",),
}

_DATE_FIELDS = {"subscription_active_start", "subscription_active_until"}

# Read-only decode: no key, and no exp/iat/aud checks on old credentials.
_UNVERIFIED = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}

Strategy = Callable[[dict[str, Any]], dict[str, Any]]


# ── Token decoding ──────────────────────────────────────────
def _decode_claims(token: str) -> dict[str, Any]:
    if token.count(".") != 2:
        raise DecodeError("Credential is not a three-part signed token")
    try:
        claims = jwt.decode(token, options=_UNVERIFIED)
    except jwt.InvalidTokenError as exc:
        raise DecodeError(f"Credential is not a decodable token: {exc}") from exc
    if not isinstance(claims, dict):
        raise DecodeError("Claims segment is not a JSON object")
    return claims


def _parse_epoch(claims: dict[str, Any], name: str) -> datetime.datetime:
    value = claims.get(name)
    if value is None or isinstance(value, bool):
        raise DecodeError(f"Required claim '{name}' is missing")
    try:
        return datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise DecodeError(f"Claim '{name}' is not a unix timestamp") from exc


def _parse_date(value: Any) -> datetime.datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=datetime.timezone.utc)
        return parsed
    return None


def _field_value(field: str, value: Any) -> Any:
    if field in _DATE_FIELDS:
        return _parse_date(value)
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    return None


# ── Strategies ──────────────────────────────────────────────
def _standard_claims(claims: dict[str, Any]) -> dict[str, Any]:
    """Registered/OIDC claims: email and email_verified."""
    found: dict[str, Any] = {}
    email = claims.get("email")
    if isinstance(email, str):
        found["email"] = email
    verified = claims.get("email_verified")
    if isinstance(verified, bool):
        found["email_verified"] = verified
    elif isinstance(verified, str):
        found["email_verified"] = verified.lower() == "true"
    return found


def _nested_auth_claim(claims: dict[str, Any]) -> dict[str, Any]:
    """The vendor claim holding an embedded object of chatgpt_* fields."""
    nested = claims.get(AUTH_CLAIM)
    if isinstance(nested, str):
        try:
            nested = json.loads(nested)
        except ValueError:
            return {}
    if not isinstance(nested, dict):
        return {}

    found: dict[str, Any] = {}
    for field, markers in _FIELD_MARKERS.items():
        for key in (f"chatgpt_{markers[-1]}", markers[-1]):
            if key in nested:
                value = _field_value(field, nested[key])
                if value:
                    found[field] = value
                    break
    return found


def _flattened_claims(claims: dict[str, Any]) -> dict[str, Any]:
    """Any top-level claim whose NAME contains a known substring."""
    found: dict[str, Any] = {}
    for name, raw in claims.items():
        field = next(
            (f for f, markers in _FIELD_MARKERS.items() if any(m in name for m in markers)),
            None,
        )
        if field is None or field in found:
            continue
        value = _field_value(field, raw)
        if value:
            found[field] = value
    return found


STRATEGIES: tuple[Strategy, ...] = (
    _standard_claims,
    _nested_auth_claim,
    _flattened_claims,
)


def _merge(partials: list[dict[str, Any]]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for partial in partials:
        for field, value in partial.items():
            if not merged.get(field):
                merged[field] = value
    return merged


# ── Public API ──────────────────────────────────────────────
def decode_id_token(id_token: str) -> JwtMetadata:
    """
    Extract identity metadata from an id_token.

    Raises:
        DecodeError: malformed token, non-JSON claims, or missing/unparsable
                     "iat" / "exp" claims.
    """
    claims = _decode_claims(id_token)
    issued_at = _parse_epoch(claims, "iat")
    expires_at = _parse_epoch(claims, "exp")

    fields = _merge([strategy(claims) for strategy in STRATEGIES])
    return JwtMetadata(issued_at=issued_at, expires_at=expires_at, **fields)


def try_decode_id_token(id_token: str) -> JwtMetadata | None:
    """decode_id_token() for callers that skip bad entries; None on failure."""
    try:
        return decode_id_token(id_token)
    except DecodeError as exc:
        logger.debug("Skipping undecodable id_token: %s", exc)
        return None
