"""Tests for reading identity metadata out of id_tokens."""

import base64
import datetime
import json

import jwt
import pytest

from codex_tokens.core.errors import DecodeError
from codex_tokens.services.jwt_decoder import AUTH_CLAIM, decode_id_token, try_decode_id_token

from conftest import BASE_IAT, build_claims, build_id_token


class TestNestedClaims:
    def test_reads_vendor_claim_object(self):
        metadata = decode_id_token(build_id_token(build_claims()))

        assert metadata.email == "a@x.com"
        assert metadata.email_verified is True
        assert metadata.account_id == "acc1"
        assert metadata.user_id == "user-1"
        assert metadata.plan_type == "plus"

    def test_reads_vendor_claim_embedded_as_json_string(self):
        claims = build_claims()
        claims[AUTH_CLAIM] = json.dumps(claims[AUTH_CLAIM])

        metadata = decode_id_token(build_id_token(claims))

        assert metadata.account_id == "acc1"
        assert metadata.plan_type == "plus"

    def test_timestamps_are_utc(self):
        metadata = decode_id_token(build_id_token(build_claims()))

        assert metadata.issued_at == datetime.datetime.fromtimestamp(
            BASE_IAT, tz=datetime.timezone.utc,
        )
        assert metadata.expires_at - metadata.issued_at == datetime.timedelta(hours=1)

    def test_subscription_dates(self):
        claims = build_claims()
        claims[AUTH_CLAIM]["chatgpt_subscription_active_until"] = "2025-11-01T00:00:00Z"

        metadata = decode_id_token(build_id_token(claims))

        assert metadata.subscription_active_until == datetime.datetime(
            2025, 11, 1, tzinfo=datetime.timezone.utc,
        )
        assert metadata.subscription_active_start is None


class TestFlattenedClaims:
    def test_substring_match_on_claim_names(self):
        claims = {
            "email": "b@x.com",
            "iat": BASE_IAT,
            "exp": BASE_IAT + 60,
            "https://example.com/chatgpt_account_id": "acc-flat",
            "custom_plan_type": "pro",
        }

        metadata = decode_id_token(build_id_token(claims))

        assert metadata.account_id == "acc-flat"
        assert metadata.plan_type == "pro"
        assert metadata.user_id == ""

    def test_nested_form_wins_over_flattened(self):
        claims = build_claims(account_id="acc-nested")
        claims["legacy_account_id"] = "acc-flat"

        metadata = decode_id_token(build_id_token(claims))

        assert metadata.account_id == "acc-nested"

    def test_flattened_fills_gaps_left_by_nested(self):
        claims = build_claims(plan_type="")
        claims["x_plan_type"] = "team"

        metadata = decode_id_token(build_id_token(claims))

        assert metadata.plan_type == "team"
        assert metadata.account_id == "acc1"


class TestMalformedTokens:
    @pytest.mark.parametrize("token", ["", "only.two", "a.b.c.d"])
    def test_wrong_number_of_parts(self, token):
        with pytest.raises(DecodeError):
            decode_id_token(token)

    def test_claims_not_json(self):
        payload = base64.urlsafe_b64encode(b"not json").rstrip(b"=").decode()
        with pytest.raises(DecodeError):
            decode_id_token(f"h.{payload}.s")

    def test_claims_not_an_object(self):
        payload = base64.urlsafe_b64encode(b"[1, 2]").rstrip(b"=").decode()
        with pytest.raises(DecodeError):
            decode_id_token(f"h.{payload}.s")

    @pytest.mark.parametrize("missing", ["iat", "exp"])
    def test_required_timestamp_missing(self, missing):
        claims = build_claims()
        del claims[missing]
        with pytest.raises(DecodeError, match=missing):
            decode_id_token(build_id_token(claims))

    def test_try_decode_returns_none(self):
        assert try_decode_id_token("garbage") is None
        assert try_decode_id_token(build_id_token(build_claims())) is not None

    def test_signed_token_decodes_without_key(self):
        token = jwt.encode(
            build_claims(email="signed@x.com"),
            "issuer-signing-secret-0123456789abcdef",
            algorithm="HS256",
        )

        metadata = decode_id_token(token)

        assert metadata.email == "signed@x.com"
        assert metadata.account_id == "acc1"

    def test_expired_token_still_decodes(self):
        claims = build_claims(iat=1_000_000_000)

        metadata = decode_id_token(build_id_token(claims))

        assert metadata.expires_at.year == 2001


class TestSubscriptionDateOverflow:
    def test_out_of_range_epoch_is_ignored(self):
        claims = build_claims()
        claims["x_subscription_active_start"] = 1e20

        metadata = decode_id_token(build_id_token(claims))

        assert metadata.subscription_active_start is None
        assert metadata.account_id == "acc1"

    def test_try_decode_does_not_raise(self):
        claims = build_claims()
        claims[AUTH_CLAIM]["chatgpt_subscription_active_until"] = 1e20

        metadata = try_decode_id_token(build_id_token(claims))

        assert metadata is not None
        assert metadata.subscription_active_until is None
