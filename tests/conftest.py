"""
Pytest fixtures for codex-tokens tests.

Every test gets its own SQLite file under tmp_path plus a private codex
folder, so nothing touches the real ~/.codex.
"""

import base64
import datetime
import json
from collections.abc import AsyncIterator, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from codex_tokens.core.config import Settings
from codex_tokens.core.database import create_engine, create_session_factory, init_models
from codex_tokens.schemas.credential import AuthToken, TokenData
from codex_tokens.services.jwt_decoder import AUTH_CLAIM

UTC = datetime.timezone.utc
BASE_IAT = 1_760_000_000  # 2025-10-09T08:53:20Z


# ── Credential builders ─────────────────────────────────────
def _segment(obj: object) -> str:
    raw = json.dumps(obj).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def build_id_token(claims: dict) -> str:
    """Unsigned three-part token carrying the given claims."""
    return f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment(claims)}.sig"


def build_claims(
    email: str = "a@x.com",
    account_id: str = "acc1",
    user_id: str = "user-1",
    plan_type: str = "plus",
    iat: int = BASE_IAT,
) -> dict:
    return {
        "email": email,
        "email_verified": True,
        "iat": iat,
        "exp": iat + 3600,
        AUTH_CLAIM: {
            "chatgpt_account_id": account_id,
            "chatgpt_user_id": user_id,
            "chatgpt_plan_type": plan_type,
        },
    }


def build_auth_token(
    email: str = "a@x.com",
    account_id: str = "acc1",
    plan_type: str = "plus",
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    last_refresh: datetime.datetime | None = None,
    iat: int = BASE_IAT,
    file_account_id: str | None = None,
) -> AuthToken:
    claims = build_claims(email=email, account_id=account_id, plan_type=plan_type, iat=iat)
    return AuthToken(
        tokens=TokenData(
            id_token=build_id_token(claims),
            access_token=access_token,
            refresh_token=refresh_token,
            account_id=account_id if file_account_id is None else file_account_id,
        ),
        last_refresh=last_refresh,
    )


def at(day: int, hour: int = 12) -> datetime.datetime:
    """A fixed UTC instant in October 2025."""
    return datetime.datetime(2025, 10, day, hour, 0, tzinfo=UTC)


@pytest.fixture
def make_auth_token() -> Callable[..., AuthToken]:
    return build_auth_token


@pytest.fixture
def make_id_token() -> Callable[[dict], str]:
    return build_id_token


# ── Settings / store ────────────────────────────────────────
@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="prod",
        DATA_DIR=tmp_path / "data",
        CODEX_HOME=tmp_path / "codex",
        BACKUP_KEEP_COUNT=3,
        STATS_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    settings.ensure_directories()
    engine = create_engine(settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    async with create_session_factory(engine)() as session:
        yield session
