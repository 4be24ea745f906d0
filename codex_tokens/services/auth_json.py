"""
auth.json reader/writer and import-folder scanner.

The active credential lives at <CODEX_HOME>/auth.json. Exported credentials
to import sit next to it under any name ending in "auth.json"
(e.g. "work-auth.json").
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from codex_tokens.core.config import Settings
from codex_tokens.core.errors import NotFoundError, ValidationError
from codex_tokens.schemas.credential import AuthToken

logger = logging.getLogger(__name__)

AUTH_FILE_PATTERN = "*auth.json"


def scan_for_auth_files(folder: Path) -> list[Path]:
    """Every *auth.json file directly inside folder, sorted by name."""
    if not folder.is_dir():
        return []
    return sorted(p for p in folder.glob(AUTH_FILE_PATTERN) if p.is_file())


def read_auth_token(path: Path) -> AuthToken:
    """
    Parse a credential file.

    Raises:
        NotFoundError:   the file does not exist.
        ValidationError: the file is unreadable, not UTF-8, or not a valid
                         credential document.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise NotFoundError(f"Credential file not found: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Unreadable credential file {path.name}: {exc}") from exc

    try:
        return AuthToken.model_validate_json(content)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid credential file {path.name}: {exc.error_count()} error(s)") from exc


def write_auth_token(path: Path, auth_token: AuthToken) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(auth_token.to_json() + "\n", encoding="utf-8")
    logger.debug("Wrote credential to %s", path)


def read_active_auth_token(settings: Settings) -> AuthToken | None:
    """The live auth.json, or None when there is none."""
    if not settings.active_auth_path.exists():
        return None
    return read_auth_token(settings.active_auth_path)


def write_active_auth_token(settings: Settings, auth_token: AuthToken) -> None:
    write_auth_token(settings.active_auth_path, auth_token)
