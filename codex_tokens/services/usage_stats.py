"""
Usage stats capture — rate-limit snapshots for an identity.

Two sources:
  • helper process — the codex CLI is run once with the identity's credential
    swapped in as the live auth.json; it writes a session log (JSONL) whose
    token_count events carry the current rate limits.
  • manual entry   — the user reads the numbers off the codex /status screen
    and types them in; reset times arrive as "HH:MM" and "DD Mon".

Session log record of interest:

    {"type": "event_msg",
     "payload": {"type": "token_count",
                 "rate_limits": {"primary":   {"used_percent": 12.4, "resets_in_seconds": 3600},
                                 "secondary": {"used_percent": 40.0, "resets_in_seconds": 86400}}}}

primary is the rolling five-hour window, secondary the weekly one.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
import os
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from codex_tokens.core.config import Settings
from codex_tokens.core.database import to_utc, utcnow
from codex_tokens.core.errors import (
    CodexTokensError,
    StatsCaptureTimeout,
    StatsParseError,
    ValidationError,
)
from codex_tokens.schemas.credential import AuthToken
from codex_tokens.schemas.usage import UsageStatsCreate
from codex_tokens.services import auth_json

logger = logging.getLogger(__name__)

CODEX_STATUS_ARGS = ("exec", "--yolo", "--skip-git-repo-check", "hi")

# Time the helper gets to flush its session file after exiting.
SESSION_SETTLE_SECONDS = 0.5

Runner = Callable[[Settings], Awaitable[str]]


# ── Session log parsing ─────────────────────────────────────
def _rate_limits(line: str) -> dict[str, Any] | None:
    try:
        record = json.loads(line)
    except ValueError:
        return None
    if not isinstance(record, dict) or record.get("type") != "event_msg":
        return None
    payload = record.get("payload")
    if not isinstance(payload, dict) or payload.get("type") != "token_count":
        return None
    limits = payload.get("rate_limits")
    return limits if isinstance(limits, dict) else None


def _window(limits: dict[str, Any], name: str, now: datetime.datetime) -> tuple[int, datetime.datetime]:
    try:
        window = limits[name]
        percent = round(float(window["used_percent"]))
        resets_in = int(window["resets_in_seconds"])
    except (KeyError, TypeError, ValueError) as exc:
        raise StatsParseError(f"Rate-limit window '{name}' is incomplete") from exc
    return percent, now + datetime.timedelta(seconds=resets_in)


def parse_usage_stats(
    session_jsonl: str,
    identity_id: int,
    now: datetime.datetime | None = None,
) -> UsageStatsCreate:
    """
    Build a snapshot from the first token_count event in a session log.

    Lines that are not valid JSON, or not the record above, are skipped.

    Raises:
        StatsParseError: no usable rate-limit record in the log.
    """
    now = to_utc(now) if now is not None else utcnow()

    for line in session_jsonl.splitlines():
        if not line.strip():
            continue
        limits = _rate_limits(line)
        if limits is None:
            continue

        five_hour_percent, five_hour_reset = _window(limits, "primary", now)
        weekly_percent, weekly_reset = _window(limits, "secondary", now)
        return UsageStatsCreate(
            identity_id=identity_id,
            five_hour_limit_percent=five_hour_percent,
            five_hour_limit_reset_time=five_hour_reset,
            weekly_limit_percent=weekly_percent,
            weekly_limit_reset_time=weekly_reset,
            captured_at=now,
        )

    raise StatsParseError("No rate-limit record found in the codex session log")


# ── Helper process ──────────────────────────────────────────
def find_latest_session_file(settings: Settings, today: datetime.date | None = None) -> Path | None:
    """Newest *.jsonl under sessions/YYYY/MM/DD for today (local date)."""
    today = today or datetime.date.today()
    day_dir = settings.sessions_dir / f"{today:%Y}" / f"{today:%m}" / f"{today:%d}"
    if not day_dir.is_dir():
        return None
    files = sorted(day_dir.glob("*.jsonl"), key=lambda p: p.stat().st_mtime, reverse=True)
    return files[0] if files else None


async def run_codex_for_status(settings: Settings) -> str:
    """
    Run the codex CLI once and return the session log it wrote.

    Raises:
        StatsCaptureTimeout: the helper outlived STATS_TIMEOUT_SECONDS; it is
                             killed before this is raised.
        StatsParseError:     no session log for today was found.
        CodexTokensError:    the helper command could not be started.
    """
    argv = [*shlex.split(settings.CODEX_COMMAND), *CODEX_STATUS_ARGS]
    env = {**os.environ, "CODEX_HOME": str(settings.codex_dir)}

    logger.debug("Launching %s", argv)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except FileNotFoundError as exc:
        raise CodexTokensError(f"Codex command not found: {argv[0]}") from exc

    try:
        _, stderr = await asyncio.wait_for(
            process.communicate(), timeout=settings.STATS_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise StatsCaptureTimeout(
            f"Codex process timed out after {settings.STATS_TIMEOUT_SECONDS:g}s"
        ) from None

    if process.returncode:
        logger.warning(
            "Codex exited with status %s: %s",
            process.returncode, stderr.decode(errors="replace").strip()[:500],
        )

    await asyncio.sleep(SESSION_SETTLE_SECONDS)

    session_file = find_latest_session_file(settings)
    if session_file is None:
        raise StatsParseError(
            f"No codex session file found under {settings.sessions_dir}. "
            "Is codex installed and configured?"
        )
    logger.debug("Reading session log %s", session_file)
    return session_file.read_text(encoding="utf-8")


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """
    A captured snapshot plus whatever credential the helper left behind.

    refreshed_token is the auth.json as read back after the run; codex may
    have refreshed the tokens while it was logged in. None when the file
    was gone or unreadable.
    """

    stats: UsageStatsCreate
    refreshed_token: AuthToken | None


async def capture_usage_stats(
    settings: Settings,
    identity_id: int,
    auth_token: AuthToken,
    runner: Runner = run_codex_for_status,
    is_active: bool = False,
) -> CaptureResult:
    """
    Capture stats for one identity by running the helper as that identity.

    The live auth.json is swapped for auth_token for the duration of the run
    and always put back afterwards, even when the run fails. If there was
    no live auth.json before, none is left behind.

    When is_active is set the identity already owns the live auth.json, so a
    token codex refreshed during the run is kept there instead of the
    pre-run copy.
    """
    original = auth_json.read_active_auth_token(settings)
    refreshed: AuthToken | None = None

    try:
        auth_json.write_active_auth_token(settings, auth_token)
        session_log = await runner(settings)
        stats = parse_usage_stats(session_log, identity_id)

        try:
            refreshed = auth_json.read_active_auth_token(settings)
        except CodexTokensError as exc:
            logger.warning("Could not read back auth.json after capture: %s", exc)
            refreshed = None
    finally:
        if is_active and refreshed is not None:
            auth_json.write_active_auth_token(settings, refreshed)
        elif original is not None:
            auth_json.write_active_auth_token(settings, original)
        else:
            settings.active_auth_path.unlink(missing_ok=True)

    return CaptureResult(stats=stats, refreshed_token=refreshed)


# ── Manual entry ────────────────────────────────────────────
def parse_clock(value: str) -> datetime.time:
    """'HH:MM' (24-hour) -> time."""
    try:
        return datetime.datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError as exc:
        raise ValidationError(f"Expected time as HH:MM, got {value!r}") from exc


def parse_day_month(value: str, year: int) -> datetime.date:
    """'DD Mon' (e.g. '29 Oct') in the given year -> date."""
    try:
        return datetime.datetime.strptime(f"{value.strip()} {year}", "%d %b %Y").date()
    except ValueError as exc:
        raise ValidationError(f"Expected date as DD Mon, got {value!r}") from exc


def five_hour_reset_from_clock(clock: str, now: datetime.datetime) -> datetime.datetime:
    """Next occurrence of clock; a time already past today means tomorrow."""
    reset = datetime.datetime.combine(now.date(), parse_clock(clock), tzinfo=now.tzinfo)
    if reset < now:
        reset += datetime.timedelta(days=1)
    return reset


def weekly_reset_from_date(day_month: str, clock: str, now: datetime.datetime) -> datetime.datetime:
    """Reset on day_month at clock; a date already past this year means next year."""
    day = parse_day_month(day_month, now.year)
    if day < now.date():
        day = parse_day_month(day_month, now.year + 1)
    return datetime.datetime.combine(day, parse_clock(clock), tzinfo=now.tzinfo)


def record_manual_stats(
    identity_id: int,
    five_hour_percent: int,
    five_hour_reset: str,
    weekly_percent: int,
    weekly_reset: str,
    weekly_reset_date: str,
    now: datetime.datetime | None = None,
) -> UsageStatsCreate:
    """
    Build a snapshot from values typed off the /status screen.

    Clock and date inputs are local wall-clock times; they are stored as UTC.

    Raises:
        ValidationError: a percent outside 0..100 or an unparsable time/date.
    """
    now = now or datetime.datetime.now().astimezone()

    for label, percent in (("5h", five_hour_percent), ("weekly", weekly_percent)):
        if not 0 <= percent <= 100:
            raise ValidationError(f"{label} percent must be between 0 and 100, got {percent}")

    return UsageStatsCreate(
        identity_id=identity_id,
        five_hour_limit_percent=five_hour_percent,
        five_hour_limit_reset_time=to_utc(five_hour_reset_from_clock(five_hour_reset, now)),
        weekly_limit_percent=weekly_percent,
        weekly_limit_reset_time=to_utc(weekly_reset_from_date(weekly_reset_date, weekly_reset, now)),
        captured_at=to_utc(now),
    )
