"""Tests for usage stats parsing, the helper process and manual entry."""

import datetime
import json
import shlex
import sys
import textwrap

import pytest

from codex_tokens.core.errors import (
    CodexTokensError,
    StatsCaptureTimeout,
    StatsParseError,
    ValidationError,
)
from codex_tokens.services import auth_json, usage_stats

from conftest import at, build_auth_token

UTC = datetime.timezone.utc


def token_count_line(five_hour=12.6, weekly=40.0, five_hour_in=3600, weekly_in=86400) -> str:
    return json.dumps({
        "type": "event_msg",
        "payload": {
            "type": "token_count",
            "rate_limits": {
                "primary": {"used_percent": five_hour, "resets_in_seconds": five_hour_in},
                "secondary": {"used_percent": weekly, "resets_in_seconds": weekly_in},
            },
        },
    })


SESSION_LOG = "\n".join([
    '{"type": "session_meta", "payload": {}}',
    "this line is not json",
    json.dumps({"type": "event_msg", "payload": {"type": "agent_message"}}),
    token_count_line(),
    token_count_line(five_hour=99, weekly=99),
])


class TestParseUsageStats:
    def test_reads_first_token_count_event(self):
        now = at(10)

        stats = usage_stats.parse_usage_stats(SESSION_LOG, identity_id=7, now=now)

        assert stats.identity_id == 7
        assert stats.five_hour_limit_percent == 13
        assert stats.weekly_limit_percent == 40
        assert stats.five_hour_limit_reset_time == now + datetime.timedelta(hours=1)
        assert stats.weekly_limit_reset_time == now + datetime.timedelta(days=1)
        assert stats.captured_at == now

    def test_no_record(self):
        with pytest.raises(StatsParseError):
            usage_stats.parse_usage_stats('{"type": "session_meta"}\n\n', identity_id=1)

    def test_incomplete_window(self):
        line = json.dumps({
            "type": "event_msg",
            "payload": {"type": "token_count", "rate_limits": {"primary": {"used_percent": 5}}},
        })
        with pytest.raises(StatsParseError):
            usage_stats.parse_usage_stats(line, identity_id=1)


class TestCaptureUsageStats:
    async def test_swaps_and_restores_live_auth(self, settings):
        original = build_auth_token(email="live@x.com", account_id="live", last_refresh=at(1))
        target = build_auth_token(email="t@x.com", account_id="target", last_refresh=at(2))
        refreshed = build_auth_token(
            email="t@x.com", account_id="target", access_token="fresh", last_refresh=at(3),
        )
        auth_json.write_active_auth_token(settings, original)
        seen = {}

        async def runner(s):
            seen["account"] = auth_json.read_active_auth_token(s).tokens.account_id
            auth_json.write_active_auth_token(s, refreshed)
            return token_count_line()

        result = await usage_stats.capture_usage_stats(settings, 3, target, runner=runner)

        assert seen["account"] == "target"
        assert result.stats.identity_id == 3
        assert result.refreshed_token.tokens.access_token == "fresh"
        assert auth_json.read_active_auth_token(settings).tokens.account_id == "live"

    async def test_restores_after_failure(self, settings):
        original = build_auth_token(account_id="live", last_refresh=at(1))
        auth_json.write_active_auth_token(settings, original)

        async def runner(s):
            raise StatsCaptureTimeout("too slow")

        with pytest.raises(StatsCaptureTimeout):
            await usage_stats.capture_usage_stats(
                settings, 1, build_auth_token(account_id="other"), runner=runner,
            )

        assert auth_json.read_active_auth_token(settings).tokens.account_id == "live"

    async def test_leaves_no_file_when_there_was_none(self, settings):
        async def runner(s):
            return token_count_line()

        await usage_stats.capture_usage_stats(settings, 1, build_auth_token(), runner=runner)

        assert not settings.active_auth_path.exists()

    async def test_active_identity_keeps_refreshed_token(self, settings):
        live = build_auth_token(account_id="live", access_token="old", last_refresh=at(1))
        refreshed = build_auth_token(account_id="live", access_token="rotated", last_refresh=at(2))
        auth_json.write_active_auth_token(settings, live)

        async def runner(s):
            auth_json.write_active_auth_token(s, refreshed)
            return token_count_line()

        await usage_stats.capture_usage_stats(settings, 1, live, runner=runner, is_active=True)

        assert auth_json.read_active_auth_token(settings).tokens.access_token == "rotated"

    async def test_active_identity_restores_original_on_failure(self, settings):
        live = build_auth_token(account_id="live", access_token="old", last_refresh=at(1))
        auth_json.write_active_auth_token(settings, live)

        async def runner(s):
            raise StatsCaptureTimeout("too slow")

        with pytest.raises(StatsCaptureTimeout):
            await usage_stats.capture_usage_stats(settings, 1, live, runner=runner, is_active=True)

        assert auth_json.read_active_auth_token(settings).tokens.access_token == "old"


FAKE_CODEX = textwrap.dedent("""
    import datetime, json, os, pathlib, sys
    home = pathlib.Path(os.environ["CODEX_HOME"])
    day = home / "sessions" / datetime.date.today().strftime("%Y/%m/%d")
    day.mkdir(parents=True, exist_ok=True)
    (day / "rollout-test.jsonl").write_text(sys.argv[-1] + "\\n" + {line!r})
""")


class TestRunCodexForStatus:
    def _command(self, tmp_path, source):
        script = tmp_path / "fake_codex.py"
        script.write_text(source)
        return shlex.join([sys.executable, str(script)])

    async def test_reads_session_log_written_by_helper(self, settings, tmp_path):
        settings.CODEX_COMMAND = self._command(
            tmp_path, FAKE_CODEX.format(line=token_count_line()),
        )

        content = await usage_stats.run_codex_for_status(settings)

        assert content.splitlines()[0] == "hi"
        stats = usage_stats.parse_usage_stats(content, identity_id=1)
        assert stats.five_hour_limit_percent == 13

    async def test_timeout_kills_helper(self, settings, tmp_path):
        settings.CODEX_COMMAND = self._command(tmp_path, "import time\ntime.sleep(30)\n")
        settings.STATS_TIMEOUT_SECONDS = 0.5

        with pytest.raises(StatsCaptureTimeout):
            await usage_stats.run_codex_for_status(settings)

    async def test_no_session_log(self, settings, tmp_path):
        settings.CODEX_COMMAND = self._command(tmp_path, "pass\n")

        with pytest.raises(StatsParseError):
            await usage_stats.run_codex_for_status(settings)

    async def test_missing_command(self, settings):
        settings.CODEX_COMMAND = "codex-command-that-does-not-exist"

        with pytest.raises(CodexTokensError):
            await usage_stats.run_codex_for_status(settings)


class TestManualStats:
    NOW = datetime.datetime(2025, 10, 20, 15, 0, tzinfo=UTC)

    def test_reset_times_roll_forward(self):
        stats = usage_stats.record_manual_stats(
            identity_id=1,
            five_hour_percent=42,
            five_hour_reset="18:21",
            weekly_percent=10,
            weekly_reset="12:21",
            weekly_reset_date="29 Oct",
            now=self.NOW,
        )

        assert stats.five_hour_limit_reset_time == datetime.datetime(2025, 10, 20, 18, 21, tzinfo=UTC)
        assert stats.weekly_limit_reset_time == datetime.datetime(2025, 10, 29, 12, 21, tzinfo=UTC)
        assert stats.captured_at == self.NOW

    def test_past_clock_means_tomorrow(self):
        reset = usage_stats.five_hour_reset_from_clock("09:00", self.NOW)

        assert reset == datetime.datetime(2025, 10, 21, 9, 0, tzinfo=UTC)

    def test_past_date_means_next_year(self):
        reset = usage_stats.weekly_reset_from_date("02 Jan", "08:00", self.NOW)

        assert reset == datetime.datetime(2026, 1, 2, 8, 0, tzinfo=UTC)

    @pytest.mark.parametrize("kwargs", [
        {"five_hour_percent": 101},
        {"weekly_percent": -1},
        {"five_hour_reset": "25:00"},
        {"weekly_reset_date": "31 Foo"},
    ])
    def test_rejects_bad_input(self, kwargs):
        values = {
            "identity_id": 1,
            "five_hour_percent": 5,
            "five_hour_reset": "18:00",
            "weekly_percent": 5,
            "weekly_reset": "12:00",
            "weekly_reset_date": "29 Oct",
            "now": self.NOW,
        }
        values.update(kwargs)

        with pytest.raises(ValidationError):
            usage_stats.record_manual_stats(**values)
