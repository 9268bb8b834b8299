"""Tests for aria/cli/ — Click-based CLI commands."""

from __future__ import annotations

import asyncio
import json

import pytest
from click.testing import CliRunner

from aria.cli.app import async_cmd, cli
from aria.cli.formatters import build_table, format_duration, get_console, status_indicator


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("ARIA_CAPABILITIES", raising=False)
    monkeypatch.setenv("ARIA_CHECKPOINT_DIR", str(tmp_path / "checkpoints"))


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class TestFormatDuration:
    def test_milliseconds(self) -> None:
        assert format_duration(0.25) == "250ms"

    def test_seconds(self) -> None:
        assert format_duration(4.5) == "4.5s"

    def test_minutes(self) -> None:
        assert format_duration(125) == "2m05s"


class TestStatusIndicator:
    def test_known_statuses(self) -> None:
        assert status_indicator("healthy").plain == "> "
        assert status_indicator("unhealthy").plain == "x "

    def test_unknown_status(self) -> None:
        assert status_indicator("something_else").plain == "? "


def test_build_table() -> None:
    table = build_table("T", ["A", "B"], [[1, 2], ["x", None]])
    assert table.row_count == 2
    assert len(table.columns) == 2


def test_get_console_no_color() -> None:
    assert get_console(no_color=True).no_color is True


def test_async_cmd_runs_coroutine() -> None:
    @async_cmd
    async def sample(value: int) -> int:
        await asyncio.sleep(0)
        return value * 2

    assert sample(21) == 42


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    def test_help_lists_subcommands(self) -> None:
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        for name in ("chat", "ask", "capabilities", "health", "checkpoints"):
            assert name in result.output

    def test_ask_prints_reply(self) -> None:
        result = CliRunner().invoke(cli, ["ask", "hello there"])
        assert result.exit_code == 0, result.output
        assert 'You said: "hello there".' in result.output

    def test_ask_json(self) -> None:
        result = CliRunner().invoke(cli, ["--json", "ask", "hello there"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["success"] is True
        assert payload["decision"]["type"] == "reply"
        assert payload["checkpoint"] is None

    def test_ask_save_then_list_checkpoints(self, tmp_path) -> None:
        runner = CliRunner()
        saved = runner.invoke(cli, ["--json", "ask", "--save", "hello there"])
        assert saved.exit_code == 0, saved.output
        path = json.loads(saved.output)["checkpoint"]
        assert path.startswith(str(tmp_path / "checkpoints"))

        listed = runner.invoke(cli, ["--json", "checkpoints"])
        entries = json.loads(listed.output)
        assert len(entries) == 1
        assert entries[0]["interactions"] == 1

    def test_quiet_ask_prints_nothing(self) -> None:
        result = CliRunner().invoke(cli, ["--quiet", "ask", "hello there"])
        assert result.exit_code == 0
        assert result.output == ""

    def test_capabilities_json(self) -> None:
        result = CliRunner().invoke(cli, ["--json", "capabilities"])
        assert result.exit_code == 0, result.output
        ids = [cap["id"] for cap in json.loads(result.output)]
        assert ids[0] == "file_read"
        assert "system_info" in ids

    def test_capabilities_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("ARIA_CAPABILITIES", "system_info, file_read")
        result = CliRunner().invoke(cli, ["--json", "capabilities"])
        assert result.exit_code == 0, result.output
        assert [cap["id"] for cap in json.loads(result.output)] == ["system_info", "file_read"]

    def test_capabilities_table(self) -> None:
        result = CliRunner().invoke(cli, ["--no-color", "capabilities"])
        assert result.exit_code == 0
        assert "Capabilities" in result.output

    def test_health_json_on_fresh_runtime(self) -> None:
        result = CliRunner().invoke(cli, ["--json", "health"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["health"]["status"] == "healthy"
        assert payload["trend"] == "stable"
        assert payload["dispatch"]["in_flight"] == 0

    def test_checkpoints_empty(self) -> None:
        result = CliRunner().invoke(cli, ["--no-color", "checkpoints"])
        assert result.exit_code == 0
        assert "No checkpoints" in result.output

    def test_chat_reads_until_quit(self) -> None:
        result = CliRunner().invoke(cli, ["--no-color", "chat"], input="hello there\n/capabilities\n/quit\n")
        assert result.exit_code == 0, result.output
        assert 'You said: "hello there".' in result.output
        assert "file_read" in result.output
        assert "State saved to" in result.output
