"""Unit tests for CLI commands."""

import json
from unittest import mock

import pytest
from click.testing import CliRunner

from rtc_chat.cli import cli
from rtc_chat.config import Config


@pytest.fixture
def runner():
    """Create a CLI runner for testing."""
    return CliRunner()


@pytest.fixture
def config():
    config = Config()
    with mock.patch("rtc_chat.cli.get_config", return_value=config):
        yield config


class TestServerCommand:
    def test_defaults_from_config(self, runner, config):
        with mock.patch("rtc_chat.cli.run_server") as run_server:
            result = runner.invoke(cli, ["server"])

        assert result.exit_code == 0
        run_server.assert_called_once_with("localhost", 3001)

    def test_options_override_config(self, runner, config):
        with mock.patch("rtc_chat.cli.run_server") as run_server:
            result = runner.invoke(cli, ["server", "--host", "0.0.0.0", "--port", "9000"])

        assert result.exit_code == 0
        run_server.assert_called_once_with("0.0.0.0", 9000)


class TestChatCommands:
    def test_create(self, runner):
        with mock.patch("rtc_chat.cli.run_chat", return_value=0) as run_chat:
            result = runner.invoke(cli, ["create", "-n", "Alice", "-c", "#ff0000"])

        assert result.exit_code == 0
        run_chat.assert_called_once_with(None, None, "Alice", "#ff0000", False)

    def test_join(self, runner):
        with mock.patch("rtc_chat.cli.run_chat", return_value=0) as run_chat:
            result = runner.invoke(
                cli, ["join", "abc123", "--server", "ws://relay:3001", "-v"]
            )

        assert result.exit_code == 0
        run_chat.assert_called_once_with("abc123", "ws://relay:3001", None, None, True)

    def test_join_requires_room(self, runner):
        result = runner.invoke(cli, ["join"])

        assert result.exit_code != 0
        assert "ROOM_ID" in result.output

    def test_failure_exit_code(self, runner):
        with mock.patch("rtc_chat.cli.run_chat", return_value=1):
            result = runner.invoke(cli, ["create"])

        assert result.exit_code == 1


class TestConfigCommand:
    def test_prints_effective_config(self, runner, config):
        result = runner.invoke(cli, ["config"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["port"] == 3001
        assert data["max_reconnect_attempts"] == 3
