"""Smoke tests for the rtc-chat package.

These tests verify that the installed package is structurally sound: all
subpackages importable and the CLI entry point reachable.
"""

import pytest
from click.testing import CliRunner

from rtc_chat.cli import cli


class TestSubpackageImports:
    def test_import_server(self):
        from rtc_chat.server import RoomRegistry, SignalRelay, run_server  # noqa: F401

    def test_import_client(self):
        from rtc_chat.client import (  # noqa: F401
            ChatPeer,
            NegotiationStateMachine,
            ReconnectionController,
        )

    def test_version(self):
        import rtc_chat

        assert rtc_chat.__version__


@pytest.mark.parametrize("command", ["server", "create", "join", "config"])
def test_command_help(command):
    result = CliRunner().invoke(cli, [command, "--help"])

    assert result.exit_code == 0
    assert "Usage" in result.output


def test_top_level_help():
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    for command in ("server", "create", "join", "config"):
        assert command in result.output
