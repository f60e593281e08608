"""Tests for the terminal chat front end."""

from unittest import mock

import pytest

from rtc_chat.chat import attach_console, format_users, handle_line


@pytest.fixture
def peer():
    peer = mock.Mock()
    peer.send_message = mock.AsyncMock(return_value=True)
    peer.update_user_info = mock.AsyncMock()
    peer.reconnect = mock.AsyncMock(return_value=True)
    peer.leave_room = mock.AsyncMock()
    peer.users = {}
    return peer


class TestHandleLine:
    @pytest.mark.asyncio
    async def test_plain_text_is_sent(self, peer):
        assert await handle_line(peer, "hello there\n") is True

        peer.send_message.assert_awaited_once_with("hello there")

    @pytest.mark.asyncio
    async def test_unsent_message_is_reported(self, peer, capsys):
        peer.send_message.return_value = False

        await handle_line(peer, "hello")

        assert "Message not sent" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_blank_line_is_ignored(self, peer):
        assert await handle_line(peer, "   \n") is True

        peer.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quit(self, peer):
        assert await handle_line(peer, "/quit") is False

    @pytest.mark.asyncio
    async def test_nick_with_default_color(self, peer):
        await handle_line(peer, "/nick Alice")

        peer.update_user_info.assert_awaited_once_with("Alice", "#000000")

    @pytest.mark.asyncio
    async def test_nick_with_color(self, peer):
        await handle_line(peer, "/nick Alice #ff0000")

        peer.update_user_info.assert_awaited_once_with("Alice", "#ff0000")

    @pytest.mark.asyncio
    async def test_nick_without_name(self, peer, capsys):
        await handle_line(peer, "/nick")

        peer.update_user_info.assert_not_awaited()
        assert "Usage" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_reconnect_and_leave(self, peer):
        await handle_line(peer, "/reconnect")
        await handle_line(peer, "/leave")

        peer.reconnect.assert_awaited_once()
        peer.leave_room.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_command(self, peer, capsys):
        assert await handle_line(peer, "/dance") is True

        assert "Unknown command" in capsys.readouterr().err


def test_format_users():
    users = {
        "b" * 32: {"id": "b" * 32, "nickname": None, "personalColor": None},
        "a" * 32: {"id": "a" * 32, "nickname": "Alice", "personalColor": "#ff0000"},
    }

    assert format_users(users) == "Alice (#ff0000), bbbbbbbb (-)"
    assert format_users({}) == "(no named users)"


def test_attach_console_prints_messages(peer, capsys):
    attach_console(peer)
    on_message = peer.on_message.call_args.args[0]

    on_message("hi")

    assert capsys.readouterr().out == "< hi\n"
