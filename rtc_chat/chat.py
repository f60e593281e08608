"""Terminal chat front end for a ChatPeer.

Lines typed on stdin are sent to the other peer. Lines starting with a slash
are commands:

    /nick NAME [COLOR]   publish a nickname and color
    /users               show the room's user list
    /reconnect           rebuild the connection and return to the room
    /leave               leave the room
    /quit                exit
"""

import asyncio
import logging
import sys
from typing import Dict, Optional

import click

from rtc_chat.client.connection_state import ConnectionState
from rtc_chat.client.peer import ChatPeer
from rtc_chat.client.signaling import SignalingClient
from rtc_chat.config import get_config
from rtc_chat.exceptions import RTCChatError, SignalingError

DEFAULT_COLOR = "#000000"


def format_users(users: Dict[str, dict]) -> str:
    if not users:
        return "(no named users)"
    return ", ".join(
        f"{info.get('nickname') or user_id[:8]} ({info.get('personalColor') or '-'})"
        for user_id, info in sorted(users.items())
    )


def attach_console(peer: ChatPeer) -> None:
    """Print the peer's messages and events to the terminal."""

    def on_message(text: str):
        click.echo(f"< {text}")

    def on_state(state: ConnectionState):
        click.echo(f"* {state.value}")

    def on_users(users: Dict[str, dict]):
        click.echo(f"* users: {format_users(users)}")

    def on_error(error: RTCChatError):
        click.echo(f"! {error}", err=True)

    peer.on_message(on_message)
    peer.on_connection_state(on_state)
    peer.on_users(on_users)
    peer.on_error(on_error)


async def handle_line(peer: ChatPeer, line: str) -> bool:
    """Act on one line of input.

    Returns:
        False when the session should end.
    """
    line = line.strip()
    if not line:
        return True

    if not line.startswith("/"):
        if not await peer.send_message(line):
            click.echo("! Message not sent: channel is not open", err=True)
        return True

    command, _, rest = line.partition(" ")
    args = rest.split()
    if command == "/quit":
        return False
    if command == "/nick":
        if not args:
            click.echo("! Usage: /nick NAME [COLOR]", err=True)
        else:
            color = args[1] if len(args) > 1 else DEFAULT_COLOR
            await peer.update_user_info(args[0], color)
    elif command == "/users":
        click.echo(f"* users: {format_users(peer.users)}")
    elif command == "/reconnect":
        if await peer.reconnect():
            click.echo("* reconnecting")
    elif command == "/leave":
        await peer.leave_room()
        click.echo("* left the room")
    else:
        click.echo(f"! Unknown command: {command}", err=True)
    return True


async def chat_session(
    room_id: Optional[str] = None,
    server: Optional[str] = None,
    nickname: Optional[str] = None,
    color: Optional[str] = None,
) -> int:
    """Create or join a room and chat until /quit or end of input.

    Returns:
        Process exit code.
    """
    config = get_config()
    signaling = SignalingClient(server or config.signaling_url, config.client.connect_timeout)
    peer = ChatPeer(signaling=signaling, config=config)
    attach_console(peer)

    try:
        await peer.start()
    except SignalingError as e:
        logging.error(str(e))
        return 1

    try:
        if room_id is None:
            room_id = await peer.create_room()
            if room_id is None:
                return 1
            click.echo(f"Room id: {room_id}")
            click.echo(f"Share it with your peer: rtc-chat join {room_id}")
        elif not await peer.join_room(room_id):
            return 1

        if nickname:
            await peer.update_user_info(nickname, color or DEFAULT_COLOR)

        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not await handle_line(peer, line):
                break
        return 0
    finally:
        await peer.close()


def run_chat(
    room_id: Optional[str] = None,
    server: Optional[str] = None,
    nickname: Optional[str] = None,
    color: Optional[str] = None,
    verbose: bool = False,
) -> int:
    """Blocking entry point used by the CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    try:
        return asyncio.run(chat_session(room_id, server, nickname, color))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 0
