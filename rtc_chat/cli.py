"""Unified CLI for rtc-chat using Click."""

import json
import sys

import click
from loguru import logger

from rtc_chat.chat import run_chat
from rtc_chat.config import get_config
from rtc_chat.server.relay import run_server


@click.group()
def cli():
    pass


@cli.command()
@click.option("--host", default=None, help="Host to bind to (default: from config).")
@click.option("--port", type=int, default=None, help="Port to listen on (default: 3001).")
def server(host, port):
    """Run the signaling relay.

    Example:
        rtc-chat server --port 3001
    """
    config = get_config()
    host = host or config.host
    port = port if port is not None else config.port
    logger.info(f"Starting signaling relay on {host}:{port}")
    run_server(host, port)


def _chat_options(f):
    f = click.option(
        "--server",
        "-s",
        default=None,
        help="Signaling relay URL (default: from config).",
    )(f)
    f = click.option("--nickname", "-n", default=None, help="Display name.")(f)
    f = click.option("--color", "-c", default=None, help="Display color, e.g. '#ff0000'.")(f)
    f = click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")(f)
    return f


@cli.command()
@_chat_options
def create(server, nickname, color, verbose):
    """Create a room and chat in it.

    Prints the room id to share with the other peer.
    """
    sys.exit(run_chat(None, server, nickname, color, verbose))


@cli.command()
@click.argument("room_id")
@_chat_options
def join(room_id, server, nickname, color, verbose):
    """Join ROOM_ID and chat in it.

    Example:
        rtc-chat join 3f2a9c...
    """
    sys.exit(run_chat(room_id, server, nickname, color, verbose))


@cli.command(name="config")
def show_config():
    """Print the effective configuration."""
    click.echo(json.dumps(get_config().as_dict(), indent=2))


if __name__ == "__main__":
    cli()
