"""Websocket connection from a peer to the signaling relay."""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from rtc_chat.config import get_config
from rtc_chat.exceptions import SignalingError
from rtc_chat.protocol import (
    MSG_CONNECT,
    MSG_DISCONNECT,
    format_message,
    parse_message,
)

Handler = Callable[[dict], object]


class SignalingClient:
    """Sends signaling messages and dispatches the ones the relay sends back.

    Only handle_connection() reads from the websocket. Incoming messages are
    handled one at a time, in arrival order, so the handlers of one peer never
    interleave.

    Attributes:
        url: Relay websocket URL.
        client_id: Relay-assigned identifier, set once connect() returns.
    """

    def __init__(self, url: Optional[str] = None, connect_timeout: Optional[float] = None):
        if url is None or connect_timeout is None:
            config = get_config()
            url = url if url is not None else config.signaling_url
            if connect_timeout is None:
                connect_timeout = config.client.connect_timeout
        self.url = url
        self.connect_timeout = connect_timeout
        self.client_id: Optional[str] = None
        self.websocket: Optional[ClientConnection] = None
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._connection_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.client_id is not None

    def on(self, msg_type: str, handler: Handler) -> None:
        """Register a handler (plain function or coroutine function) for a message type."""
        self._handlers[msg_type].append(handler)

    async def connect(self) -> str:
        """Open the websocket and wait for the relay to assign an identifier.

        Returns:
            The relay-assigned client id.

        Raises:
            SignalingError: The relay could not be reached or did not answer.
        """
        try:
            self.websocket = await ws_connect(self.url)
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake) as e:
            raise SignalingError(f"Could not connect to {self.url}: {e}") from e

        try:
            raw = await asyncio.wait_for(self.websocket.recv(), self.connect_timeout)
        except (asyncio.TimeoutError, ConnectionClosed) as e:
            await self.websocket.close()
            raise SignalingError(f"No connect message from {self.url}") from e

        data = parse_message(raw)
        if data is None or data["type"] != MSG_CONNECT or not data.get("id"):
            await self.websocket.close()
            raise SignalingError(f"Unexpected first message from relay: {raw!r}")

        self.client_id = data["id"]
        logging.info(f"Connected to signaling relay as {self.client_id}")
        await self.dispatch(data)

        self._connection_task = asyncio.create_task(self.handle_connection())
        return self.client_id

    async def emit(self, msg_type: str, **fields) -> None:
        """Send one message to the relay.

        Raises:
            SignalingError: Not connected, or the connection is closed.
        """
        if self.websocket is None:
            raise SignalingError("Signaling client is not connected")
        try:
            await self.websocket.send(format_message(msg_type, **fields))
        except ConnectionClosed as e:
            raise SignalingError(f"Signaling connection closed: {e}") from e

    async def handle_connection(self) -> None:
        """Route every incoming message to its handlers until the socket closes."""
        try:
            async for raw in self.websocket:
                data = parse_message(raw)
                if data is None:
                    logging.error("Invalid JSON received")
                    continue
                await self.dispatch(data)
        except ConnectionClosed as e:
            logging.info(f"Signaling connection closed: {e}")
        finally:
            self.client_id = None
            await self.dispatch({"type": MSG_DISCONNECT})

    async def dispatch(self, data: dict) -> None:
        msg_type = data["type"]
        handlers = self._handlers.get(msg_type)
        if not handlers:
            logging.debug(f"Unhandled message type: {msg_type}")
            return
        for handler in list(handlers):
            try:
                outcome = handler(data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logging.error(f"Error handling {msg_type} message: {e}")

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()
        if self._connection_task is not None:
            await self._connection_task
            self._connection_task = None
