"""WebSocket signaling relay for rtc-chat peers.

The relay assigns every connection an identifier, keeps room membership in a
RoomRegistry, and forwards negotiation envelopes between the members of a
room. It is best effort: nothing is acknowledged, retried or deduplicated,
and malformed messages are dropped without telling the sender.

Usage:
    rtc-chat server [--host HOST] [--port PORT]
"""

import asyncio
import uuid
from typing import Awaitable, Callable, Dict, Iterable, Optional

from loguru import logger
from websockets.asyncio.server import ServerConnection, serve as ws_serve
from websockets.exceptions import ConnectionClosed

from rtc_chat.protocol import (
    FIELD_COLOR,
    FIELD_NICKNAME,
    FIELD_ROOM_ID,
    MSG_CONNECT,
    MSG_JOIN,
    MSG_LEAVE,
    MSG_PEER_JOINED,
    MSG_UPDATE_USER_INFO,
    MSG_USERS,
    NEGOTIATION_PAYLOAD_FIELDS,
    format_message,
    parse_message,
)
from rtc_chat.server.registry import RoomRegistry

# Delivers one text frame to a connected participant.
Sender = Callable[[str], Awaitable[None]]


def _valid_room_id(room_id) -> bool:
    return isinstance(room_id, str) and bool(room_id)


class SignalRelay:
    """Routes signaling messages between participants of the same room.

    Attributes:
        registry: Room membership and metadata store.
    """

    def __init__(self, registry: Optional[RoomRegistry] = None):
        self.registry = registry if registry is not None else RoomRegistry()
        self._senders: Dict[str, Sender] = {}

    @property
    def participants(self) -> list:
        return list(self._senders)

    def connect(self, send: Sender) -> str:
        """Register a new connection and return its fresh identifier."""
        participant_id = uuid.uuid4().hex
        self._senders[participant_id] = send
        logger.info(
            f"Participant connected: {participant_id} (total: {len(self._senders)})"
        )
        return participant_id

    async def disconnect(self, participant_id: str) -> None:
        """Forget a participant and update the rooms it was in."""
        self._senders.pop(participant_id, None)
        for room_id in self.registry.forget(participant_id):
            await self._broadcast_users(room_id)
        logger.info(
            f"Participant disconnected: {participant_id} (remaining: {len(self._senders)})"
        )

    async def handle_message(self, participant_id: str, raw) -> None:
        """Dispatch one frame received from a participant."""
        data = raw if isinstance(raw, dict) else parse_message(raw)
        if data is None:
            logger.debug(f"Dropping malformed frame from {participant_id}")
            return

        msg_type = data["type"]
        if msg_type == MSG_JOIN:
            await self.join(participant_id, data.get(FIELD_ROOM_ID))
        elif msg_type == MSG_LEAVE:
            await self.leave(participant_id, data.get(FIELD_ROOM_ID))
        elif msg_type == MSG_UPDATE_USER_INFO:
            await self.update_metadata(
                participant_id,
                data.get(FIELD_NICKNAME),
                data.get(FIELD_COLOR),
                data.get(FIELD_ROOM_ID),
            )
        elif msg_type in NEGOTIATION_PAYLOAD_FIELDS:
            await self.relay(
                participant_id,
                msg_type,
                data.get(NEGOTIATION_PAYLOAD_FIELDS[msg_type]),
                data.get(FIELD_ROOM_ID),
            )
        else:
            logger.debug(f"Dropping unknown message type {msg_type!r} from {participant_id}")

    async def join(self, participant_id: str, room_id) -> None:
        """Add a participant to a room and announce the new membership.

        A participant is in at most one room, so joining a different room
        leaves the previous one first.
        """
        if not _valid_room_id(room_id):
            logger.debug(f"Dropping join without room from {participant_id}")
            return

        previous = self.registry.room_of(participant_id)
        if previous is not None and previous != room_id:
            await self.leave(participant_id, previous)

        members = self.registry.join(room_id, participant_id)
        logger.info(f"{participant_id} joined room {room_id} ({len(members)} members)")

        await self._broadcast_users(room_id)
        await self._broadcast(
            (m for m in members if m != participant_id),
            format_message(MSG_PEER_JOINED, id=participant_id),
        )

    async def leave(self, participant_id: str, room_id) -> None:
        if not _valid_room_id(room_id):
            return
        if participant_id not in self.registry.members(room_id):
            return
        self.registry.leave(room_id, participant_id)
        logger.info(f"{participant_id} left room {room_id}")
        await self._broadcast_users(room_id)

    async def update_metadata(
        self,
        participant_id: str,
        nickname: Optional[str],
        color: Optional[str],
        room_id: Optional[str] = None,
    ) -> None:
        """Record display metadata, broadcasting to room_id when given."""
        self.registry.set_metadata(participant_id, nickname, color)
        logger.info(f"Updated user info for {participant_id}: {nickname} {color}")
        if _valid_room_id(room_id):
            await self._broadcast_users(room_id)

    async def relay(self, participant_id: str, kind: str, payload, room_id) -> None:
        """Forward a negotiation envelope to every other member of a room."""
        if not _valid_room_id(room_id) or payload is None:
            logger.debug(f"Dropping {kind} from {participant_id}: missing room or payload")
            return

        recipients = [m for m in self.registry.members(room_id) if m != participant_id]
        message = format_message(
            kind, **{NEGOTIATION_PAYLOAD_FIELDS[kind]: payload, "from": participant_id}
        )
        logger.info(
            f"Relaying {kind} from {participant_id} in room {room_id} "
            f"to {len(recipients)} peer(s)"
        )
        await self._broadcast(recipients, message)

    async def _broadcast_users(self, room_id: str) -> None:
        members, users = self.registry.snapshot(room_id)
        await self._broadcast(members, format_message(MSG_USERS, users=users))

    async def _broadcast(self, recipients: Iterable[str], message: str) -> None:
        await asyncio.gather(*(self._send(r, message) for r in recipients))

    async def _send(self, participant_id: str, message: str) -> None:
        send = self._senders.get(participant_id)
        if send is None:
            return
        try:
            await send(message)
        except Exception as e:
            logger.warning(f"Failed to send to {participant_id}: {e}")

    async def handler(self, websocket: ServerConnection) -> None:
        """Handle one websocket connection for its whole lifetime."""
        participant_id = self.connect(websocket.send)
        try:
            await websocket.send(format_message(MSG_CONNECT, id=participant_id))
            async for message in websocket:
                await self.handle_message(participant_id, message)
        except ConnectionClosed:
            logger.info(f"Connection closed: {participant_id}")
        finally:
            await self.disconnect(participant_id)


async def serve(host: str, port: int, relay: Optional[SignalRelay] = None) -> None:
    """Run the signaling relay until cancelled."""
    relay = relay if relay is not None else SignalRelay()
    async with ws_serve(relay.handler, host, port):
        logger.info(f"Signaling relay running on ws://{host}:{port}")
        await asyncio.Future()  # Run forever


def run_server(host: str, port: int) -> None:
    """Blocking entry point used by the CLI."""
    try:
        asyncio.run(serve(host, port))
    except KeyboardInterrupt:
        logger.info("Server stopped")
