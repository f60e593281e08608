"""Peer-facing API: rooms, messages, connection status and reconnection."""

import asyncio
import logging
from functools import partial
from typing import Callable, Dict, List, Optional

from rtc_chat.client.candidate_queue import CandidateQueue
from rtc_chat.client.connection_state import ConnectionState, observe
from rtc_chat.client.negotiation import NegotiationState, NegotiationStateMachine
from rtc_chat.client.reconnect import PeerRole, ReconnectionController
from rtc_chat.client.signaling import SignalingClient
from rtc_chat.client.transport import PeerTransport
from rtc_chat.config import Config, get_config
from rtc_chat.exceptions import (
    NegotiationError,
    ReconnectError,
    ReconnectExhaustedError,
    RTCChatError,
    SignalingError,
)
from rtc_chat.protocol import (
    FIELD_FROM,
    FIELD_USERS,
    MSG_ANSWER,
    MSG_DISCONNECT,
    MSG_ICE_CANDIDATE,
    MSG_JOIN,
    MSG_LEAVE,
    MSG_OFFER,
    MSG_PEER_JOINED,
    MSG_UPDATE_USER_INFO,
    MSG_USERS,
    negotiation_payload,
)

DATA_CHANNEL_LABEL = "messageChannel"


class ChatPeer:
    """One side of a two-party text chat over a WebRTC data channel.

    A session is the transport, its data channel and the negotiation state
    machine driving it. Sessions are built when entering a room and rebuilt on
    reconnect; events from a torn-down session are ignored.

    Attributes:
        signaling: Connection to the relay.
        transport: Current PeerTransport, or None outside a room.
        negotiation: Current NegotiationStateMachine, or None outside a room.
        data_channel: Current data channel, or None before one exists.
        room_id: Room this peer is in.
        role: Whether this peer created or joined the room.
        users: Last user list received from the relay.
        reconnection: Reconnect budget and room/role to replay.
    """

    def __init__(
        self,
        signaling: Optional[SignalingClient] = None,
        transport_factory: Optional[Callable[[], PeerTransport]] = None,
        config: Optional[Config] = None,
    ):
        config = config if config is not None else get_config()
        self.signaling = signaling if signaling is not None else SignalingClient(
            config.signaling_url, config.client.connect_timeout
        )
        self.transport_factory = transport_factory or partial(
            PeerTransport, ice_servers=config.client.ice_server_dicts()
        )
        self.candidate_queue_limit = config.client.candidate_queue_limit
        self.auto_reconnect = config.client.auto_reconnect

        self.transport = None
        self.negotiation: Optional[NegotiationStateMachine] = None
        self.data_channel = None
        self.room_id: Optional[str] = None
        self.role: Optional[PeerRole] = None
        self.users: Dict[str, dict] = {}

        self.reconnection = ReconnectionController(
            rebuild=self._rebuild_session,
            replay=self._replay_role,
            max_attempts=config.client.max_reconnect_attempts,
        )
        self._reconnect_task: Optional[asyncio.Task] = None

        self._connection_state = ConnectionState.DISCONNECTED
        self._message_handlers: List[Callable[[str], None]] = []
        self._state_handlers: List[Callable[[ConnectionState], None]] = []
        self._users_handlers: List[Callable[[Dict[str, dict]], None]] = []
        self._error_handlers: List[Callable[[RTCChatError], None]] = []

        self.signaling.on(MSG_OFFER, self._on_offer)
        self.signaling.on(MSG_ANSWER, self._on_answer)
        self.signaling.on(MSG_ICE_CANDIDATE, self._on_candidate)
        self.signaling.on(MSG_USERS, self._on_users)
        self.signaling.on(MSG_PEER_JOINED, self._on_peer_joined)
        self.signaling.on(MSG_DISCONNECT, self._on_signaling_disconnect)

    @property
    def client_id(self) -> Optional[str]:
        return self.signaling.client_id

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    # Subscriptions

    def on_message(self, handler: Callable[[str], None]) -> None:
        self._message_handlers.append(handler)

    def on_connection_state(self, handler: Callable[[ConnectionState], None]) -> None:
        self._state_handlers.append(handler)

    def on_users(self, handler: Callable[[Dict[str, dict]], None]) -> None:
        self._users_handlers.append(handler)

    def on_error(self, handler: Callable[[RTCChatError], None]) -> None:
        self._error_handlers.append(handler)

    # Public API

    async def start(self) -> str:
        """Connect to the relay.

        Returns:
            The relay-assigned client id.

        Raises:
            SignalingError: The relay could not be reached.
        """
        return await self.signaling.connect()

    async def create_room(self) -> Optional[str]:
        """Create a room named after this peer's id and offer into it.

        Returns:
            The room id, or None if the room could not be set up.
        """
        room_id = self.client_id
        if room_id is None:
            logging.error("Cannot create a room before connecting to the relay")
            return None

        await self._build_session(room_id)
        self.room_id = room_id
        self.role = PeerRole.CREATOR
        self.reconnection.record(room_id, PeerRole.CREATOR)
        try:
            await self._replay_role(room_id, PeerRole.CREATOR)
        except SignalingError as e:
            self._report_error(e)
            return None
        except NegotiationError:
            return None
        logging.info(f"Created room {room_id}")
        return room_id

    async def join_room(self, room_id: str) -> bool:
        """Join a room and wait passively for its creator's offer.

        Returns:
            True if the join was sent to the relay.
        """
        await self._build_session(room_id)
        self.room_id = room_id
        self.role = PeerRole.JOINER
        self.reconnection.record(room_id, PeerRole.JOINER)
        try:
            await self._replay_role(room_id, PeerRole.JOINER)
        except SignalingError as e:
            self._report_error(e)
            return False
        logging.info(f"Joined room {room_id}")
        return True

    async def leave_room(self) -> None:
        """Leave the current room and abandon any in-flight negotiation."""
        room_id = self.room_id
        if room_id is None:
            return
        await self._teardown_session()
        self.room_id = None
        self.role = None
        self.users = {}
        self.reconnection.forget()
        try:
            await self.signaling.emit(MSG_LEAVE, roomId=room_id)
        except SignalingError as e:
            logging.warning(f"Could not notify relay of leaving {room_id}: {e}")
        logging.info(f"Left room {room_id}")

    async def send_message(self, text: str) -> bool:
        """Send text over the data channel.

        Returns:
            False if the channel is not open or the send failed.
        """
        channel = self.data_channel
        if channel is None or channel.readyState != "open":
            return False
        try:
            channel.send(text)
        except Exception as e:
            logging.error(f"Failed to send message: {e}")
            return False
        return True

    async def reconnect(self) -> bool:
        """Tear down the session, rebuild it and return to the room.

        Returns:
            True on success. Failures are reported through on_error, with
            ReconnectExhaustedError once the budget is spent.
        """
        try:
            await self.reconnection.attempt()
        except ReconnectExhaustedError as e:
            self._report_error(e)
            self._update_connection_state()
            return False
        except ReconnectError as e:
            self._report_error(e)
            self._update_connection_state()
            return False
        return True

    async def update_user_info(self, nickname: str, color: str) -> None:
        """Publish display metadata, broadcast to the current room if any."""
        try:
            await self.signaling.emit(
                MSG_UPDATE_USER_INFO,
                nickname=nickname,
                personalColor=color,
                roomId=self.room_id,
            )
        except SignalingError as e:
            self._report_error(e)

    async def close(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        await self._teardown_session()
        await self.signaling.close()

    # Sessions

    async def _build_session(self, room_id: str) -> None:
        await self._teardown_session()

        transport = self.transport_factory()
        self.transport = transport
        self.negotiation = NegotiationStateMachine(
            transport,
            self.signaling,
            room_id=room_id,
            candidate_queue=CandidateQueue(self.candidate_queue_limit),
            on_failure=self._on_negotiation_failed,
        )
        transport.on("connectionstatechange", lambda: self._on_transport_state(transport))
        transport.on("iceconnectionstatechange", lambda: self._on_transport_state(transport))
        transport.on("datachannel", lambda channel: self._on_datachannel(transport, channel))
        self._update_connection_state()

    async def _teardown_session(self) -> None:
        negotiation, transport = self.negotiation, self.transport
        self.negotiation = None
        self.transport = None
        self.data_channel = None
        if negotiation is not None:
            negotiation.discard()
        if transport is not None:
            await transport.close()
        self._update_connection_state()

    async def _rebuild_session(self) -> None:
        await self._teardown_session()
        if self.room_id is not None:
            await self._build_session(self.room_id)

    async def _replay_role(self, room_id: str, role: PeerRole) -> None:
        """Enter room_id on the current session as creator or joiner.

        A creator rejoins its own room and offers again. A joiner only rejoins;
        the creator re-offers when the relay reports the peer joined.
        """
        await self.signaling.emit(MSG_JOIN, roomId=room_id)
        if role is PeerRole.CREATOR:
            await self._offer(room_id)

    async def _offer(self, room_id: str) -> None:
        self._attach_channel(self.transport.create_data_channel(DATA_CHANNEL_LABEL))
        await self.negotiation.create_room(room_id)

    def _attach_channel(self, channel) -> None:
        self.data_channel = channel
        channel.on("open", lambda: self._on_channel_state(channel))
        channel.on("close", lambda: self._on_channel_state(channel))
        channel.on("message", lambda message: self._on_channel_message(channel, message))
        self._update_connection_state()

    # Transport events

    def _on_transport_state(self, transport) -> None:
        if transport is not self.transport:
            return
        logging.info(
            f"Transport state {transport.connection_state}, "
            f"ICE connection state {transport.ice_connection_state}"
        )
        self._update_connection_state()
        if self.auto_reconnect and transport.connection_state == "failed":
            self._schedule_reconnect()

    def _on_datachannel(self, transport, channel) -> None:
        if transport is not self.transport:
            return
        logging.info(f"channel({channel.label}) created by remote party.")
        self._attach_channel(channel)

    def _on_channel_state(self, channel) -> None:
        if channel is not self.data_channel:
            return
        logging.info(f"{channel.label} is {channel.readyState}")
        self._update_connection_state()

    def _on_channel_message(self, channel, message) -> None:
        if channel is not self.data_channel:
            return
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        for handler in list(self._message_handlers):
            try:
                handler(message)
            except Exception as e:
                logging.error(f"Message handler failed: {e}")

    async def _on_negotiation_failed(self, error: NegotiationError) -> None:
        self._report_error(error)
        await self._teardown_session()
        if self.auto_reconnect:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.room_id is None:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logging.warning("Connection failed. Attempting reconnect...")
        self._reconnect_task = asyncio.ensure_future(self.reconnect())

    def _update_connection_state(self) -> None:
        transport, channel = self.transport, self.data_channel
        state = observe(
            transport.connection_state if transport is not None else None,
            transport.ice_connection_state if transport is not None else None,
            channel.readyState if channel is not None else None,
        )
        if state is ConnectionState.CONNECTED and self.negotiation is not None:
            self.negotiation.mark_established()
        if state is self._connection_state:
            return

        logging.info(f"Connection state is now {state.value}")
        self._connection_state = state
        for handler in list(self._state_handlers):
            try:
                handler(state)
            except Exception as e:
                logging.error(f"Connection state handler failed: {e}")

    def _report_error(self, error: RTCChatError) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception as e:
                logging.error(f"Error handler failed: {e}")

    # Signaling events

    async def _on_offer(self, message: dict) -> None:
        offer = negotiation_payload(message)
        if offer is None or self.room_id is None:
            logging.warning("Ignoring offer outside a room")
            return
        sender = message.get(FIELD_FROM)
        if self.negotiation is not None and self.negotiation.is_applied_offer(offer, sender):
            logging.info(f"Ignoring repeated offer from {sender}")
            return
        if self.negotiation is None or self.negotiation.state in (
            NegotiationState.NEGOTIATING,
            NegotiationState.ESTABLISHED,
        ):
            logging.info("Remote peer restarted negotiation, rebuilding session")
            await self._build_session(self.room_id)
        try:
            await self.negotiation.handle_offer(offer, sender)
        except NegotiationError:
            logging.debug("Offer handling failed; already reported")

    async def _on_answer(self, message: dict) -> None:
        answer = negotiation_payload(message)
        if answer is None or self.negotiation is None:
            return
        try:
            await self.negotiation.handle_answer(answer, message.get(FIELD_FROM))
        except NegotiationError:
            logging.debug("Answer handling failed; already reported")

    async def _on_candidate(self, message: dict) -> None:
        candidate = negotiation_payload(message)
        if candidate is None or self.negotiation is None:
            return
        try:
            await self.negotiation.handle_candidate(candidate, message.get(FIELD_FROM))
        except NegotiationError:
            logging.debug("Candidate handling failed; already reported")

    async def _on_peer_joined(self, message: dict) -> None:
        if self.role is not PeerRole.CREATOR or self.negotiation is None:
            return
        state = self.negotiation.state
        try:
            if state is NegotiationState.AWAITING_ANSWER:
                await self.negotiation.resend_offer()
            elif state in (NegotiationState.NEGOTIATING, NegotiationState.ESTABLISHED):
                logging.info(f"Peer {message.get('id')} rejoined, offering again")
                await self._build_session(self.room_id)
                await self._offer(self.room_id)
        except NegotiationError:
            logging.debug("Offer after peer join failed; already reported")

    def _on_users(self, message: dict) -> None:
        self.users = dict(message.get(FIELD_USERS) or {})
        for handler in list(self._users_handlers):
            try:
                handler(dict(self.users))
            except Exception as e:
                logging.error(f"Users handler failed: {e}")

    def _on_signaling_disconnect(self, message: dict) -> None:
        logging.warning("Lost connection to the signaling relay")
        self.users = {}
