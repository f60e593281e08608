"""Peer-side negotiation, connection state and reconnection for rtc-chat."""

from rtc_chat.client.candidate_queue import CandidateQueue
from rtc_chat.client.connection_state import ConnectionState, observe
from rtc_chat.client.negotiation import NegotiationState, NegotiationStateMachine
from rtc_chat.client.peer import ChatPeer
from rtc_chat.client.reconnect import PeerRole, ReconnectionController
from rtc_chat.client.signaling import SignalingClient
from rtc_chat.client.transport import PeerTransport

__all__ = [
    "CandidateQueue",
    "ChatPeer",
    "ConnectionState",
    "NegotiationState",
    "NegotiationStateMachine",
    "PeerRole",
    "PeerTransport",
    "ReconnectionController",
    "SignalingClient",
    "observe",
]
