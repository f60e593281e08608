"""Derive one connection status from the transport's separate state signals."""

import enum
from typing import Optional


class ConnectionState(str, enum.Enum):
    """Externally visible status of a peer session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# aiortc reports "completed" once ICE checks finish; browsers report "connected".
_CHECKS_DONE = {"connected", "completed"}
_CHECKS_ACTIVE = {"checking"} | _CHECKS_DONE
_TRANSPORT_PENDING = {"new", "connecting"}


def observe(
    transport_state: Optional[str],
    checking_state: Optional[str],
    channel_state: Optional[str],
) -> ConnectionState:
    """Reduce the three state signals to a single ConnectionState.

    The data channel wins because it is the only signal that says the
    application can actually send. The transport may report connected while
    the channel has not opened yet, or has already closed.

    Args:
        transport_state: ``RTCPeerConnection.connectionState``, or None.
        checking_state: ``RTCPeerConnection.iceConnectionState``, or None.
        channel_state: ``RTCDataChannel.readyState``, or None without a channel.

    Returns:
        The derived state. Every input combination maps to exactly one value.
    """
    if channel_state == "open":
        return ConnectionState.CONNECTED
    if channel_state == "connecting":
        return ConnectionState.CONNECTING
    if transport_state == "connected" and checking_state in _CHECKS_DONE:
        return ConnectionState.CONNECTED
    if transport_state in _TRANSPORT_PENDING or checking_state in _CHECKS_ACTIVE:
        return ConnectionState.CONNECTING
    return ConnectionState.DISCONNECTED
