"""Signaling relay server for rtc-chat."""

from rtc_chat.server.registry import ParticipantInfo, RoomRegistry
from rtc_chat.server.relay import SignalRelay, run_server, serve

__all__ = [
    "ParticipantInfo",
    "RoomRegistry",
    "SignalRelay",
    "run_server",
    "serve",
]
