"""Signaling protocol definitions for rtc-chat.

This module defines the messages exchanged between peers and the relay server
over the signaling websocket. Every message is a JSON object sent as a single
text frame, with a ``type`` field naming the message.

Message Types
-------------

**connect**
    Sent by: Relay
    Purpose: Tells a newly connected peer its relay-assigned identifier
    Format: {"type": "connect", "id": "3f2a..."}

**join**
    Sent by: Peer
    Purpose: Join (or create) a room
    Format: {"type": "join", "roomId": "3f2a..."}

**leave**
    Sent by: Peer
    Purpose: Leave a room without closing the connection
    Format: {"type": "leave", "roomId": "3f2a..."}

**offer** / **answer** / **ice-candidate**
    Sent by: Peer, forwarded by Relay
    Purpose: Session negotiation envelopes
    Outbound: {"type": "offer", "offer": {...}, "roomId": "3f2a..."}
    Inbound:  {"type": "offer", "offer": {...}, "from": "9b1c..."}
    Note: The payload field is named after the type ("offer", "answer",
    "candidate"). The relay forwards it verbatim to every other member of the
    room and never to the sender.

**update_user_info**
    Sent by: Peer
    Purpose: Set the sender's display metadata
    Format: {"type": "update_user_info", "nickname": "Bob",
             "personalColor": "#ff0000", "roomId": "3f2a..."}
    Note: roomId is optional. Without it the metadata is recorded but not
    broadcast.

**users**
    Sent by: Relay
    Purpose: Full view of a room's members that have display metadata
    Format: {"type": "users", "users": {"9b1c...": {"id": "9b1c...",
             "nickname": "Bob", "personalColor": "#ff0000"}}}

**peer-joined**
    Sent by: Relay
    Purpose: Tells the existing members of a room that someone joined
    Format: {"type": "peer-joined", "id": "9b1c..."}

Message Flow
------------

1. A → Relay: join (roomId = A's own id)
2. A → Relay: offer (relayed to nobody yet, the room only holds A)
3. B → Relay: join (roomId = A's id)
4. Relay → A, B: users
5. Relay → A: peer-joined
6. A → Relay → B: offer (re-sent because A is still waiting for an answer)
7. B → Relay → A: answer
8. Either side → Relay → other: ice-candidate (zero or more, any time)

Descriptions are ``{"type": "offer" | "answer", "sdp": str}``. Candidates use
the browser ``RTCIceCandidateInit`` shape ``{"candidate": str, "sdpMid": str,
"sdpMLineIndex": int}``.
"""

import json
from typing import Optional

MSG_CONNECT = "connect"
MSG_JOIN = "join"
MSG_LEAVE = "leave"
MSG_OFFER = "offer"
MSG_ANSWER = "answer"
MSG_ICE_CANDIDATE = "ice-candidate"
MSG_UPDATE_USER_INFO = "update_user_info"
MSG_USERS = "users"
MSG_PEER_JOINED = "peer-joined"

# Dispatched locally by the signaling client when the relay connection ends;
# never sent on the wire.
MSG_DISCONNECT = "disconnect"

# Negotiation message type -> name of the field carrying its payload.
NEGOTIATION_PAYLOAD_FIELDS = {
    MSG_OFFER: "offer",
    MSG_ANSWER: "answer",
    MSG_ICE_CANDIDATE: "candidate",
}

FIELD_TYPE = "type"
FIELD_ROOM_ID = "roomId"
FIELD_FROM = "from"
FIELD_ID = "id"
FIELD_NICKNAME = "nickname"
FIELD_COLOR = "personalColor"
FIELD_USERS = "users"


def format_message(msg_type: str, **fields) -> str:
    """Serialize a signaling message to a JSON text frame.

    Fields whose value is None are left out.

    Args:
        msg_type: One of the MSG_* constants.
        **fields: Message fields.

    Returns:
        JSON string.
    """
    message = {FIELD_TYPE: msg_type}
    message.update({k: v for k, v in fields.items() if v is not None})
    return json.dumps(message)


def parse_message(raw) -> Optional[dict]:
    """Parse a signaling text frame.

    Args:
        raw: Frame received from the websocket (str or bytes).

    Returns:
        The message dictionary, or None if the frame is not a JSON object with
        a string ``type`` field.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get(FIELD_TYPE), str):
        return None
    return data


def negotiation_payload(message: dict):
    """Return the payload of an offer/answer/ice-candidate message, or None."""
    field = NEGOTIATION_PAYLOAD_FIELDS.get(message.get(FIELD_TYPE))
    if field is None:
        return None
    return message.get(field)
