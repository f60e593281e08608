"""Room membership and participant metadata for the signaling relay."""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from loguru import logger


@dataclass(frozen=True)
class ParticipantInfo:
    """Display metadata a participant supplied about itself.

    Attributes:
        id: Relay-assigned participant identifier.
        nickname: Display name, unauthenticated.
        personal_color: Display color, unauthenticated.
    """

    id: str
    nickname: Optional[str] = None
    personal_color: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "nickname": self.nickname,
            "personalColor": self.personal_color,
        }


class RoomRegistry:
    """Maps room ids to member sets and participant ids to metadata.

    Mutations and snapshots of one room happen under that room's lock, so a
    concurrent join can never be lost and a broadcast view is never taken from
    a half-applied update. Different rooms do not contend with each other.
    Callers only ever receive copies.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}
        self._room_of: Dict[str, str] = {}
        self._metadata: Dict[str, ParticipantInfo] = {}
        # Guards the dictionaries themselves, never held across a room lock.
        self._lock = threading.Lock()
        # One lock per existing room, dropped together with the room.
        self._room_locks: Dict[str, threading.Lock] = {}

    def _room_lock(self, room_id: str) -> threading.Lock:
        with self._lock:
            return self._room_locks.setdefault(room_id, threading.Lock())

    def _existing_room_lock(self, room_id: str) -> Optional[threading.Lock]:
        with self._lock:
            if room_id not in self._rooms:
                return None
            return self._room_locks.setdefault(room_id, threading.Lock())

    def join(self, room_id: str, participant_id: str) -> Set[str]:
        """Add a participant to a room, creating the room if needed.

        Idempotent if the participant is already a member.

        Returns:
            Snapshot of the room's members after the join.
        """
        with self._room_lock(room_id):
            with self._lock:
                members = self._rooms.setdefault(room_id, set())
                members.add(participant_id)
                self._room_of[participant_id] = room_id
                snapshot = set(members)
        logger.debug(f"{participant_id} joined {room_id} ({len(snapshot)} members)")
        return snapshot

    def leave(self, room_id: str, participant_id: str) -> Set[str]:
        """Remove a participant from a room.

        Unknown rooms and non-members are a no-op. A room left empty is pruned.

        Returns:
            Snapshot of the remaining members.
        """
        room_lock = self._existing_room_lock(room_id)
        if room_lock is None:
            return set()
        with room_lock:
            with self._lock:
                members = self._rooms.get(room_id)
                if members is None:
                    return set()
                members.discard(participant_id)
                if self._room_of.get(participant_id) == room_id:
                    del self._room_of[participant_id]
                snapshot = set(members)
                if not members:
                    del self._rooms[room_id]
                    self._room_locks.pop(room_id, None)
                    logger.debug(f"Pruned empty room {room_id}")
        return snapshot

    def members(self, room_id: str) -> Set[str]:
        """Snapshot of a room's members (empty for unknown rooms)."""
        return self.snapshot(room_id)[0]

    def snapshot(self, room_id: str) -> Tuple[Set[str], Dict[str, dict]]:
        """Members and broadcast view of a room, taken together.

        Returns:
            (members, broadcastable) from the same moment; both empty for
            unknown rooms.
        """
        room_lock = self._existing_room_lock(room_id)
        if room_lock is None:
            return set(), {}
        with room_lock:
            with self._lock:
                members = set(self._rooms.get(room_id, ()))
                users = {
                    member: self._metadata[member].to_dict()
                    for member in members
                    if member in self._metadata
                }
        return members, users

    def room_of(self, participant_id: str) -> Optional[str]:
        with self._lock:
            return self._room_of.get(participant_id)

    def rooms(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def set_metadata(
        self,
        participant_id: str,
        nickname: Optional[str],
        color: Optional[str],
    ) -> ParticipantInfo:
        """Record display metadata, independent of room membership."""
        info = ParticipantInfo(
            id=participant_id, nickname=nickname, personal_color=color
        )
        with self._lock:
            self._metadata[participant_id] = info
        return info

    def metadata(self, participant_id: str) -> Optional[ParticipantInfo]:
        with self._lock:
            return self._metadata.get(participant_id)

    def broadcastable(self, room_id: str) -> Dict[str, dict]:
        """Member id -> metadata dict for every member with metadata on record.

        Members that never sent metadata are left out rather than defaulted.
        """
        return self.snapshot(room_id)[1]

    def forget(self, participant_id: str) -> List[str]:
        """Drop a participant from every room and discard its metadata.

        Returns:
            Ids of the rooms the participant was removed from.
        """
        with self._lock:
            self._metadata.pop(participant_id, None)
            candidates = [
                room_id
                for room_id, members in self._rooms.items()
                if participant_id in members
            ]
        left = []
        for room_id in candidates:
            self.leave(room_id, participant_id)
            left.append(room_id)
        return left
