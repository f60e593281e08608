"""Bounded teardown-and-rebuild of a peer session after failure."""

import enum
import logging
from typing import Awaitable, Callable, Optional

from rtc_chat.config import DEFAULT_MAX_RECONNECT_ATTEMPTS
from rtc_chat.exceptions import ReconnectError, ReconnectExhaustedError


class PeerRole(str, enum.Enum):
    """How this peer entered its room, replayed on reconnect."""

    CREATOR = "creator"
    JOINER = "joiner"


class ReconnectionController:
    """Rebuilds a session and replays its room entry, within a retry budget.

    The budget counts consecutive attempts. It is checked before any work is
    done, incremented per attempt and reset to zero by a successful one.

    Attributes:
        max_attempts: Reconnect budget.
        attempts: Attempts made since the last success.
        room_id: Room to return to, if any.
        role: Role to replay in that room.
    """

    def __init__(
        self,
        rebuild: Callable[[], Awaitable[None]],
        replay: Callable[[str, PeerRole], Awaitable[None]],
        max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
    ):
        """Initialize the controller.

        Args:
            rebuild: Tears down the current session and builds a fresh one.
            replay: Re-enters a room in the given role on the fresh session.
            max_attempts: Reconnect budget.
        """
        self.rebuild = rebuild
        self.replay = replay
        self.max_attempts = max_attempts
        self.attempts = 0
        self.room_id: Optional[str] = None
        self.role: Optional[PeerRole] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def record(self, room_id: str, role: PeerRole) -> None:
        self.room_id = room_id
        self.role = role

    def forget(self) -> None:
        self.room_id = None
        self.role = None

    def reset(self) -> None:
        self.attempts = 0

    async def attempt(self) -> None:
        """Make one reconnection attempt.

        Raises:
            ReconnectExhaustedError: The budget is spent; nothing was torn down.
            ReconnectError: The attempt failed; the caller may try again.
        """
        if self.exhausted:
            logging.error("Maximum reconnection attempts reached.")
            raise ReconnectExhaustedError(self.max_attempts)

        self.attempts += 1
        logging.info(f"Reconnection attempt {self.attempts}/{self.max_attempts}...")
        try:
            await self.rebuild()
            if self.room_id is not None:
                logging.info(f"Returning to room {self.room_id} as {self.role.value}")
                await self.replay(self.room_id, self.role)
        except Exception as e:
            logging.error(f"Reconnection failed with error: {e}")
            raise ReconnectError(f"Reconnection attempt {self.attempts} failed: {e}") from e

        self.attempts = 0
        logging.info("Reconnection successful.")
