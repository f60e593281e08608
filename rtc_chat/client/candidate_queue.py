"""Buffer for ICE candidates that arrive before the remote description."""

import logging
from collections import deque
from typing import Any, List

from rtc_chat.config import DEFAULT_CANDIDATE_QUEUE_LIMIT


class CandidateQueue:
    """FIFO of remote candidates waiting for a remote description.

    Entries leave the queue exactly once, in arrival order. Enqueue and drain
    are plain synchronous calls, so on the event loop a drain can never
    interleave with an enqueue: a candidate is either in the drained batch or
    still queued for the next drain.

    Attributes:
        limit: Maximum number of buffered candidates. Candidates beyond it are
            dropped and logged.
    """

    def __init__(self, limit: int = DEFAULT_CANDIDATE_QUEUE_LIMIT):
        self.limit = limit
        self._entries: deque = deque()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending(self) -> List[Any]:
        """Copy of the queued candidates, oldest first."""
        return list(self._entries)

    def enqueue(self, candidate: Any) -> bool:
        """Append a candidate to the tail.

        Returns:
            False if the queue is full and the candidate was dropped.
        """
        if len(self._entries) >= self.limit:
            self.dropped += 1
            logging.warning(
                f"Candidate queue full ({self.limit}), dropping candidate "
                f"({self.dropped} dropped so far)"
            )
            return False
        self._entries.append(candidate)
        logging.debug(f"Queued candidate ({len(self._entries)} pending)")
        return True

    def drain_if_ready(self, has_remote_description: bool) -> List[Any]:
        """Remove and return every queued candidate if a remote description exists.

        Returns:
            The candidates in arrival order, or an empty list when not ready.
        """
        if not has_remote_description:
            return []
        drained = list(self._entries)
        self._entries.clear()
        return drained

    def reset(self) -> None:
        self._entries.clear()
        self.dropped = 0
