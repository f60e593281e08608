"""Offer/answer/candidate negotiation for one peer connection.

The state machine owns the order in which session descriptions and ICE
candidates are applied to a transport:

    IDLE -> OFFERING -> AWAITING_ANSWER -> NEGOTIATING -> ESTABLISHED
      ^________________________________________________________|
                       (failure or reset)

The offering side walks the whole chain. The answering side goes straight
from IDLE to NEGOTIATING when an offer arrives. ESTABLISHED is never entered
on its own; the owner calls mark_established() once the connection state
aggregator reports the data channel usable.

Every attempt carries a generation number. reset() bumps it, and any step
that resumes after an await under an older generation is discarded instead
of mutating the fresh state.
"""

import asyncio
import enum
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from rtc_chat.client.candidate_queue import CandidateQueue
from rtc_chat.exceptions import NegotiationCancelled, NegotiationError
from rtc_chat.protocol import MSG_ANSWER, MSG_OFFER

FailureListener = Callable[[NegotiationError], Optional[Awaitable[None]]]


class NegotiationState(str, enum.Enum):
    IDLE = "idle"
    OFFERING = "offering"
    AWAITING_ANSWER = "awaiting_answer"
    NEGOTIATING = "negotiating"
    ESTABLISHED = "established"


class NegotiationStateMachine:
    """Drives one negotiation attempt over a transport and a signaling channel.

    Attributes:
        transport: Object with async create_offer(), create_answer(),
            set_remote_description(desc) and add_candidate(candidate).
        signaling: Object with async emit(msg_type, **fields).
        candidates: Queue for candidates that arrive before the remote
            description.
        room_id: Room the offer/answer is addressed to.
        state: Current NegotiationState.
        generation: Current attempt number.
        has_remote_description: Whether a remote description has been applied.
        local_offer: The last offer this side created, if any.
        remote_peer: Identifier of the peer whose description was applied.
        remote_description: The remote description that was applied, if any.
    """

    def __init__(
        self,
        transport,
        signaling,
        room_id: Optional[str] = None,
        candidate_queue: Optional[CandidateQueue] = None,
        on_failure: Optional[FailureListener] = None,
    ):
        self.transport = transport
        self.signaling = signaling
        self.room_id = room_id
        self.candidates = candidate_queue if candidate_queue is not None else CandidateQueue()
        self.on_failure = on_failure

        self.state = NegotiationState.IDLE
        self.generation = 0
        self.has_remote_description = False
        self.local_offer: Optional[dict] = None
        self.remote_peer: Optional[str] = None
        self.remote_description: Optional[dict] = None

        self._discarded = False
        self._lock = asyncio.Lock()

    def reset(self) -> None:
        """Abandon the current attempt and return to IDLE."""
        self.generation += 1
        self.candidates.reset()
        self.has_remote_description = False
        self.local_offer = None
        self.remote_peer = None
        self.remote_description = None
        self.state = NegotiationState.IDLE

    def discard(self) -> None:
        """Reset and ignore every future event; used when tearing down."""
        self.reset()
        self._discarded = True

    def mark_established(self) -> None:
        if self.state is NegotiationState.NEGOTIATING:
            self.state = NegotiationState.ESTABLISHED
            logging.info("Negotiation established")

    def is_applied_offer(self, offer: dict, sender: Optional[str] = None) -> bool:
        """Whether offer is the one already answered in this attempt.

        A creator re-sends its offer when a peer joins, so the joiner can see
        the same offer twice when the join and the first offer cross.
        """
        return (
            self.state in (NegotiationState.NEGOTIATING, NegotiationState.ESTABLISHED)
            and self.remote_description is not None
            and self.remote_description.get("type") == "offer"
            and self.remote_description.get("sdp") == offer.get("sdp")
            and self.remote_peer == sender
        )

    async def create_room(self, room_id: str) -> Optional[dict]:
        """Create an offer, apply it locally and send it to the room.

        aiortc finishes ICE gathering inside setLocalDescription, so the offer
        already bundles every local candidate.

        Returns:
            The offer that was sent, or None if the attempt was superseded.

        Raises:
            NegotiationError: Creating or sending the offer failed.
        """
        async with self._lock:
            if self._discarded:
                return None
            if self.state is not NegotiationState.IDLE:
                logging.warning(f"create_room called in state {self.state.value}, restarting")
                self.reset()

            generation = self.generation
            self.room_id = room_id
            self.state = NegotiationState.OFFERING
            try:
                logging.info(f"Creating offer for room {room_id}")
                offer = await self._step(
                    generation, self.transport.create_offer(), "create offer"
                )
                self.local_offer = offer
                await self._step(
                    generation,
                    self.signaling.emit(MSG_OFFER, offer=offer, roomId=room_id),
                    "send offer",
                )
            except NegotiationCancelled as e:
                logging.debug(str(e))
                return None

            self.state = NegotiationState.AWAITING_ANSWER
            logging.info("Offer sent, waiting for answer")
            return offer

    async def resend_offer(self) -> bool:
        """Send the current offer again while no answer has arrived.

        Returns:
            True if the offer was re-sent.
        """
        async with self._lock:
            if (
                self._discarded
                or self.state is not NegotiationState.AWAITING_ANSWER
                or self.local_offer is None
            ):
                return False
            generation = self.generation
            try:
                await self._step(
                    generation,
                    self.signaling.emit(
                        MSG_OFFER, offer=self.local_offer, roomId=self.room_id
                    ),
                    "resend offer",
                )
            except NegotiationCancelled as e:
                logging.debug(str(e))
                return False
            logging.info("Offer re-sent")
            return True

    async def handle_offer(self, offer: dict, sender: Optional[str] = None) -> None:
        """Apply a remote offer, flush queued candidates and answer it.

        Raises:
            NegotiationError: Applying the offer or producing the answer failed.
        """
        async with self._lock:
            if self._discarded:
                return
            if self.state in (NegotiationState.OFFERING, NegotiationState.AWAITING_ANSWER):
                logging.warning(f"Ignoring offer from {sender} while offering")
                return

            generation = self.generation
            logging.info(f"Received offer from {sender}")
            try:
                await self._step(
                    generation,
                    self.transport.set_remote_description(offer),
                    "apply remote offer",
                )
                self.has_remote_description = True
                self.remote_description = offer
                self.remote_peer = sender
                self.state = NegotiationState.NEGOTIATING
                await self._flush_candidates(generation)

                answer = await self._step(
                    generation, self.transport.create_answer(), "create answer"
                )
                await self._step(
                    generation,
                    self.signaling.emit(MSG_ANSWER, answer=answer, roomId=self.room_id),
                    "send answer",
                )
            except NegotiationCancelled as e:
                logging.debug(str(e))
                return
            logging.info(f"Answer sent to {sender}")

    async def handle_answer(self, answer: dict, sender: Optional[str] = None) -> None:
        """Apply a remote answer and flush queued candidates.

        Answers outside OFFERING/AWAITING_ANSWER are ignored.

        Raises:
            NegotiationError: Applying the answer failed.
        """
        async with self._lock:
            if self._discarded:
                return
            if self.state not in (
                NegotiationState.OFFERING,
                NegotiationState.AWAITING_ANSWER,
            ):
                logging.warning(
                    f"Ignoring answer from {sender} in state {self.state.value}"
                )
                return

            generation = self.generation
            logging.info(f"Received answer from {sender}")
            try:
                await self._step(
                    generation,
                    self.transport.set_remote_description(answer),
                    "apply remote answer",
                )
                self.has_remote_description = True
                self.remote_description = answer
                self.remote_peer = sender
                self.state = NegotiationState.NEGOTIATING
                await self._flush_candidates(generation)
            except NegotiationCancelled as e:
                logging.debug(str(e))

    async def handle_candidate(self, candidate: Any, sender: Optional[str] = None) -> None:
        """Apply a remote candidate now, or queue it until a remote description exists.

        Raises:
            NegotiationError: Applying the candidate failed.
        """
        async with self._lock:
            if self._discarded:
                return
            if not self.has_remote_description:
                self.candidates.enqueue(candidate)
                return

            generation = self.generation
            logging.debug(f"Adding candidate from {sender}")
            try:
                await self._step(
                    generation, self.transport.add_candidate(candidate), "add candidate"
                )
            except NegotiationCancelled as e:
                logging.debug(str(e))

    async def _flush_candidates(self, generation: int) -> None:
        drained = self.candidates.drain_if_ready(self.has_remote_description)
        if drained:
            logging.info(f"Applying {len(drained)} queued candidate(s)")
        for candidate in drained:
            await self._step(
                generation, self.transport.add_candidate(candidate), "add queued candidate"
            )

    def _check_generation(self, generation: int) -> None:
        if generation != self.generation:
            raise NegotiationCancelled(generation)

    async def _step(self, generation: int, awaitable: Awaitable, step: str):
        """Await one transport or signaling operation under a generation.

        Raises:
            NegotiationCancelled: The attempt was superseded while waiting.
            NegotiationError: The operation failed; the machine is back in IDLE.
        """
        try:
            result = await awaitable
        except Exception as e:
            self._check_generation(generation)
            await self._fail(step, e)
        self._check_generation(generation)
        return result

    async def _fail(self, step: str, cause: Exception) -> None:
        error = NegotiationError(f"Failed to {step}: {cause}")
        logging.error(str(error))
        self.reset()
        if self.on_failure is not None:
            outcome = self.on_failure(error)
            if inspect.isawaitable(outcome):
                await outcome
        raise error from cause
