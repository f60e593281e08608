"""Exception types raised by rtc-chat."""


class RTCChatError(Exception):
    """Base class for all rtc-chat errors."""


class SignalingError(RTCChatError):
    """The signaling connection could not be opened or was lost."""


class NegotiationError(RTCChatError):
    """Applying a session description or ICE candidate failed.

    Raised after the negotiation state machine has already returned to idle
    and reported the failure to its listener.
    """


class NegotiationCancelled(RTCChatError):
    """A negotiation step finished after its attempt was superseded.

    Attributes:
        generation: Generation the stale step was started under.
    """

    def __init__(self, generation: int):
        super().__init__(f"Negotiation generation {generation} was superseded")
        self.generation = generation


class ReconnectError(RTCChatError):
    """A single reconnection attempt failed."""


class ReconnectExhaustedError(ReconnectError):
    """The reconnect budget is spent; no further attempts will be made.

    Attributes:
        max_attempts: The configured budget.
    """

    def __init__(self, max_attempts: int):
        super().__init__(
            f"Maximum reconnection attempts ({max_attempts}) reached"
        )
        self.max_attempts = max_attempts
