"""Shared fakes for rtc-chat tests.

FakeTransport stands in for aiortc's RTCPeerConnection. Two fakes created from
the same FakeNetwork "connect" once the offerer has applied the answer: both
walk through connecting/checking to connected/completed and the offerer's
data channel is mirrored on the answering side.

LoopbackSignaling is a SignalingClient that talks to an in-process
SignalRelay instead of a websocket, keeping the single-consumer dispatch loop.
"""

import asyncio
import inspect
import itertools
import json
from collections import defaultdict

import pytest

from rtc_chat.client.peer import ChatPeer
from rtc_chat.client.signaling import SignalingClient
from rtc_chat.config import Config
from rtc_chat.exceptions import SignalingError
from rtc_chat.protocol import format_message, parse_message
from rtc_chat.server.relay import SignalRelay


class _Emitter:
    def __init__(self):
        self._handlers = defaultdict(list)

    def on(self, event, handler):
        self._handlers[event].append(handler)
        return handler

    def emit(self, event, *args):
        for handler in list(self._handlers[event]):
            outcome = handler(*args)
            if inspect.isawaitable(outcome):
                asyncio.ensure_future(outcome)


class FakeChannel(_Emitter):
    def __init__(self, label, ready_state="connecting"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.remote = None
        self.sent = []

    def send(self, data):
        if self.readyState != "open":
            raise RuntimeError("channel is not open")
        self.sent.append(data)
        if self.remote is not None and self.remote.readyState == "open":
            self.remote.emit("message", data)

    def open(self):
        self.readyState = "open"
        self.emit("open")

    def close(self):
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")


class FakeTransport(_Emitter):
    _ids = itertools.count()

    def __init__(self, network=None):
        super().__init__()
        self.id = next(self._ids)
        self.network = network
        self.connection_state = "new"
        self.ice_connection_state = "new"
        self.local_description = None
        self.remote_description = None
        self.applied_candidates = []
        self.early_candidates = []
        self.channel = None
        self.closed = False
        self.fail_steps = set()
        self.gate = None
        self.waiting = False

    def _maybe_fail(self, step):
        if step in self.fail_steps:
            raise RuntimeError(f"{step} failed")

    async def _pause(self):
        await asyncio.sleep(0)
        if self.gate is not None:
            self.waiting = True
            await self.gate.wait()
            self.waiting = False

    def create_data_channel(self, label):
        self.channel = FakeChannel(label)
        return self.channel

    async def create_offer(self):
        await self._pause()
        self._maybe_fail("create_offer")
        self.local_description = {"type": "offer", "sdp": f"offer:{self.id}"}
        if self.network is not None:
            self.network.offers[self.local_description["sdp"]] = self
        return dict(self.local_description)

    async def create_answer(self):
        await self._pause()
        self._maybe_fail("create_answer")
        self.local_description = {"type": "answer", "sdp": f"answer:{self.id}"}
        if self.network is not None:
            self.network.answers[self.local_description["sdp"]] = self
        return dict(self.local_description)

    async def set_remote_description(self, description):
        await asyncio.sleep(0)
        self._maybe_fail("set_remote_description")
        self.remote_description = description
        if self.network is not None and description.get("type") == "answer":
            answerer = self.network.answers.get(description.get("sdp"))
            if answerer is not None:
                asyncio.ensure_future(self.network.establish(self, answerer))

    async def add_candidate(self, candidate):
        self._maybe_fail("add_candidate")
        if self.remote_description is None:
            self.early_candidates.append(candidate)
        self.applied_candidates.append(candidate)

    def set_state(self, connection=None, ice=None):
        # aiortc updates the ICE state first and derives the connection state from it.
        if ice is not None:
            self.ice_connection_state = ice
            self.emit("iceconnectionstatechange")
        if connection is not None:
            self.connection_state = connection
            self.emit("connectionstatechange")

    def drop(self):
        """Simulate the link dying underneath the peer."""
        if self.channel is not None:
            self.channel.close()
        self.set_state("failed", "failed")

    async def close(self):
        if self.closed:
            return
        self.closed = True
        if self.channel is not None:
            self.channel.close()
        self.set_state("closed", "closed")


class FakeNetwork:
    def __init__(self):
        self.offers = {}
        self.answers = {}
        self.transports = []
        self.gate = None

    def create_transport(self):
        transport = FakeTransport(self)
        transport.gate = self.gate
        self.transports.append(transport)
        return transport

    async def establish(self, offerer, answerer):
        for transport in (offerer, answerer):
            transport.set_state("connecting", "checking")
        await asyncio.sleep(0)
        if offerer.closed or answerer.closed:
            return
        for transport in (offerer, answerer):
            transport.set_state("connected", "completed")
        await asyncio.sleep(0)
        if offerer.closed or answerer.closed or offerer.channel is None:
            return
        remote = FakeChannel(offerer.channel.label, ready_state="open")
        remote.remote = offerer.channel
        offerer.channel.remote = remote
        answerer.channel = remote
        answerer.emit("datachannel", remote)
        offerer.channel.open()


class LoopbackSignaling(SignalingClient):
    def __init__(self, relay):
        super().__init__(url="ws://loopback", connect_timeout=1.0)
        self.relay = relay
        self.inbox = asyncio.Queue()
        self.sent = []
        self.received = []
        # Cleared to hold incoming messages in the inbox.
        self.delivering = asyncio.Event()
        self.delivering.set()

    async def connect(self):
        self.client_id = self.relay.connect(self._deliver)
        self._connection_task = asyncio.ensure_future(self._pump())
        return self.client_id

    async def _deliver(self, text):
        await self.inbox.put(text)

    async def _pump(self):
        while True:
            raw = await self.inbox.get()
            try:
                if raw is None:
                    return
                await self.delivering.wait()
                data = parse_message(raw)
                self.received.append(data)
                await self.dispatch(data)
            finally:
                self.inbox.task_done()

    async def emit(self, msg_type, **fields):
        if self.client_id is None:
            raise SignalingError("Signaling client is not connected")
        text = format_message(msg_type, **fields)
        self.sent.append(json.loads(text))
        await self.relay.handle_message(self.client_id, text)

    async def close(self):
        if self.client_id is not None:
            await self.relay.disconnect(self.client_id)
            self.client_id = None
        if self._connection_task is not None:
            await self.inbox.put(None)
            await self._connection_task
            self._connection_task = None


class RecordingSignaling:
    """Minimal emit() target for state machine tests."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def emit(self, msg_type, **fields):
        if self.fail:
            raise SignalingError("relay unreachable")
        self.sent.append({"type": msg_type, **fields})

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


async def _wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for condition")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def relay():
    return SignalRelay()


@pytest.fixture
def signaling():
    return RecordingSignaling()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def make_loopback(relay):
    def factory():
        return LoopbackSignaling(relay)

    return factory


@pytest.fixture
def client_config():
    config = Config()
    config.client.ice_servers = []
    return config


@pytest.fixture
def make_peer(relay, network, client_config):
    """Build ChatPeers wired to the shared relay and fake network."""

    def factory(auto_reconnect=False, max_reconnect_attempts=3):
        client_config.client.auto_reconnect = auto_reconnect
        client_config.client.max_reconnect_attempts = max_reconnect_attempts
        return ChatPeer(
            signaling=LoopbackSignaling(relay),
            transport_factory=network.create_transport,
            config=client_config,
        )

    return factory
