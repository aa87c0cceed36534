"""Shared test fixtures."""

import os

import pytest
from framebus import (
    BusConfig,
    Channel,
    DirectTransport,
    Envelope,
    MemoryStore,
    MessageBus,
    SharedStoreTransport,
    Transport,
    create_envelope,
    decode_envelope,
    encode_envelope,
)
from framebus.transport.base import RawHandler

ORIGIN = "https://app.example.com"
TRUSTED = ["*.example.com", "quiz.example.org"]


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(Transport):
    """Primary channel that keeps every wire it is asked to send."""

    channel = Channel.PRIMARY

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.on_raw: RawHandler | None = None

    async def start(self, on_raw: RawHandler) -> None:
        self.on_raw = on_raw

    def send(self, wire: str) -> int:
        self.sent.append(wire)
        return 1

    async def close(self) -> None:
        self.on_raw = None

    @property
    def envelopes(self) -> list[Envelope]:
        return [decode_envelope(w) for w in self.sent]

    @property
    def actions(self) -> list[str]:
        return [e.action for e in self.envelopes]


def make_config(peer_id: str = "app", **overrides) -> BusConfig:
    return BusConfig(origin=ORIGIN, peer_id=peer_id, trusted_domains=TRUSTED, **overrides)


def inbound(action: str, peer: str = "frame", payload=None, **kwargs) -> str:
    """Wire data for an envelope sent by another peer."""
    return encode_envelope(create_envelope(action=action, payload=payload, peer_id=peer, **kwargs))


@pytest.fixture
def nats_url() -> str:
    return os.environ.get("NATS_URL", "nats://localhost:4222")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def bus(clock: FakeClock) -> MessageBus:
    """A started bus with no linked contexts and a manual clock."""
    b = MessageBus(make_config(), DirectTransport(ORIGIN), clock=clock)
    await b.start()
    yield b  # type: ignore[misc]
    await b.close()


@pytest.fixture
async def recorded(clock: FakeClock) -> tuple[MessageBus, RecordingTransport]:
    """A started bus whose sends are captured instead of delivered."""
    transport = RecordingTransport()
    b = MessageBus(make_config(), transport, clock=clock)
    await b.start()
    yield b, transport  # type: ignore[misc]
    await b.close()


@pytest.fixture
async def linked_pair() -> tuple[MessageBus, MessageBus, MemoryStore]:
    """A top-level context and one nested child, joined by both channels."""
    store = MemoryStore()
    top_link = DirectTransport(ORIGIN)
    child_link = top_link.attach(DirectTransport(ORIGIN))
    top = MessageBus(
        make_config("top"),
        top_link,
        SharedStoreTransport(store, ORIGIN, cleanup_delay=0.05),
    )
    child = MessageBus(
        make_config("frame"),
        child_link,
        SharedStoreTransport(store, ORIGIN, cleanup_delay=0.05),
    )
    await top.start()
    await child.start()
    yield top, child, store  # type: ignore[misc]
    await child.close()
    await top.close()
