import asyncio
import pytest
from meshtrust_core.config import AuthConfig
from meshtrust_core.engine import AuthEngine
from meshtrust_core.errors import ConnectionClosedError
from meshtrust_core.events import TrustEventBus
from meshtrust_core.identity import Identity
from meshtrust_core.trust import InMemoryTrustStore

_CLOSED = object()


class PipeEnd:
    """One side of an in-memory Connection pair."""

    def __init__(self, inbox, outbox, remote_address, remote_public_key=None):
        self._inbox = inbox
        self._outbox = outbox
        self.remote_address = remote_address
        self.remote_public_key = remote_public_key
        self.closed = False
        self.peer = None

    async def send(self, data: bytes) -> None:
        if self.closed or self.peer.closed:
            raise ConnectionClosedError("pipe closed")
        await self._outbox.put(data)

    async def receive(self) -> bytes:
        if self.closed:
            raise ConnectionClosedError("pipe closed")
        item = await self._inbox.get()
        if item is _CLOSED:
            raise ConnectionClosedError("pipe closed")
        return item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._inbox.put_nowait(_CLOSED)
        self._outbox.put_nowait(_CLOSED)


def make_pipe(server_sees_key=None, client_sees_key=None,
              server_sees_addr="198.51.100.7", client_sees_addr="198.51.100.1"):
    """Returns (server_end, client_end). Must be called inside a running loop."""
    a_to_b, b_to_a = asyncio.Queue(), asyncio.Queue()
    server = PipeEnd(b_to_a, a_to_b, server_sees_addr, server_sees_key)
    client = PipeEnd(a_to_b, b_to_a, client_sees_addr, client_sees_key)
    server.peer, client.peer = client, server
    return server, client


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def alice():
    return Identity.generate()


@pytest.fixture
def bob():
    return Identity.generate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return TrustEventBus()


@pytest.fixture
def store():
    return InMemoryTrustStore()


@pytest.fixture
def engine(alice, store, events, clock):
    return AuthEngine(alice, store, AuthConfig(store_provider="memory"), events=events, clock=clock)
