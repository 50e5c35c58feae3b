import asyncio
import pytest
from meshtrust_core.config import AuthConfig
from meshtrust_core.connection import Connection, StreamConnection
from meshtrust_core.engine import AuthEngine, AuthOutcome, AuthReason
from meshtrust_core.errors import ConnectionClosedError, MalformedMessageError
from meshtrust_core.framing import LENGTH_STRUCT, MAX_FRAME_SIZE, decode_message, read_frame
from meshtrust_core.identity import Identity
from meshtrust_core.trust import InMemoryTrustStore, TrustStatus


def test_decode_rejects_non_objects():
    with pytest.raises(MalformedMessageError):
        decode_message(b"\x80")
    with pytest.raises(MalformedMessageError):
        decode_message(b'"just a string"')
    assert decode_message(b'{"type":"x"}') == {"type": "x"}


def test_oversized_frame_is_refused():
    async def run():
        reader = asyncio.StreamReader()
        reader.feed_data(LENGTH_STRUCT.pack(MAX_FRAME_SIZE + 1))
        with pytest.raises(MalformedMessageError):
            await read_frame(reader)

    asyncio.run(run())


def test_handshake_over_tcp():
    alice, bob = Identity.generate(), Identity.generate()
    store = InMemoryTrustStore()
    server_engine = AuthEngine(alice, store, AuthConfig(store_provider="memory"))
    client_engine = AuthEngine(bob, InMemoryTrustStore(), AuthConfig(store_provider="memory"))

    async def run():
        outcomes = asyncio.Queue()

        async def on_connect(reader, writer):
            # This transport has no identity layer of its own.
            conn = StreamConnection(reader, writer)
            assert isinstance(conn, Connection)
            await outcomes.put(await server_engine.handle_inbound_handshake(conn))
            await conn.close()

        server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        client = StreamConnection(reader, writer, remote_public_key=alice.public_key)
        outbound = await client_engine.handle_outbound_handshake(client)
        inbound = await asyncio.wait_for(outcomes.get(), timeout=5)
        await client.close()
        with pytest.raises(ConnectionClosedError):
            await client.send(b"late")
        server.close()
        await server.wait_closed()
        return inbound, outbound

    inbound, outbound = asyncio.run(run())
    assert inbound == AuthOutcome(True, bob.id, AuthReason.OK)
    assert outbound == AuthOutcome(True, alice.id, AuthReason.OK)
    assert store.get(bob.id).status is TrustStatus.PENDING_INBOUND
