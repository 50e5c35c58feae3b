from __future__ import annotations
from typing import Optional, Protocol, runtime_checkable
import asyncio
from .errors import ConnectionClosedError
from .framing import read_frame, write_frame


@runtime_checkable
class Connection(Protocol):
    """
    The capability the auth engine needs from a transport connection.

    `remote_public_key` is the key the transport's own handshake established
    for the remote side, or None when the transport provides none.
    """

    remote_address: str
    remote_public_key: Optional[bytes]

    async def send(self, data: bytes) -> None: ...
    async def receive(self) -> bytes: ...
    async def close(self) -> None: ...


class StreamConnection:
    """Connection over an asyncio stream pair using length-prefixed frames."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 remote_public_key: Optional[bytes] = None):
        self.reader = reader
        self.writer = writer
        self.remote_public_key = remote_public_key
        peer = writer.get_extra_info("peername")
        if isinstance(peer, tuple):
            self.remote_address = str(peer[0])
        else:
            self.remote_address = str(peer or "unknown")

    async def send(self, data: bytes) -> None:
        if self.writer.is_closing():
            raise ConnectionClosedError("connection closed")
        try:
            await write_frame(self.writer, data)
        except (ConnectionError, OSError) as exc:
            raise ConnectionClosedError(str(exc)) from exc

    async def receive(self) -> bytes:
        try:
            return await read_frame(self.reader)
        except (asyncio.IncompleteReadError, ConnectionError, OSError) as exc:
            raise ConnectionClosedError("connection closed by peer") from exc

    async def close(self) -> None:
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass
