"""
framing.py: length-prefixed frames for asyncio streams, plus the JSON codec
used for handshake messages.

Each frame is a 4-byte little-endian unsigned length N followed by N bytes.
Handshake messages are small; anything above MAX_FRAME_SIZE is refused before
the body is read.
"""

import asyncio
import json
import struct
from typing import Any, Dict

from .errors import MalformedMessageError

MAX_FRAME_SIZE = 64 * 1024
LENGTH_STRUCT = struct.Struct("<I")


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """Read one frame. Raises asyncio.IncompleteReadError on EOF."""
    (length,) = LENGTH_STRUCT.unpack(await reader.readexactly(LENGTH_STRUCT.size))
    if length > MAX_FRAME_SIZE:
        raise MalformedMessageError(f"Frame too large: {length} > {MAX_FRAME_SIZE}")
    return await reader.readexactly(length)


async def write_frame(writer: asyncio.StreamWriter, payload: bytes) -> None:
    if len(payload) > MAX_FRAME_SIZE:
        raise ValueError("Frame exceeds maximum size")
    writer.write(LENGTH_STRUCT.pack(len(payload)) + payload)
    await writer.drain()


def encode_message(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_message(data: bytes) -> Dict[str, Any]:
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        # Keep the message short; no payload echo.
        raise MalformedMessageError(f"Invalid JSON frame: {exc}") from exc
    if not isinstance(obj, dict):
        raise MalformedMessageError("frame must be a JSON object")
    return obj
