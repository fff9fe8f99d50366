"""Length-prefixed binary framing spoken with a persistent engine worker.

Request:   <u32 LE len(query)> <u32 LE len(environment)> <query utf-8> <environment utf-8>
Response:  <u32 LE len(result)> <result utf-8>

Lengths are byte counts of the UTF-8 encoding.  A reader blocks until the
declared number of bytes has arrived; anything shorter (including end of
stream) is a ProtocolError, never a truncated string.
"""
from __future__ import annotations

import struct
from typing import BinaryIO, Optional, Tuple

from .errors import ProtocolError

_U32 = struct.Struct('<I')
HEADER_LEN = _U32.size


def _pack_len(data: bytes) -> bytes:
    try:
        return _U32.pack(len(data))
    except struct.error as e:
        raise ProtocolError(f'field too large to frame: {len(data)} bytes') from e


def encode_request(query: str, environment: str) -> bytes:
    q = query.encode('utf-8')
    env = environment.encode('utf-8')
    return _pack_len(q) + _pack_len(env) + q + env


def encode_response(result: str) -> bytes:
    data = result.encode('utf-8')
    return _pack_len(data) + data


def write_frame(stream: BinaryIO, frame: bytes) -> None:
    """Write an already encoded frame and flush it.

    OSError from the stream propagates; the caller treats the connection as
    dead.
    """
    stream.write(frame)
    stream.flush()


def write_request(stream: BinaryIO, query: str, environment: str) -> None:
    write_frame(stream, encode_request(query, environment))


def write_response(stream: BinaryIO, result: str) -> None:
    write_frame(stream, encode_response(result))


def read_exact(stream: BinaryIO, n: int) -> bytes:
    """Read exactly ``n`` bytes, looping over short reads."""
    chunks = []
    remaining = n
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            got = n - remaining
            raise ProtocolError(f'short read: expected {n} bytes, got {got}')
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def _read_len(stream: BinaryIO) -> int:
    return _U32.unpack(read_exact(stream, HEADER_LEN))[0]


def _read_string(stream: BinaryIO, length: int) -> str:
    data = read_exact(stream, length)
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise ProtocolError(f'invalid utf-8 in frame: {e}') from e


def read_response(stream: BinaryIO, max_length: Optional[int] = None) -> str:
    length = _read_len(stream)
    if max_length is not None and length > max_length:
        raise ProtocolError(f'response length {length} exceeds limit {max_length}')
    return _read_string(stream, length)


def read_request(stream: BinaryIO) -> Optional[Tuple[str, str]]:
    """Read one framed request; used by the engine side of the protocol.

    Returns None when the stream ends cleanly before a new frame starts.
    """
    first = stream.read(HEADER_LEN * 2)
    if not first:
        return None
    header = first + read_exact(stream, HEADER_LEN * 2 - len(first))
    query_len = _U32.unpack_from(header, 0)[0]
    env_len = _U32.unpack_from(header, HEADER_LEN)[0]
    query = _read_string(stream, query_len)
    environment = _read_string(stream, env_len)
    return query, environment
