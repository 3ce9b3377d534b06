"""Pure decoding helpers for packed instruction payloads.

Every reader takes a buffer and an offset and returns (value, bytes_consumed).
Malformed input raises a DecodeError subclass, never IndexError/struct.error.
"""

from __future__ import annotations

import struct

from chainwatch.exceptions import InvalidUtf8Error, TruncatedPayloadError

DISCRIMINATOR_SIZE = 8

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


def _require(buf: bytes, offset: int, size: int, what: str) -> None:
    if offset < 0 or len(buf) - offset < size:
        raise TruncatedPayloadError(
            f"Need {size} bytes for {what} at offset {offset}, buffer has {len(buf)}",
            details={"offset": offset, "needed": size, "length": len(buf)},
        )


def read_u32(buf: bytes, offset: int = 0) -> tuple[int, int]:
    """Little-endian unsigned 32-bit integer."""
    _require(buf, offset, _U32.size, "u32")
    return _U32.unpack_from(buf, offset)[0], _U32.size


def read_u64(buf: bytes, offset: int = 0) -> tuple[int, int]:
    """Little-endian unsigned 64-bit integer."""
    _require(buf, offset, _U64.size, "u64")
    return _U64.unpack_from(buf, offset)[0], _U64.size


def read_string(buf: bytes, offset: int = 0) -> tuple[str, int]:
    """
    Length-prefixed UTF-8 string: u32 length L, then L bytes.

    Returns (text, 4 + L).
    """
    length, used = read_u32(buf, offset)
    start = offset + used
    _require(buf, start, length, "string body")
    raw = bytes(buf[start:start + length])
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidUtf8Error(
            f"String at offset {offset} is not valid UTF-8: {e}",
            details={"offset": offset, "length": length},
        ) from e
    return text, used + length


def encode_string(text: str) -> bytes:
    """Inverse of read_string."""
    raw = text.encode("utf-8")
    return _U32.pack(len(raw)) + raw


def matches_discriminator(payload: bytes, discriminator: bytes) -> bool:
    """Compare the first 8 payload bytes against a known discriminator."""
    if len(payload) < DISCRIMINATOR_SIZE or len(discriminator) != DISCRIMINATOR_SIZE:
        return False
    return bytes(payload[:DISCRIMINATOR_SIZE]) == bytes(discriminator)
