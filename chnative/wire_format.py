"""Encoding of integers, fixed-size values and strings on the wire."""

from __future__ import annotations

import functools
import struct
from typing import Any, Union

from .errors import ProtocolError
from .streams import InputStream, OutputStream

MAX_VARINT_BYTES = 10
MAX_STRING_SIZE = 0x00FFFFFF
_UINT64_MASK = (1 << 64) - 1


@functools.lru_cache(maxsize=None)
def _struct(fmt: str) -> struct.Struct:
    if not (fmt and fmt[0] in "<>!=@"):
        fmt = "<" + fmt
    return struct.Struct(fmt)


def read_all(stream: InputStream, size: int) -> bytes:
    """Read exactly ``size`` bytes or raise EOFError."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    if remaining > 0:
        raise EOFError(f"expected {size} bytes, got only {size - remaining}")
    return b"".join(chunks)


def write_all(stream: OutputStream, data: bytes) -> None:
    """Write all of ``data`` or raise ProtocolError."""
    view = memoryview(bytes(data))
    total = len(view)
    written = 0
    while written < total:
        count = stream.write(view[written:])
        if not count:
            break
        written += count
    if written < total:
        raise ProtocolError(f"Failed to write {total} bytes, only written {written}")


def read_varint(stream: InputStream) -> int:
    """Read an unsigned LEB128 integer of at most 64 bits."""
    value = 0
    for index in range(MAX_VARINT_BYTES):
        byte = stream.read_byte()
        if byte is None:
            raise EOFError("unexpected end of stream while reading varint")
        value |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            return value & _UINT64_MASK
    raise ProtocolError(f"varint is longer than {MAX_VARINT_BYTES} bytes")


def write_varint(stream: OutputStream, value: int) -> None:
    """Write an unsigned 64-bit integer as LEB128."""
    if not 0 <= value <= _UINT64_MASK:
        raise ValueError(f"varint value out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            break
    write_all(stream, bytes(out))


def read_uint64(stream: InputStream) -> int:
    """Read an unsigned integer encoded as a varint."""
    return read_varint(stream)


def write_uint64(stream: OutputStream, value: int) -> None:
    """Write an unsigned integer encoded as a varint."""
    write_varint(stream, value)


def read_fixed(stream: InputStream, fmt: str) -> Any:
    """Read a fixed-size value described by a struct format.

    Little-endian is assumed unless the format names a byte order. A format
    of one field yields that value, otherwise a tuple.
    """
    layout = _struct(fmt)
    values = layout.unpack(read_all(stream, layout.size))
    return values[0] if len(values) == 1 else values


def write_fixed(stream: OutputStream, fmt: str, value: Any) -> None:
    """Write a fixed-size value described by a struct format."""
    layout = _struct(fmt)
    data = layout.pack(*value) if isinstance(value, tuple) else layout.pack(value)
    write_all(stream, data)


def read_bytes(stream: InputStream, size: int) -> bytes:
    """Read exactly ``size`` raw bytes."""
    return read_all(stream, size)


def write_bytes(stream: OutputStream, data: bytes) -> None:
    """Write raw bytes."""
    write_all(stream, data)


def _read_length(stream: InputStream) -> int:
    length = read_varint(stream)
    if length > MAX_STRING_SIZE:
        raise ProtocolError(f"string length {length} exceeds limit {MAX_STRING_SIZE}")
    return length


def read_binary_string(stream: InputStream) -> bytes:
    """Read a length-prefixed byte string."""
    return read_all(stream, _read_length(stream))


def read_string(stream: InputStream) -> str:
    """Read a length-prefixed string and decode it as UTF-8."""
    return read_binary_string(stream).decode("utf-8", "surrogateescape")


def write_string(stream: OutputStream, value: Union[str, bytes]) -> None:
    """Write a length-prefixed string; text is encoded as UTF-8."""
    data = value.encode("utf-8", "surrogateescape") if isinstance(value, str) else bytes(value)
    write_varint(stream, len(data))
    write_all(stream, data)


def skip_string(stream: InputStream) -> None:
    """Skip over a length-prefixed string."""
    length = _read_length(stream)
    if not stream.skip(length):
        raise EOFError("unexpected end of stream while skipping string")