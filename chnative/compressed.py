"""LZ4-compressed framing of data blocks with CityHash checksums."""

from __future__ import annotations

import struct
from typing import Optional

from lz4 import block as lz4_block

from .cityhash import city_hash128_bytes
from .errors import CompressionError
from .streams import ArrayInput, InputStream, OutputStream, ZeroCopyInput
from .wire_format import read_bytes, read_fixed, write_bytes

HEADER_SIZE = 9
CHECKSUM_SIZE = 16
COMPRESSION_METHOD_LZ4 = 0x82
MAX_COMPRESSED_SIZE = 0x40000000

_HEADER = struct.Struct("<BII")


class CompressedInput(ZeroCopyInput):
    """Reads and decompresses checksummed LZ4 blocks from another stream.

    Used as a context manager, it raises CompressionError on exit if part
    of the current block was left unread.
    """

    def __init__(self, source: InputStream) -> None:
        self._source = source
        self._mem = ArrayInput()

    def __enter__(self) -> "CompressedInput":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None and not self._mem.exhausted():
            raise CompressionError("some data was not read")
        return False

    def _do_next(self, size: int) -> bytes:
        if self._mem.exhausted() and not self._decompress():
            return b""
        return self._mem.next(size)

    def _decompress(self) -> bool:
        source = self._source
        try:
            checksum = read_bytes(source, CHECKSUM_SIZE)
            method = read_fixed(source, "B")
        except EOFError:
            return False

        if method != COMPRESSION_METHOD_LZ4:
            raise CompressionError(f"unsupported compression method {method}")

        try:
            compressed = read_fixed(source, "I")
            original = read_fixed(source, "I")
        except EOFError:
            return False

        if compressed > MAX_COMPRESSED_SIZE:
            raise CompressionError("compressed data too big")
        if compressed < HEADER_SIZE:
            raise CompressionError("compressed size is smaller than the block header")

        header = _HEADER.pack(method, compressed, original)
        try:
            payload = read_bytes(source, compressed - HEADER_SIZE)
        except EOFError:
            return False

        if city_hash128_bytes(header + payload) != checksum:
            raise CompressionError("data was corrupted")

        if original == 0:
            data = b""
        else:
            try:
                data = lz4_block.decompress(payload, uncompressed_size=original)
            except (lz4_block.LZ4BlockError, ValueError) as error:
                raise CompressionError("can't decompress data") from error
            if len(data) != original:
                raise CompressionError("can't decompress data")

        self._mem.reset(data)
        return True


class CompressedOutput(OutputStream):
    """Compresses written data into checksummed LZ4 blocks.

    Each write is split into chunks of at most ``max_chunk_size`` bytes
    (the whole write when it is 0), and every chunk becomes one block.
    """

    def __init__(self, destination: OutputStream, max_chunk_size: int = 0) -> None:
        self._destination = destination
        self._max_chunk_size = max_chunk_size

    def _do_write(self, data: bytes) -> int:
        chunk_size = self._max_chunk_size if self._max_chunk_size > 0 else len(data)
        view = memoryview(data)
        for start in range(0, len(data), max(chunk_size, 1)):
            self._compress(bytes(view[start:start + chunk_size]))
        return len(data)

    def _do_flush(self) -> None:
        self._destination.flush()

    def _compress(self, chunk: bytes) -> None:
        try:
            payload = lz4_block.compress(chunk, store_size=False)
        except (lz4_block.LZ4BlockError, ValueError) as error:
            raise CompressionError(
                f"Failed to compress chunk of {len(chunk)} bytes, LZ4 error: {error}"
            ) from error
        if not payload:
            raise CompressionError(f"Failed to compress chunk of {len(chunk)} bytes")

        framed = _HEADER.pack(COMPRESSION_METHOD_LZ4, len(payload) + HEADER_SIZE, len(chunk)) + payload
        write_bytes(self._destination, city_hash128_bytes(framed))
        write_bytes(self._destination, framed)
        self._destination.flush()


def _optional_source(source: Optional[InputStream]) -> InputStream:
    return source if source is not None else ArrayInput()