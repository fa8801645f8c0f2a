"""Byte input and output streams layered over sockets, buffers and memory."""

from __future__ import annotations

import abc
from typing import Optional

DEFAULT_BUFFER_SIZE = 8192


class InputStream(abc.ABC):
    """A source of bytes."""

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; an empty result means no more data."""
        return self._do_read(size)

    def read_byte(self) -> Optional[int]:
        """Read one byte, or return None when the stream is exhausted."""
        data = self._do_read(1)
        return data[0] if len(data) == 1 else None

    @abc.abstractmethod
    def skip(self, size: int) -> bool:
        """Skip ``size`` bytes; return False if the data ran out first."""

    @abc.abstractmethod
    def _do_read(self, size: int) -> bytes:
        """Return up to ``size`` bytes."""


class ZeroCopyInput(InputStream):
    """An input stream that hands out chunks of its own storage."""

    def next(self, size: int) -> bytes:
        """Return the next chunk of at most ``size`` bytes."""
        return self._do_next(size)

    def skip(self, size: int) -> bool:
        while size > 0:
            chunk = self._do_next(size)
            if not chunk:
                return False
            size -= len(chunk)
        return True

    @abc.abstractmethod
    def _do_next(self, size: int) -> bytes:
        """Return the next chunk of at most ``size`` bytes."""

    def _do_read(self, size: int) -> bytes:
        return self._do_next(size)


class ArrayInput(ZeroCopyInput):
    """An input stream backed by an in-memory block of bytes."""

    def __init__(self, data: bytes = b"") -> None:
        self.reset(data)

    def avail(self) -> int:
        """Number of bytes left in the stream."""
        return len(self._data) - self._pos

    def exhausted(self) -> bool:
        """Whether all data has been consumed."""
        return self.avail() == 0

    def reset(self, data: bytes) -> None:
        """Start reading from a new block of bytes."""
        self._data = memoryview(bytes(data))
        self._pos = 0

    def _do_next(self, size: int) -> bytes:
        count = min(self.avail(), max(size, 0))
        chunk = self._data[self._pos:self._pos + count].tobytes()
        self._pos += count
        return chunk


class BufferedInput(ZeroCopyInput):
    """Reads from another stream through an internal buffer."""

    def __init__(self, source: InputStream, buflen: int = DEFAULT_BUFFER_SIZE) -> None:
        self._source = source
        self._buflen = buflen
        self._array = ArrayInput()

    def reset(self) -> None:
        """Discard any buffered data."""
        self._array.reset(b"")

    def _refill(self) -> None:
        self._array.reset(self._source.read(self._buflen))

    def _do_next(self, size: int) -> bytes:
        if self._array.exhausted():
            self._refill()
        return self._array.next(size)

    def _do_read(self, size: int) -> bytes:
        if self._array.exhausted():
            if size > self._buflen // 2:
                return self._source.read(size)
            self._refill()
        return self._array.read(size)


class OutputStream(abc.ABC):
    """A sink of bytes."""

    def write(self, data: bytes) -> int:
        """Write some of ``data`` and return how many bytes were taken."""
        return self._do_write(bytes(data))

    def flush(self) -> None:
        """Push any buffered data to its destination."""
        self._do_flush()

    def _do_flush(self) -> None:
        return None

    @abc.abstractmethod
    def _do_write(self, data: bytes) -> int:
        """Write some of ``data`` and return how many bytes were taken."""


class ArrayOutput(OutputStream):
    """An output stream into a fixed-capacity block of memory."""

    def __init__(self, capacity: int) -> None:
        self.reset(capacity)

    def avail(self) -> int:
        """Free space left in the block."""
        return len(self._buffer) - self._pos

    def size(self) -> int:
        """Number of bytes written so far."""
        return self._pos

    def getvalue(self) -> bytes:
        """The bytes written so far."""
        return bytes(self._buffer[:self._pos])

    def reset(self, capacity: int) -> None:
        """Start over with an empty block of ``capacity`` bytes."""
        self._buffer = bytearray(capacity)
        self._pos = 0

    def _do_write(self, data: bytes) -> int:
        count = min(len(data), self.avail())
        self._buffer[self._pos:self._pos + count] = data[:count]
        self._pos += count
        return count


class BufferOutput(OutputStream):
    """Writes into a bytearray from its start, growing it when needed."""

    def __init__(self, buffer: bytearray) -> None:
        self.buffer = buffer
        self._pos = 0

    def _do_write(self, data: bytes) -> int:
        end = self._pos + len(data)
        self.buffer[self._pos:end] = data
        self._pos = end
        return len(data)


class BufferedOutput(OutputStream):
    """Collects writes in an internal buffer before passing them on.

    Data reaches the destination when the buffer is full or on flush();
    nothing is flushed implicitly when the object is discarded.
    """

    def __init__(self, destination: OutputStream, buflen: int = DEFAULT_BUFFER_SIZE) -> None:
        self._destination = destination
        self._buflen = buflen
        self._array = ArrayOutput(buflen)

    def reset(self) -> None:
        """Discard any buffered data."""
        self._array.reset(self._buflen)

    def _do_flush(self) -> None:
        if self._array.size():
            self._destination.write(self._array.getvalue())
            self._destination.flush()
            self._array.reset(self._buflen)

    def _do_write(self, data: bytes) -> int:
        if self._array.avail() < len(data):
            self.flush()
            if len(data) > self._buflen // 2:
                return self._destination.write(data)
        return self._array.write(data)