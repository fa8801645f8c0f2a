"""Exceptions raised by the client and the server error codes it knows about."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterator, Optional


class ErrorCode(enum.IntEnum):
    """Error codes the server reports in its exception packets."""

    CHECKSUM_DOESNT_MATCH = 40
    CANNOT_PARSE_DATETIME = 41
    UNKNOWN_FUNCTION = 46
    UNKNOWN_IDENTIFIER = 47
    TABLE_ALREADY_EXISTS = 57
    UNKNOWN_TABLE = 60
    SYNTAX_ERROR = 62
    UNKNOWN_DATABASE = 81
    DATABASE_ALREADY_EXISTS = 82
    UNKNOWN_PACKET_FROM_CLIENT = 99
    UNEXPECTED_PACKET_FROM_CLIENT = 101
    RECEIVED_DATA_FOR_WRONG_QUERY_ID = 103
    ENGINE_REQUIRED = 119
    READONLY = 164
    UNKNOWN_USER = 192
    WRONG_PASSWORD = 193
    REQUIRED_PASSWORD = 194
    IP_ADDRESS_NOT_ALLOWED = 195
    LIMIT_EXCEEDED = 290
    UNKNOWN_DATABASE_ENGINE = 336
    UNKNOWN_EXCEPTION = 1002


class Error(Exception):
    """Base class of every error raised by this package."""


class ValidationError(Error):
    """Invalid arguments or data passed in by the caller."""


class ProtocolError(Error):
    """Malformed data on the wire or a failure to serialize it."""


class UnimplementedError(Error):
    """A feature of the protocol that is not supported."""


class InternalAssertionError(Error):
    """An internal consistency check failed."""


class TLSError(Error):
    """Failure to set up or use a TLS connection."""


class CompressionError(Error):
    """Failure to compress, decompress or verify a compressed block."""


@dataclass
class ServerExceptionInfo:
    """An exception as reported by the server, possibly with a nested cause."""

    code: int = 0
    name: str = ""
    display_text: str = ""
    stack_trace: str = ""
    nested: Optional["ServerExceptionInfo"] = None

    def chain(self) -> Iterator["ServerExceptionInfo"]:
        """Yield this exception followed by each nested one in turn."""
        current: Optional[ServerExceptionInfo] = self
        while current is not None:
            yield current
            current = current.nested


class ServerError(Error):
    """An exception received from the server."""

    def __init__(self, exception: ServerExceptionInfo) -> None:
        super().__init__(exception.display_text)
        self.exception = exception

    @property
    def code(self) -> int:
        """The server's error code."""
        return self.exception.code