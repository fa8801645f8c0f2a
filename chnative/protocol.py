"""Packet codes and flags of the native protocol."""

from __future__ import annotations

import enum


class ServerCode(enum.IntEnum):
    """Packet types sent by the server."""

    HELLO = 0
    DATA = 1
    EXCEPTION = 2
    PROGRESS = 3
    PONG = 4
    END_OF_STREAM = 5
    PROFILE_INFO = 6
    TOTALS = 7
    EXTREMES = 8
    TABLES_STATUS_RESPONSE = 9
    LOG = 10

    def describe(self) -> str:
        """A short human-readable description of the packet."""
        return _SERVER_DESCRIPTIONS[self]


_SERVER_DESCRIPTIONS = {
    ServerCode.HELLO: "name, version, revision",
    ServerCode.DATA: "block of data, compressed or not",
    ServerCode.EXCEPTION: "exception raised while processing the query",
    ServerCode.PROGRESS: "query progress: rows read, bytes read",
    ServerCode.PONG: "reply to ping",
    ServerCode.END_OF_STREAM: "all packets have been sent",
    ServerCode.PROFILE_INFO: "profiling information",
    ServerCode.TOTALS: "block of data with totals, compressed or not",
    ServerCode.EXTREMES: "block of data with minimums and maximums",
    ServerCode.TABLES_STATUS_RESPONSE: "reply to a tables status request",
    ServerCode.LOG: "system log of query execution",
}


class ClientCode(enum.IntEnum):
    """Packet types sent by the client."""

    HELLO = 0
    QUERY = 1
    DATA = 2
    CANCEL = 3
    PING = 4


class CompressionState(enum.IntEnum):
    """Whether data blocks are compressed."""

    DISABLE = 0
    ENABLE = 1


class Stage(enum.IntEnum):
    """The stage up to which the server processes a query."""

    COMPLETE = 2