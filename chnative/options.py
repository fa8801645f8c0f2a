"""Connection and TLS settings of a client."""

from __future__ import annotations

import dataclasses
import enum
import ssl
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, Optional, Tuple, Union

DEFAULT_VALUE = -1

Seconds = Union[int, float, timedelta]


class CompressionMethod(enum.IntEnum):
    """Methods of block compression."""

    NONE = -1
    LZ4 = 1


@dataclass(frozen=True)
class SSLCommand:
    """One extra TLS configuration command, with an optional value."""

    command: str
    value: Optional[str] = None


def _to_seconds(value: Seconds) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return value


def _format_number(value: Union[int, float]) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _to_command(item: Any) -> SSLCommand:
    if isinstance(item, SSLCommand):
        return item
    if isinstance(item, str):
        return SSLCommand(item)
    command, value = item
    return SSLCommand(command, value)


@dataclass(frozen=True)
class SSLOptions:
    """How to set up a TLS connection.

    Either a ready ``ssl_context`` is supplied, which is used as is, or the
    client builds one from the remaining settings. A value of -1 for the
    protocol versions, context options and host flags leaves the library
    default in place.
    """

    DEFAULT_VALUE = DEFAULT_VALUE

    ssl_context: Optional[ssl.SSLContext] = None
    use_default_ca_locations: bool = True
    path_to_ca_files: Tuple[str, ...] = ()
    path_to_ca_directory: str = ""
    min_protocol_version: int = DEFAULT_VALUE
    max_protocol_version: int = DEFAULT_VALUE
    context_options: int = DEFAULT_VALUE
    use_sni: bool = True
    skip_verification: bool = False
    host_flags: int = DEFAULT_VALUE
    configuration: Tuple[SSLCommand, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "path_to_ca_files", tuple(self.path_to_ca_files))
        object.__setattr__(
            self, "configuration", tuple(_to_command(item) for item in self.configuration)
        )

    def replace(self, **kwargs: Any) -> "SSLOptions":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **kwargs)

    def describe(self) -> str:
        """A one-line summary of the settings."""
        return (
            " SSL ("
            f" ssl_context: {'provided by user' if self.ssl_context is not None else 'created internally'}"
            f" use_default_ca_locations: {int(self.use_default_ca_locations)}"
            f" path_to_ca_files: {len(self.path_to_ca_files)} items"
            f" path_to_ca_directory: {self.path_to_ca_directory}"
            f" min_protocol_version: {self.min_protocol_version}"
            f" max_protocol_version: {self.max_protocol_version}"
            f" context_options: {self.context_options}"
            ")"
        )


@dataclass(frozen=True)
class ClientOptions:
    """Everything a client needs to connect to and talk with a server.

    Durations are in seconds. Instances are immutable; use ``replace`` to
    derive changed settings.
    """

    host: str = ""
    port: int = 9000
    default_database: str = "default"
    user: str = "default"
    password: str = ""
    rethrow_exceptions: bool = True
    ping_before_query: bool = False
    send_retries: int = 1
    retry_timeout: Seconds = 5
    compression_method: CompressionMethod = CompressionMethod.NONE
    tcp_keepalive: bool = False
    tcp_keepalive_idle: Seconds = 60
    tcp_keepalive_intvl: Seconds = 5
    tcp_keepalive_cnt: int = 3
    tcp_nodelay: bool = True
    backward_compatibility_lowcardinality_as_wrapped_column: bool = True
    max_compression_chunk_size: int = 65535
    ssl_options: Optional[SSLOptions] = field(default=None)

    def __post_init__(self) -> None:
        object.__setattr__(self, "compression_method", CompressionMethod(self.compression_method))
        for name in ("retry_timeout", "tcp_keepalive_idle", "tcp_keepalive_intvl"):
            object.__setattr__(self, name, _to_seconds(getattr(self, name)))
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")
        if self.send_retries < 0:
            raise ValueError(f"send_retries must not be negative: {self.send_retries}")

    def replace(self, **kwargs: Any) -> "ClientOptions":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **kwargs)

    def __str__(self) -> str:
        compression = "LZ4" if self.compression_method == CompressionMethod.LZ4 else "None"
        text = (
            f"Client({self.user}@{self.host}:{self.port}"
            f" ping_before_query:{int(self.ping_before_query)}"
            f" send_retries:{self.send_retries}"
            f" retry_timeout:{_format_number(self.retry_timeout)}"
            f" compression_method:{compression}"
        )
        if self.ssl_options is not None:
            text += self.ssl_options.describe()
        return text + ")"


def _iter_fields(options: ClientOptions) -> Iterable[str]:
    return (item.name for item in dataclasses.fields(options))