"""TCP connections to the server and the byte streams over them."""

from __future__ import annotations

import abc
import errno
import os
import select
import socket
import time
from typing import List, Tuple

from .options import ClientOptions
from .streams import InputStream, OutputStream

CONNECT_TIMEOUT = 5.0

LOCAL_NAMES = frozenset(
    {
        "localhost",
        "localhost.localdomain",
        "localhost6",
        "localhost6.localdomain6",
        "::1",
        "127.0.0.1",
    }
)

_IN_PROGRESS = {
    code
    for code in (
        errno.EINPROGRESS,
        errno.EAGAIN,
        errno.EWOULDBLOCK,
        getattr(errno, "WSAEWOULDBLOCK", None),
        getattr(errno, "WSAEINPROGRESS", None),
    )
    if code is not None
}

AddrInfo = Tuple[int, int, int, str, tuple]


def is_local_name(host: str) -> bool:
    """Whether ``host`` names the local machine."""
    return host in LOCAL_NAMES


class NetworkAddress:
    """A resolved host and port to connect to."""

    def __init__(self, host: str, port: str = "0") -> None:
        self.host = host
        flags = 0 if is_local_name(host) else socket.AI_ADDRCONFIG
        self.info: List[AddrInfo] = socket.getaddrinfo(
            host, port, socket.AF_UNSPEC, socket.SOCK_STREAM, 0, flags
        )


class SocketBase(abc.ABC):
    """A connection that can produce input and output streams."""

    @abc.abstractmethod
    def make_input_stream(self) -> InputStream:
        """A stream reading from the connection."""

    @abc.abstractmethod
    def make_output_stream(self) -> OutputStream:
        """A stream writing to the connection."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close the connection."""

    def __enter__(self) -> "SocketBase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _try_connect(info: AddrInfo) -> Tuple[socket.socket | None, int]:
    family, socktype, proto, _, sockaddr = info
    try:
        sock = socket.socket(family, socktype, proto)
    except OSError:
        return None, 0
    try:
        sock.setblocking(False)
        err = sock.connect_ex(sockaddr)
        if err == 0:
            sock.setblocking(True)
            return sock, 0
        if err in _IN_PROGRESS:
            _, writable, failed = select.select([], [sock], [sock], CONNECT_TIMEOUT)
            if writable or failed:
                err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
                if not err:
                    sock.setblocking(True)
                    return sock, 0
                sock.close()
                return None, err
        sock.close()
        return None, 0
    except BaseException:
        sock.close()
        raise


def _socket_connect(address: NetworkAddress) -> socket.socket:
    last_err = 0
    for info in address.info:
        sock, err = _try_connect(info)
        if sock is not None:
            return sock
        if err:
            last_err = err
    if last_err > 0:
        raise OSError(last_err, f"fail to connect: {os.strerror(last_err)}")
    raise OSError("fail to connect")


class Socket(SocketBase):
    """A plain TCP connection."""

    def __init__(self, address: NetworkAddress) -> None:
        self.address = address
        self.handle: socket.socket = _socket_connect(address)

    def close(self) -> None:
        self.handle.close()

    def set_tcp_keepalive(self, idle: int, interval: int, count: int) -> None:
        """Turn on keep-alive probes; options the platform lacks are skipped."""
        settings = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
        idle_option = getattr(socket, "TCP_KEEPIDLE", None) or getattr(socket, "TCP_KEEPALIVE", None)
        if idle_option is not None:
            settings.append((socket.IPPROTO_TCP, idle_option, int(idle)))
        if hasattr(socket, "TCP_KEEPINTVL"):
            settings.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, int(interval)))
        if hasattr(socket, "TCP_KEEPCNT"):
            settings.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, int(count)))
        for level, option, value in settings:
            try:
                self.handle.setsockopt(level, option, value)
            except OSError:
                pass

    def set_tcp_nodelay(self, nodelay: bool) -> None:
        """Turn Nagle's algorithm off or on."""
        try:
            self.handle.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, int(bool(nodelay)))
        except OSError:
            pass

    def make_input_stream(self) -> InputStream:
        return SocketInput(self.handle)

    def make_output_stream(self) -> OutputStream:
        return SocketOutput(self.handle)


class SocketInput(InputStream):
    """Reads directly from a socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def skip(self, size: int) -> bool:
        return False

    def _do_read(self, size: int) -> bytes:
        if size <= 0:
            return b""
        data = self._sock.recv(size)
        if not data:
            raise ConnectionError("closed")
        return data


class SocketOutput(OutputStream):
    """Writes directly to a socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def _do_write(self, data: bytes) -> int:
        try:
            self._sock.sendall(data)
        except OSError as error:
            raise OSError(error.errno, f"fail to send {len(data)} bytes of data") from error
        return len(data)


class SocketFactory(abc.ABC):
    """Creates connections to the server."""

    @abc.abstractmethod
    def connect(self, options: ClientOptions) -> SocketBase:
        """Open a connection as the options describe."""

    def sleep_for(self, seconds: float) -> None:
        """Wait before the next connection attempt."""
        time.sleep(seconds)


class NonSecureSocketFactory(SocketFactory):
    """Creates plain TCP connections."""

    def connect(self, options: ClientOptions) -> SocketBase:
        address = NetworkAddress(options.host, str(options.port))
        sock = self._do_connect(address)
        self._set_socket_options(sock, options)
        return sock

    def _do_connect(self, address: NetworkAddress) -> Socket:
        return Socket(address)

    def _set_socket_options(self, sock: Socket, options: ClientOptions) -> None:
        if options.tcp_keepalive:
            sock.set_tcp_keepalive(
                int(options.tcp_keepalive_idle),
                int(options.tcp_keepalive_intvl),
                int(options.tcp_keepalive_cnt),
            )
        if options.tcp_nodelay:
            sock.set_tcp_nodelay(True)