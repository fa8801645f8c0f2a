"""A client for the server's native TCP protocol."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .block import Block, Column
from .compressed import CompressedInput, CompressedOutput
from .errors import ProtocolError, ServerError, ServerExceptionInfo, UnimplementedError
from .net import NonSecureSocketFactory, SocketBase, SocketFactory
from .options import ClientOptions, CompressionMethod
from .protocol import ClientCode, CompressionState, ServerCode, Stage
from .streams import BufferedInput, BufferedOutput, InputStream, OutputStream
from .wire_format import (
    read_fixed,
    read_string,
    read_varint,
    skip_string,
    write_fixed,
    write_string,
    write_varint,
)

DBMS_NAME = "ClickHouse"
DBMS_VERSION_MAJOR = 2
DBMS_VERSION_MINOR = 1

DBMS_MIN_REVISION_WITH_TEMPORARY_TABLES = 50264
DBMS_MIN_REVISION_WITH_TOTAL_ROWS_IN_PROGRESS = 51554
DBMS_MIN_REVISION_WITH_BLOCK_INFO = 51903
DBMS_MIN_REVISION_WITH_CLIENT_INFO = 54032
DBMS_MIN_REVISION_WITH_SERVER_TIMEZONE = 54058
DBMS_MIN_REVISION_WITH_QUOTA_KEY_IN_CLIENT_INFO = 54060
DBMS_MIN_REVISION_WITH_TIME_ZONE_PARAMETER_IN_DATETIME_DATA_TYPE = 54337
DBMS_MIN_REVISION_WITH_SERVER_DISPLAY_NAME = 54372
DBMS_MIN_REVISION_WITH_VERSION_PATCH = 54401
DBMS_MIN_REVISION_WITH_LOW_CARDINALITY_TYPE = 54405

REVISION = DBMS_MIN_REVISION_WITH_LOW_CARDINALITY_TYPE

DEFAULT_QUERY_ID = ""
CLIENT_NAME = f"{DBMS_NAME} client"
INITIAL_ADDRESS = "[::ffff:127.0.0.1]:0"
IFACE_TYPE_TCP = 1
QUERY_KIND_INITIAL = 1

# Called with a type name and whether LowCardinality columns should be
# represented by their wrapped column; returns None for unknown types.
ColumnFactory = Callable[[str, bool], Optional[Column]]


@dataclass
class ServerInfo:
    """What the server reported about itself during the handshake."""

    name: str = ""
    timezone: str = ""
    display_name: str = ""
    version_major: int = 0
    version_minor: int = 0
    version_patch: int = 0
    revision: int = 0


@dataclass
class Profile:
    """Profiling information sent by the server for a query."""

    rows: int = 0
    blocks: int = 0
    bytes: int = 0
    applied_limit: bool = False
    rows_before_limit: int = 0
    calculated_rows_before_limit: bool = False


@dataclass
class Progress:
    """Progress of a running query."""

    rows: int = 0
    bytes: int = 0
    total_rows: int = 0


@dataclass
class _QueryEvents:
    on_data: Optional[Callable[[Block], None]] = None
    on_data_cancelable: Optional[Callable[[Block], bool]] = None
    on_progress: Optional[Callable[[Progress], None]] = None
    on_profile: Optional[Callable[[Profile], None]] = None
    on_finish: Optional[Callable[[], None]] = None
    on_exception: Optional[Callable[[ServerExceptionInfo], None]] = None


def quote_identifier(name: str) -> str:
    """Quote a column name with backticks, doubling any backtick inside."""
    return "`" + name.replace("`", "``") + "`"


def default_socket_factory(options: ClientOptions) -> SocketFactory:
    """A TLS factory when the options carry SSL settings, a plain one otherwise."""
    if options.ssl_options is not None:
        from .tls import SSLSocketFactory

        return SSLSocketFactory(options)
    return NonSecureSocketFactory()


class Client:
    """A connection to a server that runs queries and inserts blocks."""

    def __init__(
        self,
        options: Optional[ClientOptions] = None,
        socket_factory: Optional[SocketFactory] = None,
        column_factory: Optional[ColumnFactory] = None,
    ) -> None:
        self.options = options if options is not None else ClientOptions()
        self._socket_factory = (
            socket_factory if socket_factory is not None else default_socket_factory(self.options)
        )
        self._column_factory = column_factory
        self._events: Optional[_QueryEvents] = None
        self._compression = CompressionState.DISABLE
        self._socket: Optional[SocketBase] = None
        self._input: Optional[InputStream] = None
        self._output: Optional[OutputStream] = None
        self._server_info = ServerInfo()

        attempt = 0
        while True:
            try:
                self.reset_connection()
                break
            except OSError:
                attempt += 1
                if attempt > self.options.send_retries:
                    raise
                self._socket_factory.sleep_for(self.options.retry_timeout)

        if self.options.compression_method != CompressionMethod.NONE:
            self._compression = CompressionState.ENABLE

    # Public interface

    def execute(
        self,
        query: str,
        *,
        query_id: str = DEFAULT_QUERY_ID,
        on_data: Optional[Callable[[Block], None]] = None,
        on_data_cancelable: Optional[Callable[[Block], bool]] = None,
        on_progress: Optional[Callable[[Progress], None]] = None,
        on_profile: Optional[Callable[[Profile], None]] = None,
        on_finish: Optional[Callable[[], None]] = None,
        on_exception: Optional[Callable[[ServerExceptionInfo], None]] = None,
    ) -> None:
        """Run a query, passing what the server sends to the given callbacks."""
        self._events = _QueryEvents(
            on_data, on_data_cancelable, on_progress, on_profile, on_finish, on_exception
        )
        try:
            if self.options.ping_before_query:
                self._retry_guard(self.ping)
            self._send_query(query, query_id)
            while self._receive_packet()[0]:
                pass
        finally:
            self._events = None

    def select(
        self, query: str, callback: Callable[[Block], None], *, query_id: str = DEFAULT_QUERY_ID
    ) -> None:
        """Run a query and pass every received block to ``callback``."""
        self.execute(query, query_id=query_id, on_data=callback)

    def select_cancelable(
        self, query: str, callback: Callable[[Block], bool], *, query_id: str = DEFAULT_QUERY_ID
    ) -> None:
        """Run a query; the query is cancelled when ``callback`` returns False."""
        self.execute(query, query_id=query_id, on_data_cancelable=callback)

    def insert(self, table_name: str, block: Block, *, query_id: str = DEFAULT_QUERY_ID) -> None:
        """Insert the rows of ``block`` into ``table_name``."""
        if self.options.ping_before_query:
            self._retry_guard(self.ping)

        fields = ",".join(quote_identifier(item.name) for item in block)
        self._send_query(f"INSERT INTO {table_name} ( {fields} ) VALUES", query_id)

        while True:
            ok, packet = self._receive_packet()
            if not ok:
                raise ProtocolError("fail to receive data packet")
            if packet == ServerCode.DATA:
                break

        self._send_data(block)
        self._send_data(Block())

        eos_packet = 0
        while True:
            ok, packet = self._receive_packet()
            if packet is not None:
                eos_packet = packet
            if not ok:
                break

        if (
            eos_packet not in (ServerCode.END_OF_STREAM, ServerCode.EXCEPTION, ServerCode.LOG)
            and self.options.rethrow_exceptions
        ):
            got = str(eos_packet) if eos_packet else "nothing"
            raise ProtocolError(
                "unexpected packet from server while receiving end of query, expected "
                f"(expected Exception, EndOfStream or Log, got: {got})"
            )

    def ping(self) -> None:
        """Check that the server is alive."""
        write_varint(self._output, ClientCode.PING)
        self._output.flush()
        ok, packet = self._receive_packet()
        if not ok or packet != ServerCode.PONG:
            raise ProtocolError("fail to ping server")

    def reset_connection(self) -> None:
        """Open a new connection and repeat the handshake."""
        self._initialize_streams(self._socket_factory.connect(self.options))
        if not self._handshake():
            raise ProtocolError(f"fail to connect to {self.options.host}")

    def server_info(self) -> ServerInfo:
        """What the server reported during the last handshake."""
        return self._server_info

    def close(self) -> None:
        """Close the connection."""
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Connection handling

    def _initialize_streams(self, sock: SocketBase) -> None:
        output = BufferedOutput(sock.make_output_stream())
        input_stream = BufferedInput(sock.make_input_stream())
        old = self._socket
        self._input, self._output, self._socket = input_stream, output, sock
        if old is not None:
            old.close()

    def _retry_guard(self, func: Callable[[], None]) -> None:
        for attempt in itertools.count():
            try:
                func()
                return
            except OSError:
                ok = True
                try:
                    self._socket_factory.sleep_for(self.options.retry_timeout)
                    self.reset_connection()
                except Exception:
                    ok = False
                if not ok and attempt >= self.options.send_retries:
                    raise

    def _handshake(self) -> bool:
        self._send_hello()
        return self._receive_hello()

    def _send_hello(self) -> None:
        out = self._output
        write_varint(out, ClientCode.HELLO)
        write_string(out, CLIENT_NAME)
        write_varint(out, DBMS_VERSION_MAJOR)
        write_varint(out, DBMS_VERSION_MINOR)
        write_varint(out, REVISION)
        write_string(out, self.options.default_database)
        write_string(out, self.options.user)
        write_string(out, self.options.password)
        out.flush()

    def _receive_hello(self) -> bool:
        source = self._input
        try:
            packet_type = read_varint(source)
        except EOFError:
            return False

        if packet_type == ServerCode.HELLO:
            info = self._server_info
            try:
                info.name = read_string(source)
                info.version_major = read_varint(source)
                info.version_minor = read_varint(source)
                info.revision = read_varint(source)
                if info.revision >= DBMS_MIN_REVISION_WITH_SERVER_TIMEZONE:
                    info.timezone = read_string(source)
                if info.revision >= DBMS_MIN_REVISION_WITH_SERVER_DISPLAY_NAME:
                    info.display_name = read_string(source)
                if info.revision >= DBMS_MIN_REVISION_WITH_VERSION_PATCH:
                    info.version_patch = read_varint(source)
            except EOFError:
                return False
            return True
        if packet_type == ServerCode.EXCEPTION:
            self._receive_exception(rethrow=True)
        return False

    # Receiving

    def _receive_packet(self) -> Tuple[bool, Optional[int]]:
        source = self._input
        try:
            packet_type = read_varint(source)
        except EOFError:
            return False, None
        events = self._events

        if packet_type == ServerCode.DATA:
            if not self._receive_data():
                raise ProtocolError("can't read data packet from input stream")
            return True, packet_type

        if packet_type == ServerCode.EXCEPTION:
            self._receive_exception()
            return False, packet_type

        if packet_type == ServerCode.PROFILE_INFO:
            try:
                profile = Profile(
                    rows=read_varint(source),
                    blocks=read_varint(source),
                    bytes=read_varint(source),
                    applied_limit=bool(read_fixed(source, "B")),
                    rows_before_limit=read_varint(source),
                    calculated_rows_before_limit=bool(read_fixed(source, "B")),
                )
            except EOFError:
                return False, packet_type
            if events is not None and events.on_profile is not None:
                events.on_profile(profile)
            return True, packet_type

        if packet_type == ServerCode.PROGRESS:
            try:
                progress = Progress(rows=read_varint(source), bytes=read_varint(source))
                if REVISION >= DBMS_MIN_REVISION_WITH_TOTAL_ROWS_IN_PROGRESS:
                    progress.total_rows = read_varint(source)
            except EOFError:
                return False, packet_type
            if events is not None and events.on_progress is not None:
                events.on_progress(progress)
            return True, packet_type

        if packet_type in (ServerCode.PONG, ServerCode.HELLO):
            return True, packet_type

        if packet_type == ServerCode.END_OF_STREAM:
            if events is not None and events.on_finish is not None:
                events.on_finish()
            return False, packet_type

        raise UnimplementedError(f"unimplemented {packet_type}")

    def _create_column(self, type_name: str) -> Optional[Column]:
        if self._column_factory is None:
            return None
        return self._column_factory(
            type_name, self.options.backward_compatibility_lowcardinality_as_wrapped_column
        )

    def _read_block(self, source: InputStream, block: Block) -> None:
        info = block.info()
        read_varint(source)
        info.is_overflows = read_fixed(source, "B")
        read_varint(source)
        info.bucket_num = read_fixed(source, "i")
        read_varint(source)

        num_columns = read_varint(source)
        num_rows = read_varint(source)

        for _ in range(num_columns):
            name = read_string(source)
            type_name = read_string(source)
            column = self._create_column(type_name)
            if column is None:
                raise UnimplementedError(f"unsupported column type: {type_name}")
            if num_rows:
                try:
                    column.load(source, num_rows)
                except EOFError as error:
                    raise ProtocolError(
                        f"can't load column '{name}' of type {type_name}"
                    ) from error
            block.append_column(name, column)

    def _receive_data(self) -> bool:
        block = Block()
        try:
            if REVISION >= DBMS_MIN_REVISION_WITH_TEMPORARY_TABLES:
                skip_string(self._input)
            if self._compression == CompressionState.ENABLE:
                with CompressedInput(self._input) as compressed:
                    self._read_block(compressed, block)
            else:
                self._read_block(self._input, block)
        except EOFError:
            return False

        events = self._events
        if events is not None:
            if events.on_data is not None:
                events.on_data(block)
            if events.on_data_cancelable is not None and not events.on_data_cancelable(block):
                self._send_cancel()
        return True

    def _receive_exception(self, rethrow: bool = False) -> bool:
        source = self._input
        root = ServerExceptionInfo()
        current = root
        received = True
        try:
            while True:
                current.code = read_fixed(source, "i")
                current.name = read_string(source)
                current.display_text = read_string(source)
                current.stack_trace = read_string(source)
                if not read_fixed(source, "B"):
                    break
                current.nested = ServerExceptionInfo()
                current = current.nested
        except EOFError:
            received = False

        events = self._events
        if events is not None and events.on_exception is not None:
            events.on_exception(root)

        if rethrow or self.options.rethrow_exceptions:
            raise ServerError(root)
        return received

    # Sending

    def _send_cancel(self) -> None:
        write_varint(self._output, ClientCode.CANCEL)
        self._output.flush()

    def _send_query(self, query: str, query_id: str) -> None:
        out = self._output
        revision = self._server_info.revision
        write_varint(out, ClientCode.QUERY)
        write_string(out, query_id)

        if revision >= DBMS_MIN_REVISION_WITH_CLIENT_INFO:
            write_fixed(out, "B", QUERY_KIND_INITIAL)
            write_string(out, "")  # initial user
            write_string(out, "")  # initial query id
            write_string(out, INITIAL_ADDRESS)
            write_fixed(out, "B", IFACE_TYPE_TCP)
            write_string(out, "")  # os user
            write_string(out, "")  # client hostname
            write_string(out, CLIENT_NAME)
            write_varint(out, DBMS_VERSION_MAJOR)
            write_varint(out, DBMS_VERSION_MINOR)
            write_varint(out, REVISION)
            if revision >= DBMS_MIN_REVISION_WITH_QUOTA_KEY_IN_CLIENT_INFO:
                write_string(out, "")  # quota key
            if revision >= DBMS_MIN_REVISION_WITH_VERSION_PATCH:
                write_varint(out, 0)  # client version patch

        write_string(out, "")  # per-query settings
        write_varint(out, Stage.COMPLETE)
        write_varint(out, int(self._compression))
        write_string(out, query)
        self._send_data(Block())
        out.flush()

    def _write_block(self, block: Block, out: OutputStream) -> None:
        if self._server_info.revision >= DBMS_MIN_REVISION_WITH_BLOCK_INFO:
            info = block.info()
            write_varint(out, 1)
            write_fixed(out, "B", info.is_overflows)
            write_varint(out, 2)
            write_fixed(out, "i", info.bucket_num)
            write_varint(out, 0)

        write_varint(out, block.column_count())
        write_varint(out, block.row_count())
        for item in block:
            write_string(out, item.name)
            write_string(out, item.type_name)
            item.column.save(out)
        out.flush()

    def _send_data(self, block: Block) -> None:
        out = self._output
        write_varint(out, ClientCode.DATA)
        if self._server_info.revision >= DBMS_MIN_REVISION_WITH_TEMPORARY_TABLES:
            write_string(out, "")

        if self._compression == CompressionState.ENABLE:
            chunk = self.options.max_compression_chunk_size
            buffered = BufferedOutput(CompressedOutput(out, chunk), chunk)
            self._write_block(block, buffered)
        else:
            self._write_block(block, out)
        out.flush()