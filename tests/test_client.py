import ssl
import struct

import pytest

from chnative.block import Block, Column
from chnative.client import (
    Client,
    Profile,
    Progress,
    default_socket_factory,
    quote_identifier,
)
from chnative.compressed import CompressedOutput
from chnative.errors import ProtocolError, ServerError, UnimplementedError
from chnative.net import SocketBase, SocketFactory
from chnative.options import ClientOptions, CompressionMethod, SSLOptions
from chnative.streams import ArrayInput, BufferedOutput, BufferOutput, InputStream
from chnative.wire_format import (
    read_bytes,
    read_fixed,
    read_string,
    read_varint,
    write_bytes,
    write_fixed,
    write_string,
    write_varint,
)

REV = 54405


class UInt64Column(Column):
    def __init__(self, values=()):
        self.values = list(values)

    def size(self):
        return len(self.values)

    def type_name(self):
        return "UInt64"

    def save(self, stream):
        write_bytes(stream, struct.pack(f"<{len(self.values)}Q", *self.values))

    def load(self, stream, rows):
        self.values.extend(struct.unpack(f"<{rows}Q", read_bytes(stream, 8 * rows)))


def column_factory(type_name, lowcardinality_as_wrapped):
    return UInt64Column() if type_name == "UInt64" else None


class ClosingInput(InputStream):
    def __init__(self, data):
        self._inner = ArrayInput(data)

    def skip(self, size):
        return self._inner.skip(size)

    def _do_read(self, size):
        data = self._inner.read(size)
        if not data:
            raise ConnectionError("closed")
        return data


class FakeSocket(SocketBase):
    def __init__(self, incoming, closing=False):
        self.incoming = incoming
        self.closing = closing
        self.sent = bytearray()
        self.closed = False

    def make_input_stream(self):
        return ClosingInput(self.incoming) if self.closing else ArrayInput(self.incoming)

    def make_output_stream(self):
        return BufferOutput(self.sent)

    def close(self):
        self.closed = True


class FakeFactory(SocketFactory):
    def __init__(self, *responses):
        self.responses = list(responses)
        self.sockets = []
        self.sleeps = []

    def connect(self, options):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        sock = item if isinstance(item, FakeSocket) else FakeSocket(item)
        self.sockets.append(sock)
        return sock

    def sleep_for(self, seconds):
        self.sleeps.append(seconds)


def _write_block(out, columns):
    write_varint(out, 1)
    write_fixed(out, "B", 0)
    write_varint(out, 2)
    write_fixed(out, "i", -1)
    write_varint(out, 0)
    rows = len(columns[0][1]) if columns else 0
    write_varint(out, len(columns))
    write_varint(out, rows)
    for name, values in columns:
        write_string(out, name)
        write_string(out, "UInt64")
        write_bytes(out, struct.pack(f"<{len(values)}Q", *values))


class Script:
    def __init__(self):
        self.buf = bytearray()
        self.out = BufferOutput(self.buf)

    def hello(self, revision=REV):
        write_varint(self.out, 0)
        write_string(self.out, "ClickHouse")
        write_varint(self.out, 23)
        write_varint(self.out, 8)
        write_varint(self.out, revision)
        if revision >= 54058:
            write_string(self.out, "UTC")
        if revision >= 54372:
            write_string(self.out, "server1")
        if revision >= 54401:
            write_varint(self.out, 1)
        return self

    def packet(self, code):
        write_varint(self.out, code)
        return self

    def pong(self):
        return self.packet(4)

    def end(self):
        return self.packet(5)

    def progress(self, rows, nbytes, total):
        for value in (3, rows, nbytes, total):
            write_varint(self.out, value)
        return self

    def profile(self, rows, blocks, nbytes, applied, before, calculated):
        write_varint(self.out, 6)
        for value in (rows, blocks, nbytes):
            write_varint(self.out, value)
        write_fixed(self.out, "B", int(applied))
        write_varint(self.out, before)
        write_fixed(self.out, "B", int(calculated))
        return self

    def exception(self, code, name, text, nested=None):
        write_varint(self.out, 2)
        self._exception(code, name, text, nested)
        return self

    def _exception(self, code, name, text, nested):
        write_fixed(self.out, "i", code)
        write_string(self.out, name)
        write_string(self.out, text)
        write_string(self.out, "stack")
        write_fixed(self.out, "B", 1 if nested else 0)
        if nested:
            self._exception(*nested)

    def data(self, columns, compressed=False):
        write_varint(self.out, 1)
        write_string(self.out, "")
        if compressed:
            inner = BufferedOutput(CompressedOutput(self.out, 65535), 65535)
            _write_block(inner, columns)
            inner.flush()
        else:
            _write_block(self.out, columns)
        return self

    def raw(self):
        return bytes(self.buf)


def make_client(script, **option_kwargs):
    factory = FakeFactory(script.raw())
    options = ClientOptions(host="localhost", **option_kwargs)
    return Client(options, factory, column_factory), factory


def skip_hello(reader):
    assert read_varint(reader) == 0
    assert read_string(reader) == "ClickHouse client"
    assert [read_varint(reader) for _ in range(3)] == [2, 1, 54405]
    return [read_string(reader) for _ in range(3)]


def test_quote_identifier():
    assert quote_identifier("name") == "`name`"
    assert quote_identifier("a`b") == "`a``b`"


def test_handshake_sends_hello_and_reads_server_info():
    password = "password"
    factory = FakeFactory(Script().hello().raw())
    client = Client(ClientOptions(host="localhost", user="reader", password=password), factory)
    reader = ArrayInput(bytes(factory.sockets[0].sent))
    assert skip_hello(reader) == ["default", "reader", "password"]
    assert reader.exhausted()
    info = client.server_info()
    assert (info.name, info.revision, info.timezone, info.display_name) == (
        "ClickHouse",
        REV,
        "UTC",
        "server1",
    )
    assert info.version_patch == 1


def test_handshake_old_revision_skips_optional_fields():
    client, _ = make_client(Script().hello(revision=54000))
    info = client.server_info()
    assert info.revision == 54000
    assert info.timezone == ""
    assert info.display_name == ""


def test_handshake_exception_is_raised():
    script = Script().exception(193, "DB::Exception", "Wrong password")
    with pytest.raises(ServerError) as info:
        make_client(script)
    assert info.value.code == 193
    assert str(info.value) == "Wrong password"


def test_handshake_without_reply_fails():
    with pytest.raises(ProtocolError, match="fail to connect to localhost"):
        make_client(Script())


def test_constructor_retries_on_network_error():
    factory = FakeFactory(OSError("boom"), Script().hello().raw())
    client = Client(ClientOptions(host="localhost", send_retries=1), factory)
    assert factory.sleeps == [5]
    assert client.server_info().revision == REV


def test_constructor_gives_up_after_retries():
    factory = FakeFactory(OSError("first"), OSError("second"))
    with pytest.raises(OSError, match="second"):
        Client(ClientOptions(host="localhost", send_retries=1), factory)
    assert factory.sleeps == [5]


def test_ping_sends_ping_packet():
    client, factory = make_client(Script().hello().pong())
    client.ping()
    assert bytes(factory.sockets[0].sent).endswith(b"\x04")


def test_ping_without_pong_fails():
    client, _ = make_client(Script().hello().end())
    with pytest.raises(ProtocolError, match="fail to ping server"):
        client.ping()


def test_query_packet_layout():
    client, factory = make_client(Script().hello().end())
    finished = []
    client.execute("SELECT 1", query_id="qid", on_finish=lambda: finished.append(True))
    assert finished == [True]

    reader = ArrayInput(bytes(factory.sockets[0].sent))
    skip_hello(reader)
    assert read_varint(reader) == 1
    assert read_string(reader) == "qid"
    assert read_fixed(reader, "B") == 1
    assert [read_string(reader) for _ in range(3)] == ["", "", "[::ffff:127.0.0.1]:0"]
    assert read_fixed(reader, "B") == 1
    assert [read_string(reader) for _ in range(3)] == ["", "", "ClickHouse client"]
    assert [read_varint(reader) for _ in range(3)] == [2, 1, 54405]
    assert read_string(reader) == ""
    assert read_varint(reader) == 0
    assert read_string(reader) == ""
    assert read_varint(reader) == 2
    assert read_varint(reader) == 0
    assert read_string(reader) == "SELECT 1"
    assert read_varint(reader) == 2
    assert read_string(reader) == ""
    assert read_varint(reader) == 1
    assert read_fixed(reader, "B") == 0
    assert read_varint(reader) == 2
    assert read_fixed(reader, "i") == -1
    assert [read_varint(reader) for _ in range(3)] == [0, 0, 0]
    assert reader.exhausted()


def test_progress_and_profile_events():
    script = Script().hello().progress(10, 100, 1000).profile(5, 2, 40, True, 7, False).end()
    client, _ = make_client(script)
    progress, profiles = [], []
    client.execute("SELECT 1", on_progress=progress.append, on_profile=profiles.append)
    assert progress == [Progress(rows=10, bytes=100, total_rows=1000)]
    assert profiles == [Profile(5, 2, 40, True, 7, False)]


def test_select_receives_blocks():
    client, _ = make_client(Script().hello().data([("x", [1, 2, 3])]).end())
    blocks = []
    client.select("SELECT x", blocks.append)
    assert len(blocks) == 1
    assert blocks[0].column_name(0) == "x"
    assert blocks[0].row_count() == 3
    assert blocks[0][0].values == [1, 2, 3]


def test_select_with_compression():
    script = Script().hello().data([("x", [7, 8])], compressed=True).end()
    client, _ = make_client(script, compression_method=CompressionMethod.LZ4)
    blocks = []
    client.select("SELECT x", blocks.append)
    assert [block[0].values for block in blocks] == [[7, 8]]


def test_select_without_column_factory_fails():
    factory = FakeFactory(Script().hello().data([("x", [1])]).end().raw())
    client = Client(ClientOptions(host="localhost"), factory)
    with pytest.raises(UnimplementedError, match="unsupported column type: UInt64"):
        client.select("SELECT x", lambda block: None)


def test_select_cancelable_sends_cancel():
    client, factory = make_client(Script().hello().data([("x", [1])]).end())
    calls = []

    def callback(block):
        calls.append(block.row_count())
        return False

    client.select_cancelable("SELECT x", callback)
    assert calls == [1]
    assert bytes(factory.sockets[0].sent).endswith(b"\x03")


def test_unknown_packet_is_unimplemented():
    client, _ = make_client(Script().hello().packet(7))
    with pytest.raises(UnimplementedError, match="unimplemented 7"):
        client.execute("SELECT 1")


def test_server_exception_is_raised():
    client, _ = make_client(Script().hello().exception(60, "DB::Exception", "no table"))
    seen = []
    with pytest.raises(ServerError) as info:
        client.execute("SELECT * FROM t", on_exception=seen.append)
    assert info.value.code == 60
    assert [item.display_text for item in seen] == ["no table"]


def test_server_exception_passed_to_handler_without_rethrow():
    script = Script().hello().exception(57, "outer", "exists", (1002, "inner", "cause", None))
    client, _ = make_client(script, rethrow_exceptions=False)
    seen = []
    client.execute("CREATE TABLE t", on_exception=seen.append)
    assert [item.name for item in seen[0].chain()] == ["outer", "inner"]
    assert seen[0].nested.code == 1002


def test_insert_sends_query_and_data():
    client, factory = make_client(Script().hello().data([("x", [])]).end())
    block = Block()
    block.append_column("x", UInt64Column([5, 6]))
    client.insert("t", block)
    sent = bytes(factory.sockets[0].sent)
    assert b"INSERT INTO t ( `x` ) VALUES" in sent
    assert struct.pack("<2Q", 5, 6) in sent


def test_insert_without_data_packet_fails():
    client, _ = make_client(Script().hello().end())
    block = Block()
    block.append_column("x", UInt64Column([1]))
    with pytest.raises(ProtocolError, match="fail to receive data packet"):
        client.insert("t", block)


def test_insert_unexpected_end_packet():
    client, _ = make_client(Script().hello().data([("x", [])]).pong())
    block = Block()
    block.append_column("x", UInt64Column([1]))
    with pytest.raises(ProtocolError, match="got: 4"):
        client.insert("t", block)


def test_ping_before_query_reconnects():
    first = FakeSocket(Script().hello().raw(), closing=True)
    second = FakeSocket(Script().hello().pong().end().raw())
    factory = FakeFactory(first, second)
    client = Client(
        ClientOptions(host="localhost", ping_before_query=True), factory, column_factory
    )
    finished = []
    client.execute("SELECT 1", on_finish=lambda: finished.append(True))
    assert finished == [True]
    assert factory.sleeps == [5]
    assert first.closed


def test_context_manager_closes_socket():
    client, factory = make_client(Script().hello())
    with client as opened:
        assert opened.server_info().name == "ClickHouse"
    assert factory.sockets[0].closed


def test_default_socket_factory_with_ssl():
    options = ClientOptions(
        host="localhost",
        ssl_options=SSLOptions(use_default_ca_locations=False, skip_verification=True),
    )
    factory = default_socket_factory(options)
    assert factory.params.skip_verification is True
    assert factory.context.verify_mode == ssl.CERT_NONE