# chnative

`chnative` talks to a ClickHouse server over its native TCP protocol.
It performs the handshake, sends queries, passes result blocks, progress
and profile information to callbacks, inserts blocks of columns, and can
compress data blocks with LZ4 (framed with CityHash128 checksums). TLS
connections use the standard `ssl` module.

## Installation

```
pip install chnative
```

To run the test suite:

```
pip install "chnative[test]"
pytest
```

## What the package does not do

The package ships no column types. Decoding and encoding the values of
`UInt64`, `String`, `Array(...)` and every other server type is left to
`chnative.block.Column` subclasses that you write, handed to the client
through its `column_factory`. Without a factory, any result block that has
columns raises `UnimplementedError("unsupported column type: ...")`.
There is also no command-line program; the package is a library only.

## Columns

A column implements four methods: `size()`, `type_name()`,
`save(stream)` and `load(stream, rows)`. The helpers in
`chnative.wire_format` (`read_bytes`, `write_bytes`, `read_fixed`,
`write_fixed`, `read_string`, `write_string`, `read_varint`,
`write_varint`, ...) read from and write to the package's streams.

```python
import struct

from chnative.block import Column
from chnative.wire_format import read_bytes, write_bytes


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
        data = read_bytes(stream, 8 * rows)
        self.values.extend(struct.unpack(f"<{rows}Q", data))


def column_factory(type_name, lowcardinality_as_wrapped):
    return UInt64Column() if type_name == "UInt64" else None
```

The factory is called with the type name sent by the server and the
value of `ClientOptions.backward_compatibility_lowcardinality_as_wrapped_column`;
it returns a new, empty column, or `None` for a type it does not handle.
If `load` runs out of data (`EOFError`), the client raises `ProtocolError`.

## Connecting

Connection settings live in `chnative.options.ClientOptions`, an immutable
dataclass. The defaults are port 9000, user `default`, database `default`,
no compression, one connection retry after 5 seconds, and server
exceptions raised as Python exceptions.

```python
from chnative.client import Client
from chnative.options import ClientOptions, CompressionMethod

options = ClientOptions(
    host="localhost",
    port=9000,
    compression_method=CompressionMethod.LZ4,
    ping_before_query=True,
)

with Client(options, column_factory=column_factory) as client:
    client.ping()
    print(client.server_info())
```

`ClientOptions.replace(**kwargs)` returns a copy with some fields changed,
and `str(options)` gives a one-line summary (user, host, port, retry and
compression settings, and the TLS settings when present).

If the connection cannot be opened (`OSError`), the client retries up to
`send_retries` times, waiting `retry_timeout` seconds in between. With
`ping_before_query`, a failed ping is retried after reconnecting.

## Running queries

`Client.execute` runs any statement. Result blocks, progress, profile
information, server exceptions and the end of the stream are delivered to
the callbacks you pass:

```python
client.execute("CREATE TEMPORARY TABLE t (id UInt64)")

client.execute(
    "SELECT number FROM system.numbers LIMIT 10",
    on_data=lambda block: print(block.row_count()),
    on_progress=lambda progress: print(progress.rows, progress.bytes),
)
```

`Client.select(query, callback)` is the short form for reading data.
`Client.select_cancelable(query, callback)` sends a cancel request to the
server whenever the callback returns `False`. Each accepts a `query_id`
keyword.

A `chnative.block.Block` holds named columns of equal length. Iterating
over it yields `BlockColumn` items with `name`, `column`, `index` and
`type_name`; `block[i]` returns a column, `len(block)` and
`column_count()` give the number of columns, and `row_count()` the number
of rows.

## Inserting

```python
from chnative.block import Block

block = Block()
block.append_column("id", UInt64Column([1, 7]))
client.insert("t", block)
```

Appending a column whose length differs from the others raises
`ValidationError`. Column names are quoted with
`chnative.client.quote_identifier` when the `INSERT` statement is built.

## Errors

Everything the package defines derives from `chnative.errors.Error`:

- `ValidationError` for bad arguments, such as columns of unequal length;
- `ProtocolError` for malformed or unexpected data from the server;
- `UnimplementedError` for unknown packets or unsupported column types;
- `CompressionError` for damaged or unsupported compressed frames;
- `TLSError` for TLS setup and handshake failures;
- `ServerError` for an exception reported by the server. Its `code`
  property can be compared with `chnative.errors.ErrorCode`, and its
  `exception` attribute is a `ServerExceptionInfo` whose `chain()` yields
  it and every nested server exception.

Network failures surface as `OSError`.

```python
from chnative.errors import ErrorCode, ServerError

try:
    client.execute("CREATE TEMPORARY TABLE t (id UInt64)")
except ServerError as exc:
    if exc.code != ErrorCode.TABLE_ALREADY_EXISTS:
        raise
```

With `rethrow_exceptions=False`, server exceptions are passed only to the
`on_exception` callback and the query ends quietly.

## TLS

Set `ssl_options` on `ClientOptions` to a `chnative.options.SSLOptions`
to connect over TLS. Either supply a ready `ssl.SSLContext` in
`ssl_context`, or let the client build one from `use_default_ca_locations`,
`path_to_ca_files`, `path_to_ca_directory`, `min_protocol_version`,
`max_protocol_version`, `context_options`, `host_flags` and
`skip_verification`. Extra settings go in `configuration` as
`SSLCommand(command, value)` items; `chnative.tls.apply_configuration`
understands commands such as `CipherString`, `MinProtocol`, `MaxProtocol`,
`VerifyCAFile`, `VerifyCAPath`, `Options`, `no_ticket`, `no_comp`, `comp`
and `serverpref`, and raises `TLSError` for unknown commands or a missing
or unexpected value.

```python
from chnative.options import ClientOptions, SSLCommand, SSLOptions

options = ClientOptions(
    host="localhost",
    port=9440,
    ssl_options=SSLOptions(
        path_to_ca_files=("ca.pem",),
        configuration=(SSLCommand("MinProtocol", "TLSv1.2"),),
    ),
)
```

## Lower-level pieces

- `chnative.streams`: in-memory, buffered and zero-copy input and output streams;
- `chnative.wire_format`: varints, fixed-size values and length-prefixed strings;
- `chnative.compressed`: `CompressedInput` and `CompressedOutput` for LZ4 frames;
- `chnative.cityhash`: `city_hash128` and `city_hash128_bytes`;
- `chnative.protocol`: the packet codes `ServerCode` and `ClientCode`;
- `chnative.net`: plain TCP sockets and `NonSecureSocketFactory`; a custom
  `SocketFactory` can be passed to `Client` as `socket_factory`.