import dataclasses
from datetime import timedelta

import pytest

from chnative.options import ClientOptions, CompressionMethod, SSLCommand, SSLOptions


def test_compression_method_values():
    assert CompressionMethod(-1) is CompressionMethod.NONE
    assert CompressionMethod(1) is CompressionMethod.LZ4


def test_client_defaults():
    options = ClientOptions()
    assert options.host == ""
    assert options.port == 9000
    assert options.default_database == "default"
    assert options.user == "default"
    assert options.password == ""
    assert options.rethrow_exceptions is True
    assert options.ping_before_query is False
    assert options.send_retries == 1
    assert options.retry_timeout == 5
    assert options.compression_method is CompressionMethod.NONE
    assert options.tcp_keepalive is False
    assert options.tcp_keepalive_idle == 60
    assert options.tcp_keepalive_intvl == 5
    assert options.tcp_keepalive_cnt == 3
    assert options.tcp_nodelay is True
    assert options.backward_compatibility_lowcardinality_as_wrapped_column is True
    assert options.max_compression_chunk_size == 65535
    assert options.ssl_options is None


def test_replace_returns_new_options_and_keeps_original():
    original = ClientOptions(host="localhost")
    password = "password"
    changed = original.replace(password=password, ping_before_query=True)
    assert changed.password == password
    assert changed.ping_before_query is True
    assert changed.host == "localhost"
    assert original.password == ""
    assert original.ping_before_query is False


def test_options_are_immutable():
    options = ClientOptions()
    with pytest.raises(dataclasses.FrozenInstanceError):
        options.host = "example.com"
    assert options.host == ""


def test_compression_method_is_coerced():
    options = ClientOptions(compression_method=1)
    assert options.compression_method is CompressionMethod.LZ4


def test_invalid_compression_method_rejected():
    with pytest.raises(ValueError):
        ClientOptions(compression_method=7)


def test_invalid_port_rejected():
    with pytest.raises(ValueError):
        ClientOptions(port=70000)


def test_timedelta_durations_become_seconds():
    options = ClientOptions(retry_timeout=timedelta(seconds=2), tcp_keepalive_idle=timedelta(minutes=1))
    assert options.retry_timeout == 2
    assert options.tcp_keepalive_idle == 60


def test_str_without_ssl():
    options = ClientOptions(host="localhost")
    assert str(options) == (
        "Client(default@localhost:9000 ping_before_query:0 send_retries:1 "
        "retry_timeout:5 compression_method:None)"
    )


def test_str_reports_lz4_and_ping():
    options = ClientOptions(host="db", ping_before_query=True, compression_method=CompressionMethod.LZ4)
    text = str(options)
    assert "ping_before_query:1" in text
    assert "compression_method:LZ4" in text
    assert text.endswith(")")


def test_str_with_ssl_options():
    ssl_options = SSLOptions(path_to_ca_files=["a.pem", "b.pem"], path_to_ca_directory="/certs")
    text = str(ClientOptions(host="localhost", ssl_options=ssl_options))
    assert " SSL (" in text
    assert "ssl_context: created internally" in text
    assert "path_to_ca_files: 2 items" in text
    assert "path_to_ca_directory: /certs" in text
    assert "min_protocol_version: -1" in text
    assert text.endswith("))")


def test_ssl_defaults():
    ssl_options = SSLOptions()
    assert ssl_options.ssl_context is None
    assert ssl_options.use_default_ca_locations is True
    assert ssl_options.path_to_ca_files == ()
    assert ssl_options.min_protocol_version == SSLOptions.DEFAULT_VALUE
    assert ssl_options.max_protocol_version == -1
    assert ssl_options.context_options == -1
    assert ssl_options.host_flags == -1
    assert ssl_options.use_sni is True
    assert ssl_options.skip_verification is False
    assert ssl_options.configuration == ()


def test_ssl_configuration_is_normalised():
    ssl_options = SSLOptions(configuration=[("MinProtocol", "TLSv1.2"), "Cmd", SSLCommand("X", "y")])
    assert ssl_options.configuration == (
        SSLCommand("MinProtocol", "TLSv1.2"),
        SSLCommand("Cmd", None),
        SSLCommand("X", "y"),
    )


def test_ssl_replace_keeps_original():
    ssl_options = SSLOptions()
    changed = ssl_options.replace(skip_verification=True)
    assert changed.skip_verification is True
    assert ssl_options.skip_verification is False