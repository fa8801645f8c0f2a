"""TLS connections to the server."""

from __future__ import annotations

import ssl
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import TLSError, ValidationError
from .net import NetworkAddress, NonSecureSocketFactory, Socket
from .options import DEFAULT_VALUE, ClientOptions, SSLCommand
from .streams import InputStream, OutputStream

# Flag of the host check that forbids falling back to the certificate subject.
X509_CHECK_FLAG_NEVER_CHECK_SUBJECT = 0x20

Configuration = Tuple[Tuple[str, Optional[str]], ...]


@dataclass(frozen=True)
class SSLParams:
    """Settings used to build a TLS context and open TLS connections."""

    path_to_ca_files: Tuple[str, ...] = ()
    path_to_ca_directory: str = ""
    use_default_ca_locations: bool = True
    context_options: int = DEFAULT_VALUE
    min_protocol_version: int = DEFAULT_VALUE
    max_protocol_version: int = DEFAULT_VALUE
    use_sni: bool = True
    skip_verification: bool = False
    host_flags: int = DEFAULT_VALUE
    configuration: Configuration = field(default=())


def ssl_params_from_options(options: ClientOptions) -> SSLParams:
    """Collect the TLS settings of ``options``; they must include SSL options."""
    ssl_options = options.ssl_options
    if ssl_options is None:
        raise ValidationError("client options carry no SSL options")
    return SSLParams(
        path_to_ca_files=tuple(ssl_options.path_to_ca_files),
        path_to_ca_directory=ssl_options.path_to_ca_directory,
        use_default_ca_locations=ssl_options.use_default_ca_locations,
        context_options=ssl_options.context_options,
        min_protocol_version=ssl_options.min_protocol_version,
        max_protocol_version=ssl_options.max_protocol_version,
        use_sni=ssl_options.use_sni,
        skip_verification=ssl_options.skip_verification,
        host_flags=ssl_options.host_flags,
        configuration=tuple((item.command, item.value) for item in ssl_options.configuration),
    )


def _openssl_error(error: BaseException, prefix: str = "OpenSSL error: ") -> TLSError:
    code = getattr(error, "errno", None)
    reason = getattr(error, "reason", None) or str(error) or "Unknown SSL error"
    return TLSError(f"{prefix}{code if code is not None else 0} : {reason}")


def _protocol_version(value: int) -> ssl.TLSVersion:
    try:
        return ssl.TLSVersion(value)
    except ValueError as error:
        raise TLSError(f"OpenSSL error: 0 : unsupported protocol version {value}") from error


def build_ssl_context(params: SSLParams) -> ssl.SSLContext:
    """Create a client TLS context configured by ``params``."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        if params.use_default_ca_locations:
            context.set_default_verify_paths()
        if params.path_to_ca_directory:
            context.load_verify_locations(capath=params.path_to_ca_directory)
        for path in params.path_to_ca_files:
            context.load_verify_locations(cafile=path)
    except (ssl.SSLError, OSError) as error:
        raise _openssl_error(error) from error

    if params.context_options != DEFAULT_VALUE:
        context.options |= params.context_options
    try:
        if params.min_protocol_version != DEFAULT_VALUE:
            context.minimum_version = _protocol_version(params.min_protocol_version)
        if params.max_protocol_version != DEFAULT_VALUE:
            context.maximum_version = _protocol_version(params.max_protocol_version)
    except (ssl.SSLError, ValueError) as error:
        raise _openssl_error(error) from error

    if params.host_flags != DEFAULT_VALUE:
        try:
            context.hostname_checks_common_name = not (
                params.host_flags & X509_CHECK_FLAG_NEVER_CHECK_SUBJECT
            )
        except (AttributeError, ValueError):
            pass

    if params.skip_verification:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if params.configuration:
        apply_configuration(context, params.configuration)
    return context


def _protocol_from_name(name: str, limit: ssl.TLSVersion) -> ssl.TLSVersion:
    versions = {
        "None": limit,
        "TLSv1": ssl.TLSVersion.TLSv1,
        "TLSv1.1": ssl.TLSVersion.TLSv1_1,
        "TLSv1.2": ssl.TLSVersion.TLSv1_2,
        "TLSv1.3": ssl.TLSVersion.TLSv1_3,
    }
    try:
        return versions[name]
    except KeyError as error:
        raise ValueError(f"unknown protocol version {name!r}") from error


def _set_min(context: ssl.SSLContext, value: Optional[str]) -> None:
    context.minimum_version = _protocol_from_name(value or "", ssl.TLSVersion.MINIMUM_SUPPORTED)


def _set_max(context: ssl.SSLContext, value: Optional[str]) -> None:
    context.maximum_version = _protocol_from_name(value or "", ssl.TLSVersion.MAXIMUM_SUPPORTED)


_NAMED_OPTIONS: Dict[str, Tuple[int, bool]] = {
    # name: (flag, whether naming the option sets the flag)
    "SessionTicket": (ssl.OP_NO_TICKET, False),
    "Compression": (ssl.OP_NO_COMPRESSION, False),
    "ServerPreference": (ssl.OP_CIPHER_SERVER_PREFERENCE, True),
}
if hasattr(ssl, "OP_NO_RENEGOTIATION"):
    _NAMED_OPTIONS["NoRenegotiation"] = (ssl.OP_NO_RENEGOTIATION, True)


def _set_named_options(context: ssl.SSLContext, value: Optional[str]) -> None:
    for item in (value or "").split(","):
        item = item.strip()
        if not item:
            continue
        enable = not item.startswith("-")
        name = item.lstrip("+-")
        if name not in _NAMED_OPTIONS:
            raise ValueError(f"unknown option {name!r}")
        flag, sets_flag = _NAMED_OPTIONS[name]
        if enable == sets_flag:
            context.options |= flag
        else:
            context.options &= ~flag


def _set_flag(flag: int, on: bool) -> Callable[[ssl.SSLContext, Optional[str]], None]:
    def apply(context: ssl.SSLContext, _value: Optional[str]) -> None:
        if on:
            context.options |= flag
        else:
            context.options &= ~flag

    return apply


@dataclass(frozen=True)
class _Command:
    needs_value: bool
    apply: Callable[[ssl.SSLContext, Optional[str]], None]


def _command_table() -> Dict[str, _Command]:
    cipher = _Command(True, lambda ctx, v: ctx.set_ciphers(v or ""))
    min_protocol = _Command(True, _set_min)
    max_protocol = _Command(True, _set_max)
    ca_file = _Command(True, lambda ctx, v: ctx.load_verify_locations(cafile=v))
    ca_path = _Command(True, lambda ctx, v: ctx.load_verify_locations(capath=v))
    table = {
        "cipher": cipher,
        "CipherString": cipher,
        "min_protocol": min_protocol,
        "MinProtocol": min_protocol,
        "max_protocol": max_protocol,
        "MaxProtocol": max_protocol,
        "verifyCAfile": ca_file,
        "VerifyCAFile": ca_file,
        "verifyCApath": ca_path,
        "VerifyCAPath": ca_path,
        "Options": _Command(True, _set_named_options),
        "no_ticket": _Command(False, _set_flag(ssl.OP_NO_TICKET, True)),
        "no_comp": _Command(False, _set_flag(ssl.OP_NO_COMPRESSION, True)),
        "comp": _Command(False, _set_flag(ssl.OP_NO_COMPRESSION, False)),
        "serverpref": _Command(False, _set_flag(ssl.OP_CIPHER_SERVER_PREFERENCE, True)),
    }
    if hasattr(ssl, "OP_NO_RENEGOTIATION"):
        table["no_renegotiation"] = _Command(False, _set_flag(ssl.OP_NO_RENEGOTIATION, True))
    return table


_COMMANDS = _command_table()


def _normalize(item) -> Tuple[str, Optional[str]]:
    if isinstance(item, SSLCommand):
        return item.command, item.value
    if isinstance(item, str):
        return item, None
    command, value = item
    return command, value


def apply_configuration(context: ssl.SSLContext, configuration: Sequence) -> None:
    """Apply extra command/value settings to ``context`` in order."""
    for item in configuration:
        command, value = _normalize(item)
        spec = _COMMANDS.get(command)
        if spec is None:
            raise TLSError(f"Failed to cofigure OpenSSL: unknown command '{command}'")
        if spec.needs_value and value is None:
            raise TLSError(f"Failed to cofigure OpenSSL: command '{command}' requires a value")
        if not spec.needs_value and value is not None:
            raise TLSError(f"Failed to configure OpenSSL: command '{command}' needs no value")
        try:
            spec.apply(context, value)
        except (ssl.SSLError, OSError, ValueError) as error:
            raise _openssl_error(
                error, f"Failed to configure OpenSSL with command '{command}' "
            ) from error


def validate_params(params: SSLParams) -> None:
    """Check the extra configuration of ``params`` against a scratch context."""
    apply_configuration(ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT), params.configuration)


class SSLSocket(Socket):
    """A TCP connection wrapped in TLS."""

    def __init__(self, address: NetworkAddress, params: SSLParams, context: ssl.SSLContext) -> None:
        super().__init__(address)
        plain = self.handle
        host = address.host
        server_hostname = host if (params.use_sni or context.check_hostname) else None
        try:
            wrapped = context.wrap_socket(
                plain, server_hostname=server_hostname, do_handshake_on_connect=False
            )
        except (ssl.SSLError, ValueError) as error:
            plain.close()
            raise _openssl_error(error) from error
        self.handle = wrapped
        try:
            wrapped.do_handshake()
        except ssl.SSLCertVerificationError as error:
            wrapped.close()
            raise TLSError(
                "Failed to verify SSL connection, X509_v error: "
                f"{error.verify_code} {error.verify_message}"
            ) from error
        except ssl.SSLError as error:
            wrapped.close()
            raise _openssl_error(error) from error
        except BaseException:
            wrapped.close()
            raise

    def make_input_stream(self) -> InputStream:
        return SSLSocketInput(self.handle)

    def make_output_stream(self) -> OutputStream:
        return SSLSocketOutput(self.handle)


class SSLSocketInput(InputStream):
    """Reads decrypted data from a TLS connection."""

    def __init__(self, sock) -> None:
        self._sock = sock

    def skip(self, size: int) -> bool:
        return False

    def _do_read(self, size: int) -> bytes:
        if size <= 0:
            return b""
        try:
            data = self._sock.recv(size)
        except ssl.SSLError as error:
            raise _openssl_error(error) from error
        if not data:
            raise TLSError("OpenSSL error: 6 : connection closed")
        return data


class SSLSocketOutput(OutputStream):
    """Writes data to a TLS connection."""

    def __init__(self, sock) -> None:
        self._sock = sock

    def _do_write(self, data: bytes) -> int:
        try:
            self._sock.sendall(data)
        except ssl.SSLError as error:
            raise _openssl_error(error) from error
        return len(data)


class SSLSocketFactory(NonSecureSocketFactory):
    """Creates TLS connections.

    A context supplied in the options is used as is; otherwise one is
    built from the options, including their extra configuration.
    """

    def __init__(self, options: ClientOptions) -> None:
        self.params = ssl_params_from_options(options)
        supplied = options.ssl_options.ssl_context if options.ssl_options else None
        if supplied is not None:
            validate_params(self.params)
            self.context = supplied
        else:
            self.context = build_ssl_context(self.params)

    def _do_connect(self, address: NetworkAddress) -> Socket:
        return SSLSocket(address, self.params, self.context)


def _configuration_list(params: SSLParams) -> List[Tuple[str, Optional[str]]]:
    return list(params.configuration)