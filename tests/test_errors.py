import pytest

from chnative.errors import (
    CompressionError,
    Error,
    ErrorCode,
    InternalAssertionError,
    ProtocolError,
    ServerError,
    ServerExceptionInfo,
    TLSError,
    UnimplementedError,
    ValidationError,
)


@pytest.mark.parametrize(
    "member, value",
    [
        (ErrorCode.CHECKSUM_DOESNT_MATCH, 40),
        (ErrorCode.TABLE_ALREADY_EXISTS, 57),
        (ErrorCode.UNKNOWN_TABLE, 60),
        (ErrorCode.WRONG_PASSWORD, 193),
        (ErrorCode.UNKNOWN_EXCEPTION, 1002),
    ],
)
def test_error_code_values(member, value):
    assert member == value
    assert ErrorCode(value) is member


@pytest.mark.parametrize(
    "cls",
    [
        ValidationError,
        ProtocolError,
        UnimplementedError,
        InternalAssertionError,
        TLSError,
        CompressionError,
    ],
)
def test_errors_are_caught_as_base_error(cls):
    err = cls("boom")
    assert str(err) == "boom"
    with pytest.raises(Error, match="boom") as caught:
        raise err
    assert caught.value is err
    assert str(caught.value) == "boom"


def test_server_error_carries_exception():
    info = ServerExceptionInfo(
        code=ErrorCode.TABLE_ALREADY_EXISTS,
        name="DB::Exception",
        display_text="table already exists",
    )
    err = ServerError(info)
    assert str(err) == "table already exists"
    assert err.code == ErrorCode.TABLE_ALREADY_EXISTS
    assert err.exception is info


def test_server_error_is_an_error():
    info = ServerExceptionInfo(code=62, display_text="syntax")
    err = ServerError(info)
    assert str(err) == "syntax"
    assert err.code == 62
    with pytest.raises(Error, match="syntax") as caught:
        raise err
    assert caught.value is err
    assert caught.value.code == 62


def test_chain_walks_nested_exceptions():
    inner = ServerExceptionInfo(code=3, name="inner")
    middle = ServerExceptionInfo(code=2, name="middle", nested=inner)
    outer = ServerExceptionInfo(code=1, name="outer", nested=middle)
    assert [e.code for e in outer.chain()] == [1, 2, 3]
    assert [e.name for e in inner.chain()] == ["inner"]


def test_default_exception_info_is_empty():
    info = ServerExceptionInfo()
    assert (info.code, info.name, info.display_text, info.stack_trace) == (0, "", "", "")
    assert list(info.chain()) == [info]