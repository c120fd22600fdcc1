from decimal import Decimal

import pytest

from generator.amounts import format_amount, parse_amount
from generator.errors import TxErrorKind, classify_error, classify_exception
from infra.rpc import RPCError


def test_parse_amount_token_units() -> None:
    assert parse_amount("10") == 10 * 10**18
    assert parse_amount("0.01") == 10**16
    assert parse_amount(Decimal("2.5")) == 25 * 10**17
    assert parse_amount(3) == 3 * 10**18
    assert parse_amount("0") == 0


@pytest.mark.parametrize("junk", ["", "abc", "-1", "NaN", "Infinity", True])
def test_parse_amount_rejects_junk(junk) -> None:
    with pytest.raises(ValueError):
        parse_amount(junk)


def test_format_amount() -> None:
    assert format_amount(10**16) == "0.01"
    assert format_amount(5 * 10**18) == "5"
    assert format_amount(10**6 * 10**18) == "1000000"
    assert format_amount(0) == "0"
    assert format_amount(15 * 10**17) == "1.5"


@pytest.mark.parametrize("text", ["0.01", "0.5", "1", "2.25", "10", "123.456", "5000", "1000000"])
def test_amount_text_survives_parse_and_format(text) -> None:
    assert format_amount(parse_amount(text)) == text


@pytest.mark.parametrize(
    "message, kind",
    [
        ("insufficient funds for gas * price + value", TxErrorKind.INSUFFICIENT_BALANCE),
        ("Insufficient Balance", TxErrorKind.INSUFFICIENT_BALANCE),
        ("intrinsic gas too low", TxErrorKind.GAS_ESTIMATION_FAILED),
        ("nonce too low", TxErrorKind.NONCE_TOO_LOW),
        ("replacement transaction underpriced", TxErrorKind.TX_UNDERPRICED),
        ("network unreachable", TxErrorKind.NETWORK_ERROR),
        ("connection error: reset by peer", TxErrorKind.NETWORK_ERROR),
        ("timeout waiting for receipt of 0xabc", TxErrorKind.TIMEOUT),
        ("execution reverted", TxErrorKind.UNKNOWN),
        ("", TxErrorKind.UNKNOWN),
        (None, TxErrorKind.UNKNOWN),
    ],
)
def test_classify_error_table(message, kind) -> None:
    assert classify_error(message) is kind


def test_classify_exception_uses_message_then_type() -> None:
    assert classify_exception(RPCError("nonce too low")) is TxErrorKind.NONCE_TOO_LOW
    assert classify_exception(TimeoutError()) is TxErrorKind.TIMEOUT
    assert classify_exception(ConnectionError()) is TxErrorKind.NETWORK_ERROR
    assert classify_exception(ValueError()) is TxErrorKind.UNKNOWN
