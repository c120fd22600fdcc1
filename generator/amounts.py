from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from web3 import Web3

AmountLike = Union[str, int, float, Decimal]


def parse_amount(amount: AmountLike) -> int:
    """Token units (decimal string) -> wei. Raises ValueError on junk."""
    if isinstance(amount, bool):
        raise ValueError(f"invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid amount: {amount!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"invalid amount: {amount!r}")
    return int(Web3.to_wei(value, "ether"))


def format_amount(wei: int) -> str:
    """Wei -> token units as a plain decimal string ("0.01", "1000000")."""
    value = Web3.from_wei(int(wei), "ether")
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), "f")
