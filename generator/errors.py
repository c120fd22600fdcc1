from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple


class TxErrorKind(str, Enum):
    INSUFFICIENT_ELIGIBLE_WALLETS = "INSUFFICIENT_ELIGIBLE_WALLETS"
    INSUFFICIENT_TRANSFERABLE_BALANCE = "INSUFFICIENT_TRANSFERABLE_BALANCE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    GAS_ESTIMATION_FAILED = "GAS_ESTIMATION_FAILED"
    NONCE_TOO_LOW = "NONCE_TOO_LOW"
    TX_UNDERPRICED = "TX_UNDERPRICED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


# Ordered: first match wins. "insufficient funds for gas * price + value"
# must land on INSUFFICIENT_BALANCE, not GAS_ESTIMATION_FAILED.
ERROR_PATTERNS: Tuple[Tuple[Tuple[str, ...], TxErrorKind], ...] = (
    (("insufficient funds", "insufficient balance"), TxErrorKind.INSUFFICIENT_BALANCE),
    (("gas",), TxErrorKind.GAS_ESTIMATION_FAILED),
    (("nonce",), TxErrorKind.NONCE_TOO_LOW),
    (("underpriced",), TxErrorKind.TX_UNDERPRICED),
    (("network", "connection"), TxErrorKind.NETWORK_ERROR),
    (("timeout",), TxErrorKind.TIMEOUT),
)


def classify_error(message: Optional[str]) -> TxErrorKind:
    text = str(message or "").lower()
    if not text:
        return TxErrorKind.UNKNOWN
    for needles, kind in ERROR_PATTERNS:
        if any(n in text for n in needles):
            return kind
    return TxErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> TxErrorKind:
    return classify_error(str(exc) or type(exc).__name__)


class GeneratorError(Exception):
    """Base for failures detected before anything touches the chain."""


class EmptyInputError(GeneratorError):
    pass


class NoCandidatesError(GeneratorError):
    pass


class TransferPreconditionError(GeneratorError):
    """A random transfer cannot be attempted; ``kind`` is what the attempt reports."""

    kind = TxErrorKind.UNKNOWN

    def __init__(self, message: str, *, from_addr: Optional[str] = None, to_addr: Optional[str] = None) -> None:
        super().__init__(message)
        self.from_addr = from_addr
        self.to_addr = to_addr


class InsufficientEligibleWallets(TransferPreconditionError):
    kind = TxErrorKind.INSUFFICIENT_ELIGIBLE_WALLETS


class InsufficientTransferableBalance(TransferPreconditionError):
    kind = TxErrorKind.INSUFFICIENT_TRANSFERABLE_BALANCE


class InsufficientMasterBalance(GeneratorError):
    pass


class InvalidDistributionMode(GeneratorError):
    pass


class MasterKeyMissing(GeneratorError):
    pass
