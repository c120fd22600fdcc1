from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from generator.amounts import format_amount
from generator.errors import TxErrorKind

TX_PENDING = "pending"
TX_SUCCESS = "success"
TX_FAILED = "failed"

INSTANCE_RUNNING = "running"
INSTANCE_STOPPED = "stopped"
INSTANCE_ERROR = "error"


@dataclass
class Wallet:
    address: str
    encrypted_private_key: str
    index: int
    balance: int = 0
    last_active: Optional[float] = None
    total_tx_sent: int = 0
    total_tx_received: int = 0
    created_at: float = field(default_factory=time.time)

    def public_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "index": self.index,
            "balance": str(self.balance),
            "balance_fmt": format_amount(self.balance),
            "last_active": self.last_active,
            "total_tx_sent": self.total_tx_sent,
            "total_tx_received": self.total_tx_received,
        }


@dataclass
class TxRecord:
    tx_hash: str
    from_addr: str
    to_addr: str
    amount: int
    instance_id: str
    status: str = TX_PENDING
    gas_used: int = 0
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["amount"] = str(self.amount)
        out["gas_used"] = str(self.gas_used)
        return out


@dataclass
class TxResult:
    success: bool
    tx_hash: Optional[str] = None
    from_addr: Optional[str] = None
    to_addr: Optional[str] = None
    amount: int = 0
    error: Optional[TxErrorKind] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, kind: TxErrorKind, message: Optional[str] = None, **kw: Any) -> "TxResult":
        return cls(success=False, error=kind, error_message=message, **kw)


@dataclass
class InstanceStats:
    id: str
    started_at: float
    transactions_executed: int = 0
    last_transaction_at: Optional[float] = None
    status: str = INSTANCE_RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FundingResult:
    success: bool = True
    funded: int = 0
    failed: int = 0
    total_distributed: int = 0
    errors: List[str] = field(default_factory=list)

    def record_funded(self, amount: int) -> None:
        self.funded += 1
        self.total_distributed += int(amount)

    def record_failed(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)
        self.success = False

    @classmethod
    def rejected(cls, message: str) -> "FundingResult":
        return cls(success=False, errors=[message])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "funded": self.funded,
            "failed": self.failed,
            "total_distributed": format_amount(self.total_distributed),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class AutoFundCheck:
    needed: bool
    low_balance_count: int
    total_wallets: int
    percentage: float


@dataclass
class DailyStats:
    date: str
    total_transactions: int = 0
    successful_tx: int = 0
    failed_tx: int = 0
    total_volume: int = 0
    avg_gas_used: int = 0
    instances_run: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["total_volume"] = format_amount(self.total_volume)
        out["avg_gas_used"] = str(self.avg_gas_used)
        return out
