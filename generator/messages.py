"""Typed messages exchanged between the instance manager and its workers.

manager -> worker: StopCommand
worker -> manager: TxComplete, TxFailed, WorkerStatus

All of them cross a multiprocessing pipe/queue, so they are plain picklable
dataclasses.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class StopCommand:
    reason: str = "requested"


@dataclass(frozen=True)
class TxComplete:
    tx_hash: str
    from_addr: str
    to_addr: str
    amount: int
    ts: float = field(default_factory=time.time)

    def summary(self, instance_id: str) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "from": self.from_addr,
            "to": self.to_addr,
            "amount": str(self.amount),
            "status": "success",
            "instance_id": instance_id,
            "created_at": self.ts,
        }


@dataclass(frozen=True)
class TxFailed:
    error: str
    message: Optional[str] = None
    tx_hash: Optional[str] = None
    ts: float = field(default_factory=time.time)


@dataclass(frozen=True)
class WorkerStatus:
    state: str
    detail: Dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)


WorkerReport = Union[TxComplete, TxFailed, WorkerStatus]
