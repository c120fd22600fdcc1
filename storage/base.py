from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from generator.types import DailyStats, TxRecord, Wallet


class WalletStore(Protocol):
    async def list_wallets(self) -> List[Wallet]: ...
    async def count_wallets(self) -> int: ...
    async def find_by_address(self, address: str) -> Optional[Wallet]: ...
    async def find_by_index(self, index: int) -> Optional[Wallet]: ...
    async def create_wallet(self, wallet: Wallet) -> Wallet: ...
    async def replace_wallets(self, wallets: Sequence[Wallet]) -> int: ...
    async def update_balance(self, address: str, balance: int) -> None: ...
    async def increment_sent(self, address: str) -> None: ...
    async def increment_received(self, address: str) -> None: ...


class TransactionStore(Protocol):
    async def record_pending(self, record: TxRecord) -> str: ...
    async def update_status(
        self, tx_hash: str, status: str, gas_used: int = 0, error: Optional[str] = None
    ) -> bool: ...
    async def query(
        self,
        *,
        status: Optional[str] = None,
        instance_id: Optional[str] = None,
        since: Optional[float] = None,
        limit: Optional[int] = 50,
    ) -> List[TxRecord]: ...
    async def count_by_status(self, status: Optional[str] = None) -> int: ...
    async def purge_older_than(self, cutoff_ts: float) -> int: ...


class StatsStore(Protocol):
    async def upsert_daily(self, stats: DailyStats) -> None: ...
    async def daily_since(self, date: str) -> List[DailyStats]: ...
