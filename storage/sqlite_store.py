"""SQLite-backed store for wallets, transaction telemetry and daily stats.

Every operation opens its own short-lived connection, so the server, the
worker processes and the auto-fund loop can all share one database file.
Amounts are stored as decimal TEXT because wei values overflow INTEGER.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from generator.types import TX_PENDING, DailyStats, TxRecord, Wallet

log = logging.getLogger("txgen.sqlite_store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS wallets (
    address TEXT PRIMARY KEY,
    encrypted_private_key TEXT NOT NULL,
    idx INTEGER NOT NULL UNIQUE,
    balance TEXT NOT NULL DEFAULT '0',
    last_active REAL,
    total_tx_sent INTEGER NOT NULL DEFAULT 0,
    total_tx_received INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    tx_hash TEXT PRIMARY KEY,
    from_addr TEXT NOT NULL,
    to_addr TEXT NOT NULL,
    amount TEXT NOT NULL,
    gas_used TEXT NOT NULL DEFAULT '0',
    status TEXT NOT NULL,
    instance_id TEXT NOT NULL,
    error TEXT,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tx_status ON transactions(status);
CREATE INDEX IF NOT EXISTS idx_tx_instance ON transactions(instance_id);
CREATE INDEX IF NOT EXISTS idx_tx_created ON transactions(created_at);

CREATE TABLE IF NOT EXISTS daily_stats (
    date TEXT PRIMARY KEY,
    total_transactions INTEGER NOT NULL DEFAULT 0,
    successful_tx INTEGER NOT NULL DEFAULT 0,
    failed_tx INTEGER NOT NULL DEFAULT 0,
    total_volume TEXT NOT NULL DEFAULT '0',
    avg_gas_used TEXT NOT NULL DEFAULT '0',
    instances_run INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL
);
"""

_WALLET_COLS = "address, encrypted_private_key, idx, balance, last_active, total_tx_sent, total_tx_received, created_at"
_TX_COLS = "tx_hash, from_addr, to_addr, amount, gas_used, status, instance_id, error, created_at"


def _wallet_from_row(row: sqlite3.Row) -> Wallet:
    return Wallet(
        address=row["address"],
        encrypted_private_key=row["encrypted_private_key"],
        index=int(row["idx"]),
        balance=int(row["balance"]),
        last_active=row["last_active"],
        total_tx_sent=int(row["total_tx_sent"]),
        total_tx_received=int(row["total_tx_received"]),
        created_at=float(row["created_at"]),
    )


def _tx_from_row(row: sqlite3.Row) -> TxRecord:
    return TxRecord(
        tx_hash=row["tx_hash"],
        from_addr=row["from_addr"],
        to_addr=row["to_addr"],
        amount=int(row["amount"]),
        gas_used=int(row["gas_used"]),
        status=row["status"],
        instance_id=row["instance_id"],
        error=row["error"],
        created_at=float(row["created_at"]),
    )


def _wallet_params(w: Wallet) -> tuple:
    return (
        w.address,
        w.encrypted_private_key,
        int(w.index),
        str(int(w.balance)),
        w.last_active,
        int(w.total_tx_sent),
        int(w.total_tx_received),
        float(w.created_at),
    )


class SQLiteStore:
    """Persistent store backed by SQLite."""

    def __init__(self, db_path: Union[str, Path] = "data/txgen.db", *, busy_timeout_s: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout_s = float(busy_timeout_s)
        self._lock = asyncio.Lock()
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
        log.debug("SQLite database initialized at %s", self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_s)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Wallets
    # =========================================================================

    async def list_wallets(self) -> List[Wallet]:
        async with self._lock:
            with self._connect() as conn:
                rows = conn.execute(f"SELECT {_WALLET_COLS} FROM wallets ORDER BY idx ASC").fetchall()
        return [_wallet_from_row(r) for r in rows]

    async def count_wallets(self) -> int:
        async with self._lock:
            with self._connect() as conn:
                return int(conn.execute("SELECT COUNT(*) FROM wallets").fetchone()[0])

    async def find_by_address(self, address: str) -> Optional[Wallet]:
        async with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_WALLET_COLS} FROM wallets WHERE lower(address) = lower(?)", (address,)
                ).fetchone()
        return _wallet_from_row(row) if row else None

    async def find_by_index(self, index: int) -> Optional[Wallet]:
        async with self._lock:
            with self._connect() as conn:
                row = conn.execute(f"SELECT {_WALLET_COLS} FROM wallets WHERE idx = ?", (int(index),)).fetchone()
        return _wallet_from_row(row) if row else None

    async def create_wallet(self, wallet: Wallet) -> Wallet:
        async with self._lock:
            with self._connect() as conn:
                conn.execute(f"INSERT INTO wallets ({_WALLET_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)", _wallet_params(wallet))
        return wallet

    async def replace_wallets(self, wallets: Sequence[Wallet]) -> int:
        async with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM wallets")
                conn.executemany(
                    f"INSERT INTO wallets ({_WALLET_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [_wallet_params(w) for w in wallets],
                )
        return len(wallets)

    async def update_balance(self, address: str, balance: int) -> None:
        async with self._lock:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE wallets SET balance = ?, last_active = ? WHERE lower(address) = lower(?)",
                    (str(int(balance)), time.time(), address),
                )

    async def _increment(self, column: str, address: str) -> None:
        async with self._lock:
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE wallets SET {column} = {column} + 1, last_active = ? WHERE lower(address) = lower(?)",
                    (time.time(), address),
                )

    async def increment_sent(self, address: str) -> None:
        await self._increment("total_tx_sent", address)

    async def increment_received(self, address: str) -> None:
        await self._increment("total_tx_received", address)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def record_pending(self, record: TxRecord) -> str:
        async with self._lock:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO transactions ({_TX_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.tx_hash,
                        record.from_addr,
                        record.to_addr,
                        str(int(record.amount)),
                        str(int(record.gas_used)),
                        TX_PENDING,
                        record.instance_id,
                        record.error,
                        float(record.created_at),
                    ),
                )
        return record.tx_hash

    async def update_status(self, tx_hash: str, status: str, gas_used: int = 0, error: Optional[str] = None) -> bool:
        """Move a pending record to its final status. False if it was not pending."""
        async with self._lock:
            with self._connect() as conn:
                cur = conn.execute(
                    "UPDATE transactions SET status = ?, gas_used = ?, error = ? WHERE tx_hash = ? AND status = ?",
                    (status, str(int(gas_used)), error, tx_hash, TX_PENDING),
                )
                return cur.rowcount > 0

    async def get_transaction(self, tx_hash: str) -> Optional[TxRecord]:
        async with self._lock:
            with self._connect() as conn:
                row = conn.execute(f"SELECT {_TX_COLS} FROM transactions WHERE tx_hash = ?", (tx_hash,)).fetchone()
        return _tx_from_row(row) if row else None

    async def query(
        self,
        *,
        status: Optional[str] = None,
        instance_id: Optional[str] = None,
        since: Optional[float] = None,
        limit: Optional[int] = 50,
    ) -> List[TxRecord]:
        where: List[str] = []
        params: list = []
        if status is not None:
            where.append("status = ?")
            params.append(status)
        if instance_id is not None:
            where.append("instance_id = ?")
            params.append(instance_id)
        if since is not None:
            where.append("created_at >= ?")
            params.append(float(since))
        sql = f"SELECT {_TX_COLS} FROM transactions"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        async with self._lock:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        return [_tx_from_row(r) for r in rows]

    async def count_by_status(self, status: Optional[str] = None) -> int:
        async with self._lock:
            with self._connect() as conn:
                if status is None:
                    row = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()
                else:
                    row = conn.execute("SELECT COUNT(*) FROM transactions WHERE status = ?", (status,)).fetchone()
        return int(row[0])

    async def purge_older_than(self, cutoff_ts: float) -> int:
        async with self._lock:
            with self._connect() as conn:
                cur = conn.execute("DELETE FROM transactions WHERE created_at < ?", (float(cutoff_ts),))
                return int(cur.rowcount)

    # =========================================================================
    # Daily stats
    # =========================================================================

    async def upsert_daily(self, stats: DailyStats) -> None:
        async with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO daily_stats (date, total_transactions, successful_tx, failed_tx,
                                             total_volume, avg_gas_used, instances_run, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(date) DO UPDATE SET
                        total_transactions = excluded.total_transactions,
                        successful_tx = excluded.successful_tx,
                        failed_tx = excluded.failed_tx,
                        total_volume = excluded.total_volume,
                        avg_gas_used = excluded.avg_gas_used,
                        instances_run = excluded.instances_run,
                        updated_at = excluded.updated_at
                    """,
                    (
                        stats.date,
                        int(stats.total_transactions),
                        int(stats.successful_tx),
                        int(stats.failed_tx),
                        str(int(stats.total_volume)),
                        str(int(stats.avg_gas_used)),
                        int(stats.instances_run),
                        time.time(),
                    ),
                )

    async def daily_since(self, date: str) -> List[DailyStats]:
        async with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM daily_stats WHERE date >= ? ORDER BY date ASC", (date,)
                ).fetchall()
        return [
            DailyStats(
                date=r["date"],
                total_transactions=int(r["total_transactions"]),
                successful_tx=int(r["successful_tx"]),
                failed_tx=int(r["failed_tx"]),
                total_volume=int(r["total_volume"]),
                avg_gas_used=int(r["avg_gas_used"]),
                instances_run=int(r["instances_run"]),
            )
            for r in rows
        ]
