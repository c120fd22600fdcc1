from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from generator.amounts import format_amount
from generator.config import Settings
from generator.funding import FundingEngine
from generator.types import TX_FAILED, TX_PENDING, TX_SUCCESS, DailyStats
from generator.wallets import WalletLedger
from storage.base import StatsStore, TransactionStore

log = logging.getLogger("txgen.stats")

DAY_S = 86_400


def utc_date(ts: Optional[float] = None) -> str:
    return datetime.fromtimestamp(time.time() if ts is None else ts, tz=timezone.utc).strftime("%Y-%m-%d")


def utc_day_start(ts: Optional[float] = None) -> float:
    now = time.time() if ts is None else ts
    return float(int(now) // DAY_S * DAY_S)


class StatsService:
    """Live and daily statistics built from the transaction records."""

    def __init__(
        self,
        tx_store: TransactionStore,
        stats_store: StatsStore,
        ledger: WalletLedger,
        funding: FundingEngine,
        settings: Settings,
        *,
        running_count: Optional[Callable[[], int]] = None,
    ) -> None:
        self.tx_store = tx_store
        self.stats_store = stats_store
        self.ledger = ledger
        self.funding = funding
        self.settings = settings
        self.running_count = running_count or (lambda: 0)

    async def transaction_stats(self) -> Dict[str, Any]:
        total = await self.tx_store.count_by_status()
        successful = await self.tx_store.count_by_status(TX_SUCCESS)
        failed = await self.tx_store.count_by_status(TX_FAILED)
        pending = await self.tx_store.count_by_status(TX_PENDING)
        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "pending": pending,
            "success_rate": (successful / total * 100.0) if total else 0.0,
        }

    async def today(self, now: Optional[float] = None) -> DailyStats:
        records = await self.tx_store.query(since=utc_day_start(now), limit=None)
        day = DailyStats(date=utc_date(now), total_transactions=len(records))
        gas_total = 0
        for rec in records:
            if rec.status == TX_SUCCESS:
                day.successful_tx += 1
                day.total_volume += rec.amount
                gas_total += rec.gas_used
            elif rec.status == TX_FAILED:
                day.failed_tx += 1
        if day.successful_tx:
            day.avg_gas_used = gas_total // day.successful_tx
        day.instances_run = self.running_count()
        return day

    async def _master(self) -> Dict[str, Any]:
        try:
            address = self.funding.master_address()
            balance = await self.funding.master_balance()
        except Exception as exc:
            log.warning("master wallet unavailable for stats: %s", exc)
            return {"address": None, "balance": None}
        return {"address": address, "balance": format_amount(balance)}

    async def live_stats(self) -> Dict[str, Any]:
        today = await self.today()
        return {
            "instances": {"running": self.running_count(), "max_allowed": self.settings.max_instances},
            "transactions": await self.transaction_stats(),
            "today": {
                "total_tx": today.total_transactions,
                "successful": today.successful_tx,
                "failed": today.failed_tx,
                "volume": format_amount(today.total_volume),
            },
            "wallets": await self.ledger.wallet_stats(),
            "master_wallet": await self._master(),
        }

    async def update_daily_stats(self) -> DailyStats:
        day = await self.today()
        await self.stats_store.upsert_daily(day)
        log.debug("updated daily stats for %s", day.date)
        return day

    async def historical(self, days: int = 7) -> List[DailyStats]:
        start = utc_date(time.time() - max(0, int(days)) * DAY_S)
        return await self.stats_store.daily_since(start)

    async def purge_expired(self) -> int:
        cutoff = time.time() - self.settings.tx_retention_days * DAY_S
        removed = await self.tx_store.purge_older_than(cutoff)
        if removed:
            log.info("purged %d transaction records older than %d days", removed, self.settings.tx_retention_days)
        return removed

    async def total_volume(self) -> int:
        records = await self.tx_store.query(status=TX_SUCCESS, limit=None)
        return sum(r.amount for r in records)
