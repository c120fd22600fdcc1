from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Optional

from generator.config import Settings
from generator.executor import TransactionExecutor
from generator.funding import FundingEngine
from generator.wallets import WalletLedger
from infra.chain import ChainGateway
from infra.keys import KeyBox
from infra.metrics import METRICS, Metrics
from infra.rpc import AsyncRPC
from storage.sqlite_store import SQLiteStore


@dataclass
class AppContext:
    """Collaborators shared by one process. Built per process, never global."""

    settings: Settings
    rpc: AsyncRPC
    gateway: ChainGateway
    store: SQLiteStore
    ledger: WalletLedger
    executor: TransactionExecutor
    funding: FundingEngine
    events: Optional[Any] = None

    async def close(self) -> None:
        await self.gateway.close()


def build_context(
    settings: Settings,
    *,
    events: Optional[Any] = None,
    metrics: Optional[Metrics] = None,
    rng: Optional[random.Random] = None,
) -> AppContext:
    metrics = metrics or METRICS
    rpc = AsyncRPC(settings.rpc_url, default_timeout_s=settings.rpc_timeout_s, metrics=metrics)
    key_box = KeyBox(settings.encryption_key)
    gateway = ChainGateway(
        rpc,
        chain_id=settings.chain_id,
        key_box=key_box,
        master_private_key=settings.master_private_key,
        receipt_timeout_s=settings.receipt_timeout_s,
        receipt_poll_s=settings.receipt_poll_s,
    )
    store = SQLiteStore(settings.db_path)
    ledger = WalletLedger(store, gateway, key_box)
    executor = TransactionExecutor(ledger, store, gateway, settings, metrics=metrics, rng=rng)
    funding = FundingEngine(ledger, gateway, settings, events=events, rng=rng)
    return AppContext(
        settings=settings,
        rpc=rpc,
        gateway=gateway,
        store=store,
        ledger=ledger,
        executor=executor,
        funding=funding,
        events=events,
    )
