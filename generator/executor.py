# generator/executor.py

from __future__ import annotations

import logging
import random
import time
from typing import Any, Optional, Tuple

from generator.amounts import format_amount, parse_amount
from generator.config import Settings
from generator.errors import (
    InsufficientEligibleWallets,
    InsufficientTransferableBalance,
    TransferPreconditionError,
    TxErrorKind,
    classify_exception,
)
from generator.selection import calculate_transfer_amount, pick_random, pick_random_excluding
from generator.types import TX_FAILED, TX_SUCCESS, TxRecord, TxResult, Wallet
from generator.wallets import WalletLedger
from infra.metrics import METRICS, Metrics
from storage.base import TransactionStore

log = logging.getLogger("txgen.executor")


class TransactionExecutor:
    """Runs one random transfer between two eligible wallets.

    Never retries: a failed attempt is classified and handed back, the worker
    loop decides what to do next. Eligibility is read from cached balances
    without any cross-process lock, so a sender picked here may already have
    been drained by another worker; the chain rejects that transfer and the
    attempt is reported as INSUFFICIENT_BALANCE.
    """

    def __init__(
        self,
        ledger: WalletLedger,
        tx_store: TransactionStore,
        gateway: Any,
        settings: Settings,
        *,
        metrics: Optional[Metrics] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.ledger = ledger
        self.tx_store = tx_store
        self.gateway = gateway
        self.settings = settings
        self.metrics = metrics or METRICS
        self.rng = rng
        self.min_balance = parse_amount(settings.min_wallet_balance)
        self.min_tx = parse_amount(settings.min_tx_amount)
        self.max_tx = parse_amount(settings.max_tx_amount)

    async def _pick_transfer(self) -> Tuple[Wallet, Wallet, int]:
        eligible = await self.ledger.eligible_wallets(self.min_balance)
        if len(eligible) < 2:
            raise InsufficientEligibleWallets(f"{len(eligible)} wallet(s) at or above minimum balance")

        sender = pick_random(eligible, self.rng)
        receiver = pick_random_excluding(eligible, sender, self.rng)
        amount = calculate_transfer_amount(
            sender.balance, self.min_balance, floor=self.min_tx, cap=self.max_tx, rng=self.rng
        )
        if amount == 0:
            raise InsufficientTransferableBalance(
                f"no surplus above minimum balance on {sender.address}",
                from_addr=sender.address,
                to_addr=receiver.address,
            )
        return sender, receiver, amount

    async def execute_random_transfer(self, instance_id: str) -> TxResult:
        try:
            sender, receiver, amount = await self._pick_transfer()
        except TransferPreconditionError as exc:
            log.warning("transfer skipped: %s", exc)
            self.metrics.record_tx(False, error=exc.kind.value)
            return TxResult.failure(exc.kind, str(exc), from_addr=exc.from_addr, to_addr=exc.to_addr)

        tx_hash: Optional[str] = None
        t0 = time.perf_counter()
        try:
            account = self.ledger.credentials(sender)
            log.info(
                "executing tx: %s -> %s (%s %s)",
                sender.address,
                receiver.address,
                format_amount(amount),
                self.settings.symbol,
            )
            pending = await self.gateway.submit_transfer(account, receiver.address, amount)
            tx_hash = pending.hash
            await self.tx_store.record_pending(
                TxRecord(
                    tx_hash=tx_hash,
                    from_addr=sender.address,
                    to_addr=receiver.address,
                    amount=amount,
                    instance_id=instance_id,
                )
            )
            receipt = await pending.wait()
            status = TX_SUCCESS if receipt.ok else TX_FAILED
            await self.tx_store.update_status(
                tx_hash, status, receipt.gas_used, None if receipt.ok else "reverted"
            )
        except Exception as exc:
            kind = classify_exception(exc)
            message = str(exc) or type(exc).__name__
            log.error("transaction failed: %s (%s)", kind.value, message)
            if tx_hash is not None:
                await self._mark_failed(tx_hash, message)
                await self._refresh_wallets(sender.address, receiver.address)
            self.metrics.record_tx(False, error=kind.value)
            return TxResult.failure(
                kind,
                message,
                tx_hash=tx_hash,
                from_addr=sender.address,
                to_addr=receiver.address,
                amount=amount,
            )

        confirm_s = time.perf_counter() - t0
        await self._settle_wallets(sender.address, receiver.address)
        if not receipt.ok:
            log.warning("transaction reverted: %s", tx_hash)
            self.metrics.record_tx(False, error=TxErrorKind.UNKNOWN.value, confirm_s=confirm_s)
            return TxResult.failure(
                TxErrorKind.UNKNOWN,
                "transaction reverted",
                tx_hash=tx_hash,
                from_addr=sender.address,
                to_addr=receiver.address,
                amount=amount,
            )

        log.info("transaction confirmed: %s", tx_hash)
        self.metrics.record_tx(True, confirm_s=confirm_s)
        return TxResult(
            success=True,
            tx_hash=tx_hash,
            from_addr=sender.address,
            to_addr=receiver.address,
            amount=amount,
        )

    async def _settle_wallets(self, sender: str, receiver: str) -> None:
        # The transfer is final at this point; bookkeeping errors are only logged.
        try:
            await self.ledger.store.increment_sent(sender)
            await self.ledger.store.increment_received(receiver)
        except Exception as exc:
            log.error("wallet counters after transfer failed: %s", exc)
        await self._refresh_wallets(sender, receiver)

    async def _refresh_wallets(self, *addresses: str) -> None:
        for address in addresses:
            try:
                await self.ledger.refresh_balance(address)
            except Exception as exc:
                log.error("balance refresh for %s failed: %s", address, exc)

    async def _mark_failed(self, tx_hash: str, message: str) -> None:
        try:
            await self.tx_store.update_status(tx_hash, TX_FAILED, 0, message[:500])
        except Exception as exc:
            log.error("could not mark %s failed: %s", tx_hash, exc)
