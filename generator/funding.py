"""Bulk distribution from the master wallet to the wallet pool.

Two topologies:

* direct   master -> every wallet
* two-hop  master -> one random intermediary -> every other wallet; the
           intermediary keeps a 1-5 % cut so the pool is not visibly funded
           from a single address

Every transfer in a batch is attempted on its own; failures are recorded in
the FundingResult and never stop the batch. Batches are not cancellable once
started.
"""

from __future__ import annotations

import logging
import random
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple, Union

from eth_account.signers.local import LocalAccount

from generator.amounts import format_amount, parse_amount
from generator.config import Settings
from generator.errors import GeneratorError, InsufficientMasterBalance, InvalidDistributionMode
from generator.selection import pick_random
from generator.types import FundingResult, Wallet
from generator.wallets import WalletLedger

log = logging.getLogger("txgen.funding")

MODE_EQUAL = "equal"
MODE_RANDOM = "random"
DISTRIBUTION_MODES = (MODE_EQUAL, MODE_RANDOM)

TransferPlan = List[Tuple[Wallet, int]]


def calculate_distribution(
    total: int,
    count: int,
    mode: str,
    *,
    min_per_wallet: int,
    step: int,
    rng: Optional[random.Random] = None,
) -> List[int]:
    """Split ``total`` wei over ``count`` wallets.

    equal:  ``total // count`` each; the remainder is not handed out.
    random: everyone gets ``min_per_wallet``, the rest goes out in random
            increments of at most ``step``. Falls back to equal when
            ``total < count * min_per_wallet``.
    """
    if mode not in DISTRIBUTION_MODES:
        raise InvalidDistributionMode(f'mode must be "equal" or "random", got {mode!r}')
    if count <= 0:
        return []
    total = int(total)
    if mode == MODE_EQUAL or total < count * int(min_per_wallet):
        return [total // count] * count

    r = rng or random
    amounts = [int(min_per_wallet)] * count
    remaining = total - count * int(min_per_wallet)
    step = max(1, int(step))
    while remaining > 0:
        inc = r.randint(1, min(step, remaining))
        amounts[r.randrange(count)] += inc
        remaining -= inc
    return amounts


class FundingEngine:
    def __init__(
        self,
        ledger: WalletLedger,
        gateway: Any,
        settings: Settings,
        *,
        events: Optional[Any] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.ledger = ledger
        self.gateway = gateway
        self.settings = settings
        self.events = events
        self.rng = rng
        self.min_per_wallet = parse_amount(settings.random_min_per_wallet)
        self.step = parse_amount(settings.random_step)

    def master_address(self) -> str:
        return self.gateway.master_account().address

    async def master_balance(self) -> int:
        return await self.gateway.get_balance(self.master_address())

    def plan(self, total: int, wallets: Sequence[Wallet], mode: str) -> TransferPlan:
        amounts = calculate_distribution(
            total, len(wallets), mode, min_per_wallet=self.min_per_wallet, step=self.step, rng=self.rng
        )
        return list(zip(wallets, amounts))

    async def distribute(
        self,
        total_amount: Union[str, Decimal, int],
        mode: str = MODE_EQUAL,
        two_hop: bool = False,
    ) -> FundingResult:
        """Distribute ``total_amount`` tokens over the pool. Never raises."""
        if mode not in DISTRIBUTION_MODES:
            return FundingResult.rejected(f'mode must be "equal" or "random", got {mode!r}')
        try:
            total = parse_amount(total_amount)
        except ValueError as exc:
            return FundingResult.rejected(str(exc))
        if total <= 0:
            return FundingResult.rejected("totalAmount must be positive")

        try:
            wallets = await self.ledger.get_all_wallets()
            if not wallets:
                return FundingResult.rejected("No wallets to fund")
            master = self.gateway.master_account()
            if two_hop:
                return await self._distribute_two_hop(master, total, mode, wallets)
            return await self._distribute_direct(master, total, mode, wallets)
        except GeneratorError as exc:
            return FundingResult.rejected(str(exc))
        except Exception as exc:
            log.error("distribution aborted before any transfer: %s", exc)
            return FundingResult.rejected(f"Distribution failed: {exc}")

    async def _check_master(self, master: LocalAccount, needed: int) -> None:
        balance = await self.gateway.get_balance(master.address)
        if balance < needed:
            raise InsufficientMasterBalance(
                f"Insufficient master balance. Have: {format_amount(balance)}, Need: {format_amount(needed)}"
            )

    async def _distribute_direct(
        self, master: LocalAccount, total: int, mode: str, wallets: List[Wallet]
    ) -> FundingResult:
        await self._check_master(master, total)

        plan = self.plan(total, wallets, mode)
        log.info(
            "starting %s distribution of %s %s to %d wallets",
            mode,
            format_amount(total),
            self.settings.symbol,
            len(wallets),
        )
        result = FundingResult()
        await self.send_batch(master, plan, result)
        await self.settle_batch([w.address for w in wallets])
        log.info("distribution complete. funded: %d, failed: %d", result.funded, result.failed)
        return result

    async def _distribute_two_hop(
        self, master: LocalAccount, total: int, mode: str, wallets: List[Wallet]
    ) -> FundingResult:
        if len(wallets) < 2:
            return FundingResult.rejected("Two-hop distribution needs at least 2 wallets")

        intermediary = pick_random(wallets, self.rng)
        others = [w for w in wallets if w.address != intermediary.address]
        r = self.rng or random
        lo = int(round(self.settings.two_hop_retention_min_pct * 100))
        hi = max(lo, int(round(self.settings.two_hop_retention_max_pct * 100)))
        retention_bps = r.randint(lo, hi)
        distributable = total * (10_000 - retention_bps) // 10_000
        retained = total - distributable
        gas_buffer = await self.gateway.transfer_cost() * len(others)
        first_hop = total + gas_buffer

        await self._check_master(master, first_hop)

        plan = self.plan(distributable, others, mode)
        log.info(
            "starting two-hop %s distribution of %s %s via wallet %d (keeps %.2f%%)",
            mode,
            format_amount(total),
            self.settings.symbol,
            intermediary.index,
            retention_bps / 100.0,
        )

        result = FundingResult()
        try:
            await self.gateway.send_and_confirm(master, intermediary.address, first_hop)
        except Exception as exc:
            result.record_failed(f"Failed to fund intermediary {intermediary.address}: {exc}")
            log.error("first hop to wallet %d failed: %s", intermediary.index, exc)
            await self.settle_batch([intermediary.address])
            return result
        result.record_funded(retained)
        await self._progress(result, len(plan) + 1, intermediary.address)

        try:
            signer = self.ledger.credentials(intermediary)
        except Exception as exc:
            log.error("cannot sign from intermediary %s: %s", intermediary.address, exc)
            for wallet, amount in plan:
                if amount > 0:
                    result.record_failed(f"Failed to fund {wallet.address}: intermediary key unavailable ({exc})")
        else:
            await self.send_batch(signer, plan, result, offset=1)

        await self.settle_batch([w.address for w in wallets])
        log.info(
            "two-hop distribution complete. funded: %d, failed: %d, total: %s",
            result.funded,
            result.failed,
            format_amount(result.total_distributed),
        )
        return result

    async def send_batch(self, sender: LocalAccount, plan: TransferPlan, result: FundingResult, *, offset: int = 0) -> None:
        """Run every planned transfer, recording each outcome in ``result``."""
        total = len(plan) + offset
        for wallet, amount in plan:
            if amount <= 0:
                continue
            try:
                await self.gateway.send_and_confirm(sender, wallet.address, amount)
            except Exception as exc:
                result.record_failed(f"Failed to fund {wallet.address}: {exc}")
                log.error("failed to fund wallet %d: %s", wallet.index, exc)
            else:
                result.record_funded(amount)
                log.debug("funded wallet %d: %s %s", wallet.index, format_amount(amount), self.settings.symbol)
            await self._progress(result, total, wallet.address)

    async def _progress(self, result: FundingResult, total: int, current: str) -> None:
        if self.events is not None:
            await self.events.funding_progress(result.funded, result.failed, total, current)

    async def settle_batch(self, addresses: List[str]) -> None:
        await self.ledger.refresh_balances(addresses)
        if self.events is not None:
            await self.events.wallets_changed()
