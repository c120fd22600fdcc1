"""Threshold-triggered top-ups of the wallet pool.

AutoFunder        one check / one corrective batch, callable from anywhere
run_autofund_loop process entry point; runs AutoFunder.execute() on a timer
AutoFundSupervisor starts/stops that process on behalf of the service
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from generator.amounts import format_amount, parse_amount
from generator.config import Settings
from generator.context import build_context
from generator.funding import FundingEngine
from generator.logs import configure_logging
from generator.messages import StopCommand, WorkerStatus
from generator.pidlock import PidLock
from generator.spawner import MultiprocessingSpawner, ProcessHandle, ProcessSpawner, WorkerChannel
from generator.types import AutoFundCheck, FundingResult, Wallet
from generator.wallets import WalletLedger

log = logging.getLogger("txgen.autofund")

LOCK_NAME = "autofund.pid"


class AutoFunder:
    def __init__(self, ledger: WalletLedger, funding: FundingEngine, settings: Settings) -> None:
        self.ledger = ledger
        self.funding = funding
        self.settings = settings
        self.threshold = float(settings.auto_fund_threshold)
        self.low_balance = parse_amount(settings.auto_fund_low_balance)
        self.target = parse_amount(settings.auto_fund_target)

    def _low(self, wallets: List[Wallet]) -> List[Wallet]:
        return [w for w in wallets if w.balance < self.low_balance]

    async def check_needed(self) -> AutoFundCheck:
        wallets = await self.ledger.get_all_wallets()
        total = len(wallets)
        low = len(self._low(wallets))
        if total == 0:
            return AutoFundCheck(needed=False, low_balance_count=0, total_wallets=0, percentage=0.0)
        ratio = low / total
        return AutoFundCheck(
            needed=ratio >= self.threshold,
            low_balance_count=low,
            total_wallets=total,
            percentage=ratio * 100.0,
        )

    async def execute(self) -> Optional[FundingResult]:
        """Top up every low wallet to the target. None when nothing was needed."""
        check = await self.check_needed()
        if not check.needed:
            log.debug(
                "auto-fund not needed (%d/%d low, %.1f%%)",
                check.low_balance_count,
                check.total_wallets,
                check.percentage,
            )
            return None

        log.info(
            "auto-fund triggered: %d/%d wallets low (%.1f%%)",
            check.low_balance_count,
            check.total_wallets,
            check.percentage,
        )
        wallets = await self.ledger.get_all_wallets()
        plan = [(w, self.target - w.balance) for w in self._low(wallets)]
        plan = [(w, amount) for w, amount in plan if amount > 0]
        if not plan:
            return FundingResult()
        needed = sum(amount for _, amount in plan)

        try:
            master = self.funding.gateway.master_account()
            balance = await self.funding.gateway.get_balance(master.address)
        except Exception as exc:
            log.error("auto-fund aborted: %s", exc)
            return FundingResult.rejected(f"Auto-fund failed: {exc}")
        if balance < needed:
            log.warning(
                "master balance may be insufficient for auto-fund. have: %s, need: %s",
                format_amount(balance),
                format_amount(needed),
            )

        result = FundingResult()
        await self.funding.send_batch(master, plan, result)
        await self.funding.settle_batch([w.address for w, _ in plan])
        log.info(
            "auto-fund complete. funded: %d, failed: %d, total: %s %s",
            result.funded,
            result.failed,
            format_amount(result.total_distributed),
            self.settings.symbol,
        )
        return result


async def _autofund_main(settings: Settings, channel: WorkerChannel) -> None:
    ctx = build_context(settings)
    funder = AutoFunder(ctx.ledger, ctx.funding, settings)
    log.info("auto-fund loop starting (every %.0fs)", settings.auto_fund_interval_s)
    channel.report(WorkerStatus("started"))
    try:
        while not channel.stop_requested():
            try:
                result = await funder.execute()
            except Exception as exc:
                log.error("auto-fund error: %s", exc)
                channel.report(WorkerStatus("error", {"message": str(exc)}))
            else:
                if result is not None:
                    channel.report(WorkerStatus("funded", result.to_dict()))
            if await channel.wait(settings.auto_fund_interval_s):
                break
    finally:
        await ctx.close()
    log.info("auto-fund loop stopped (%s)", channel.stop_reason)


def run_autofund_loop(settings: Settings, channel: WorkerChannel) -> None:
    """Process entry point. Holds a pid lock next to the database."""
    configure_logging(Path(settings.log_dir), "autofund")
    channel.install_signal_handlers()
    lock = PidLock.beside_database(settings.db_path, LOCK_NAME)
    state = lock.acquire("autofund")
    if not state.acquired:
        log.warning("auto-fund loop not started: %s", state.describe())
        channel.report(WorkerStatus("rejected", {"reason": state.reason, "holder": state.holder}))
        return
    if state.recovered_from:
        log.info("took over auto-fund lock from dead pid %s", state.recovered_from)
    try:
        asyncio.run(_autofund_main(settings, channel))
    except Exception:
        log.exception("auto-fund loop crashed")
        raise SystemExit(1)
    finally:
        lock.release()


class AutoFundSupervisor:
    """Owns the (single) auto-fund loop process."""

    def __init__(
        self,
        settings: Settings,
        *,
        spawner: Optional[ProcessSpawner] = None,
        target: Any = run_autofund_loop,
    ) -> None:
        self.settings = settings
        self.spawner = spawner or MultiprocessingSpawner()
        self.target = target
        self.handle: Optional[ProcessHandle] = None
        self.last_status: Optional[WorkerStatus] = None

    def is_enabled(self) -> bool:
        return self.handle is not None and self.handle.is_alive()

    def enable(self) -> bool:
        if self.is_enabled():
            return True
        try:
            self.handle = self.spawner.spawn(self.target, (self.settings,), "txgen-autofund")
        except Exception as exc:
            log.error("failed to start auto-fund loop: %s", exc)
            self.handle = None
            return False
        log.info("auto-fund enabled")
        return True

    async def disable(self) -> bool:
        handle = self.handle
        if handle is None:
            return False
        try:
            handle.send(StopCommand("disabled"))
        except Exception as exc:
            log.error("failed to signal auto-fund loop: %s", exc)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.stop_grace_s
        while handle.is_alive() and loop.time() < deadline:
            await asyncio.sleep(0.1)
        if handle.is_alive():
            log.warning("auto-fund loop did not stop in %.1fs, killing", self.settings.stop_grace_s)
            handle.kill()
        handle.join(1.0)
        self._collect(handle)
        self.handle = None
        log.info("auto-fund disabled")
        return True

    def _collect(self, handle: ProcessHandle) -> None:
        for msg in handle.drain():
            if isinstance(msg, WorkerStatus):
                self.last_status = msg

    def status(self) -> Dict[str, Any]:
        if self.handle is not None:
            self._collect(self.handle)
        out: Dict[str, Any] = {"enabled": self.is_enabled()}
        if self.last_status is not None:
            out["last_state"] = self.last_status.state
            out["last_detail"] = self.last_status.detail
            out["last_at"] = self.last_status.ts
        return out
