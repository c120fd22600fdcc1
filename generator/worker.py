"""Transaction worker process.

One worker = one OS process running WorkerLoop: execute one transfer, report
it, sleep a random delay, repeat until stopped. A stop never interrupts a
transfer in flight; it is honoured between iterations and during the sleep.
"""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Optional

from generator.config import Settings
from generator.context import build_context
from generator.errors import TxErrorKind
from generator.executor import TransactionExecutor
from generator.logs import configure_logging
from generator.messages import TxComplete, TxFailed, WorkerStatus
from generator.spawner import WorkerChannel
from generator.types import TxResult
from infra.metrics import METRICS, Metrics

log = logging.getLogger("txgen.worker")


class WorkerLoop:
    def __init__(
        self,
        instance_id: str,
        executor: TransactionExecutor,
        channel: WorkerChannel,
        settings: Settings,
        *,
        metrics: Optional[Metrics] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.instance_id = instance_id
        self.executor = executor
        self.channel = channel
        self.settings = settings
        self.metrics = metrics or METRICS
        self.rng = rng or random.Random()
        self.iterations = 0

    def next_delay(self) -> float:
        return self.rng.uniform(self.settings.tx_delay_min_s, self.settings.tx_delay_max_s)

    async def run_once(self) -> Optional[TxResult]:
        try:
            result = await self.executor.execute_random_transfer(self.instance_id)
        except Exception as exc:
            log.error("worker %s error: %s", self.instance_id, exc)
            self.channel.report(TxFailed(error=TxErrorKind.UNKNOWN.value, message=str(exc)))
            return None

        if result.success:
            self.channel.report(
                TxComplete(
                    tx_hash=result.tx_hash or "",
                    from_addr=result.from_addr or "",
                    to_addr=result.to_addr or "",
                    amount=int(result.amount),
                )
            )
        else:
            kind = result.error or TxErrorKind.UNKNOWN
            self.channel.report(TxFailed(error=kind.value, message=result.error_message, tx_hash=result.tx_hash))
        return result

    async def run(self) -> int:
        log.info("transaction worker %s starting", self.instance_id)
        self.channel.report(WorkerStatus("started"))
        while not self.channel.stop_requested():
            await self.run_once()
            self.iterations += 1
            every = self.settings.status_every
            if every > 0 and self.iterations % every == 0:
                self.channel.report(WorkerStatus("running", self.metrics.snapshot()))
            if await self.channel.wait(self.next_delay()):
                break
        log.info(
            "transaction worker %s stopped after %d iterations (%s)",
            self.instance_id,
            self.iterations,
            self.channel.stop_reason,
        )
        self.channel.report(WorkerStatus("stopped", {"iterations": self.iterations, "reason": self.channel.stop_reason}))
        return self.iterations


async def _worker_main(instance_id: str, settings: Settings, channel: WorkerChannel) -> None:
    ctx = build_context(settings)
    try:
        await WorkerLoop(instance_id, ctx.executor, channel, settings).run()
    finally:
        await ctx.close()


def run_worker(instance_id: str, settings: Settings, channel: WorkerChannel) -> None:
    """Process entry point for one instance."""
    configure_logging(Path(settings.log_dir), f"worker-{instance_id[:8]}")
    channel.install_signal_handlers()
    try:
        asyncio.run(_worker_main(instance_id, settings, channel))
    except Exception:
        log.exception("worker %s fatal error", instance_id)
        raise SystemExit(1)
