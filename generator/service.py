"""TxGenerator: every operation the outer surfaces (CLI, dashboard API) call.

All collaborators are built here and passed down explicitly; nothing in the
core reaches for module-level instances except the metrics counters.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from generator.amounts import format_amount
from generator.autofund import AutoFunder, AutoFundSupervisor
from generator.config import Settings, load_settings
from generator.context import AppContext, build_context
from generator.instances import InstanceManager
from generator.spawner import ProcessSpawner
from generator.stats import StatsService
from generator.types import AutoFundCheck, DailyStats, FundingResult, InstanceStats, Wallet
from ui_notify import UiNotifier, _ui_url

log = logging.getLogger("txgen.service")


class TxGenerator:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        context: Optional[AppContext] = None,
        spawner: Optional[ProcessSpawner] = None,
        events: Optional[Any] = None,
    ) -> None:
        self.settings = settings or load_settings()
        if events is None:
            events = UiNotifier(_ui_url(self.settings.ui_host, self.settings.ui_port))
        self.events = events
        self.ctx = context or build_context(self.settings, events=events)
        self.autofunder = AutoFunder(self.ctx.ledger, self.ctx.funding, self.settings)
        self.autofund = AutoFundSupervisor(self.settings, spawner=spawner)
        self.instances = InstanceManager(self.settings, spawner=spawner, events=events)
        self.stats = StatsService(
            self.ctx.store,
            self.ctx.store,
            self.ctx.ledger,
            self.ctx.funding,
            self.settings,
            running_count=self.instances.running_count,
        )

    # Wallets

    async def generate_wallets(self, count: int) -> List[Wallet]:
        wallets = await self.ctx.ledger.generate_wallets(count)
        await self.events.wallets_changed()
        return wallets

    async def import_wallets(self, private_keys: Iterable[str]) -> List[Wallet]:
        wallets = await self.ctx.ledger.import_wallets(private_keys)
        await self.events.wallets_changed()
        return wallets

    async def get_all_wallets(self) -> List[Wallet]:
        return await self.ctx.ledger.get_all_wallets()

    async def refresh_balances(self) -> Tuple[int, List[str]]:
        out = await self.ctx.ledger.refresh_balances()
        await self.events.wallets_changed()
        return out

    # Funding

    async def get_master_balance(self) -> str:
        return format_amount(await self.ctx.funding.master_balance())

    def get_master_address(self) -> str:
        return self.ctx.funding.master_address()

    async def distribute(self, total_amount: Any, mode: str = "equal", two_hop: bool = False) -> FundingResult:
        return await self.ctx.funding.distribute(total_amount, mode, two_hop)

    async def check_auto_fund_needed(self) -> AutoFundCheck:
        return await self.autofunder.check_needed()

    async def execute_auto_fund(self) -> Optional[FundingResult]:
        return await self.autofunder.execute()

    def enable_auto_fund(self) -> bool:
        return self.autofund.enable()

    async def disable_auto_fund(self) -> bool:
        return await self.autofund.disable()

    def auto_fund_status(self) -> Dict[str, Any]:
        return self.autofund.status()

    # Instances

    async def start_instance(self) -> Optional[str]:
        return await self.instances.start_instance()

    async def stop_instance(self, instance_id: str) -> bool:
        return await self.instances.stop_instance(instance_id)

    async def set_instance_count(self, count: int) -> int:
        return await self.instances.set_count(count)

    async def stop_all_instances(self) -> None:
        await self.instances.stop_all()

    async def reset_instances(self) -> None:
        await self.instances.reset()

    def get_instance_stats(self) -> List[InstanceStats]:
        return self.instances.instance_stats()

    # Stats

    async def get_live_stats(self) -> Dict[str, Any]:
        stats = await self.stats.live_stats()
        await self.events.live_stats(stats)
        return stats

    async def get_historical_stats(self, days: int = 7) -> List[DailyStats]:
        return await self.stats.historical(days)

    async def update_daily_stats(self) -> DailyStats:
        day = await self.stats.update_daily_stats()
        await self.stats.purge_expired()
        return day

    async def close(self) -> None:
        await self.instances.close()
        if self.autofund.is_enabled():
            await self.autofund.disable()
        await self.ctx.close()
