from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from generator.amounts import format_amount
from generator.types import Wallet
from infra.keys import KeyBox
from storage.base import WalletStore

log = logging.getLogger("txgen.wallets")

HEALTHY_BALANCE = 8 * 10**18
LOW_BALANCE = 1 * 10**18


class WalletLedger:
    """Wallet records + cached balances, backed by a WalletStore."""

    def __init__(self, store: WalletStore, gateway: Any, key_box: KeyBox) -> None:
        self.store = store
        self.gateway = gateway
        self.key_box = key_box

    async def generate_wallets(self, count: int) -> List[Wallet]:
        """Top the pool up to ``count`` wallets; existing ones are kept."""
        existing = await self.store.count_wallets()
        if existing >= count:
            log.warning("already have %d wallets, skipping generation", existing)
            return await self.store.list_wallets()

        log.info("generating %d wallets starting from index %d", count - existing, existing)
        for idx in range(existing, int(count)):
            acct = Account.create()
            wallet = Wallet(
                address=acct.address,
                encrypted_private_key=self.key_box.encrypt(acct.key.hex()),
                index=idx,
            )
            await self.store.create_wallet(wallet)
            log.debug("generated wallet %d: %s", idx, acct.address)
        return await self.store.list_wallets()

    async def import_wallets(self, private_keys: Iterable[str]) -> List[Wallet]:
        """Replace the whole pool with wallets derived from ``private_keys``."""
        wallets: List[Wallet] = []
        seen = set()
        for raw in private_keys:
            key = str(raw).strip()
            if not key:
                continue
            acct = Account.from_key(key)
            if acct.address in seen:
                continue
            seen.add(acct.address)
            wallets.append(
                Wallet(
                    address=acct.address,
                    encrypted_private_key=self.key_box.encrypt(key),
                    index=len(wallets),
                )
            )
        await self.store.replace_wallets(wallets)
        log.info("imported %d wallets", len(wallets))
        return wallets

    async def get_all_wallets(self) -> List[Wallet]:
        return await self.store.list_wallets()

    async def eligible_wallets(self, min_balance: int) -> List[Wallet]:
        return [w for w in await self.store.list_wallets() if w.balance >= min_balance]

    def credentials(self, wallet: Wallet) -> LocalAccount:
        return self.gateway.decrypt(wallet.encrypted_private_key)

    async def refresh_balance(self, address: str) -> int:
        balance = await self.gateway.get_balance(address)
        await self.store.update_balance(to_checksum_address(address), balance)
        return balance

    async def refresh_balances(self, addresses: Optional[Sequence[str]] = None) -> Tuple[int, List[str]]:
        """Best-effort refresh; returns (refreshed_count, failure messages)."""
        if addresses is None:
            addresses = [w.address for w in await self.store.list_wallets()]
        ok = 0
        errors: List[str] = []
        for address in addresses:
            try:
                await self.refresh_balance(address)
                ok += 1
            except Exception as exc:
                errors.append(f"Failed to refresh {address}: {exc}")
                log.error("failed to update balance for %s: %s", address, exc)
        log.info("balance refresh complete: %d ok, %d failed", ok, len(errors))
        return ok, errors

    async def wallet_stats(self) -> Dict[str, Any]:
        wallets = await self.store.list_wallets()
        healthy = low = empty = 0
        total = 0
        for w in wallets:
            total += w.balance
            if w.balance >= HEALTHY_BALANCE:
                healthy += 1
            elif w.balance >= LOW_BALANCE:
                low += 1
            else:
                empty += 1
        return {
            "total": len(wallets),
            "healthy": healthy,
            "low": low,
            "empty": empty,
            "total_balance": format_amount(total),
            "updated_at": time.time(),
        }
