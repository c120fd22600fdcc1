"""Chain gateway: balances, signed value transfers and receipts over JSON-RPC.

One gateway per process. It is the only place that talks to the node, so the
executor, the funding engine and the auto-fund loop all see the same
behaviour (fees, nonces, receipt polling).

Nonces come from ``eth_getTransactionCount(addr, "pending")``. Inside one
process the nonce fetch and the send are serialized per sender address; two
*processes* sending from the same wallet at the same moment can still race
and one of them gets "nonce too low" / "replacement transaction underpriced".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address
from web3 import Web3

from generator import config
from generator.errors import MasterKeyMissing
from infra import gas as gas_oracle
from infra.keys import KeyBox

log = logging.getLogger("txgen.chain")


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    gas_used: int
    block_number: Optional[int]

    @property
    def ok(self) -> bool:
        return self.status == 1


class PendingTransfer:
    def __init__(self, gateway: "ChainGateway", tx_hash: str, from_addr: str, to_addr: str, amount: int) -> None:
        self._gateway = gateway
        self.hash = tx_hash
        self.from_addr = from_addr
        self.to_addr = to_addr
        self.amount = int(amount)

    async def wait(self, timeout_s: Optional[float] = None) -> Receipt:
        return await self._gateway.wait_for_receipt(self.hash, timeout_s=timeout_s)


def _hex_int(value: Any) -> int:
    if value is None:
        return 0
    return int(value, 16) if isinstance(value, str) else int(value)


class ChainGateway:
    def __init__(
        self,
        rpc: Any,
        *,
        chain_id: int,
        key_box: Optional[KeyBox] = None,
        master_private_key: str = "",
        gas_limit: int = config.TRANSFER_GAS_LIMIT,
        receipt_timeout_s: float = 120.0,
        receipt_poll_s: float = 1.5,
    ) -> None:
        self.rpc = rpc
        self.chain_id = int(chain_id)
        self.key_box = key_box
        self.gas_limit = int(gas_limit)
        self.receipt_timeout_s = float(receipt_timeout_s)
        self.receipt_poll_s = float(receipt_poll_s)
        self._master_key = master_private_key.strip()
        self._master: Optional[LocalAccount] = None
        self._send_locks: Dict[str, asyncio.Lock] = {}

    def master_account(self) -> LocalAccount:
        if self._master is None:
            if not self._master_key:
                raise MasterKeyMissing("MASTER_PRIVATE_KEY is not configured")
            self._master = Account.from_key(self._master_key)
            log.info("master wallet initialized: %s", self._master.address)
        return self._master

    def decrypt(self, encrypted_private_key: str) -> LocalAccount:
        if self.key_box is None:
            raise RuntimeError("gateway has no key box configured")
        return Account.from_key(self.key_box.decrypt(encrypted_private_key))

    async def get_balance(self, address: str) -> int:
        res = await self.rpc.call("eth_getBalance", [to_checksum_address(address), "latest"])
        return _hex_int(res)

    async def get_nonce(self, address: str) -> int:
        res = await self.rpc.call("eth_getTransactionCount", [to_checksum_address(address), "pending"])
        return _hex_int(res)

    async def fee_params(self) -> gas_oracle.FeeParams:
        return await gas_oracle.get_fee_params(self.rpc)

    async def transfer_cost(self) -> int:
        """Worst-case fee of one plain value transfer, in wei."""
        fees = await self.fee_params()
        return fees.cost(self.gas_limit)

    def _lock_for(self, address: str) -> asyncio.Lock:
        key = address.lower()
        lock = self._send_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._send_locks[key] = lock
        return lock

    async def submit_transfer(self, sender: LocalAccount, to_address: str, amount: int) -> PendingTransfer:
        to_addr = to_checksum_address(to_address)
        fees = await self.fee_params()
        async with self._lock_for(sender.address):
            nonce = await self.get_nonce(sender.address)
            tx: Dict[str, Any] = {
                "to": to_addr,
                "value": int(amount),
                "gas": self.gas_limit,
                "nonce": nonce,
                "chainId": self.chain_id,
            }
            tx.update(fees.tx_fields())
            signed = sender.sign_transaction(tx)
            res = await self.rpc.call("eth_sendRawTransaction", [Web3.to_hex(signed.raw_transaction)])
        tx_hash = res if isinstance(res, str) and res else Web3.to_hex(signed.hash)
        log.debug("submitted %s nonce=%s %s -> %s value=%s", tx_hash, nonce, sender.address, to_addr, amount)
        return PendingTransfer(self, tx_hash, sender.address, to_addr, int(amount))

    async def wait_for_receipt(self, tx_hash: str, *, timeout_s: Optional[float] = None) -> Receipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.receipt_timeout_s if timeout_s is None else float(timeout_s))
        while True:
            receipt = await self.rpc.call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return Receipt(
                    tx_hash=tx_hash,
                    status=_hex_int(receipt.get("status")),
                    gas_used=_hex_int(receipt.get("gasUsed")),
                    block_number=_hex_int(receipt.get("blockNumber")) if receipt.get("blockNumber") else None,
                )
            if loop.time() >= deadline:
                raise TimeoutError(f"timeout waiting for receipt of {tx_hash}")
            await asyncio.sleep(self.receipt_poll_s)

    async def send_and_confirm(self, sender: LocalAccount, to_address: str, amount: int) -> Receipt:
        pending = await self.submit_transfer(sender, to_address, amount)
        receipt = await pending.wait()
        if not receipt.ok:
            raise RuntimeError(f"transaction {pending.hash} reverted")
        return receipt

    async def close(self) -> None:
        close = getattr(self.rpc, "close", None)
        if close is not None:
            await close()
