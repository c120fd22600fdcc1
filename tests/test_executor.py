import random
from pathlib import Path

import pytest
from eth_account import Account
from web3 import Web3

from generator.config import Settings
from generator.errors import InsufficientEligibleWallets, TxErrorKind
from generator.executor import TransactionExecutor
from generator.types import TX_FAILED, TX_SUCCESS, Wallet
from generator.wallets import WalletLedger
from infra.chain import ChainGateway, Receipt
from infra.keys import KeyBox
from infra.metrics import Metrics
from infra.rpc import AsyncRPC
from storage.sqlite_store import SQLiteStore

TOKEN = 10**18


def _addr(i: int) -> str:
    return Web3.to_checksum_address(f"0x{i + 1:040x}")


class FakeAccount:
    def __init__(self, address: str) -> None:
        self.address = address


class FakePending:
    def __init__(self, tx_hash: str, receipt=None, wait_error=None) -> None:
        self.hash = tx_hash
        self._receipt = receipt
        self._wait_error = wait_error

    async def wait(self, timeout_s=None):
        if self._wait_error is not None:
            raise self._wait_error
        return self._receipt


class FakeGateway:
    def __init__(self, balances, *, submit_error=None, wait_error=None, status: int = 1) -> None:
        self.balances = dict(balances)
        self.submit_error = submit_error
        self.wait_error = wait_error
        self.status = status
        self.submitted = []

    def decrypt(self, encrypted_private_key: str) -> FakeAccount:
        return FakeAccount(encrypted_private_key.split(":", 1)[1])

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address, 0)

    async def submit_transfer(self, sender, to_address: str, amount: int) -> FakePending:
        if self.submit_error is not None:
            raise self.submit_error
        tx_hash = "0x" + f"{len(self.submitted) + 1:064x}"
        self.submitted.append((sender.address, to_address, amount))
        if self.status == 1:
            self.balances[sender.address] -= amount
            self.balances[to_address] = self.balances.get(to_address, 0) + amount
        receipt = Receipt(tx_hash=tx_hash, status=self.status, gas_used=21000, block_number=1)
        return FakePending(tx_hash, receipt, self.wait_error)


async def _setup(tmp_path: Path, balances, **gateway_kw):
    store = SQLiteStore(tmp_path / "txgen.db")
    for i, bal in enumerate(balances):
        await store.create_wallet(
            Wallet(address=_addr(i), encrypted_private_key=f"key:{_addr(i)}", index=i, balance=bal)
        )
    gateway = FakeGateway({_addr(i): bal for i, bal in enumerate(balances)}, **gateway_kw)
    ledger = WalletLedger(store, gateway, None)
    metrics = Metrics()
    executor = TransactionExecutor(ledger, store, gateway, Settings(), metrics=metrics, rng=random.Random(9))
    return executor, store, gateway, metrics


@pytest.mark.asyncio
async def test_successful_transfer_updates_everything(tmp_path: Path) -> None:
    executor, store, gateway, metrics = await _setup(tmp_path, [20 * TOKEN, 20 * TOKEN])

    result = await executor.execute_random_transfer("inst-1")

    assert result.success
    assert result.error is None
    assert result.from_addr != result.to_addr
    assert 10**16 <= result.amount <= 2 * TOKEN

    rec = await store.get_transaction(result.tx_hash)
    assert rec is not None
    assert rec.status == TX_SUCCESS
    assert rec.gas_used == 21000
    assert rec.instance_id == "inst-1"

    sender = await store.find_by_address(result.from_addr)
    receiver = await store.find_by_address(result.to_addr)
    assert sender.total_tx_sent == 1
    assert receiver.total_tx_received == 1
    assert sender.balance == 20 * TOKEN - result.amount
    assert receiver.balance == 20 * TOKEN + result.amount
    assert metrics.snapshot()["succeeded"] == 1


@pytest.mark.asyncio
async def test_not_enough_eligible_wallets(tmp_path: Path) -> None:
    executor, store, gateway, metrics = await _setup(tmp_path, [20 * TOKEN, 1 * TOKEN, 0])

    result = await executor.execute_random_transfer("inst-1")

    assert not result.success
    assert result.error is TxErrorKind.INSUFFICIENT_ELIGIBLE_WALLETS
    assert await store.count_by_status() == 0
    assert gateway.submitted == []
    assert metrics.snapshot()["errors"] == {"INSUFFICIENT_ELIGIBLE_WALLETS": 1}
    with pytest.raises(InsufficientEligibleWallets):
        await executor._pick_transfer()


@pytest.mark.asyncio
async def test_no_transferable_surplus(tmp_path: Path) -> None:
    # eligible (>= 8) but the surplus is below the 0.01 floor
    bal = 8 * TOKEN + 10**15
    executor, store, gateway, _ = await _setup(tmp_path, [bal, bal])

    result = await executor.execute_random_transfer("inst-1")

    assert result.error is TxErrorKind.INSUFFICIENT_TRANSFERABLE_BALANCE
    assert result.from_addr != result.to_addr
    assert {result.from_addr, result.to_addr} == {_addr(0), _addr(1)}
    assert await store.count_by_status() == 0
    assert gateway.submitted == []


@pytest.mark.asyncio
async def test_submission_error_is_classified_without_record(tmp_path: Path) -> None:
    executor, store, _, _ = await _setup(
        tmp_path, [20 * TOKEN, 20 * TOKEN], submit_error=RuntimeError("nonce too low")
    )

    result = await executor.execute_random_transfer("inst-1")

    assert not result.success
    assert result.error is TxErrorKind.NONCE_TOO_LOW
    assert result.tx_hash is None
    assert await store.count_by_status() == 0


@pytest.mark.asyncio
async def test_confirmation_timeout_marks_record_failed(tmp_path: Path) -> None:
    executor, store, _, _ = await _setup(
        tmp_path,
        [20 * TOKEN, 20 * TOKEN],
        wait_error=TimeoutError("timeout waiting for receipt"),
    )

    result = await executor.execute_random_transfer("inst-1")

    assert result.error is TxErrorKind.TIMEOUT
    assert result.tx_hash is not None
    rec = await store.get_transaction(result.tx_hash)
    assert rec.status == TX_FAILED
    assert "timeout" in rec.error
    sender = await store.find_by_address(result.from_addr)
    assert sender.balance == 20 * TOKEN - result.amount
    assert sender.total_tx_sent == 0


@pytest.mark.asyncio
async def test_reverted_transfer_is_failed(tmp_path: Path) -> None:
    executor, store, _, _ = await _setup(tmp_path, [20 * TOKEN, 20 * TOKEN], status=0)

    result = await executor.execute_random_transfer("inst-1")

    assert not result.success
    assert result.error is TxErrorKind.UNKNOWN
    rec = await store.get_transaction(result.tx_hash)
    assert rec.status == TX_FAILED
    # the pending -> final transition happens exactly once
    assert not await store.update_status(result.tx_hash, TX_SUCCESS, 21000)


class DrainedAfterReadGateway(FakeGateway):
    async def submit_transfer(self, sender, to_address: str, amount: int) -> FakePending:
        # another worker spent the sender's funds after the eligibility read
        self.balances[sender.address] = 0
        tx_hash = "0x" + f"{len(self.submitted) + 1:064x}"
        self.submitted.append((sender.address, to_address, amount))
        return FakePending(tx_hash, wait_error=RuntimeError("insufficient funds for gas * price + value"))


@pytest.mark.asyncio
async def test_stale_eligibility_is_not_guarded(tmp_path: Path) -> None:
    # Eligibility comes from cached balances and is not locked, so a sender
    # drained in between still gets picked and the chain rejects the spend.
    store = SQLiteStore(tmp_path / "txgen.db")
    balances = {_addr(i): 20 * TOKEN for i in range(2)}
    for i, address in enumerate(balances):
        await store.create_wallet(
            Wallet(address=address, encrypted_private_key=f"key:{address}", index=i, balance=20 * TOKEN)
        )
    gateway = DrainedAfterReadGateway(balances)
    executor = TransactionExecutor(
        WalletLedger(store, gateway, None), store, gateway, Settings(), metrics=Metrics(), rng=random.Random(3)
    )

    result = await executor.execute_random_transfer("inst-1")

    assert not result.success
    assert result.error is TxErrorKind.INSUFFICIENT_BALANCE
    rec = await store.get_transaction(result.tx_hash)
    assert rec.status == TX_FAILED
    assert "insufficient funds" in rec.error
    sender = await store.find_by_address(result.from_addr)
    receiver = await store.find_by_address(result.to_addr)
    assert sender.balance == 0
    assert receiver.balance == 20 * TOKEN


@pytest.mark.asyncio
async def test_unreachable_node_is_a_network_error(tmp_path: Path) -> None:
    box = KeyBox("unit-test-passphrase", iterations=1000)
    store = SQLiteStore(tmp_path / "txgen.db")
    for i in range(2):
        acct = Account.create()
        await store.create_wallet(
            Wallet(address=acct.address, encrypted_private_key=box.encrypt(acct.key.hex()), index=i, balance=20 * TOKEN)
        )
    rpc = AsyncRPC("http://127.0.0.1:9", max_retries=0, metrics=Metrics())
    gateway = ChainGateway(rpc, chain_id=2040, key_box=box)
    executor = TransactionExecutor(WalletLedger(store, gateway, box), store, gateway, Settings(), metrics=Metrics())
    try:
        result = await executor.execute_random_transfer("inst-1")
    finally:
        await rpc.close()

    assert not result.success
    assert result.error is TxErrorKind.NETWORK_ERROR
    assert "connection" in result.error_message
    assert await store.count_by_status() == 0
