from pathlib import Path

import pytest
from eth_account import Account

from generator.wallets import WalletLedger
from infra.chain import ChainGateway
from infra.keys import KeyBox, KeyDecryptionError
from storage.sqlite_store import SQLiteStore

PK = "0x" + "11" * 32


def _box(passphrase: str = "unit-test-passphrase") -> KeyBox:
    return KeyBox(passphrase, iterations=1000)


def test_keybox_roundtrip_and_wrong_passphrase() -> None:
    token = _box().encrypt(PK)
    assert "11" * 32 not in token
    assert _box().decrypt(token) == PK
    with pytest.raises(KeyDecryptionError):
        _box("other-passphrase").decrypt(token)


def test_keybox_rejects_empty_passphrase() -> None:
    with pytest.raises(ValueError):
        KeyBox("")


class BalanceRPC:
    def __init__(self, balance_hex: str = "0x0") -> None:
        self.balance_hex = balance_hex
        self.fail_for = set()

    async def call(self, method, params, timeout_s=None):
        assert method == "eth_getBalance"
        if params[0] in self.fail_for:
            raise RuntimeError("connection error: refused")
        return self.balance_hex


def _ledger(tmp_path: Path, rpc=None):
    box = _box()
    gateway = ChainGateway(rpc or BalanceRPC(), chain_id=2040, key_box=box)
    store = SQLiteStore(tmp_path / "txgen.db")
    return WalletLedger(store, gateway, box), store


@pytest.mark.asyncio
async def test_generate_tops_up_pool(tmp_path: Path) -> None:
    ledger, store = _ledger(tmp_path)

    first = await ledger.generate_wallets(3)
    again = await ledger.generate_wallets(2)
    more = await ledger.generate_wallets(5)

    assert [w.index for w in first] == [0, 1, 2]
    assert [w.address for w in again] == [w.address for w in first]
    assert [w.index for w in more] == [0, 1, 2, 3, 4]
    assert len({w.address for w in more}) == 5

    acct = ledger.credentials(more[4])
    assert acct.address == more[4].address


@pytest.mark.asyncio
async def test_import_replaces_pool(tmp_path: Path) -> None:
    ledger, store = _ledger(tmp_path)
    await ledger.generate_wallets(2)
    other = "0x" + "22" * 32

    wallets = await ledger.import_wallets([PK, " ", other, PK])

    assert [w.index for w in wallets] == [0, 1]
    assert [w.address for w in await store.list_wallets()] == [
        Account.from_key(PK).address,
        Account.from_key(other).address,
    ]


@pytest.mark.asyncio
async def test_refresh_balances_is_best_effort(tmp_path: Path) -> None:
    rpc = BalanceRPC(hex(9 * 10**18))
    ledger, store = _ledger(tmp_path, rpc)
    wallets = await ledger.generate_wallets(3)
    rpc.fail_for.add(wallets[1].address)

    ok, errors = await ledger.refresh_balances()

    assert ok == 2
    assert len(errors) == 1 and wallets[1].address in errors[0]
    balances = [w.balance for w in await store.list_wallets()]
    assert balances == [9 * 10**18, 0, 9 * 10**18]

    stats = await ledger.wallet_stats()
    assert (stats["total"], stats["healthy"], stats["empty"]) == (3, 2, 1)
    assert stats["total_balance"] == "18"
