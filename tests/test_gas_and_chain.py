import asyncio

import pytest
from eth_account import Account

from generator.errors import MasterKeyMissing
from infra import gas as gas_oracle
from infra.chain import ChainGateway

PK = "0x" + "33" * 32
TO = "0x000000000000000000000000000000000000dEaD"


class FakeRPC:
    def __init__(self, responses):
        self._responses = responses
        self.calls = []

    async def call(self, method, params, timeout_s=None):
        self.calls.append((method, params))
        if method not in self._responses:
            raise RuntimeError(f"missing response for {method}")
        res = self._responses[method]
        if isinstance(res, list) and method == "eth_getTransactionReceipt":
            return res.pop(0)
        return res


def test_fee_params_from_fee_history() -> None:
    rpc = FakeRPC(
        {
            "eth_feeHistory": {
                "baseFeePerGas": ["0x10", "0x20"],
                "reward": [["0x1", "0x7"], ["0x2", "0x8"]],
            }
        }
    )
    res = asyncio.run(gas_oracle.get_fee_params(rpc, block_count=2, reward_percentiles=[50, 75]))
    assert res.base_fee_per_gas == 0x20
    assert res.max_priority_fee_per_gas == 7
    assert res.max_fee_per_gas == (0x20 * 2 + 7)
    assert not res.legacy
    assert res.tx_fields() == {"maxFeePerGas": 0x20 * 2 + 7, "maxPriorityFeePerGas": 7}
    assert res.cost(21000) == (0x20 * 2 + 7) * 21000


def test_fee_params_legacy_fallback() -> None:
    rpc = FakeRPC({"eth_feeHistory": {"baseFeePerGas": ["0x0"], "reward": []}, "eth_gasPrice": "0x3b9aca00"})
    res = asyncio.run(gas_oracle.get_fee_params(rpc))
    assert res.legacy
    assert res.tx_fields() == {"gasPrice": 10**9}


def test_fee_params_without_fee_history() -> None:
    rpc = FakeRPC({"eth_gasPrice": "0x2"})
    res = asyncio.run(gas_oracle.get_fee_params(rpc))
    assert res.max_fee_per_gas == 2


def test_master_account_requires_key() -> None:
    with pytest.raises(MasterKeyMissing):
        ChainGateway(FakeRPC({}), chain_id=2040).master_account()
    gw = ChainGateway(FakeRPC({}), chain_id=2040, master_private_key=PK)
    assert gw.master_account().address == Account.from_key(PK).address


@pytest.mark.asyncio
async def test_submit_and_wait_for_receipt() -> None:
    rpc = FakeRPC(
        {
            "eth_feeHistory": {"baseFeePerGas": ["0x10"], "reward": [["0x1", "0x2"]]},
            "eth_getTransactionCount": "0x5",
            "eth_sendRawTransaction": "0xabc",
            "eth_getTransactionReceipt": [None, {"status": "0x1", "gasUsed": "0x5208", "blockNumber": "0x10"}],
        }
    )
    gw = ChainGateway(rpc, chain_id=2040, receipt_poll_s=0.01)
    sender = Account.from_key(PK)

    pending = await gw.submit_transfer(sender, TO.lower(), 10**18)
    receipt = await pending.wait()

    assert pending.hash == "0xabc"
    assert pending.to_addr == TO
    nonce_call = [p for m, p in rpc.calls if m == "eth_getTransactionCount"][0]
    assert nonce_call == [sender.address, "pending"]
    raw = [p for m, p in rpc.calls if m == "eth_sendRawTransaction"][0][0]
    assert raw.startswith("0x")
    assert receipt.ok
    assert receipt.gas_used == 21000
    assert receipt.block_number == 16


@pytest.mark.asyncio
async def test_receipt_timeout() -> None:
    rpc = FakeRPC({"eth_getTransactionReceipt": [None, None, None, None, None, None]})
    gw = ChainGateway(rpc, chain_id=2040, receipt_poll_s=0.01)
    with pytest.raises(TimeoutError, match="timeout"):
        await gw.wait_for_receipt("0xabc", timeout_s=0.02)


@pytest.mark.asyncio
async def test_send_and_confirm_raises_on_revert() -> None:
    rpc = FakeRPC(
        {
            "eth_gasPrice": "0x1",
            "eth_getTransactionCount": "0x0",
            "eth_sendRawTransaction": "0xdef",
            "eth_getTransactionReceipt": [{"status": "0x0", "gasUsed": "0x5208", "blockNumber": "0x1"}],
        }
    )
    gw = ChainGateway(rpc, chain_id=2040)
    with pytest.raises(RuntimeError, match="reverted"):
        await gw.send_and_confirm(Account.from_key(PK), TO, 1)
