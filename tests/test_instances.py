import asyncio
import logging

import pytest

from generator.config import Settings
from generator.instances import InstanceManager
from generator.messages import StopCommand, TxComplete, TxFailed, WorkerStatus
from generator.types import INSTANCE_ERROR, INSTANCE_STOPPED


class FakeHandle:
    def __init__(self, name: str) -> None:
        self.name = name
        self.sent = []
        self.reports = []
        self.code = None
        self.killed = False
        self.fail_send = False

    def send(self, msg) -> None:
        if self.fail_send:
            raise BrokenPipeError("pipe closed")
        self.sent.append(msg)

    def drain(self):
        out, self.reports = self.reports, []
        return out

    @property
    def exitcode(self):
        return self.code

    def is_alive(self) -> bool:
        return self.code is None

    def kill(self) -> None:
        self.killed = True
        if self.code is None:
            self.code = -9

    def join(self, timeout=None) -> None:
        pass


class FakeSpawner:
    def __init__(self) -> None:
        self.handles = []
        self.fail = False

    def spawn(self, target, args, name):
        if self.fail:
            raise OSError("fork failed")
        handle = FakeHandle(name)
        self.handles.append(handle)
        return handle


class RecordingSink:
    def __init__(self) -> None:
        self.stats = []
        self.transactions = []
        self.cleared = 0

    async def instance_stats(self, stats) -> None:
        self.stats.append(stats)

    async def transaction(self, tx) -> None:
        self.transactions.append(tx)

    async def clear_transactions(self) -> None:
        self.cleared += 1


def _manager(max_instances: int = 3, grace: float = 0.05):
    spawner = FakeSpawner()
    sink = RecordingSink()
    settings = Settings(max_instances=max_instances, stop_grace_s=grace)
    return InstanceManager(settings, spawner=spawner, events=sink), spawner, sink


@pytest.mark.asyncio
async def test_set_count_clamps_to_maximum() -> None:
    mgr, spawner, sink = _manager(max_instances=3)

    assert await mgr.set_count(15) == 3
    assert mgr.running_count() == 3
    assert len(spawner.handles) == 3
    assert await mgr.start_instance() is None
    assert len(sink.stats[-1]) == 3


@pytest.mark.asyncio
async def test_set_count_scales_down() -> None:
    mgr, spawner, _ = _manager(max_instances=5)
    await mgr.set_count(4)

    assert await mgr.set_count(1) == 1
    stopped = [h for h in spawner.handles if h.sent]
    assert len(stopped) == 3
    assert all(isinstance(h.sent[0], StopCommand) for h in stopped)
    await mgr.close()


@pytest.mark.asyncio
async def test_stop_unknown_instance() -> None:
    mgr, _, _ = _manager()
    assert not await mgr.stop_instance("nope")


@pytest.mark.asyncio
async def test_graceful_stop_is_reaped() -> None:
    mgr, spawner, _ = _manager(grace=5.0)
    iid = await mgr.start_instance()
    handle = spawner.handles[0]

    assert await mgr.stop_instance(iid)
    assert mgr.instance_stats()[0].status == INSTANCE_STOPPED
    assert mgr.running_count() == 0

    handle.code = 0
    await mgr.pump()
    assert mgr.tracked_count() == 0
    assert not handle.killed


@pytest.mark.asyncio
async def test_unresponsive_worker_is_killed_after_grace() -> None:
    mgr, spawner, _ = _manager(grace=0.05)
    iid = await mgr.start_instance()

    await mgr.stop_instance(iid)
    await asyncio.sleep(0.2)

    assert spawner.handles[0].killed
    assert mgr.tracked_count() == 0


@pytest.mark.asyncio
async def test_failed_send_marks_error() -> None:
    mgr, spawner, _ = _manager(grace=0.05)
    iid = await mgr.start_instance()
    spawner.handles[0].fail_send = True

    assert await mgr.stop_instance(iid)
    assert mgr.instance_stats()[0].status == INSTANCE_ERROR
    assert mgr.running_count() == 0
    await mgr.close()


@pytest.mark.asyncio
async def test_reports_update_stats() -> None:
    mgr, spawner, sink = _manager()
    iid = await mgr.start_instance()
    handle = spawner.handles[0]

    handle.reports = [
        WorkerStatus("started"),
        TxComplete(tx_hash="0xaa", from_addr="0x1", to_addr="0x2", amount=5, ts=123.0),
        TxFailed(error="NONCE_TOO_LOW", message="nonce too low"),
        TxComplete(tx_hash="0xbb", from_addr="0x2", to_addr="0x1", amount=7, ts=124.0),
    ]
    await mgr.pump()

    stats = mgr.instance_stats()[0]
    assert stats.transactions_executed == 2
    assert stats.last_transaction_at == 124.0
    assert [t["tx_hash"] for t in sink.transactions] == ["0xaa", "0xbb"]
    assert sink.transactions[0]["instance_id"] == iid
    assert sink.transactions[0]["status"] == "success"


@pytest.mark.asyncio
async def test_crashed_worker_is_reaped(caplog) -> None:
    mgr, spawner, _ = _manager()
    iid = await mgr.start_instance()
    spawner.handles[0].code = 1

    with caplog.at_level(logging.ERROR, logger="txgen.instances"):
        await mgr.pump()

    assert mgr.tracked_count() == 0
    assert f"instance {iid} exited with code 1" in caplog.text


@pytest.mark.asyncio
async def test_spawn_failure_returns_none() -> None:
    mgr, spawner, _ = _manager()
    spawner.fail = True
    assert await mgr.start_instance() is None
    assert mgr.running_count() == 0


@pytest.mark.asyncio
async def test_reset_stops_everything_and_clears_feed() -> None:
    mgr, spawner, sink = _manager()
    await mgr.set_count(2)

    await mgr.reset()

    assert all(isinstance(h.sent[0], StopCommand) for h in spawner.handles)
    assert sink.cleared == 1
    assert mgr.running_count() == 0
    await mgr.close()
    assert mgr.tracked_count() == 0
