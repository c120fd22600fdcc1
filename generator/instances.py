"""Bounded pool of transaction worker processes.

Lifecycle per instance: running -> stopped | error. Nothing goes back to
running; scaling up always starts fresh processes.

The manager never looks inside a worker. It learns about progress only via
reports (TxComplete / TxFailed / WorkerStatus) and the process exit code,
both collected by ``pump()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from generator.config import Settings
from generator.messages import StopCommand, TxComplete, TxFailed, WorkerReport, WorkerStatus
from generator.spawner import MultiprocessingSpawner, ProcessHandle, ProcessSpawner
from generator.types import INSTANCE_ERROR, INSTANCE_RUNNING, INSTANCE_STOPPED, InstanceStats
from generator.worker import run_worker

log = logging.getLogger("txgen.instances")


class InstanceManager:
    def __init__(
        self,
        settings: Settings,
        *,
        spawner: Optional[ProcessSpawner] = None,
        events: Optional[Any] = None,
        target: Callable[..., Any] = run_worker,
        on_stats: Optional[Callable[[List[Dict[str, Any]]], None]] = None,
        on_transaction: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> None:
        self.settings = settings
        self.spawner = spawner or MultiprocessingSpawner()
        self.events = events
        self.target = target
        self.on_stats = on_stats
        self.on_transaction = on_transaction
        self.max_instances = int(settings.max_instances)
        self._handles: Dict[str, ProcessHandle] = {}
        self._stats: Dict[str, InstanceStats] = {}
        self._kill_tasks: Dict[str, asyncio.Task] = {}
        self._monitor: Optional[asyncio.Task] = None

    # -- queries ------------------------------------------------------------

    def running_count(self) -> int:
        return sum(1 for s in self._stats.values() if s.status == INSTANCE_RUNNING)

    def tracked_count(self) -> int:
        return len(self._handles)

    def instance_stats(self) -> List[InstanceStats]:
        return list(self._stats.values())

    def instance_ids(self) -> List[str]:
        return list(self._handles)

    # -- lifecycle ----------------------------------------------------------

    async def start_instance(self) -> Optional[str]:
        if self.running_count() >= self.max_instances:
            log.warning("maximum instances (%d) reached", self.max_instances)
            return None

        instance_id = uuid.uuid4().hex
        try:
            handle = self.spawner.spawn(
                self.target, (instance_id, self.settings), f"txgen-worker-{instance_id[:8]}"
            )
        except Exception as exc:
            log.error("failed to start instance: %s", exc)
            return None

        self._handles[instance_id] = handle
        self._stats[instance_id] = InstanceStats(id=instance_id, started_at=time.time())
        log.info("started instance %s", instance_id)
        self.start_monitor()
        await self._emit_stats()
        return instance_id

    async def stop_instance(self, instance_id: str) -> bool:
        handle = self._handles.get(instance_id)
        if handle is None:
            log.warning("instance %s not found", instance_id)
            return False

        stats = self._stats[instance_id]
        try:
            handle.send(StopCommand())
        except Exception as exc:
            log.error("instance %s did not take the stop message: %s", instance_id, exc)
            stats.status = INSTANCE_ERROR
        else:
            if stats.status == INSTANCE_RUNNING:
                stats.status = INSTANCE_STOPPED

        if instance_id not in self._kill_tasks:
            self._kill_tasks[instance_id] = asyncio.create_task(self._kill_after_grace(instance_id, handle))
        return True

    async def _kill_after_grace(self, instance_id: str, handle: ProcessHandle) -> None:
        await asyncio.sleep(self.settings.stop_grace_s)
        if self._handles.get(instance_id) is not handle:
            return
        if handle.is_alive():
            log.warning("instance %s still alive after %.1fs, killing", instance_id, self.settings.stop_grace_s)
            handle.kill()
        await asyncio.to_thread(handle.join, 1.0)
        self._kill_tasks.pop(instance_id, None)
        self._forget(instance_id)
        await self._emit_stats()

    async def stop_all(self) -> None:
        ids = list(self._handles)
        log.info("stopping all %d instances", len(ids))
        await asyncio.gather(*(self.stop_instance(i) for i in ids))

    async def set_count(self, target: int) -> int:
        target = max(0, int(target))
        if target > self.max_instances:
            log.warning("requested count %d exceeds max, setting to %d", target, self.max_instances)
            target = self.max_instances

        current = self.running_count()
        if target > current:
            for _ in range(target - current):
                await self.start_instance()
        elif target < current:
            running = [i for i, s in self._stats.items() if s.status == INSTANCE_RUNNING]
            await asyncio.gather(*(self.stop_instance(i) for i in running[: current - target]))
        return self.running_count()

    async def reset(self) -> None:
        log.info("resetting: stopping all instances and clearing transaction feed")
        await self.stop_all()
        if self.events is not None:
            await self.events.clear_transactions()

    # -- monitoring ---------------------------------------------------------

    async def pump(self) -> None:
        """Drain worker reports and reap exited processes."""
        for instance_id, handle in list(self._handles.items()):
            for msg in handle.drain():
                await self._on_report(instance_id, msg)
            code = handle.exitcode
            if code is not None and not handle.is_alive():
                await self._reap(instance_id, code)

    async def run_monitor(self) -> None:
        while True:
            try:
                await self.pump()
            except Exception as exc:
                log.error("instance monitor error: %s", exc)
            await asyncio.sleep(self.settings.monitor_interval_s)

    def start_monitor(self) -> asyncio.Task:
        if self._monitor is None or self._monitor.done():
            self._monitor = asyncio.create_task(self.run_monitor())
        return self._monitor

    async def close(self) -> None:
        """Stop everything and wait until every process is gone."""
        await self.stop_all()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.stop_grace_s + 2.0
        while self._handles and loop.time() < deadline:
            await self.pump()
            await asyncio.sleep(0.1)
        for task in list(self._kill_tasks.values()):
            task.cancel()
        self._kill_tasks.clear()
        for instance_id, handle in list(self._handles.items()):
            handle.kill()
            self._forget(instance_id)
        if self._monitor is not None:
            self._monitor.cancel()
            self._monitor = None

    async def _on_report(self, instance_id: str, msg: WorkerReport) -> None:
        stats = self._stats.get(instance_id)
        if stats is None:
            return
        if isinstance(msg, TxComplete):
            stats.transactions_executed += 1
            stats.last_transaction_at = msg.ts
            summary = msg.summary(instance_id)
            if self.on_transaction is not None:
                self.on_transaction(summary)
            if self.events is not None:
                await self.events.transaction(summary)
            await self._emit_stats()
        elif isinstance(msg, TxFailed):
            log.error("instance %s transaction error: %s %s", instance_id, msg.error, msg.message or "")
        elif isinstance(msg, WorkerStatus):
            log.debug("instance %s status: %s %s", instance_id, msg.state, msg.detail)

    async def _reap(self, instance_id: str, code: int) -> None:
        if code != 0:
            log.error("instance %s exited with code %s", instance_id, code)
        else:
            log.info("instance %s exited", instance_id)
        task = self._kill_tasks.pop(instance_id, None)
        if task is not None:
            task.cancel()
        self._forget(instance_id)
        await self._emit_stats()

    def _forget(self, instance_id: str) -> None:
        self._handles.pop(instance_id, None)
        self._stats.pop(instance_id, None)

    async def _emit_stats(self) -> None:
        payload = [s.to_dict() for s in self._stats.values()]
        if self.on_stats is not None:
            self.on_stats(payload)
        if self.events is not None:
            await self.events.instance_stats(payload)
