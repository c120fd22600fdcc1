from __future__ import annotations

from collections import defaultdict, deque
from typing import Any, Deque, Dict, Optional


def _percentile(vals: list, pct: float) -> Optional[float]:
    if not vals:
        return None
    v = sorted(vals)
    k = max(0, min(len(v) - 1, int(round((pct / 100.0) * (len(v) - 1)))))
    return float(v[k])


class Metrics:
    """Per-process counters for transfer attempts and RPC calls.

    Workers ship ``snapshot()`` to the manager inside WorkerStatus reports;
    nothing here is shared between processes.
    """

    def __init__(self, max_samples: int = 500) -> None:
        self._max_samples = int(max_samples)
        self.attempts = 0
        self.succeeded = 0
        self._errors: Dict[str, int] = defaultdict(int)
        self._rpc_calls: Dict[str, int] = defaultdict(int)
        self._rpc_failures: Dict[str, int] = defaultdict(int)
        self._latency: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self._max_samples))

    def reset(self) -> None:
        self.attempts = 0
        self.succeeded = 0
        self._errors.clear()
        self._rpc_calls.clear()
        self._rpc_failures.clear()
        self._latency.clear()

    def record_tx(self, ok: bool, *, error: Optional[str] = None, confirm_s: Optional[float] = None) -> None:
        self.attempts += 1
        if ok:
            self.succeeded += 1
        elif error:
            self._errors[str(error)] += 1
        if confirm_s is not None:
            self._latency["confirm_s"].append(float(confirm_s))

    def record_rpc(self, method: str, ok: bool, latency_ms: float, reason: str = "ok") -> None:
        self._rpc_calls[str(method)] += 1
        if not ok:
            self._rpc_failures[str(reason)] += 1
        self._latency["rpc_ms"].append(float(latency_ms))

    def success_rate(self) -> Optional[float]:
        if self.attempts == 0:
            return None
        return float(self.succeeded) / float(self.attempts)

    def snapshot(self) -> Dict[str, Any]:
        latency: Dict[str, Any] = {}
        for name, vals in self._latency.items():
            samples = list(vals)
            latency[name] = {
                "count": len(samples),
                "p50": _percentile(samples, 50.0),
                "p95": _percentile(samples, 95.0),
            }
        return {
            "attempts": self.attempts,
            "succeeded": self.succeeded,
            "success_rate": self.success_rate(),
            "errors": dict(self._errors),
            "rpc_calls": dict(self._rpc_calls),
            "rpc_failures": dict(self._rpc_failures),
            "latency": latency,
        }


METRICS = Metrics()
