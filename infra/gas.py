from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

log = logging.getLogger("txgen.gas")


@dataclass(frozen=True)
class FeeParams:
    base_fee_per_gas: int
    max_priority_fee_per_gas: int
    max_fee_per_gas: int
    legacy: bool = False

    def tx_fields(self) -> Dict[str, int]:
        """Fee fields for a transaction dict (type-2 unless the chain is legacy)."""
        if self.legacy:
            return {"gasPrice": int(self.max_fee_per_gas)}
        return {
            "maxFeePerGas": int(self.max_fee_per_gas),
            "maxPriorityFeePerGas": int(self.max_priority_fee_per_gas),
        }

    def cost(self, gas_limit: int) -> int:
        """Worst-case fee for ``gas_limit`` units."""
        return int(self.max_fee_per_gas) * int(gas_limit)


def _median(values: Iterable[int]) -> int:
    vals = sorted(int(v) for v in values if v is not None)
    if not vals:
        return 0
    mid = len(vals) // 2
    if len(vals) % 2:
        return vals[mid]
    return int((vals[mid - 1] + vals[mid]) / 2)


def _as_int(value: Any) -> int:
    return int(value, 16) if isinstance(value, str) else int(value)


async def get_fee_params(
    rpc: Any,
    *,
    block_count: int = 10,
    reward_percentiles: Optional[List[int]] = None,
    timeout_s: float = 5.0,
) -> FeeParams:
    """EIP-1559 fee params from eth_feeHistory, falling back to eth_gasPrice.

    Chains that report no base fee get a legacy gasPrice instead.
    """
    if reward_percentiles is None:
        reward_percentiles = [50, 75]

    try:
        res = await rpc.call(
            "eth_feeHistory",
            [hex(int(block_count)), "latest", reward_percentiles],
            timeout_s=timeout_s,
        )
        base_fees = [_as_int(x) for x in (res.get("baseFeePerGas") or []) if x is not None]
        base_fee = int(base_fees[-1]) if base_fees else 0
        if base_fee > 0:
            idx = len(reward_percentiles) - 1
            priority_vals = []
            for row in res.get("reward") or []:
                if isinstance(row, (list, tuple)) and len(row) > idx and row[idx] is not None:
                    priority_vals.append(_as_int(row[idx]))
            max_priority = _median(priority_vals) if priority_vals else 0
            return FeeParams(
                base_fee_per_gas=base_fee,
                max_priority_fee_per_gas=max_priority,
                max_fee_per_gas=int(base_fee * 2 + max_priority),
            )
    except Exception as exc:
        log.debug("eth_feeHistory unavailable: %s", exc)

    gp = await rpc.call("eth_gasPrice", [], timeout_s=timeout_s)
    gas_price = _as_int(gp)
    return FeeParams(
        base_fee_per_gas=gas_price,
        max_priority_fee_per_gas=gas_price,
        max_fee_per_gas=gas_price,
        legacy=True,
    )
