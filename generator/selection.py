"""Random wallet selection and transfer sizing.

Pure functions: the only state they touch is the ``random.Random`` they are
given (module-level ``random`` by default), so tests can seed them.
"""

from __future__ import annotations

import random
from typing import Optional, Sequence, TypeVar

from generator.errors import EmptyInputError, NoCandidatesError
from generator.types import Wallet

T = TypeVar("T")

ONE_TOKEN = 10**18
# weight_i = WEIGHT_SCALE // (balance_i + ONE_TOKEN): an empty wallet weighs 1e18,
# a wallet holding 1e6 tokens still weighs ~1e12, so nobody drops to zero.
WEIGHT_SCALE = 10**36


def pick_random(items: Sequence[T], rng: Optional[random.Random] = None) -> T:
    if not items:
        raise EmptyInputError("cannot pick from an empty sequence")
    r = rng or random
    return items[r.randrange(len(items))]


def pick_random_excluding(items: Sequence[T], excluded: T, rng: Optional[random.Random] = None) -> T:
    remaining = [item for item in items if item != excluded]
    if not remaining:
        raise NoCandidatesError("no items available after exclusion")
    return pick_random(remaining, rng)


def low_balance_weight(balance: int) -> int:
    return WEIGHT_SCALE // (max(0, int(balance)) + ONE_TOKEN)


def pick_weighted_by_low_balance(
    wallets: Sequence[Wallet],
    excluded: Optional[Wallet],
    rng: Optional[random.Random] = None,
) -> Wallet:
    """Pick a recipient, favouring wallets with low balances."""
    skip = excluded.address.lower() if excluded is not None else None
    candidates = [w for w in wallets if w.address.lower() != skip]
    if not candidates:
        raise NoCandidatesError("no wallets available after exclusion")

    weights = [low_balance_weight(w.balance) for w in candidates]
    total = sum(weights)
    r = rng or random
    draw = r.randrange(total)
    cumulative = 0
    for wallet, weight in zip(candidates, weights):
        cumulative += weight
        if draw < cumulative:
            return wallet
    return candidates[-1]


def calculate_transfer_amount(
    balance: int,
    min_balance: int,
    *,
    floor: int,
    cap: int,
    rng: Optional[random.Random] = None,
) -> int:
    """Fixed-ceiling policy: uniform in [floor, min(surplus, cap)], else 0.

    ``surplus = balance - min_balance``. Returns 0 when there is no surplus or
    when it is below ``floor``; the result never exceeds the surplus.
    """
    surplus = int(balance) - int(min_balance)
    if surplus <= 0 or surplus < floor:
        return 0
    upper = min(surplus, int(cap))
    if upper < floor:
        return 0
    r = rng or random
    return r.randint(int(floor), upper)
