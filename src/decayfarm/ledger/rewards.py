# src/decayfarm/ledger/rewards.py
from __future__ import annotations

"""Reward-per-share ledger.

Each pool keeps an accumulator: cumulative reward per unit share since
genesis, scaled by `precision`. A position's pending reward is

  shares * accumulator / precision - debt

When shares change, only the baseline moves: `debt` is shifted by the value of
the added (or removed) shares at the current accumulator, so reward accrued
before the change is preserved and the new stake earns only from now on.

Signed debt deltas use floor division. With a non-decreasing accumulator and
non-negative share counts this keeps pending non-negative for every sequence
of balance reports (floor is superadditive). The price is that pending may
exceed the exact real-valued entitlement by less than one base unit per
balance report.
"""

from typing import Dict, Optional, Tuple

from decayfarm.ledger.state import RewardStore
from decayfarm.ledger.types import Period, Pool, Position
from decayfarm.runtime.errors import BudgetExceeded, InvariantError


def pool_reward(store: RewardStore, pool: Pool, now: int) -> int:
    """Reward units owed to `pool` for the time since its last update."""
    t = int(now)
    if t <= int(pool.last_update_time):
        return 0
    if int(pool.total_shares) <= 0 or int(store.total_weight) <= 0:
        return 0
    return (t - int(pool.last_update_time)) * int(store.current_rate) * int(pool.weight) // int(store.total_weight)


def projected_accumulator(store: RewardStore, pool: Pool, now: int, precision: int) -> int:
    """Accumulator value `update_pool` would produce at `now`, without mutating anything."""
    reward = pool_reward(store, pool, now)
    if reward <= 0:
        return int(pool.accumulator)
    return int(pool.accumulator) + reward * int(precision) // int(pool.total_shares)


def update_pool(store: RewardStore, pool: Pool, now: int, precision: int) -> int:
    """Bring `pool` up to `now`. Returns the reward units credited.

    Idempotent for a repeated `now`.
    """
    t = int(now)
    if t <= int(pool.last_update_time):
        return 0

    reward = pool_reward(store, pool, t)
    if reward > 0:
        pool.accumulator = int(pool.accumulator) + reward * int(precision) // int(pool.total_shares)
        pool.distributed = int(pool.distributed) + reward

    pool.last_update_time = t
    return reward


def track_shares(store: RewardStore, pool: Pool, participant: str, new_shares: int, precision: int) -> int:
    """Set a participant's shares. The pool must already be up to date.

    Returns the signed share delta.
    """
    n = int(new_shares)
    if n < 0:
        raise ValueError(f"shares must be non-negative, got {n}")

    pos = store.ensure_position(pool.key, participant)
    diff = n - int(pos.shares)
    if diff == 0:
        return 0

    diff_debt = diff * int(pool.accumulator) // int(precision)
    pos.shares = n
    pos.debt = int(pos.debt) + diff_debt
    pool.total_shares = int(pool.total_shares) + diff
    return diff


def pending_at(pos: Optional[Position], accumulator: int, precision: int) -> int:
    if pos is None:
        return 0
    return int(pos.shares) * int(accumulator) // int(precision) - int(pos.debt)


def pending(store: RewardStore, pool: Pool, participant: str, now: int, precision: int) -> int:
    """Read-only pending amount at `now`."""
    acc = projected_accumulator(store, pool, now, precision)
    return pending_at(store.get_position(pool.key, participant), acc, precision)


def settle(store: RewardStore, pool: Pool, participant: str, precision: int) -> int:
    """Zero a participant's pending amount. The pool must already be up to date.

    Returns the amount that was pending.
    """
    pos = store.get_position(pool.key, participant)
    if pos is None:
        return 0

    accumulated = int(pos.shares) * int(pool.accumulator) // int(precision)
    amount = accumulated - int(pos.debt)
    if amount == 0:
        return 0
    if amount < 0:
        raise InvariantError(
            "negative_pending",
            "pending_below_zero",
            {"pool": pool.key, "participant": participant, "amount": amount},
        )

    pos.debt = accumulated
    pool.collected = int(pool.collected) + amount
    return amount


def charge_period(store: RewardStore, amount: int) -> Period:
    """Count `amount` against the active period's budget, or fail without changing it."""
    period = store.active_period()
    a = int(amount)
    if int(period.claimed) + a > int(period.budget):
        raise BudgetExceeded(
            "budget_exceeded",
            "period_budget_exhausted",
            {
                "period": int(period.index),
                "budget": int(period.budget),
                "claimed": int(period.claimed),
                "amount": a,
            },
        )
    period.claimed = int(period.claimed) + a
    return period


def pool_totals(store: RewardStore, pool: Pool, precision: int) -> Tuple[int, int]:
    """(sum of shares, sum of pending) over every position in `pool`."""
    shares = 0
    owed = 0
    for _, pos in store.iter_positions(pool.key):
        shares += int(pos.shares)
        owed += pending_at(pos, pool.accumulator, precision)
    return shares, owed


def check_pool_invariants(store: RewardStore, pool: Pool, precision: int, *, tolerance: int = 0) -> Dict[str, int]:
    """Raise InvariantError if the pool's books are inconsistent.

    `tolerance` absorbs floor rounding on debt deltas (at most one unit per
    balance report).
    """
    shares = 0
    owed = 0
    for who, pos in store.iter_positions(pool.key):
        if int(pos.shares) < 0:
            raise InvariantError("negative_shares", "shares_below_zero", {"pool": pool.key, "participant": who})
        p = pending_at(pos, pool.accumulator, precision)
        if p < 0:
            raise InvariantError("negative_pending", "pending_below_zero", {"pool": pool.key, "participant": who})
        shares += int(pos.shares)
        owed += p

    if shares != int(pool.total_shares):
        raise InvariantError(
            "share_mismatch", "positions_do_not_sum_to_total", {"pool": pool.key, "sum": shares, "total": pool.total_shares}
        )

    if owed + int(pool.collected) > int(pool.distributed) + int(tolerance):
        raise InvariantError(
            "over_allocated",
            "pending_exceeds_distributed",
            {"pool": pool.key, "pending": owed, "collected": pool.collected, "distributed": pool.distributed},
        )

    return {"total_shares": shares, "pending": owed}
