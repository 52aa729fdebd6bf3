# src/decayfarm/ledger/curve.py
from __future__ import annotations

"""Decaying emission schedule.

Each period releases `decay` of what would remain if the schedule ran to the
end, normalised so that the last period releases everything still unreleased:

  remaining_factor(p)  = (1 - decay) ** (total_periods - p)
  released_fraction(p) = 1 - remaining_factor(p)
  reward(i)            = (total_budget - released_before_i) * decay / released_fraction(i)

`released_fraction` shrinks as the schedule runs out (it ends at `decay`);
the share of the budget released so far, `cumulative_fraction`, grows to 1.

Rewards are always re-derived from period 0. The schedule therefore depends on
the constants alone and never on a previously stored value.

All values are integers. `decay` and fractions are 18-decimal fixed point.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from decayfarm.ledger.constants import WAD
from decayfarm.runtime.errors import ConfigurationError

Json = Dict[str, Any]


def wad_mul(a: int, b: int) -> int:
    return (int(a) * int(b)) // WAD


def wad_pow(base: int, exp: int) -> int:
    """Fixed-point power by squaring, rounding down at each step."""
    e = int(exp)
    if e < 0:
        raise ValueError("negative exponent")
    result = WAD
    b = int(base)
    while e:
        if e & 1:
            result = wad_mul(result, b)
        b = wad_mul(b, b)
        e >>= 1
    return result


def validate_schedule(total_budget: int, decay: int, total_periods: int, period_duration: int) -> None:
    if int(total_budget) <= 0:
        raise ConfigurationError("invalid_schedule", "total_budget_must_be_positive", {"total_budget": total_budget})
    if not 0 < int(decay) < WAD:
        raise ConfigurationError("invalid_schedule", "decay_out_of_range", {"decay": decay})
    if int(total_periods) <= 0:
        raise ConfigurationError("invalid_schedule", "total_periods_must_be_positive", {"total_periods": total_periods})
    if int(period_duration) <= 0:
        raise ConfigurationError(
            "invalid_schedule", "period_duration_must_be_positive", {"period_duration": period_duration}
        )


def remaining_factor(period: int, decay: int, total_periods: int) -> int:
    return wad_pow(WAD - int(decay), int(total_periods) - int(period))


def released_fraction(period: int, decay: int, total_periods: int) -> int:
    """Fraction (WAD) of the then-remaining budget that is released by the end of the schedule."""
    p = int(period)
    if p < 0 or p >= int(total_periods):
        raise ValueError(f"period out of range: {p}")
    return WAD - remaining_factor(p, decay, total_periods)


def period_reward(period: int, total_budget: int, decay: int, total_periods: int) -> int:
    """Reward units planned for `period`. Zero once the schedule has expired."""
    p = int(period)
    if p < 0:
        raise ValueError(f"period out of range: {p}")
    if p >= int(total_periods):
        return 0

    accumulated = 0
    reward = 0
    for i in range(p + 1):
        reward = (int(total_budget) - accumulated) * int(decay) // released_fraction(i, decay, total_periods)
        accumulated += reward
    return reward


def cumulative_reward(period: int, total_budget: int, decay: int, total_periods: int) -> int:
    """Reward units planned for periods 0..period inclusive."""
    p = min(int(period), int(total_periods) - 1)
    if p < 0:
        return 0
    accumulated = 0
    for i in range(p + 1):
        accumulated += (int(total_budget) - accumulated) * int(decay) // released_fraction(i, decay, total_periods)
    return accumulated


def period_rate(period: int, total_budget: int, decay: int, total_periods: int, period_duration: int) -> int:
    """Units released per second during `period`."""
    return period_reward(period, total_budget, decay, total_periods) // int(period_duration)


@dataclass(frozen=True, slots=True)
class EmissionCurve:
    total_budget: int
    decay: int
    total_periods: int
    period_duration: int
    max_rate: int

    def __post_init__(self) -> None:
        validate_schedule(self.total_budget, self.decay, self.total_periods, self.period_duration)
        self.check_rate(self.rate(0))

    def check_rate(self, rate: int) -> None:
        if int(rate) < 0 or int(rate) > int(self.max_rate):
            raise ConfigurationError(
                "rate_ceiling", "rate_exceeds_max_rate", {"rate": int(rate), "max_rate": int(self.max_rate)}
            )

    def released_fraction(self, period: int) -> int:
        return released_fraction(period, self.decay, self.total_periods)

    def budget(self, period: int) -> int:
        return period_reward(period, self.total_budget, self.decay, self.total_periods)

    def cumulative(self, period: int) -> int:
        return cumulative_reward(period, self.total_budget, self.decay, self.total_periods)

    def cumulative_fraction(self, period: int) -> int:
        """Share (WAD) of the total budget released by the end of `period`."""
        return self.cumulative(period) * WAD // int(self.total_budget)

    def rate(self, period: int) -> int:
        return period_rate(period, self.total_budget, self.decay, self.total_periods, self.period_duration)

    def schedule(self) -> List[Json]:
        """Full per-period table, computed in a single pass."""
        out: List[Json] = []
        accumulated = 0
        for i in range(int(self.total_periods)):
            frac = self.released_fraction(i)
            reward = (int(self.total_budget) - accumulated) * int(self.decay) // frac
            accumulated += reward
            out.append(
                {
                    "period": i,
                    "budget": int(reward),
                    "rate": int(reward) // int(self.period_duration),
                    "cumulative": int(accumulated),
                    "cumulative_fraction": int(accumulated) * WAD // int(self.total_budget),
                    "released_fraction": int(frac),
                }
            )
        return out
