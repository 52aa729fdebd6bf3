# src/decayfarm/ledger/constants.py
from __future__ import annotations

"""Emission and ledger constants.

Default schedule:
- Lifetime budget: 3,000,000 reward tokens, divisible to 1e-18
- 48 weekly periods
- 5.5% of the remaining budget released per period
"""

# Reward token precision (1 token = 1e18 units)
TOKEN: int = 10**18

# 18-decimal fixed point used for decay and released fractions
WAD: int = 10**18

# Accumulator precision (reward-per-share scale)
DEFAULT_PRECISION: int = 10**18

# Stake normalisation when the venue reports an index alongside the balance
SHARE_SCALE: int = 2**96

# Schedule
DEFAULT_TOTAL_BUDGET: int = 3_000_000 * TOKEN
DEFAULT_TOTAL_PERIODS: int = 48
DEFAULT_DECAY: int = 55 * 10**15  # 5.5%
DEFAULT_PERIOD_DURATION: int = 7 * 24 * 60 * 60  # one week

# Ceiling on the period-0 rate (units per second)
DEFAULT_MAX_RATE: int = 1 * TOKEN

# Termination policies
POLICY_ARMED: str = "armed"
POLICY_UNCONDITIONAL: str = "unconditional"
TERMINATION_POLICIES = (POLICY_ARMED, POLICY_UNCONDITIONAL)

# Clock phases
PHASE_ACTIVE: str = "active"
PHASE_TERMINAL: str = "terminal"
PHASE_DESTROYED: str = "destroyed"
