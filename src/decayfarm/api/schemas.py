from __future__ import annotations

"""Pydantic response schemas for the read-only query surface.

Amounts are base units (1e-18 token). Ratios are WAD-scaled (1e18 == 1.0).
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class PeriodOut(BaseModel):
    index: int
    rate: int = Field(..., description="Reward units per second")
    budget: int = Field(..., description="Planned reward units for the period")
    claimed: int = Field(..., description="Reward units collected while the period was active")
    start: int
    end: int = Field(..., description="Estimated end (start + period duration)")


class CurrentPeriodOut(PeriodOut):
    boundary_due: bool = Field(..., description="A period boundary has passed and no operation has crossed it yet")
    due_period: Optional[int] = Field(None, description="Index the next operation moves to; >= total periods ends the schedule")


class ClockOut(BaseModel):
    now: int
    phase: str
    period: int
    boundary_due: bool
    due_period: Optional[int] = None
    rate: int
    total_weight: int
    genesis_time: int
    terminal_time: int
    last_boundary_time: int
    seconds_to_next_boundary: int
    seconds_to_terminal: int
    period_progress: int
    schedule_progress: int
    budget_progress: int
    termination_policy: str
    armed: bool


class ScheduleRowOut(BaseModel):
    period: int
    budget: int
    rate: int
    cumulative: int
    cumulative_fraction: int
    released_fraction: int


class PoolOut(BaseModel):
    key: str
    market: str
    kind: str
    active: bool
    weight: int
    total_shares: int
    accumulator: int
    last_update_time: int
    distributed: int
    collected: int


class PoolDetailOut(PoolOut):
    accumulator_now: int
    positions_shares: int
    pending_total: int = Field(..., description="Pending at the last recorded accumulator")


class PendingOut(BaseModel):
    pool: str
    participant: str
    pending: int


class PoolListOut(BaseModel):
    pools: List[PoolOut]
    total_weight: int


class PeriodListOut(BaseModel):
    periods: List[PeriodOut]
    current: Optional[int] = None
