# src/decayfarm/ledger/clock.py
from __future__ import annotations

"""Period clock.

Phases:

  active(k), k = 0..total_periods-1  ->  terminal  ->  destroyed

`advance` runs at the top of nearly every controller operation. A boundary is
crossed once `period_duration` seconds have passed since the last recorded
boundary; the new period index is then derived from genesis by integer
division, so several idle periods are crossed in a single jump. In that case
the skipped periods get no record unless `record_skipped_periods` is set.

`terminal -> destroyed` is never taken here; the controller owns it.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from decayfarm.ledger.constants import PHASE_ACTIVE, PHASE_TERMINAL, WAD
from decayfarm.ledger.curve import EmissionCurve
from decayfarm.ledger.state import RewardStore
from decayfarm.ledger.types import Period

Json = Dict[str, Any]


@dataclass(slots=True)
class Advance:
    """Outcome of a boundary crossing."""

    from_period: int
    to_period: int
    rate: int
    terminal: bool
    skipped: List[int]

    def to_json(self) -> Json:
        return {
            "from_period": int(self.from_period),
            "to_period": int(self.to_period),
            "rate": int(self.rate),
            "terminal": bool(self.terminal),
            "skipped": list(self.skipped),
        }


class PeriodClock:
    def __init__(self, curve: EmissionCurve, *, record_skipped_periods: bool = False) -> None:
        self.curve = curve
        self.record_skipped_periods = bool(record_skipped_periods)

    @property
    def period_duration(self) -> int:
        return int(self.curve.period_duration)

    @property
    def total_periods(self) -> int:
        return int(self.curve.total_periods)

    def _stamp(self, store: RewardStore, index: int, start: int) -> Period:
        rec = Period(
            index=int(index),
            rate=self.curve.rate(index),
            budget=self.curve.budget(index),
            claimed=0,
            start=int(start),
            end=int(start) + self.period_duration,
        )
        store.put_period(rec)
        return rec

    def genesis(self, store: RewardStore, genesis_time: int) -> Period:
        """Open period 0 at `genesis_time`."""
        g = int(genesis_time)
        store.total_budget = int(self.curve.total_budget)
        store.genesis_time = g
        store.terminal_time = g + self.total_periods * self.period_duration
        store.last_boundary_time = g
        store.current_period = 0
        store.current_rate = self.curve.rate(0)
        store.phase = PHASE_ACTIVE
        return self._stamp(store, 0, g)

    def boundary_due(self, store: RewardStore, now: int) -> bool:
        return store.phase == PHASE_ACTIVE and int(now) - int(store.last_boundary_time) >= self.period_duration

    def due_period(self, store: RewardStore, now: int) -> Optional[int]:
        """Index the next operation would move to, or None when no boundary is due.

        An index >= total_periods means the next operation ends the schedule.
        """
        if not self.boundary_due(store, now):
            return None
        return (int(now) - int(store.genesis_time)) // self.period_duration

    def advance(self, store: RewardStore, now: int) -> Optional[Advance]:
        """Cross a period boundary if one is due. Returns None when nothing changed."""
        k = self.due_period(store, now)
        if k is None:
            return None

        t = int(now)
        prev = int(store.current_period)
        last_scheduled = min(k, self.total_periods)

        skipped = list(range(prev + 1, last_scheduled))
        if self.record_skipped_periods:
            for j in skipped:
                if j not in store.periods:
                    self._stamp(store, j, int(store.genesis_time) + j * self.period_duration)

        if k >= self.total_periods:
            store.phase = PHASE_TERMINAL
            store.current_rate = 0
            store.last_boundary_time = t
            if self.record_skipped_periods and skipped:
                store.current_period = skipped[-1]
            return Advance(from_period=prev, to_period=int(store.current_period), rate=0, terminal=True, skipped=skipped)

        rec = self._stamp(store, k, t)
        store.current_period = k
        store.current_rate = rec.rate
        store.last_boundary_time = t
        return Advance(from_period=prev, to_period=k, rate=rec.rate, terminal=False, skipped=skipped)

    # ---- read-only queries ----

    def seconds_to_next_boundary(self, store: RewardStore, now: int) -> int:
        if store.phase != PHASE_ACTIVE:
            return 0
        return max(0, int(store.last_boundary_time) + self.period_duration - int(now))

    def seconds_to_terminal(self, store: RewardStore, now: int) -> int:
        return max(0, int(store.terminal_time) - int(now))

    def period_progress(self, store: RewardStore, now: int) -> int:
        """Elapsed share (WAD) of the current period."""
        if store.phase != PHASE_ACTIVE:
            return WAD
        elapsed = max(0, int(now) - int(store.last_boundary_time))
        return min(WAD, elapsed * WAD // self.period_duration)

    def schedule_progress(self, store: RewardStore, now: int) -> int:
        """Elapsed share (WAD) of the whole schedule."""
        span = int(store.terminal_time) - int(store.genesis_time)
        if span <= 0:
            return WAD
        elapsed = max(0, int(now) - int(store.genesis_time))
        return min(WAD, elapsed * WAD // span)

    def budget_progress(self, store: RewardStore) -> int:
        """Claimed share (WAD) of the total budget."""
        total = int(store.total_budget)
        if total <= 0:
            return 0
        claimed = sum(int(p.claimed) for p in store.periods.values())
        return min(WAD, claimed * WAD // total)
