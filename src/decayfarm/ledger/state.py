from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from decayfarm.ledger.constants import PHASE_ACTIVE
from decayfarm.ledger.types import Period, Pool, Position, pool_key

Json = Dict[str, Any]

PositionKey = Tuple[str, str]

_SCALARS = (
    "total_budget",
    "genesis_time",
    "terminal_time",
    "last_boundary_time",
    "current_period",
    "current_rate",
    "total_weight",
    "phase",
    "armed",
    "artificer",
)


def _snapshot(rec: Any) -> Any:
    return copy.copy(rec)


@dataclass(slots=True)
class UndoJournal:
    """Pre-images of the records one operation has touched.

    A value of None means the record did not exist before the operation.
    """

    scalars: Json
    periods: Dict[int, Optional[Period]] = field(default_factory=dict)
    pools: Dict[str, Optional[Pool]] = field(default_factory=dict)
    positions: Dict[PositionKey, Optional[Position]] = field(default_factory=dict)


@dataclass(slots=True)
class DirtyKeys:
    """Records changed since the last flush to durable storage."""

    periods: Set[int] = field(default_factory=set)
    pools: Set[str] = field(default_factory=set)
    positions: Set[PositionKey] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.periods or self.pools or self.positions)

    def merge(self, other: "DirtyKeys") -> None:
        self.periods.update(other.periods)
        self.pools.update(other.pools)
        self.positions.update(other.positions)


@dataclass(slots=True)
class RewardStore:
    """
    Mutable controller state: clock fields, period records, pools and positions.

    Every update function receives the store explicitly. Records are addressed
    by key; nothing here scans.

    Between `begin` and `commit`/`rollback` every record handed out by an
    accessor is journaled first, so undoing an operation costs as much as the
    operation itself. Committed keys are kept in `dirty` until `take_dirty`.
    Records obtained through `iter_positions` are for reading only.
    """

    total_budget: int = 0
    genesis_time: int = 0
    terminal_time: int = 0
    last_boundary_time: int = 0
    current_period: int = 0
    current_rate: int = 0
    total_weight: int = 0
    phase: str = PHASE_ACTIVE
    armed: bool = False
    artificer: str = ""

    periods: Dict[int, Period] = field(default_factory=dict)
    pools: Dict[str, Pool] = field(default_factory=dict)
    positions: Dict[str, Dict[str, Position]] = field(default_factory=dict)

    journal: Optional[UndoJournal] = field(default=None, compare=False, repr=False)
    dirty: DirtyKeys = field(default_factory=DirtyKeys, compare=False, repr=False)

    # ---- journal ----

    def begin(self) -> None:
        if self.journal is not None:
            raise RuntimeError("store already has an open journal")
        self.journal = UndoJournal(scalars={name: getattr(self, name) for name in _SCALARS})

    def commit(self) -> None:
        j = self.journal
        if j is None:
            return
        self.dirty.periods.update(j.periods)
        self.dirty.pools.update(j.pools)
        self.dirty.positions.update(j.positions)
        self.journal = None

    def rollback(self) -> None:
        j = self.journal
        if j is None:
            return
        self.journal = None
        for name, value in j.scalars.items():
            setattr(self, name, value)
        for index, saved_period in j.periods.items():
            if saved_period is None:
                self.periods.pop(index, None)
            else:
                self.periods[index] = saved_period
        for key, saved_pool in j.pools.items():
            if saved_pool is None:
                self.pools.pop(key, None)
            else:
                self.pools[key] = saved_pool
        for (key, who), saved_pos in j.positions.items():
            by_pool = self.positions.get(key)
            if saved_pos is not None:
                self.positions.setdefault(key, {})[who] = saved_pos
            elif by_pool is not None:
                by_pool.pop(who, None)
                if not by_pool:
                    del self.positions[key]

    def take_dirty(self) -> DirtyKeys:
        out = self.dirty
        self.dirty = DirtyKeys()
        return out

    def _touch_period(self, index: int) -> None:
        j = self.journal
        if j is not None and index not in j.periods:
            rec = self.periods.get(index)
            j.periods[index] = _snapshot(rec) if rec is not None else None

    def _touch_pool(self, key: str) -> None:
        j = self.journal
        if j is not None and key not in j.pools:
            rec = self.pools.get(key)
            j.pools[key] = _snapshot(rec) if rec is not None else None

    def _touch_position(self, key: str, participant: str) -> None:
        j = self.journal
        if j is not None and (key, participant) not in j.positions:
            rec = self.positions.get(key, {}).get(participant)
            j.positions[(key, participant)] = _snapshot(rec) if rec is not None else None

    # ---- periods ----

    def get_period(self, index: int) -> Optional[Period]:
        i = int(index)
        self._touch_period(i)
        return self.periods.get(i)

    def put_period(self, period: Period) -> None:
        i = int(period.index)
        self._touch_period(i)
        self.periods[i] = period

    def active_period(self) -> Period:
        p = self.get_period(self.current_period)
        if p is None:
            raise KeyError(f"period {self.current_period} has no record")
        return p

    # ---- pools ----

    def get_pool(self, market: str, kind: str) -> Optional[Pool]:
        key = pool_key(market, kind)
        self._touch_pool(key)
        return self.pools.get(key)

    def ensure_pool(self, market: str, kind: str) -> Pool:
        key = pool_key(market, kind)
        self._touch_pool(key)
        pool = self.pools.get(key)
        if pool is None:
            pool = Pool(market=str(market).strip(), kind=str(kind).strip())
            self.pools[key] = pool
        return pool

    def active_pools(self) -> List[Pool]:
        out: List[Pool] = []
        for key in sorted(self.pools):
            if self.pools[key].active:
                self._touch_pool(key)
                out.append(self.pools[key])
        return out

    # ---- positions ----

    def get_position(self, key: str, participant: str) -> Optional[Position]:
        self._touch_position(key, participant)
        return self.positions.get(key, {}).get(participant)

    def ensure_position(self, key: str, participant: str) -> Position:
        self._touch_position(key, participant)
        by_pool = self.positions.setdefault(key, {})
        pos = by_pool.get(participant)
        if pos is None:
            pos = Position()
            by_pool[participant] = pos
        return pos

    def iter_positions(self, key: str) -> Iterator[Tuple[str, Position]]:
        yield from sorted(self.positions.get(key, {}).items())

    # ---- serialisation ----

    def to_json(self) -> Json:
        return {
            "total_budget": int(self.total_budget),
            "genesis_time": int(self.genesis_time),
            "terminal_time": int(self.terminal_time),
            "last_boundary_time": int(self.last_boundary_time),
            "current_period": int(self.current_period),
            "current_rate": int(self.current_rate),
            "total_weight": int(self.total_weight),
            "phase": str(self.phase),
            "armed": bool(self.armed),
            "artificer": str(self.artificer),
            "periods": {str(i): p.to_json() for i, p in sorted(self.periods.items())},
            "pools": {k: p.to_json() for k, p in sorted(self.pools.items())},
            "positions": {
                k: {who: pos.to_json() for who, pos in sorted(by_pool.items())}
                for k, by_pool in sorted(self.positions.items())
            },
        }

    @classmethod
    def from_json(cls, obj: Json) -> "RewardStore":
        if not isinstance(obj, dict):
            raise TypeError(f"store must be a dict, got {type(obj)}")

        periods_raw = obj.get("periods") if isinstance(obj.get("periods"), dict) else {}
        pools_raw = obj.get("pools") if isinstance(obj.get("pools"), dict) else {}
        positions_raw = obj.get("positions") if isinstance(obj.get("positions"), dict) else {}

        positions: Dict[str, Dict[str, Position]] = {}
        for key, by_pool in positions_raw.items():
            if not isinstance(by_pool, dict):
                continue
            positions[str(key)] = {
                str(who): Position.from_json(rec) for who, rec in by_pool.items() if isinstance(rec, dict)
            }

        return cls(
            total_budget=int(obj.get("total_budget", 0)),
            genesis_time=int(obj.get("genesis_time", 0)),
            terminal_time=int(obj.get("terminal_time", 0)),
            last_boundary_time=int(obj.get("last_boundary_time", 0)),
            current_period=int(obj.get("current_period", 0)),
            current_rate=int(obj.get("current_rate", 0)),
            total_weight=int(obj.get("total_weight", 0)),
            phase=str(obj.get("phase") or PHASE_ACTIVE),
            armed=bool(obj.get("armed", False)),
            artificer=str(obj.get("artificer") or ""),
            periods={int(i): Period.from_json(rec) for i, rec in periods_raw.items() if isinstance(rec, dict)},
            pools={str(k): Pool.from_json(rec) for k, rec in pools_raw.items() if isinstance(rec, dict)},
            positions=positions,
        )
