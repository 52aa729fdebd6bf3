from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

Json = Dict[str, Any]

POOL_KEY_SEP = "/"


def pool_key(market: str, kind: str) -> str:
    """Canonical key for the pool tracking `kind` positions on `market`."""
    m = str(market or "").strip()
    k = str(kind or "").strip()
    if not m or not k:
        raise ValueError("market and kind must be non-empty")
    if POOL_KEY_SEP in m or POOL_KEY_SEP in k:
        raise ValueError(f"market and kind must not contain {POOL_KEY_SEP!r}")
    return f"{m}{POOL_KEY_SEP}{k}"


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


@dataclass(slots=True)
class Period:
    index: int
    rate: int
    budget: int
    claimed: int = 0
    start: int = 0
    end: int = 0

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, obj: Json) -> "Period":
        return cls(
            index=_as_int(obj.get("index")),
            rate=_as_int(obj.get("rate")),
            budget=_as_int(obj.get("budget")),
            claimed=_as_int(obj.get("claimed")),
            start=_as_int(obj.get("start")),
            end=_as_int(obj.get("end")),
        )


@dataclass(slots=True)
class Pool:
    """One reward stream (a "shuttle"): aggregate shares and reward-per-share."""

    market: str
    kind: str
    active: bool = False
    weight: int = 0
    total_shares: int = 0
    accumulator: int = 0
    last_update_time: int = 0
    distributed: int = 0
    collected: int = 0

    @property
    def key(self) -> str:
        return pool_key(self.market, self.kind)

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, obj: Json) -> "Pool":
        return cls(
            market=str(obj.get("market") or ""),
            kind=str(obj.get("kind") or ""),
            active=bool(obj.get("active", False)),
            weight=_as_int(obj.get("weight")),
            total_shares=_as_int(obj.get("total_shares")),
            accumulator=_as_int(obj.get("accumulator")),
            last_update_time=_as_int(obj.get("last_update_time")),
            distributed=_as_int(obj.get("distributed")),
            collected=_as_int(obj.get("collected")),
        )


@dataclass(slots=True)
class Position:
    """A participant's stake in one pool and its settlement baseline.

    `debt` is signed: a participant that withdraws stake after accruing keeps
    the accrued amount as a negative baseline until it is collected.
    """

    shares: int = 0
    debt: int = 0

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, obj: Json) -> "Position":
        return cls(shares=_as_int(obj.get("shares")), debt=_as_int(obj.get("debt")))
