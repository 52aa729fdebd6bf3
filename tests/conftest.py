from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure local "src/" takes precedence over any globally-installed "decayfarm" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from decayfarm.ledger.constants import (  # noqa: E402
    DEFAULT_DECAY,
    DEFAULT_MAX_RATE,
    DEFAULT_PERIOD_DURATION,
    DEFAULT_TOTAL_BUDGET,
    DEFAULT_TOTAL_PERIODS,
)
from decayfarm.ledger.curve import EmissionCurve  # noqa: E402
from decayfarm.runtime.adapters_memory import (  # noqa: E402
    CappedRewardToken,
    InMemoryAssetBook,
    StaticAdminRegistry,
)
from decayfarm.runtime.controller import RewardController  # noqa: E402

GENESIS = 1_700_000_000
WEEK = DEFAULT_PERIOD_DURATION
ADMIN = "ADMIN"
CONTROLLER = "CONTROLLER"
REWARD = "REWARD"


class FakeClock:
    """Deterministic unix-seconds source."""

    def __init__(self, t: int = GENESIS) -> None:
        self.t = int(t)

    def __call__(self) -> int:
        return self.t

    def advance(self, seconds: int) -> int:
        self.t += int(seconds)
        return self.t


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def book() -> InMemoryAssetBook:
    return InMemoryAssetBook()


@pytest.fixture
def token(book: InMemoryAssetBook) -> CappedRewardToken:
    return CappedRewardToken(token=REWARD, book=book, cap=DEFAULT_TOTAL_BUDGET, minter=CONTROLLER)


@pytest.fixture
def registry() -> StaticAdminRegistry:
    return StaticAdminRegistry(admin=ADMIN)


def default_curve(**overrides: Any) -> EmissionCurve:
    params = {
        "total_budget": DEFAULT_TOTAL_BUDGET,
        "decay": DEFAULT_DECAY,
        "total_periods": DEFAULT_TOTAL_PERIODS,
        "period_duration": DEFAULT_PERIOD_DURATION,
        "max_rate": DEFAULT_MAX_RATE,
    }
    params.update(overrides)
    return EmissionCurve(**params)


@pytest.fixture
def make_controller(
    clock: FakeClock,
    token: CappedRewardToken,
    registry: StaticAdminRegistry,
    book: InMemoryAssetBook,
) -> Callable[..., RewardController]:
    def _make(*, curve: EmissionCurve | None = None, **kwargs: Any) -> RewardController:
        kwargs.setdefault("address", CONTROLLER)
        kwargs.setdefault("genesis_time", clock.t)
        return RewardController(
            curve=curve or default_curve(),
            token=token,
            registry=registry,
            book=book,
            time_source=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def controller(make_controller: Callable[..., RewardController]) -> RewardController:
    return make_controller()
