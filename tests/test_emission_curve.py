from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pytest

from conftest import default_curve
from decayfarm.ledger.constants import (
    DEFAULT_DECAY,
    DEFAULT_PERIOD_DURATION,
    DEFAULT_TOTAL_BUDGET,
    DEFAULT_TOTAL_PERIODS,
    TOKEN,
    WAD,
)
from decayfarm.ledger.curve import period_rate, period_reward, released_fraction, wad_pow
from decayfarm.runtime.errors import ConfigurationError

CENT = TOKEN // 100


def test_reference_budgets_for_default_schedule() -> None:
    # 3,000,000 tokens over 48 periods at 5.5% decay.
    curve = default_curve()
    assert abs(curve.budget(0) - 17_669_358 * CENT) < CENT
    assert abs(curve.budget(1) - 16_697_544 * CENT) < CENT


def test_cumulative_budget_is_non_decreasing_and_exhausts_total() -> None:
    curve = default_curve()
    prev = 0
    for i in range(DEFAULT_TOTAL_PERIODS):
        cum = curve.cumulative(i)
        assert cum >= prev
        prev = cum

    assert abs(prev - DEFAULT_TOTAL_BUDGET) <= DEFAULT_TOTAL_PERIODS
    # The last period releases exactly what is left.
    assert prev == DEFAULT_TOTAL_BUDGET
    assert sum(curve.budget(i) for i in range(DEFAULT_TOTAL_PERIODS)) == DEFAULT_TOTAL_BUDGET


def test_released_fraction_strictly_decreasing_down_to_decay() -> None:
    fracs = [released_fraction(i, DEFAULT_DECAY, DEFAULT_TOTAL_PERIODS) for i in range(DEFAULT_TOTAL_PERIODS)]
    for f in fracs:
        assert 0 < f < WAD
    for a, b in zip(fracs, fracs[1:]):
        assert b < a
    # Final period releases exactly `decay` of what remains.
    assert fracs[-1] == DEFAULT_DECAY


def test_cumulative_fraction_strictly_increasing_up_to_one() -> None:
    curve = default_curve()
    fracs = [curve.cumulative_fraction(i) for i in range(DEFAULT_TOTAL_PERIODS)]
    for f in fracs:
        assert 0 < f <= WAD
    for a, b in zip(fracs, fracs[1:]):
        assert b > a
    assert fracs[-1] == WAD
    assert [r["cumulative_fraction"] for r in curve.schedule()] == fracs


def test_budget_and_rate_decay_geometrically() -> None:
    curve = default_curve()
    keep = WAD - DEFAULT_DECAY
    for e in range(DEFAULT_TOTAL_PERIODS - 1):
        b0, b1 = curve.budget(e), curve.budget(e + 1)
        assert abs(b1 - b0 * keep // WAD) <= b0 // 10**12

        r0, r1 = curve.rate(e), curve.rate(e + 1)
        assert abs(r1 - r0 * keep // WAD) <= r0 // 10**9 + 2


def test_schedule_table_matches_per_period_recomputation() -> None:
    curve = default_curve()
    rows = curve.schedule()
    assert len(rows) == DEFAULT_TOTAL_PERIODS
    for i in (0, 1, 17, DEFAULT_TOTAL_PERIODS - 1):
        assert rows[i]["budget"] == curve.budget(i)
        assert rows[i]["rate"] == curve.rate(i)
        assert rows[i]["cumulative"] == curve.cumulative(i)
    assert rows[-1]["cumulative"] == DEFAULT_TOTAL_BUDGET


def test_expired_periods_release_nothing() -> None:
    assert period_reward(DEFAULT_TOTAL_PERIODS, DEFAULT_TOTAL_BUDGET, DEFAULT_DECAY, DEFAULT_TOTAL_PERIODS) == 0
    assert (
        period_rate(DEFAULT_TOTAL_PERIODS + 5, DEFAULT_TOTAL_BUDGET, DEFAULT_DECAY, DEFAULT_TOTAL_PERIODS, DEFAULT_PERIOD_DURATION)
        == 0
    )
    with pytest.raises(ValueError):
        period_reward(-1, DEFAULT_TOTAL_BUDGET, DEFAULT_DECAY, DEFAULT_TOTAL_PERIODS)


def test_rate_ceiling_is_checked_at_construction() -> None:
    with pytest.raises(ConfigurationError) as ei:
        default_curve(max_rate=1)
    assert ei.value.code == "rate_ceiling"


@pytest.mark.parametrize("decay", [0, WAD, WAD + 1, -5])
def test_decay_outside_open_unit_interval_is_rejected(decay: int) -> None:
    with pytest.raises(ConfigurationError):
        default_curve(decay=decay)


def test_wad_pow_edges() -> None:
    assert wad_pow(WAD // 2, 0) == WAD
    assert wad_pow(WAD // 2, 1) == WAD // 2
    assert wad_pow(WAD // 2, 2) == WAD // 4
    with pytest.raises(ValueError):
        wad_pow(WAD, -1)


def test_emission_table_script_emits_json(capsys: pytest.CaptureFixture[str]) -> None:
    path = Path(__file__).resolve().parents[1] / "scripts" / "emission_table.py"
    mod_spec = importlib.util.spec_from_file_location("emission_table", path)
    assert mod_spec is not None and mod_spec.loader is not None
    mod = importlib.util.module_from_spec(mod_spec)
    mod_spec.loader.exec_module(mod)

    rc = mod.main(["--budget", "3000000", "--periods", "48", "--decay", "5.5%", "--json"])
    assert rc == 0
    rows = json.loads(capsys.readouterr().out)
    assert len(rows) == 48
    assert rows[-1]["cumulative"] == DEFAULT_TOTAL_BUDGET

    rc = mod.main(["--decay", "0"])
    assert rc == 2

    rc = mod.main(["--budget", "abc"])
    assert rc == 2
    assert "not a number" in capsys.readouterr().err
