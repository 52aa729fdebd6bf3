#!/usr/bin/env python3
from __future__ import annotations

"""Print the per-period emission schedule.

Examples:
  python3 scripts/emission_table.py
  python3 scripts/emission_table.py --budget 3000000 --periods 48 --decay 5.5% --json
  python3 scripts/emission_table.py --config ./decayfarm.yaml
"""

import argparse
import json
import sys
from decimal import Decimal, InvalidOperation

from decayfarm.ledger.constants import TOKEN, WAD
from decayfarm.ledger.curve import EmissionCurve
from decayfarm.runtime.config import (
    config_from_mapping,
    default_controller_config,
    parse_decay,
    read_controller_config_file,
)
from decayfarm.runtime.errors import ConfigurationError


def _tokens(units: int) -> str:
    return f"{Decimal(int(units)) / Decimal(TOKEN):,.2f}"


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Decaying emission schedule table")
    ap.add_argument("--config", default=None, help="JSON/YAML controller config")
    ap.add_argument("--budget", default=None, help="Total budget in whole tokens")
    ap.add_argument("--periods", type=int, default=None, help="Number of periods")
    ap.add_argument("--decay", default=None, help='Decay per period, e.g. "0.055" or "5.5%%"')
    ap.add_argument("--duration", type=int, default=None, help="Period duration in seconds")
    ap.add_argument("--json", action="store_true", help="Emit JSON rows in base units")
    args = ap.parse_args(argv)

    try:
        cfg = read_controller_config_file(args.config) if args.config else default_controller_config()
        overrides = {}
        if args.budget is not None:
            overrides["total_budget"] = int(Decimal(args.budget) * TOKEN)
        if args.periods is not None:
            overrides["total_periods"] = args.periods
        if args.decay is not None:
            overrides["decay"] = parse_decay(args.decay)
        if args.duration is not None:
            overrides["period_duration"] = args.duration
        if overrides:
            cfg = config_from_mapping(overrides, base=cfg)

        curve = EmissionCurve(
            total_budget=cfg.total_budget,
            decay=cfg.decay,
            total_periods=cfg.total_periods,
            period_duration=cfg.period_duration,
            max_rate=cfg.max_rate,
        )
    except ConfigurationError as e:
        print(f"invalid schedule: {e}", file=sys.stderr)
        return 2
    except InvalidOperation:
        print(f"invalid schedule: budget is not a number: {args.budget!r}", file=sys.stderr)
        return 2

    rows = curve.schedule()
    if args.json:
        print(json.dumps(rows, indent=2))
        return 0

    print(f"{'period':>6}  {'budget':>16}  {'cumulative':>16}  {'released':>9}  {'rate/s':>12}")
    for r in rows:
        released = Decimal(r["cumulative_fraction"]) * 100 / Decimal(WAD)
        print(
            f"{r['period']:>6}  {_tokens(r['budget']):>16}  {_tokens(r['cumulative']):>16}  "
            f"{released:>8.2f}%  {Decimal(r['rate']) / Decimal(TOKEN):>12.6f}"
        )
    print(f"decay={Decimal(cfg.decay) / Decimal(WAD):.4%}  total={_tokens(rows[-1]['cumulative'])}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
