# src/decayfarm/runtime/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from decayfarm.ledger.constants import (
    DEFAULT_DECAY,
    DEFAULT_MAX_RATE,
    DEFAULT_PERIOD_DURATION,
    DEFAULT_PRECISION,
    DEFAULT_TOTAL_BUDGET,
    DEFAULT_TOTAL_PERIODS,
    POLICY_ARMED,
    TERMINATION_POLICIES,
    WAD,
)
from decayfarm.runtime.errors import ConfigurationError

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_opt_int(v: Any) -> Optional[int]:
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    return int(v)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def parse_decay(v: Any, default: int = DEFAULT_DECAY) -> int:
    """Decay as WAD. Accepts a WAD int or a decimal fraction ("0.055", 0.055, "5.5%")."""
    if v is None:
        return int(default)
    if isinstance(v, bool):
        raise ConfigurationError("invalid_config", "decay_not_numeric", {"decay": v})
    if isinstance(v, int):
        return int(v)
    s = str(v).strip()
    if not s:
        return int(default)
    pct = s.endswith("%")
    if pct:
        s = s[:-1].strip()
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ConfigurationError("invalid_config", "decay_not_numeric", {"decay": v}) from None
    if pct:
        d = d / 100
    return int(d * WAD)


@dataclass(frozen=True)
class ControllerConfig:
    mode: str  # "dev" | "testnet" | "prod"

    # Schedule
    total_budget: int
    total_periods: int
    decay: int  # WAD
    period_duration: int
    max_rate: int

    # Ledger
    precision: int
    termination_policy: str  # "armed" | "unconditional"
    record_skipped_periods: bool
    max_pools_per_call: int  # 0 = unbounded
    genesis_time: Optional[int]

    # Identities
    reward_token: str
    controller_address: str

    db_path: str

    api_host: str
    api_port: int

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_controller_config(cfg: ControllerConfig) -> None:
    """Fail-fast validation. Bad schedules are configuration errors, never retried."""

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ConfigurationError("invalid_config", "bad_mode", {"mode": cfg.mode, "allowed": sorted(_ALLOWED_MODES)})

    if int(cfg.total_budget) <= 0:
        raise ConfigurationError("invalid_config", "total_budget_must_be_positive", {"total_budget": cfg.total_budget})

    if int(cfg.total_periods) <= 0:
        raise ConfigurationError(
            "invalid_config", "total_periods_must_be_positive", {"total_periods": cfg.total_periods}
        )

    if not 0 < int(cfg.decay) < WAD:
        raise ConfigurationError("invalid_config", "decay_out_of_range", {"decay": cfg.decay})

    if int(cfg.period_duration) <= 0:
        raise ConfigurationError(
            "invalid_config", "period_duration_must_be_positive", {"period_duration": cfg.period_duration}
        )

    if int(cfg.max_rate) <= 0:
        raise ConfigurationError("invalid_config", "max_rate_must_be_positive", {"max_rate": cfg.max_rate})

    if int(cfg.precision) <= 0:
        raise ConfigurationError("invalid_config", "precision_must_be_positive", {"precision": cfg.precision})

    if cfg.termination_policy not in TERMINATION_POLICIES:
        raise ConfigurationError(
            "invalid_config",
            "bad_termination_policy",
            {"termination_policy": cfg.termination_policy, "allowed": list(TERMINATION_POLICIES)},
        )

    if int(cfg.max_pools_per_call) < 0:
        raise ConfigurationError(
            "invalid_config", "max_pools_per_call_negative", {"max_pools_per_call": cfg.max_pools_per_call}
        )

    if cfg.genesis_time is not None and int(cfg.genesis_time) < 0:
        raise ConfigurationError("invalid_config", "genesis_time_negative", {"genesis_time": cfg.genesis_time})

    for name, v in (
        ("reward_token", cfg.reward_token),
        ("controller_address", cfg.controller_address),
        ("db_path", cfg.db_path),
    ):
        if not isinstance(v, str) or not v.strip():
            raise ConfigurationError("invalid_config", f"{name}_must_be_non_empty", {name: v})

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ConfigurationError("invalid_config", "bad_api_port", {"api_port": cfg.api_port})


def default_controller_config() -> ControllerConfig:
    return ControllerConfig(
        mode="prod",
        total_budget=DEFAULT_TOTAL_BUDGET,
        total_periods=DEFAULT_TOTAL_PERIODS,
        decay=DEFAULT_DECAY,
        period_duration=DEFAULT_PERIOD_DURATION,
        max_rate=DEFAULT_MAX_RATE,
        precision=DEFAULT_PRECISION,
        # Production-safe default: termination needs an explicit, advance arming.
        termination_policy=POLICY_ARMED,
        record_skipped_periods=False,
        max_pools_per_call=0,
        genesis_time=None,
        reward_token="REWARD",
        controller_address="CONTROLLER",
        db_path="./data/decayfarm.db",
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def config_from_mapping(raw: Json, base: Optional[ControllerConfig] = None) -> ControllerConfig:
    d = base or default_controller_config()
    cfg = ControllerConfig(
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        total_budget=_as_int(raw.get("total_budget"), d.total_budget),
        total_periods=_as_int(raw.get("total_periods"), d.total_periods),
        decay=parse_decay(raw.get("decay"), d.decay),
        period_duration=_as_int(raw.get("period_duration"), d.period_duration),
        max_rate=_as_int(raw.get("max_rate"), d.max_rate),
        precision=_as_int(raw.get("precision"), d.precision),
        termination_policy=_as_str(raw.get("termination_policy"), d.termination_policy).strip().lower(),
        record_skipped_periods=_as_bool(raw.get("record_skipped_periods"), d.record_skipped_periods),
        max_pools_per_call=_as_int(raw.get("max_pools_per_call"), d.max_pools_per_call),
        genesis_time=_as_opt_int(raw.get("genesis_time")) if "genesis_time" in raw else d.genesis_time,
        reward_token=_as_str(raw.get("reward_token"), d.reward_token),
        controller_address=_as_str(raw.get("controller_address"), d.controller_address),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )
    validate_controller_config(cfg)
    return cfg


def read_controller_config_file(path: str) -> ControllerConfig:
    """Read a JSON config, or YAML when the suffix is .yaml/.yml."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ConfigurationError("invalid_config", "config_must_be_mapping", {"path": str(p)})
    return config_from_mapping(raw)


def load_controller_config(*, config_path: Optional[str] = None) -> ControllerConfig:
    p = config_path or os.environ.get("DECAYFARM_CONFIG_PATH")
    if p:
        return read_controller_config_file(p)

    cfg = default_controller_config()
    validate_controller_config(cfg)
    return cfg


def apply_config_to_env(cfg: ControllerConfig) -> None:
    validate_controller_config(cfg)
    os.environ["DECAYFARM_MODE"] = (cfg.mode or "prod").strip().lower()
    os.environ["DECAYFARM_DB_PATH"] = cfg.db_path
    os.environ["DECAYFARM_REWARD_TOKEN"] = cfg.reward_token
    os.environ["DECAYFARM_CONTROLLER_ADDRESS"] = cfg.controller_address
    os.environ["DECAYFARM_TERMINATION_POLICY"] = cfg.termination_policy
    os.environ["DECAYFARM_MAX_POOLS_PER_CALL"] = str(int(cfg.max_pools_per_call))
    os.environ["DECAYFARM_LOG_LEVEL"] = cfg.log_level
