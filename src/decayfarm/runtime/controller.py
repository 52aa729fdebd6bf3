# src/decayfarm/runtime/controller.py
from __future__ import annotations

"""Reward controller.

Orchestrates the period clock, the emission curve and the reward ledger over a
single RewardStore.

Every mutating entry point:
  1. rejects re-entry (one flag per instance)
  2. opens an undo journal on the store
  3. crosses a due period boundary (pools are brought up to date at the old
     rate first, then the rate is recomputed)
  4. does its work; on any exception the journal is rolled back

External side effects (mint, transfer) are always the last step, so a failing
collaborator leaves no partial state behind.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from decayfarm.ledger.clock import PeriodClock
from decayfarm.ledger.constants import (
    DEFAULT_PRECISION,
    PHASE_ACTIVE,
    PHASE_DESTROYED,
    PHASE_TERMINAL,
    POLICY_ARMED,
    SHARE_SCALE,
    TERMINATION_POLICIES,
)
from decayfarm.ledger.curve import EmissionCurve
from decayfarm.ledger.rewards import (
    charge_period,
    pending,
    pool_totals,
    projected_accumulator,
    settle,
    track_shares,
    update_pool,
)
from decayfarm.ledger.state import RewardStore
from decayfarm.ledger.types import Period, Pool
from decayfarm.runtime.config import ControllerConfig
from decayfarm.runtime.errors import AuthorizationError, ConfigurationError, LifecycleError
from decayfarm.runtime.ports import Address, AdminRegistry, AssetBook, TokenAuthority
from decayfarm.runtime.structured_logging import log_event

Json = Dict[str, Any]

_log = logging.getLogger("decayfarm.controller")


def _unix_now() -> int:
    return int(time.time())


def shares_from_balance(balance: int, context: Optional[int] = None) -> int:
    """Convert a venue-reported balance into pool shares.

    With no context the balance is the stake. With a context (the venue's
    running index, e.g. a borrow index) the stake is index-normalised so that
    interest accrual alone does not change a participant's share.
    """
    b = int(balance)
    if b < 0:
        raise ValueError(f"balance must be non-negative, got {b}")
    if context is None:
        return b
    c = int(context)
    if c <= 0:
        raise ValueError(f"adjustment context must be positive, got {c}")
    return b * SHARE_SCALE // c


@dataclass(slots=True)
class BulkResult:
    amount: int
    pools: List[str]
    next_offset: Optional[int]

    def to_json(self) -> Json:
        return {"amount": int(self.amount), "pools": list(self.pools), "next_offset": self.next_offset}


class RewardController:
    def __init__(
        self,
        *,
        curve: EmissionCurve,
        token: TokenAuthority,
        registry: AdminRegistry,
        book: AssetBook,
        address: Address = "CONTROLLER",
        precision: int = DEFAULT_PRECISION,
        termination_policy: str = POLICY_ARMED,
        record_skipped_periods: bool = False,
        max_pools_per_call: int = 0,
        genesis_time: Optional[int] = None,
        time_source: Callable[[], int] = _unix_now,
        store: Optional[RewardStore] = None,
    ) -> None:
        if termination_policy not in TERMINATION_POLICIES:
            raise ConfigurationError(
                "invalid_config", "bad_termination_policy", {"termination_policy": termination_policy}
            )
        if int(precision) <= 0:
            raise ConfigurationError("invalid_config", "precision_must_be_positive", {"precision": precision})

        self.curve = curve
        self.clock = PeriodClock(curve, record_skipped_periods=record_skipped_periods)
        self.token = token
        self.registry = registry
        self.book = book
        self.address = str(address)
        self.precision = int(precision)
        self.termination_policy = termination_policy
        self.max_pools_per_call = max(0, int(max_pools_per_call))
        self._time_source = time_source
        self._entered = False

        if store is None:
            store = RewardStore()
            g = int(genesis_time) if genesis_time is not None else self.now()
            self.clock.genesis(store, g)
            log_event(_log, "genesis", genesis_time=g, rate=store.current_rate, terminal_time=store.terminal_time)
        self.store = store

    @classmethod
    def from_config(
        cls,
        cfg: ControllerConfig,
        *,
        token: TokenAuthority,
        registry: AdminRegistry,
        book: AssetBook,
        time_source: Callable[[], int] = _unix_now,
        store: Optional[RewardStore] = None,
    ) -> "RewardController":
        curve = EmissionCurve(
            total_budget=cfg.total_budget,
            decay=cfg.decay,
            total_periods=cfg.total_periods,
            period_duration=cfg.period_duration,
            max_rate=cfg.max_rate,
        )
        return cls(
            curve=curve,
            token=token,
            registry=registry,
            book=book,
            address=cfg.controller_address,
            precision=cfg.precision,
            termination_policy=cfg.termination_policy,
            record_skipped_periods=cfg.record_skipped_periods,
            max_pools_per_call=cfg.max_pools_per_call,
            genesis_time=cfg.genesis_time,
            time_source=time_source,
            store=store,
        )

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def now(self) -> int:
        return int(self._time_source())

    @contextmanager
    def _operation(self, name: str) -> Iterator[int]:
        if self._entered:
            raise AuthorizationError("reentrant_call", "operation_in_progress", {"operation": name})
        self._entered = True
        self.store.begin()
        try:
            if self.store.phase == PHASE_DESTROYED:
                raise LifecycleError("destroyed", "controller_destroyed", {"operation": name})
            now = self.now()
            self._tick(now)
            yield now
        except BaseException:
            self.store.rollback()
            raise
        else:
            self.store.commit()
        finally:
            self._entered = False

    def _tick(self, now: int) -> None:
        if not self.clock.boundary_due(self.store, now):
            return

        pools = self.store.active_pools()
        if self.max_pools_per_call and len(pools) > self.max_pools_per_call:
            log_event(
                _log,
                "mass_update_over_ceiling",
                level=logging.WARNING,
                pools=len(pools),
                ceiling=self.max_pools_per_call,
            )
        for pool in pools:
            update_pool(self.store, pool, now, self.precision)

        adv = self.clock.advance(self.store, now)
        if adv is None:
            return
        if adv.terminal:
            log_event(_log, "terminal_reached", at=now, **adv.to_json())
        else:
            log_event(_log, "period_advanced", at=now, **adv.to_json())

    def _mass_update(self, now: int) -> None:
        for pool in self.store.active_pools():
            update_pool(self.store, pool, now, self.precision)

    def _admin(self) -> Address:
        return str(self.registry.current_admin())

    def _require_admin(self, caller: Address) -> None:
        admin = self._admin()
        if str(caller) != admin:
            raise AuthorizationError("forbidden", "admin_required", {"caller": caller})

    def _require_adjuster(self, caller: Address) -> None:
        c = str(caller)
        if c == self._admin():
            return
        if self.store.artificer and c == self.store.artificer:
            return
        raise AuthorizationError("forbidden", "admin_or_artificer_required", {"caller": caller})

    def _active_pool(self, market: str, kind: str) -> Pool:
        pool = self.store.get_pool(market, kind)
        if pool is None or not pool.active:
            raise LifecycleError("not_registered", "pool_not_active", {"market": market, "kind": kind})
        return pool

    def _page(self, offset: int) -> tuple[List[Pool], Optional[int]]:
        pools = self.store.active_pools()
        start = max(0, int(offset))
        if not self.max_pools_per_call:
            return pools[start:], None
        end = start + self.max_pools_per_call
        return pools[start:end], (end if end < len(pools) else None)

    # ------------------------------------------------------------------
    # venue-facing
    # ------------------------------------------------------------------

    def track(
        self,
        caller: Address,
        participant: Address,
        balance: int,
        context: Optional[int] = None,
        kind: str = "borrow",
    ) -> int:
        """Record a participant's new balance on the caller's market. Returns the new shares."""
        shares = shares_from_balance(balance, context)
        with self._operation("track") as now:
            pool = self._active_pool(caller, kind)
            update_pool(self.store, pool, now, self.precision)
            track_shares(self.store, pool, str(participant), shares, self.precision)
        return shares

    # ------------------------------------------------------------------
    # participant-facing
    # ------------------------------------------------------------------

    def collect(self, caller: Address, market: str, kind: str, recipient: Optional[Address] = None) -> int:
        """Mint the caller's pending reward in one pool. Returns the amount minted."""
        to = str(recipient or caller)
        with self._operation("collect") as now:
            pool = self._active_pool(market, kind)
            update_pool(self.store, pool, now, self.precision)
            amount = settle(self.store, pool, str(caller), self.precision)
            if amount == 0:
                return 0
            period = charge_period(self.store, amount)
            self.token.mint(self.address, to, amount)

        log_event(
            _log,
            "collected",
            pool=pool.key,
            participant=str(caller),
            recipient=to,
            amount=amount,
            period=period.index,
            period_claimed=period.claimed,
        )
        return amount

    def collect_all(self, caller: Address, recipient: Optional[Address] = None, *, offset: int = 0) -> BulkResult:
        """Collect across registered pools, at most `max_pools_per_call` per call."""
        to = str(recipient or caller)
        with self._operation("collect_all") as now:
            page, next_offset = self._page(offset)
            total = 0
            touched: List[str] = []
            for pool in page:
                update_pool(self.store, pool, now, self.precision)
                amount = settle(self.store, pool, str(caller), self.precision)
                if amount:
                    total += amount
                    touched.append(pool.key)
            if total:
                charge_period(self.store, total)
                self.token.mint(self.address, to, total)

        if total:
            log_event(_log, "collected", pools=touched, participant=str(caller), recipient=to, amount=total)
        return BulkResult(amount=total, pools=touched, next_offset=next_offset)

    def track_all(self, *, offset: int = 0) -> BulkResult:
        """Bring registered pools up to date, at most `max_pools_per_call` per call."""
        with self._operation("track_all") as now:
            page, next_offset = self._page(offset)
            credited = 0
            for pool in page:
                credited += update_pool(self.store, pool, now, self.precision)
        return BulkResult(amount=credited, pools=[p.key for p in page], next_offset=next_offset)

    # ------------------------------------------------------------------
    # admin
    # ------------------------------------------------------------------

    def register_pool(self, caller: Address, market: str, kind: str, weight: int) -> Pool:
        w = int(weight)
        with self._operation("register_pool") as now:
            self._require_admin(caller)
            if w < 0:
                raise ConfigurationError("invalid_weight", "weight_must_be_non_negative", {"weight": w})
            existing = self.store.get_pool(market, kind)
            if existing is not None and existing.active:
                raise LifecycleError("already_registered", "pool_already_active", {"pool": existing.key})

            self._mass_update(now)
            pool = self.store.ensure_pool(market, kind)
            pool.active = True
            pool.weight = w
            pool.last_update_time = now
            self.store.total_weight = int(self.store.total_weight) + w

        log_event(_log, "pool_registered", pool=pool.key, weight=w, total_weight=self.store.total_weight)
        return pool

    def adjust_weight(self, caller: Address, market: str, kind: str, weight: int) -> Pool:
        w = int(weight)
        with self._operation("adjust_weight") as now:
            self._require_adjuster(caller)
            if w < 0:
                raise ConfigurationError("invalid_weight", "weight_must_be_non_negative", {"weight": w})
            pool = self._active_pool(market, kind)

            self._mass_update(now)
            old = int(pool.weight)
            self.store.total_weight = int(self.store.total_weight) - old + w
            pool.weight = w

        log_event(_log, "weight_adjusted", pool=pool.key, old=old, new=w, total_weight=self.store.total_weight)
        return pool

    def set_artificer(self, caller: Address, artificer: Address) -> None:
        with self._operation("set_artificer"):
            self._require_admin(caller)
            self.store.artificer = str(artificer or "")
        log_event(_log, "artificer_set", artificer=self.store.artificer)

    def override_rate(self, caller: Address, rate: int) -> int:
        """Replace the current rate until the next period boundary."""
        r = int(rate)
        with self._operation("override_rate") as now:
            self._require_admin(caller)
            if self.store.phase != PHASE_ACTIVE:
                raise LifecycleError("not_active", "rate_fixed_after_schedule", {"phase": self.store.phase})
            self.curve.check_rate(r)
            self._mass_update(now)
            old = int(self.store.current_rate)
            self.store.current_rate = r

        log_event(_log, "rate_overridden", old=old, new=r, period=self.store.current_period)
        return r

    def arm(self, caller: Address) -> None:
        """One-way: allow `terminate` once the schedule is over."""
        with self._operation("arm"):
            self._require_admin(caller)
            if self.termination_policy != POLICY_ARMED:
                raise LifecycleError(
                    "arming_unused", "termination_is_unconditional", {"policy": self.termination_policy}
                )
            self.store.armed = True
        log_event(_log, "armed", period=self.store.current_period)

    def terminate(self, caller: Address) -> int:
        """Terminal -> destroyed. Pays the residual reward-token balance to the admin."""
        with self._operation("terminate"):
            if self.store.phase != PHASE_TERMINAL:
                raise LifecycleError(
                    "not_terminal",
                    "schedule_not_finished",
                    {"phase": self.store.phase, "terminal_time": self.store.terminal_time},
                )
            if self.termination_policy == POLICY_ARMED and not self.store.armed:
                raise LifecycleError("not_armed", "arm_required_before_terminate", {"caller": caller})

            admin = self._admin()
            residual = int(self.book.balance_of(self.token.token, self.address))
            self.store.phase = PHASE_DESTROYED
            if residual > 0:
                self.book.transfer(self.token.token, self.address, admin, residual)

        log_event(_log, "terminated", caller=str(caller), admin=admin, residual=residual)
        return residual

    def sweep(self, caller: Address, token: Address, to: Optional[Address] = None) -> int:
        """Move a non-reward token balance held by the controller."""
        with self._operation("sweep"):
            self._require_admin(caller)
            if str(token) == str(self.token.token):
                raise AuthorizationError("forbidden", "reward_token_not_sweepable", {"token": token})
            dest = str(to or self._admin())
            amount = int(self.book.balance_of(token, self.address))
            if amount > 0:
                self.book.transfer(token, self.address, dest, amount)

        log_event(_log, "swept", token=str(token), to=dest, amount=amount)
        return amount

    # ------------------------------------------------------------------
    # read-only queries
    # ------------------------------------------------------------------

    def current_period(self) -> Period:
        return self.store.active_period()

    def period(self, index: int) -> Optional[Period]:
        return self.store.get_period(index)

    def pools(self) -> List[Pool]:
        return self.store.active_pools()

    def pool(self, market: str, kind: str) -> Pool:
        return self._active_pool(market, kind)

    def pending(self, market: str, kind: str, participant: Address, now: Optional[int] = None) -> int:
        t = self.now() if now is None else int(now)
        pool = self._active_pool(market, kind)
        if self.store.phase == PHASE_DESTROYED:
            return 0
        return pending(self.store, pool, str(participant), t, self.precision)

    def pool_summary(self, market: str, kind: str, now: Optional[int] = None) -> Json:
        t = self.now() if now is None else int(now)
        pool = self._active_pool(market, kind)
        shares, owed = pool_totals(self.store, pool, self.precision)
        return {
            **pool.to_json(),
            "key": pool.key,
            "accumulator_now": projected_accumulator(self.store, pool, t, self.precision),
            "positions_shares": shares,
            "pending_total": owed,
        }

    def current_period_status(self, now: Optional[int] = None) -> Json:
        """The active period record, plus the boundary the next operation would cross."""
        t = self.now() if now is None else int(now)
        due = self.clock.due_period(self.store, t)
        return {**self.current_period().to_json(), "boundary_due": due is not None, "due_period": due}

    def clock_status(self, now: Optional[int] = None) -> Json:
        t = self.now() if now is None else int(now)
        s = self.store
        due = self.clock.due_period(s, t)
        return {
            "now": t,
            "phase": s.phase,
            "period": int(s.current_period),
            "boundary_due": due is not None,
            "due_period": due,
            "rate": int(s.current_rate),
            "total_weight": int(s.total_weight),
            "genesis_time": int(s.genesis_time),
            "terminal_time": int(s.terminal_time),
            "last_boundary_time": int(s.last_boundary_time),
            "seconds_to_next_boundary": self.clock.seconds_to_next_boundary(s, t),
            "seconds_to_terminal": self.clock.seconds_to_terminal(s, t),
            "period_progress": self.clock.period_progress(s, t),
            "schedule_progress": self.clock.schedule_progress(s, t),
            "budget_progress": self.clock.budget_progress(s),
            "termination_policy": self.termination_policy,
            "armed": bool(s.armed),
        }

    def schedule(self) -> List[Json]:
        return self.curve.schedule()
