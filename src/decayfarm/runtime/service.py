# src/decayfarm/runtime/service.py

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

from decayfarm.ledger.types import Period, Pool
from decayfarm.runtime.adapters_memory import CappedRewardToken, InMemoryAssetBook, StaticAdminRegistry
from decayfarm.runtime.config import ControllerConfig, load_controller_config
from decayfarm.runtime.controller import BulkResult, RewardController
from decayfarm.runtime.ports import Address, AdminRegistry, AssetBook, TokenAuthority
from decayfarm.runtime.sqlite_db import SqliteDB, SqliteRewardStore
from decayfarm.runtime.structured_logging import log_event

Json = Dict[str, Any]
T = TypeVar("T")

_log = logging.getLogger("decayfarm.service")


class RewardService:
    """Durable controller: every successful mutation is written to SQLite.

    A single lock serialises writers and readers of this instance, so the
    HTTP query surface never observes a half-applied operation.
    """

    def __init__(
        self,
        *,
        cfg: ControllerConfig,
        token: TokenAuthority,
        registry: AdminRegistry,
        book: AssetBook,
        time_source: Optional[Callable[[], int]] = None,
    ) -> None:
        self.cfg = cfg
        self.records = SqliteRewardStore(db=SqliteDB(path=cfg.db_path))
        self._lock = threading.Lock()

        extra: Json = {}
        if time_source is not None:
            extra["time_source"] = time_source

        resumed = self.records.exists()
        store = self.records.load() if resumed else None
        self.controller = RewardController.from_config(
            cfg, token=token, registry=registry, book=book, store=store, **extra
        )
        if not resumed:
            self.records.save_all(self.controller.store)

        log_event(
            _log,
            "service_boot",
            db_path=cfg.db_path,
            resumed=resumed,
            period=self.controller.store.current_period,
            phase=self.controller.store.phase,
        )

    def _commit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._lock:
            out = fn(*args, **kwargs)
            self.records.save(self.controller.store)
            return out

    def _read(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._lock:
            return fn(*args, **kwargs)

    # ---- mutations ----

    def track(
        self,
        caller: Address,
        participant: Address,
        balance: int,
        context: Optional[int] = None,
        kind: str = "borrow",
    ) -> int:
        return self._commit(self.controller.track, caller, participant, balance, context, kind)

    def collect(self, caller: Address, market: str, kind: str, recipient: Optional[Address] = None) -> int:
        return self._commit(self.controller.collect, caller, market, kind, recipient)

    def collect_all(self, caller: Address, recipient: Optional[Address] = None, *, offset: int = 0) -> BulkResult:
        return self._commit(self.controller.collect_all, caller, recipient, offset=offset)

    def track_all(self, *, offset: int = 0) -> BulkResult:
        return self._commit(self.controller.track_all, offset=offset)

    def register_pool(self, caller: Address, market: str, kind: str, weight: int) -> Pool:
        return self._commit(self.controller.register_pool, caller, market, kind, weight)

    def adjust_weight(self, caller: Address, market: str, kind: str, weight: int) -> Pool:
        return self._commit(self.controller.adjust_weight, caller, market, kind, weight)

    def set_artificer(self, caller: Address, artificer: Address) -> None:
        return self._commit(self.controller.set_artificer, caller, artificer)

    def override_rate(self, caller: Address, rate: int) -> int:
        return self._commit(self.controller.override_rate, caller, rate)

    def arm(self, caller: Address) -> None:
        return self._commit(self.controller.arm, caller)

    def terminate(self, caller: Address) -> int:
        return self._commit(self.controller.terminate, caller)

    def sweep(self, caller: Address, token: Address, to: Optional[Address] = None) -> int:
        return self._commit(self.controller.sweep, caller, token, to)

    # ---- reads ----

    def clock_status(self) -> Json:
        return self._read(self.controller.clock_status)

    def periods(self) -> List[Period]:
        return self._read(lambda: [p for _, p in sorted(self.controller.store.periods.items())])

    def current_period(self) -> Period:
        return self._read(self.controller.current_period)

    def current_period_status(self) -> Json:
        return self._read(self.controller.current_period_status)

    def period(self, index: int) -> Optional[Period]:
        return self._read(self.controller.period, index)

    def schedule(self) -> List[Json]:
        return self._read(self.controller.schedule)

    def pools(self) -> List[Pool]:
        return self._read(self.controller.pools)

    def pool_summary(self, market: str, kind: str) -> Json:
        return self._read(self.controller.pool_summary, market, kind)

    def pending(self, market: str, kind: str, participant: Address) -> int:
        return self._read(self.controller.pending, market, kind, participant)


def build_service(cfg: Optional[ControllerConfig] = None) -> RewardService:
    """Build a RewardService with in-process collaborators.

    Used by the API in dev/testnet. Deployments that talk to a real token,
    factory and balance source construct RewardService directly.
    """
    c = cfg or load_controller_config()
    book = InMemoryAssetBook()
    token = CappedRewardToken(token=c.reward_token, book=book, cap=c.total_budget, minter=c.controller_address)
    registry = StaticAdminRegistry(admin=os.environ.get("DECAYFARM_ADMIN", "ADMIN"))
    return RewardService(cfg=c, token=token, registry=registry, book=book)
