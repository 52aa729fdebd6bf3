# src/decayfarm/runtime/sqlite_db.py
from __future__ import annotations

import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from decayfarm.ledger.state import RewardStore
from decayfarm.ledger.types import Period, Pool, Position, pool_key

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


def _big(v: Any) -> str:
    # Accumulators and debts routinely exceed SQLite's 64-bit INTEGER.
    return str(int(v))


class SqliteDB:
    """SQLite manager for the reward controller.

    Design goals:
      - single durable DB file for every controller record
      - cross-process safe (SQLite locks)
      - never share connections across threads

    SQLite allows only one writer at a time; BEGIN IMMEDIATE is retried with
    bounded backoff in write_tx().
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """PRAGMA synchronous: FULL in prod, NORMAL otherwise.

        Override with DECAYFARM_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("DECAYFARM_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("DECAYFARM_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("DECAYFARM_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        allow_non_wal = (os.environ.get("DECAYFARM_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("DECAYFARM_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS controller_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  total_budget TEXT NOT NULL,
                  genesis_time INTEGER NOT NULL,
                  terminal_time INTEGER NOT NULL,
                  last_boundary_time INTEGER NOT NULL,
                  current_period INTEGER NOT NULL,
                  current_rate TEXT NOT NULL,
                  total_weight TEXT NOT NULL,
                  phase TEXT NOT NULL,
                  armed INTEGER NOT NULL,
                  artificer TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS periods (
                  idx INTEGER PRIMARY KEY,
                  rate TEXT NOT NULL,
                  budget TEXT NOT NULL,
                  claimed TEXT NOT NULL,
                  start_ts INTEGER NOT NULL,
                  end_ts INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS pools (
                  pool_key TEXT PRIMARY KEY,
                  market TEXT NOT NULL,
                  kind TEXT NOT NULL,
                  active INTEGER NOT NULL,
                  weight TEXT NOT NULL,
                  total_shares TEXT NOT NULL,
                  accumulator TEXT NOT NULL,
                  last_update_time INTEGER NOT NULL,
                  distributed TEXT NOT NULL,
                  collected TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                  pool_key TEXT NOT NULL REFERENCES pools(pool_key),
                  participant TEXT NOT NULL,
                  shares TEXT NOT NULL,
                  debt TEXT NOT NULL,
                  PRIMARY KEY (pool_key, participant)
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise
        """
        deadline_ms = max(250, _env_int("DECAYFARM_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("DECAYFARM_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("DECAYFARM_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                con.execute("ROLLBACK;")
                raise


_UPSERT_PERIOD = """
INSERT INTO periods(idx, rate, budget, claimed, start_ts, end_ts)
VALUES(?, ?, ?, ?, ?, ?)
ON CONFLICT(idx) DO UPDATE SET
  rate=excluded.rate,
  budget=excluded.budget,
  claimed=excluded.claimed,
  start_ts=excluded.start_ts,
  end_ts=excluded.end_ts;
"""

_UPSERT_POOL = """
INSERT INTO pools(
  pool_key, market, kind, active, weight, total_shares, accumulator,
  last_update_time, distributed, collected
)
VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(pool_key) DO UPDATE SET
  market=excluded.market,
  kind=excluded.kind,
  active=excluded.active,
  weight=excluded.weight,
  total_shares=excluded.total_shares,
  accumulator=excluded.accumulator,
  last_update_time=excluded.last_update_time,
  distributed=excluded.distributed,
  collected=excluded.collected;
"""

_UPSERT_POSITION = """
INSERT INTO positions(pool_key, participant, shares, debt)
VALUES(?, ?, ?, ?)
ON CONFLICT(pool_key, participant) DO UPDATE SET
  shares=excluded.shares,
  debt=excluded.debt;
"""


def _period_row(p: Period) -> tuple:
    return (int(p.index), _big(p.rate), _big(p.budget), _big(p.claimed), int(p.start), int(p.end))


def _pool_row(key: str, p: Pool) -> tuple:
    return (
        key,
        p.market,
        p.kind,
        1 if p.active else 0,
        _big(p.weight),
        _big(p.total_shares),
        _big(p.accumulator),
        int(p.last_update_time),
        _big(p.distributed),
        _big(p.collected),
    )


class SqliteRewardStore:
    """Controller records persisted in SQLite.

    Layout: one controller row, one row per period index, one per pool, one
    per (pool, participant). `save` writes the controller row plus the records
    the store marked dirty since the previous save; `save_all` rewrites
    everything. The single-record readers go straight to their row.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM controller_state WHERE id=1;").fetchone() is not None

    @staticmethod
    def _write_controller(con: sqlite3.Connection, store: RewardStore) -> None:
        con.execute(
            """
            INSERT INTO controller_state(
              id, total_budget, genesis_time, terminal_time, last_boundary_time, current_period,
              current_rate, total_weight, phase, armed, artificer, updated_ts_ms
            )
            VALUES(1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              total_budget=excluded.total_budget,
              genesis_time=excluded.genesis_time,
              terminal_time=excluded.terminal_time,
              last_boundary_time=excluded.last_boundary_time,
              current_period=excluded.current_period,
              current_rate=excluded.current_rate,
              total_weight=excluded.total_weight,
              phase=excluded.phase,
              armed=excluded.armed,
              artificer=excluded.artificer,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (
                _big(store.total_budget),
                int(store.genesis_time),
                int(store.terminal_time),
                int(store.last_boundary_time),
                int(store.current_period),
                _big(store.current_rate),
                _big(store.total_weight),
                str(store.phase),
                1 if store.armed else 0,
                str(store.artificer),
                _now_ms(),
            ),
        )

    def save(self, store: RewardStore) -> None:
        """Persist the controller row and every record changed since the last save."""
        dirty = store.take_dirty()
        try:
            with self._db.write_tx() as con:
                self._write_controller(con, store)

                periods = sorted(dirty.periods)
                con.executemany("DELETE FROM periods WHERE idx=?;", [(i,) for i in periods if i not in store.periods])
                con.executemany(_UPSERT_PERIOD, [_period_row(store.periods[i]) for i in periods if i in store.periods])

                pools = sorted(dirty.pools)
                con.executemany(_UPSERT_POOL, [_pool_row(k, store.pools[k]) for k in pools if k in store.pools])

                upserts = []
                deletes = []
                for key, who in sorted(dirty.positions):
                    pos = store.positions.get(key, {}).get(who)
                    if pos is None:
                        deletes.append((key, who))
                    else:
                        upserts.append((key, who, _big(pos.shares), _big(pos.debt)))
                con.executemany("DELETE FROM positions WHERE pool_key=? AND participant=?;", deletes)
                con.executemany(_UPSERT_POSITION, upserts)

                # Positions first: they reference their pool.
                con.executemany("DELETE FROM pools WHERE pool_key=?;", [(k,) for k in pools if k not in store.pools])
        except Exception:
            # Keep the keys so the next save writes them.
            store.dirty.merge(dirty)
            raise

    def save_all(self, store: RewardStore) -> None:
        """Replace every persisted record with the contents of `store`."""
        store.take_dirty()
        with self._db.write_tx() as con:
            self._write_controller(con, store)

            con.execute("DELETE FROM positions;")
            con.execute("DELETE FROM pools;")
            con.execute("DELETE FROM periods;")

            con.executemany(_UPSERT_PERIOD, [_period_row(p) for _, p in sorted(store.periods.items())])
            con.executemany(_UPSERT_POOL, [_pool_row(key, p) for key, p in sorted(store.pools.items())])
            con.executemany(
                _UPSERT_POSITION,
                [
                    (key, who, _big(pos.shares), _big(pos.debt))
                    for key, by_pool in sorted(store.positions.items())
                    for who, pos in sorted(by_pool.items())
                ],
            )

    def load(self) -> RewardStore:
        with self._db.connection() as con:
            row = con.execute("SELECT * FROM controller_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite controller_state is missing")

            store = RewardStore(
                total_budget=int(row["total_budget"]),
                genesis_time=int(row["genesis_time"]),
                terminal_time=int(row["terminal_time"]),
                last_boundary_time=int(row["last_boundary_time"]),
                current_period=int(row["current_period"]),
                current_rate=int(row["current_rate"]),
                total_weight=int(row["total_weight"]),
                phase=str(row["phase"]),
                armed=bool(int(row["armed"])),
                artificer=str(row["artificer"]),
            )

            for r in con.execute("SELECT * FROM periods ORDER BY idx;").fetchall():
                p = self._period_from_row(r)
                store.periods[p.index] = p

            for r in con.execute("SELECT * FROM pools ORDER BY pool_key;").fetchall():
                store.pools[str(r["pool_key"])] = self._pool_from_row(r)

            for r in con.execute("SELECT * FROM positions ORDER BY pool_key, participant;").fetchall():
                store.positions.setdefault(str(r["pool_key"]), {})[str(r["participant"])] = Position(
                    shares=int(r["shares"]), debt=int(r["debt"])
                )

        return store

    # ---- single-record reads ----

    @staticmethod
    def _period_from_row(r: sqlite3.Row) -> Period:
        return Period(
            index=int(r["idx"]),
            rate=int(r["rate"]),
            budget=int(r["budget"]),
            claimed=int(r["claimed"]),
            start=int(r["start_ts"]),
            end=int(r["end_ts"]),
        )

    @staticmethod
    def _pool_from_row(r: sqlite3.Row) -> Pool:
        return Pool(
            market=str(r["market"]),
            kind=str(r["kind"]),
            active=bool(int(r["active"])),
            weight=int(r["weight"]),
            total_shares=int(r["total_shares"]),
            accumulator=int(r["accumulator"]),
            last_update_time=int(r["last_update_time"]),
            distributed=int(r["distributed"]),
            collected=int(r["collected"]),
        )

    def read_period(self, index: int) -> Optional[Period]:
        with self._db.connection() as con:
            r = con.execute("SELECT * FROM periods WHERE idx=?;", (int(index),)).fetchone()
            return self._period_from_row(r) if r is not None else None

    def read_pool(self, market: str, kind: str) -> Optional[Pool]:
        with self._db.connection() as con:
            r = con.execute("SELECT * FROM pools WHERE pool_key=?;", (pool_key(market, kind),)).fetchone()
            return self._pool_from_row(r) if r is not None else None

    def read_position(self, market: str, kind: str, participant: str) -> Optional[Position]:
        with self._db.connection() as con:
            r = con.execute(
                "SELECT shares, debt FROM positions WHERE pool_key=? AND participant=?;",
                (pool_key(market, kind), str(participant)),
            ).fetchone()
            return Position(shares=int(r["shares"]), debt=int(r["debt"])) if r is not None else None
