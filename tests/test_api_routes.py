from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN, GENESIS, WEEK, FakeClock
from decayfarm.api.app import create_app
from decayfarm.ledger.constants import TOKEN, WAD
from decayfarm.runtime.adapters_memory import CappedRewardToken, InMemoryAssetBook, StaticAdminRegistry
from decayfarm.runtime.config import config_from_mapping
from decayfarm.runtime.service import RewardService


@pytest.fixture
def api_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(tmp_path: Path, api_clock: FakeClock) -> RewardService:
    cfg = config_from_mapping({"mode": "dev", "db_path": str(tmp_path / "api.db"), "genesis_time": GENESIS})
    book = InMemoryAssetBook()
    token = CappedRewardToken(token=cfg.reward_token, book=book, cap=cfg.total_budget, minter=cfg.controller_address)
    svc = RewardService(
        cfg=cfg, token=token, registry=StaticAdminRegistry(admin=ADMIN), book=book, time_source=api_clock
    )
    svc.register_pool(ADMIN, "M1", "borrow", 1)
    svc.track("M1", "alice", TOKEN)
    return svc


@pytest.fixture
def client(service: RewardService) -> TestClient:
    app = create_app(boot_runtime=False)
    app.state.service = service
    return TestClient(app)


def test_health_without_service() -> None:
    app = create_app(boot_runtime=False)
    with TestClient(app) as c:
        r = c.get("/v1/health")
        assert r.status_code == 200
        assert r.json() == {"ok": True, "ready": False}

        r = c.get("/v1/clock")
        assert r.status_code == 503


def test_boot_runtime_attaches_service(monkeypatch: pytest.MonkeyPatch) -> None:
    from decayfarm.api import app as api_app

    monkeypatch.delenv("DECAYFARM_CONFIG_PATH", raising=False)
    # create_app exports the config; register the keys so they are restored.
    for k in (
        "DECAYFARM_MODE",
        "DECAYFARM_DB_PATH",
        "DECAYFARM_REWARD_TOKEN",
        "DECAYFARM_CONTROLLER_ADDRESS",
        "DECAYFARM_TERMINATION_POLICY",
        "DECAYFARM_MAX_POOLS_PER_CALL",
        "DECAYFARM_LOG_LEVEL",
    ):
        monkeypatch.setenv(k, "unset")
    monkeypatch.setattr(api_app, "configure_structured_logging", lambda *_a, **_k: None)
    monkeypatch.setattr(api_app, "build_service", lambda: SimpleNamespace(name="fake"))

    app = api_app.create_app(boot_runtime=True)
    assert getattr(app.state.service, "name", "") == "fake"
    with TestClient(app) as c:
        assert c.get("/v1/health").json()["ready"] is True


def test_clock_and_schedule(client: TestClient, api_clock: FakeClock) -> None:
    api_clock.advance(60)
    body = client.get("/v1/clock").json()
    assert body["phase"] == "active"
    assert body["period"] == 0
    assert body["seconds_to_next_boundary"] == WEEK - 60
    assert body["termination_policy"] == "armed"

    rows = client.get("/v1/schedule").json()
    assert len(rows) == 48
    assert rows[0]["period"] == 0
    assert rows[-1]["cumulative_fraction"] == WAD


def test_periods(client: TestClient, service: RewardService, api_clock: FakeClock) -> None:
    current = client.get("/v1/periods/current").json()
    assert current["index"] == 0
    assert current["start"] == GENESIS
    assert current["boundary_due"] is False

    api_clock.advance(3 * WEEK)
    service.track_all()
    listing = client.get("/v1/periods").json()
    assert listing["current"] == 3
    assert [p["index"] for p in listing["periods"]] == [0, 3]

    r = client.get("/v1/periods/1")
    assert r.status_code == 404
    assert client.get("/v1/periods/3").json()["rate"] == service.controller.curve.rate(3)


def test_pools_and_pending(client: TestClient, service: RewardService, api_clock: FakeClock) -> None:
    api_clock.advance(100)
    rate = service.controller.store.current_rate

    listing = client.get("/v1/pools").json()
    assert listing["total_weight"] == 1
    assert [p["key"] for p in listing["pools"]] == ["M1/borrow"]

    detail = client.get("/v1/pools/M1/borrow").json()
    assert detail["total_shares"] == TOKEN
    assert detail["accumulator_now"] == 100 * rate

    pending = client.get("/v1/pools/M1/borrow/pending/alice").json()
    assert pending == {"pool": "M1/borrow", "participant": "alice", "pending": 100 * rate}


def test_unregistered_pool_maps_to_404(client: TestClient) -> None:
    r = client.get("/v1/pools/M9/borrow")
    assert r.status_code == 404
    body = r.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "not_registered"

    r = client.get("/v1/pools/M9/borrow/pending/alice")
    assert r.status_code == 404


def test_current_period_flags_a_boundary_no_operation_has_crossed(client: TestClient, api_clock: FakeClock) -> None:
    api_clock.advance(WEEK + 1)
    body = client.get("/v1/periods/current").json()
    assert body["index"] == 0
    assert body["boundary_due"] is True
    assert body["due_period"] == 1

    clock = client.get("/v1/clock").json()
    assert clock["period"] == 0
    assert clock["boundary_due"] is True
    assert clock["seconds_to_next_boundary"] == 0
