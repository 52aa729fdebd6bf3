from __future__ import annotations

from typing import Callable

import pytest

from conftest import ADMIN, CONTROLLER, REWARD, WEEK, FakeClock, default_curve
from decayfarm.ledger.constants import PHASE_DESTROYED, POLICY_UNCONDITIONAL, TOKEN
from decayfarm.runtime.adapters_memory import InMemoryAssetBook, StaticAdminRegistry
from decayfarm.runtime.controller import RewardController
from decayfarm.runtime.errors import AuthorizationError, ConfigurationError, LifecycleError

MakeController = Callable[..., RewardController]


def _short(make_controller: MakeController, **kwargs) -> RewardController:
    return make_controller(curve=default_curve(total_periods=2, max_rate=10 * TOKEN), **kwargs)


def test_register_pool_is_admin_only_and_single_shot(controller: RewardController) -> None:
    with pytest.raises(AuthorizationError) as ei:
        controller.register_pool("eve", "M1", "borrow", 1)
    assert ei.value.code == "forbidden"
    assert controller.store.get_pool("M1", "borrow") is None

    pool = controller.register_pool(ADMIN, "M1", "borrow", 3)
    assert pool.active and pool.weight == 3
    assert controller.store.total_weight == 3

    with pytest.raises(LifecycleError) as ei2:
        controller.register_pool(ADMIN, "M1", "borrow", 1)
    assert ei2.value.code == "already_registered"

    with pytest.raises(ConfigurationError):
        controller.register_pool(ADMIN, "M2", "borrow", -1)

    # Same market, different position kind, is a separate pool.
    controller.register_pool(ADMIN, "M1", "supply", 1)
    assert [p.key for p in controller.pools()] == ["M1/borrow", "M1/supply"]
    assert controller.store.total_weight == 4


def test_registering_later_pool_settles_existing_pools_first(controller: RewardController, clock: FakeClock) -> None:
    controller.register_pool(ADMIN, "M1", "borrow", 1)
    controller.track("M1", "alice", TOKEN)
    rate = controller.store.current_rate

    clock.advance(100)
    controller.register_pool(ADMIN, "M2", "borrow", 1)
    assert controller.pool("M1", "borrow").last_update_time == clock.t

    clock.advance(100)
    # First 100s at full weight, next 100s at half.
    assert controller.pending("M1", "borrow", "alice") == 100 * rate + 100 * rate // 2


def test_artificer_can_adjust_weights(controller: RewardController) -> None:
    controller.register_pool(ADMIN, "M1", "borrow", 1)
    controller.register_pool(ADMIN, "M2", "borrow", 1)

    with pytest.raises(AuthorizationError):
        controller.adjust_weight("art", "M1", "borrow", 5)
    with pytest.raises(AuthorizationError):
        controller.set_artificer("eve", "eve")

    controller.set_artificer(ADMIN, "art")
    pool = controller.adjust_weight("art", "M1", "borrow", 5)
    assert pool.weight == 5
    assert controller.store.total_weight == 6

    controller.adjust_weight(ADMIN, "M2", "borrow", 0)
    assert controller.store.total_weight == 5

    with pytest.raises(AuthorizationError):
        controller.adjust_weight("eve", "M1", "borrow", 1)
    with pytest.raises(LifecycleError):
        controller.adjust_weight(ADMIN, "M9", "borrow", 1)


def test_admin_change_takes_effect_immediately(controller: RewardController, registry: StaticAdminRegistry) -> None:
    registry.set_admin("ADMIN2")
    with pytest.raises(AuthorizationError):
        controller.register_pool(ADMIN, "M1", "borrow", 1)
    controller.register_pool("ADMIN2", "M1", "borrow", 1)
    assert registry.history == [ADMIN]


def test_override_rate_respects_ceiling_and_lasts_one_period(controller: RewardController, clock: FakeClock) -> None:
    with pytest.raises(ConfigurationError) as ei:
        controller.override_rate(ADMIN, controller.curve.max_rate + 1)
    assert ei.value.code == "rate_ceiling"
    with pytest.raises(AuthorizationError):
        controller.override_rate("eve", 1)

    assert controller.override_rate(ADMIN, 10**15) == 10**15
    assert controller.store.current_rate == 10**15
    # The period record keeps its scheduled rate.
    assert controller.current_period().rate == controller.curve.rate(0)

    clock.advance(WEEK)
    controller.track_all()
    assert controller.store.current_rate == controller.curve.rate(1)


def test_override_rate_rejected_after_schedule(make_controller: MakeController, clock: FakeClock) -> None:
    ctrl = _short(make_controller)
    clock.advance(2 * WEEK)
    ctrl.track_all()
    with pytest.raises(LifecycleError) as ei:
        ctrl.override_rate(ADMIN, 1)
    assert ei.value.code == "not_active"


def test_sweep_moves_foreign_tokens_only(controller: RewardController, book: InMemoryAssetBook) -> None:
    book.credit("USDC", CONTROLLER, 500)
    book.credit(REWARD, CONTROLLER, 7)

    assert controller.sweep(ADMIN, "USDC") == 500
    assert book.balance_of("USDC", ADMIN) == 500
    assert book.balance_of("USDC", CONTROLLER) == 0

    book.credit("USDC", CONTROLLER, 5)
    assert controller.sweep(ADMIN, "USDC", to="treasury") == 5
    assert book.balance_of("USDC", "treasury") == 5

    with pytest.raises(AuthorizationError) as ei:
        controller.sweep(ADMIN, REWARD)
    assert ei.value.reason == "reward_token_not_sweepable"
    assert book.balance_of(REWARD, CONTROLLER) == 7

    with pytest.raises(AuthorizationError):
        controller.sweep("eve", "USDC")


def test_armed_termination_pays_residual_to_admin(
    make_controller: MakeController, clock: FakeClock, book: InMemoryAssetBook, registry: StaticAdminRegistry
) -> None:
    ctrl = _short(make_controller)
    ctrl.register_pool(ADMIN, "M1", "borrow", 1)
    ctrl.track("M1", "alice", TOKEN)

    with pytest.raises(AuthorizationError):
        ctrl.arm("eve")
    ctrl.arm(ADMIN)
    assert ctrl.store.armed

    with pytest.raises(LifecycleError) as ei:
        ctrl.terminate("anyone")
    assert ei.value.code == "not_terminal"

    clock.advance(WEEK)
    ctrl.track_all()
    clock.advance(WEEK)
    book.credit(REWARD, CONTROLLER, 7 * TOKEN)
    registry.set_admin("ADMIN2")

    assert ctrl.terminate("anyone") == 7 * TOKEN
    assert ctrl.store.phase == PHASE_DESTROYED
    assert book.balance_of(REWARD, "ADMIN2") == 7 * TOKEN
    assert book.balance_of(REWARD, CONTROLLER) == 0

    with pytest.raises(LifecycleError) as ei2:
        ctrl.track("M1", "alice", 2 * TOKEN)
    assert ei2.value.code == "destroyed"
    with pytest.raises(LifecycleError):
        ctrl.collect("alice", "M1", "borrow")
    assert ctrl.pending("M1", "borrow", "alice") == 0


def test_terminate_requires_arming_under_armed_policy(make_controller: MakeController, clock: FakeClock) -> None:
    ctrl = _short(make_controller)
    clock.advance(2 * WEEK)
    ctrl.track_all()
    with pytest.raises(LifecycleError) as ei:
        ctrl.terminate(ADMIN)
    assert ei.value.code == "not_armed"
    assert ctrl.store.phase != PHASE_DESTROYED


def test_unconditional_policy_terminates_without_arming(
    make_controller: MakeController, clock: FakeClock, book: InMemoryAssetBook
) -> None:
    ctrl = _short(make_controller, termination_policy=POLICY_UNCONDITIONAL)
    with pytest.raises(LifecycleError) as ei:
        ctrl.arm(ADMIN)
    assert ei.value.code == "arming_unused"

    clock.advance(2 * WEEK)
    assert ctrl.terminate("anyone") == 0
    assert ctrl.store.phase == PHASE_DESTROYED
    assert book.transfers == []


def test_unknown_termination_policy_is_rejected(make_controller: MakeController) -> None:
    with pytest.raises(ConfigurationError):
        make_controller(termination_policy="whenever")
