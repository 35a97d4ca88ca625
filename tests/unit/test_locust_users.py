"""
Unit tests for the Locust integration: load shape, request bridge and
threshold gating at quit time.
"""

from __future__ import annotations

import time
from types import SimpleNamespace

import pytest
from locust.event import EventHook

from deliveryload import kpis
from deliveryload import locust_users
from deliveryload.auth import SharedTokenStore
from deliveryload.config import TestingConfig
from deliveryload.data import AccountPool
from deliveryload.exceptions import StepFailure
from deliveryload.locust_users import (
    TEST_TYPE_ENV,
    CustomerUser,
    LocustRunState,
    RiderUser,
    StagedLoadShape,
    VendorUser,
    bridge_requests,
    current_plan,
)
from deliveryload.profiles import get_plan

pytestmark = pytest.mark.unit


def _environment():
    return SimpleNamespace(events=SimpleNamespace(request=EventHook()), process_exit_code=None)


def test_current_plan_follows_environment(monkeypatch):
    monkeypatch.setenv(TEST_TYPE_ENV, "spike")

    assert current_plan().name == "spike"


def test_user_weights_match_the_load_mix():
    assert (CustomerUser.weight, VendorUser.weight, RiderUser.weight) == (1000, 200, 300)


def test_shape_follows_the_smoke_profile(monkeypatch):
    # Arrange
    monkeypatch.setenv(TEST_TYPE_ENV, "smoke")
    shape = StagedLoadShape()
    ticks = {}

    # Act
    for run_time in (0, 29, 30, 95, 120):
        monkeypatch.setattr(shape, "get_run_time", lambda value=run_time: value)
        ticks[run_time] = shape.tick()

    # Assert
    assert ticks[0] == (5, 5)
    assert ticks[29] == (5, 5)
    assert ticks[30] == (10, 10)
    assert ticks[95] == (0, 1)
    assert ticks[120] is None


def test_bridge_forwards_requests_to_locust(run_events):
    # Arrange
    environment = _environment()
    fired = []
    environment.events.request.add_listener(lambda **kwargs: fired.append(kwargs))
    bridge_requests(run_events, environment)

    # Act
    run_events.request.fire(
        method="GET", name="/vendor/orders", status=200, duration_ms=12.5,
        success=True, exception=None, actor_kind=None,
    )
    run_events.request.fire(
        method="POST", name="/customer/order/place", status=500, duration_ms=40.0,
        success=False, exception=None, actor_kind=None,
    )

    # Assert
    ok, failed = fired
    assert ok["request_type"] == "GET"
    assert ok["name"] == "/vendor/orders"
    assert ok["response_time"] == 12.5
    assert ok["exception"] is None
    assert isinstance(failed["exception"], StepFailure)
    assert "returned 500" in str(failed["exception"])


def _state(plan, aggregator, run_events):
    return LocustRunState(
        plan=plan,
        config=TestingConfig,
        aggregator=aggregator,
        events=run_events,
        tokens=SharedTokenStore(0.0),
        accounts=AccountPool.generated(1),
        started=time.perf_counter(),
    )


def test_quitting_sets_exit_code_on_breach(aggregator, run_events):
    # Arrange
    plan = get_plan("smoke").with_overrides(thresholds={kpis.HTTP_REQ_FAILED: ["rate<0.01"]})
    for index in range(10):
        kpis.record_http(aggregator, 50, success=index > 2)
    environment = _environment()
    environment.deliveryload = _state(plan, aggregator, run_events)

    # Act
    locust_users._evaluate_thresholds(environment)

    # Assert
    assert environment.process_exit_code == 1


def test_quitting_leaves_exit_code_on_pass(aggregator, run_events):
    plan = get_plan("smoke").with_overrides(thresholds={})
    for _ in range(10):
        kpis.record_http(aggregator, 50, success=True)
    environment = _environment()
    environment.deliveryload = _state(plan, aggregator, run_events)

    locust_users._evaluate_thresholds(environment)

    assert environment.process_exit_code is None


def test_quitting_without_state_is_a_no_op():
    environment = _environment()

    locust_users._evaluate_thresholds(environment)

    assert environment.process_exit_code is None
