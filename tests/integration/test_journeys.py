"""
Integration tests: complete journeys against the stub API.

The stub is served on an ephemeral port with ``gevent.pywsgi`` so the
journeys go through real HTTP, the real token store and the real
metrics aggregator.
"""

from __future__ import annotations

import random

import gevent
import pytest
from gevent.pywsgi import WSGIServer

from deliveryload import kpis
from deliveryload.auth import PerUserTokenStore
from deliveryload.data import Account, AccountPool
from deliveryload.journeys import run_journey
from deliveryload.models import ActorKind, VirtualUserContext
from deliveryload.scenarios.rider import NO_ASSIGNMENTS
from deliveryload.scenarios.vendor import NO_ORDERS
from deliveryload.stub_api import create_app

pytestmark = pytest.mark.integration


@pytest.fixture
def journey_kwargs(aggregator, run_events, token_store, accounts, testing_config, fake_sleep):
    return {
        "aggregator": aggregator,
        "events": run_events,
        "tokens": token_store,
        "accounts": accounts,
        "config": testing_config,
        "sleep": fake_sleep,
        "rng": random.Random(11),
    }


def test_customer_journey_places_an_order(live_server, journey_kwargs, aggregator):
    # Act
    result = run_journey(ActorKind.CUSTOMER, live_server, **journey_kwargs)

    # Assert
    assert result.success, result.error
    assert result.steps_run == 8
    report = aggregator.finalize(1.0)
    assert report.value(kpis.ORDERS_PLACED, "count") == 1
    assert report.value(kpis.ORDER_SUCCESS_RATE, "rate") == 1.0
    assert report.value(kpis.LOGIN_SUCCESS_RATE, "rate") == 1.0
    assert report.value(kpis.VENDOR_BROWSES, "count") == 1
    assert report.value(kpis.MENU_VIEWS, "count") == 1
    assert report.value(kpis.ORDER_TRACKING_TIME, "count") == 1
    assert report.value(kpis.HTTP_REQ_FAILED, "rate") == 0.0
    assert report.value(kpis.CUSTOMER_JOURNEY_TIME, "count") == 1


def test_vendor_journey_processes_an_order(live_server, journey_kwargs, aggregator):
    result = run_journey(ActorKind.VENDOR, live_server, **journey_kwargs)

    assert result.success, result.error
    assert result.steps_run == 5
    report = aggregator.finalize(1.0)
    assert report.value(kpis.ORDERS_ACCEPTED, "count") == 1
    assert report.value(kpis.VENDOR_JOURNEY_TIME, "count") == 1


def test_rider_journey_delivers_an_order(live_server, journey_kwargs, aggregator):
    result = run_journey(ActorKind.RIDER, live_server, **journey_kwargs)

    assert result.success, result.error
    report = aggregator.finalize(1.0)
    assert report.value(kpis.DELIVERY_COMPLETION_RATE, "rate") == 1.0
    assert report.value(kpis.DELIVERIES_COMPLETED, "count") == 1


def test_login_failure_aborts_the_journey(live_server, journey_kwargs, aggregator):
    # Arrange
    blank = AccountPool({kind: [Account(f"{kind.value}@example.com", "")] for kind in ActorKind})
    journey_kwargs["accounts"] = blank

    # Act
    result = run_journey(ActorKind.CUSTOMER, live_server, **journey_kwargs)

    # Assert
    assert not result.success
    assert result.step == "login"
    assert result.steps_run == 1
    report = aggregator.finalize(1.0)
    assert report.value(kpis.LOGIN_SUCCESS_RATE, "rate") == 0.0
    assert report.value(kpis.VENDOR_BROWSES, "count") == 0


def test_unreachable_api_fails_at_login(journey_kwargs):
    result = run_journey(ActorKind.VENDOR, "http://127.0.0.1:9/api/v1", **journey_kwargs)

    assert not result.success
    assert result.step == "login"


def test_vendor_without_orders_halts_successfully(journey_kwargs):
    app = create_app({"TESTING": True, "STUB_SEED_ORDERS": 0})
    server = WSGIServer(("127.0.0.1", 0), app, log=None)
    server.start()
    try:
        base_url = f"http://127.0.0.1:{server.server_port}/api/v1"
        vendor = run_journey(ActorKind.VENDOR, base_url, **journey_kwargs)
        rider = run_journey(ActorKind.RIDER, base_url, **journey_kwargs)
    finally:
        server.stop()

    assert vendor.success and vendor.message == NO_ORDERS
    assert rider.success and rider.message == NO_ASSIGNMENTS


def test_concurrent_journeys_share_one_aggregator(live_server, journey_kwargs, aggregator):
    """Twenty simultaneous customers: every iteration and order is counted."""
    # Arrange
    journey_kwargs["tokens"] = PerUserTokenStore(refresh_probability=0.0)

    def _customer(slot):
        context = VirtualUserContext(id=slot + 1, slot=slot, started_at=0.0)
        return run_journey(ActorKind.CUSTOMER, live_server, context=context, **journey_kwargs)

    # Act
    greenlets = [gevent.spawn(_customer, slot) for slot in range(20)]
    gevent.joinall(greenlets, raise_error=True)

    # Assert
    assert all(greenlet.value.success for greenlet in greenlets)
    report = aggregator.finalize(1.0)
    assert report.value(kpis.ITERATIONS, "count") == 20
    assert report.value(kpis.ORDERS_PLACED, "count") == 20
