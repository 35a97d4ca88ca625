"""
Unit tests for the instrumented HTTP client.

The ``requests`` session is replaced with a fake, so these tests check
what the client records and fires, not the network.
"""

from __future__ import annotations

import pytest
import requests

from deliveryload import kpis
from deliveryload.exceptions import AssertionFailure, TransportFailure
from deliveryload.http_client import ApiResponse, CustomerApiClient, RiderApiClient, VendorApiClient
from deliveryload.models import ActorKind

pytestmark = pytest.mark.unit


@pytest.fixture
def requests_seen(run_events):
    seen = []
    run_events.request.add_listener(lambda **kwargs: seen.append(kwargs))
    return seen


def test_successful_request_records_metrics_and_checks(make_api, fake_response, aggregator, requests_seen):
    # Arrange
    api = make_api(ActorKind.CUSTOMER, fake_response(200, {"vendors": [{"id": 1}]}))

    # Act
    response = api.browse_vendors({"cuisine": "Thai"})

    # Assert
    assert response.ok
    assert response.get("vendors") == [{"id": 1}]
    call = api.session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "http://api.test/api/v1/restaurants/get-restaurants"
    assert call["params"] == {"cuisine": "Thai"}
    assert requests_seen[0]["name"] == "/restaurants/get-restaurants"
    assert requests_seen[0]["success"] is True

    report = aggregator.finalize(1.0)
    assert report.value(kpis.HTTP_REQS, "count") == 1
    assert report.value(kpis.HTTP_REQ_FAILED, "rate") == 0.0
    assert report.value(kpis.CHECKS, "rate") == 1.0


def test_paths_with_ids_are_named_by_template(make_api, fake_response, requests_seen):
    vendor = make_api(ActorKind.VENDOR, fake_response(200, {"order": {"id": 42}}))

    vendor.get_order(42)

    assert vendor.session.calls[0]["url"].endswith("/vendor/orders/42")
    assert requests_seen[0]["name"] == "/vendor/orders/{id}"


def test_error_status_is_returned_not_raised(make_api, fake_response, aggregator):
    api = make_api(ActorKind.CUSTOMER, fake_response(503, text="Service Unavailable"))

    response = api.get("/health", authenticated=False)

    assert response.status == 503
    assert not response.ok
    assert response.json is None
    assert response.get("anything", "fallback") == "fallback"
    assert aggregator.finalize(1.0).value(kpis.HTTP_REQ_FAILED, "rate") == 1.0


def test_transport_error_raises_with_status_zero(make_api, aggregator, requests_seen):
    api = make_api(ActorKind.RIDER, requests.Timeout("read timed out"))

    with pytest.raises(TransportFailure) as excinfo:
        api.get_assignments()

    assert excinfo.value.method == "GET"
    assert excinfo.value.endpoint == "/rider/assignments"
    assert requests_seen[0]["status"] == 0
    assert isinstance(requests_seen[0]["exception"], requests.Timeout)
    assert aggregator.finalize(1.0).value(kpis.HTTP_REQ_FAILED, "rate") == 1.0


def test_stored_token_is_sent_as_bearer(make_api, token_store):
    api = make_api(ActorKind.VENDOR)
    token_store.set_token(ActorKind.VENDOR, "vendor-token")

    api.accept_order(7)

    call = api.session.calls[0]
    assert call["method"] == "POST"
    assert call["headers"]["Authorization"] == "Bearer vendor-token"


def test_unauthenticated_call_has_no_bearer(make_api, token_store):
    api = make_api(ActorKind.CUSTOMER)
    token_store.set_token(ActorKind.CUSTOMER, "customer-token")

    api.post("/auth/customer/login", json={}, authenticated=False)

    assert "Authorization" not in api.session.calls[0]["headers"]


def test_status_updates_use_patch(make_api):
    vendor = make_api(ActorKind.VENDOR)
    rider = make_api(ActorKind.RIDER)

    vendor.update_order_status(3, "preparing")
    rider.update_order_status(3, "picked_up")

    assert vendor.session.calls[0]["method"] == "PATCH"
    assert vendor.session.calls[0]["json"] == {"status": "preparing"}
    assert rider.session.calls[0]["url"].endswith("/rider/orders/3/status")


def test_role_clients_by_kind(make_api):
    assert isinstance(make_api(ActorKind.CUSTOMER), CustomerApiClient)
    assert isinstance(make_api(ActorKind.VENDOR), VendorApiClient)
    assert isinstance(make_api(ActorKind.RIDER), RiderApiClient)


def test_slow_response_fails_the_response_time_check(make_api, fake_response, run_events):
    checks = []
    run_events.check.add_listener(lambda name, passed, **_kwargs: checks.append((name, passed)))
    api = make_api(ActorKind.CUSTOMER, fake_response(200, {"ok": True}))
    api.slow_request_ms = 0.0

    api.get("/health", authenticated=False)

    assert ("GET /health response time", False) in checks
    assert ("GET /health status check", True) in checks


def test_api_response_get_on_non_object_body():
    response = ApiResponse("GET", "/x", 200, "[1, 2]", [1, 2])

    assert response.get("key") is None
    assert response.ok


def test_required_check_raises_assertion_failure(make_api, aggregator):
    api = make_api(ActorKind.CUSTOMER)

    assert api.check("optional check", False) is False
    with pytest.raises(AssertionFailure, match="cart retrieved"):
        api.check("cart retrieved successfully", False, required=True)

    report = aggregator.finalize(1.0)
    assert report.value(kpis.CHECKS, "count") == 2
    assert report.value(kpis.CHECKS, "rate") == 0.0
