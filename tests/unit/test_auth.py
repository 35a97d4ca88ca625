"""
Unit tests for credential storage and role logins.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import jwt
import pytest
import requests

from deliveryload import kpis
from deliveryload.auth import (
    AuthClient,
    Credential,
    PerUserTokenStore,
    SharedTokenStore,
    create_token_store,
    decode_expiry,
)
from deliveryload.data import Account
from deliveryload.exceptions import ConfigurationError, StepFailure, TransportFailure
from deliveryload.http_client import ApiClient
from deliveryload.models import ActorKind
from deliveryload.stub_api.tokens import create_token

pytestmark = pytest.mark.unit

SECRET = "unit-test-secret"


def _token(ttl_seconds: int = 3600, role: str = "customer") -> str:
    return create_token(1, "customer@example.com", role, SECRET, ttl_seconds)


# -----------------------------------------------------------------------------
# Expiry decoding
# -----------------------------------------------------------------------------


def test_decode_expiry_reads_exp_claim():
    token = _token(ttl_seconds=600)

    expires_at = decode_expiry(token)

    remaining = expires_at - datetime.now(timezone.utc)
    assert timedelta(seconds=590) < remaining <= timedelta(seconds=600)


def test_decode_expiry_of_opaque_token_is_none():
    assert decode_expiry("not-a-jwt") is None


def test_decode_expiry_without_exp_claim_is_none():
    token = jwt.encode({"user_id": 1}, SECRET, algorithm="HS256")

    assert decode_expiry(token) is None


def test_credential_expiry_uses_leeway():
    now = datetime.now(timezone.utc)
    almost = Credential(ActorKind.CUSTOMER, "t", expires_at=now + timedelta(seconds=3))
    fresh = Credential(ActorKind.CUSTOMER, "t", expires_at=now + timedelta(minutes=5))
    opaque = Credential(ActorKind.CUSTOMER, "t")

    assert almost.is_expired(now)
    assert not fresh.is_expired(now)
    assert not opaque.is_expired(now)


# -----------------------------------------------------------------------------
# Token stores
# -----------------------------------------------------------------------------


def test_valid_token_is_kept_without_refresh(token_store):
    # Arrange
    token_store.set_token(ActorKind.CUSTOMER, _token())
    calls = []

    # Act
    valid = token_store.ensure_valid(ActorKind.CUSTOMER, lambda current: calls.append(current))

    # Assert
    assert valid is True
    assert calls == []


def test_missing_token_triggers_refresh_with_none(token_store):
    seen = []

    def _refresh(current):
        seen.append(current)
        return "fresh-token"

    assert token_store.ensure_valid(ActorKind.VENDOR, _refresh) is True
    assert seen == [None]
    assert token_store.get_token(ActorKind.VENDOR) == "fresh-token"


def test_expired_token_is_refreshed(token_store):
    stale = _token(ttl_seconds=-60)
    token_store.set_token(ActorKind.RIDER, stale)
    fresh = _token(role="rider")

    assert token_store.ensure_valid(ActorKind.RIDER, lambda current: fresh) is True
    assert token_store.get_token(ActorKind.RIDER) == fresh


def test_failed_refresh_keeps_stale_token(token_store):
    stale = _token(ttl_seconds=-60)
    token_store.set_token(ActorKind.CUSTOMER, stale)

    assert token_store.ensure_valid(ActorKind.CUSTOMER, lambda current: None) is False
    assert token_store.get_token(ActorKind.CUSTOMER) == stale


def test_refresh_probability_one_always_refreshes():
    store = SharedTokenStore(refresh_probability=1.0, rng=random.Random(7))
    store.set_token(ActorKind.CUSTOMER, "first")

    store.ensure_valid(ActorKind.CUSTOMER, lambda current: f"{current}-renewed")

    assert store.get_token(ActorKind.CUSTOMER) == "first-renewed"


def test_shared_store_ignores_slot():
    store = SharedTokenStore()
    store.set_token(ActorKind.CUSTOMER, "shared", slot=1)

    assert store.get_token(ActorKind.CUSTOMER, slot=7) == "shared"
    assert store.get_token(ActorKind.VENDOR, slot=1) is None


def test_per_user_store_keys_by_slot():
    store = PerUserTokenStore()
    store.set_token(ActorKind.CUSTOMER, "slot-1", slot=1)
    store.set_token(ActorKind.CUSTOMER, "slot-2", slot=2)

    store.clear(ActorKind.CUSTOMER, slot=1)

    assert store.get_token(ActorKind.CUSTOMER, slot=1) is None
    assert store.get_token(ActorKind.CUSTOMER, slot=2) == "slot-2"


def test_create_token_store_modes():
    assert isinstance(create_token_store("shared"), SharedTokenStore)
    assert isinstance(create_token_store("per_vu"), PerUserTokenStore)
    with pytest.raises(ConfigurationError, match="Unknown token mode"):
        create_token_store("per_request")


def test_refresh_probability_out_of_range():
    with pytest.raises(ConfigurationError):
        SharedTokenStore(refresh_probability=1.5)


# -----------------------------------------------------------------------------
# Auth client
# -----------------------------------------------------------------------------


def test_login_stores_token_and_records_auth_metrics(make_api, accounts, aggregator, token_store, fake_response):
    # Arrange
    token = _token()
    api = make_api(
        ActorKind.CUSTOMER,
        fake_response(200, {"token": token, "user": {"id": 1, "role": "customer"}}),
    )
    auth = AuthClient(api, accounts, random.Random(1))

    # Act
    user = auth.login()

    # Assert
    assert user == {"id": 1, "role": "customer"}
    assert token_store.get_token(ActorKind.CUSTOMER) == token
    assert api.session.calls[0]["url"].endswith("/auth/customer/login")
    assert "Authorization" not in api.session.calls[0]["headers"]
    report = aggregator.finalize(1.0)
    assert report.value(kpis.LOGIN_SUCCESS_RATE, "rate") == 1.0
    assert report.value(kpis.AUTH_RESPONSE_TIME, "count") == 1


def test_rejected_login_raises_step_failure(make_api, accounts, aggregator, token_store, fake_response):
    api = make_api(ActorKind.VENDOR, fake_response(401, {"error": "Invalid credentials"}))
    auth = AuthClient(api, accounts)

    with pytest.raises(StepFailure, match="vendor login failed with status 401"):
        auth.login(Account("vendor@example.com", "wrong"))

    assert token_store.get_token(ActorKind.VENDOR) is None
    assert aggregator.finalize(1.0).value(kpis.LOGIN_SUCCESS_RATE, "rate") == 0.0


def test_login_without_token_is_a_failure(make_api, accounts, fake_response):
    api = make_api(ActorKind.RIDER, fake_response(200, {"user": {"id": 3}}))
    auth = AuthClient(api, accounts)

    with pytest.raises(StepFailure):
        auth.login()


def test_login_transport_error_records_failed_auth(make_api, accounts, aggregator):
    api = make_api(ActorKind.CUSTOMER, requests.ConnectionError("connection refused"))
    auth = AuthClient(api, accounts)

    with pytest.raises(TransportFailure):
        auth.login()

    report = aggregator.finalize(1.0)
    assert report.value(kpis.LOGIN_SUCCESS_RATE, "rate") == 0.0
    assert report.value(kpis.HTTP_REQ_FAILED, "rate") == 1.0


def test_refresh_exchanges_current_token(make_api, accounts, fake_response):
    renewed = _token(ttl_seconds=7200)
    api = make_api(ActorKind.CUSTOMER, fake_response(200, {"token": renewed}))
    auth = AuthClient(api, accounts)

    result = auth.refresh("old-token")

    assert result == renewed
    call = api.session.calls[0]
    assert call["url"].endswith("/auth/refresh")
    assert call["headers"]["Authorization"] == "Bearer old-token"


def test_rejected_refresh_returns_none(make_api, accounts, fake_response):
    api = make_api(ActorKind.CUSTOMER, fake_response(401, {"error": "Token expired"}))
    auth = AuthClient(api, accounts)

    assert auth.refresh("old-token") is None


def test_authenticated_call_logs_in_transparently(make_api, accounts, token_store, fake_response):
    """An authenticated call with no cached token re-logs in first."""
    # Arrange
    token = _token()
    api = make_api(
        ActorKind.CUSTOMER,
        fake_response(200, {"token": token, "user": {"id": 1}}),
        fake_response(200, {"items": []}),
    )
    AuthClient(api, accounts)

    # Act
    response = api.get_cart()

    # Assert
    assert response.ok
    login_call, cart_call = api.session.calls
    assert login_call["url"].endswith("/auth/customer/login")
    assert cart_call["headers"]["Authorization"] == f"Bearer {token}"


def test_logout_clears_slot(make_api, accounts, token_store):
    api = make_api(ActorKind.RIDER)
    token_store.set_token(ActorKind.RIDER, "rider-token", slot=0)
    auth = AuthClient(api, accounts)

    auth.logout()

    assert token_store.get_token(ActorKind.RIDER, slot=0) is None


def test_auth_client_needs_kind_and_store(aggregator, accounts):
    api = ApiClient("http://api.test", aggregator=aggregator)

    with pytest.raises(ConfigurationError):
        AuthClient(api, accounts)
