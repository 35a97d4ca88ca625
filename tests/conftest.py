"""
Shared pytest fixtures for the deliveryload test suite.

Fixtures follow the Arrange-Act-Assert (AAA) pattern and give every
test fresh state: a new aggregator, new run events, a new token store
and, for integration tests, a stub API with its own in-memory data.

Key Concepts Demonstrated:
- Fixture scopes and dependencies
- A live WSGI server on an ephemeral port (``gevent.pywsgi``)
- Fake sleep so think time never slows the suite down
"""

from __future__ import annotations

import json
import os
import random

import pytest
from faker import Faker

# Set testing environment before importing the package
os.environ["DELIVERYLOAD_ENV"] = "testing"

from gevent.pywsgi import WSGIServer

from deliveryload import kpis
from deliveryload.auth import SharedTokenStore
from deliveryload.config import TestingConfig
from deliveryload.data import AccountPool
from deliveryload.events import RunEvents
from deliveryload.http_client import API_CLIENTS
from deliveryload.models import ActorKind
from deliveryload.stub_api import create_app

# Initialize Faker for generating test data
fake = Faker()


# -----------------------------------------------------------------------------
# Engine Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def testing_config():
    return TestingConfig


@pytest.fixture
def aggregator():
    """A fresh aggregator with the full metric catalogue registered."""
    return kpis.create_aggregator()


@pytest.fixture
def run_events():
    return RunEvents()


@pytest.fixture
def token_store():
    """Shared-mode store that never refreshes a valid token."""
    return SharedTokenStore(refresh_probability=0.0)


@pytest.fixture
def accounts():
    return AccountPool.generated(per_kind=3)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def fake_sleep():
    """
    Sleep replacement that records requested pauses instead of waiting.

    Returns:
        A callable with a ``calls`` list attribute.
    """
    calls: list[float] = []

    def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep


# -----------------------------------------------------------------------------
# Stub API Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def stub_app():
    """A stub API app with its own in-memory store."""
    return create_app({"TESTING": True, "STUB_SEED_ORDERS": 5})


@pytest.fixture
def stub_client(stub_app):
    with stub_app.test_client() as test_client:
        yield test_client


@pytest.fixture
def live_server(stub_app):
    """
    Serve the stub app on an ephemeral port for the duration of a test.

    Yields:
        The API base URL, e.g. ``http://127.0.0.1:54321/api/v1``.
    """
    server = WSGIServer(("127.0.0.1", 0), stub_app, log=None)
    server.start()
    try:
        yield f"http://127.0.0.1:{server.server_port}/api/v1"
    finally:
        server.stop()


@pytest.fixture
def login_token(stub_client):
    """Return a factory that logs in as a role and returns the bearer token."""

    def _login(kind: str = "customer") -> str:
        response = stub_client.post(
            f"/api/v1/auth/{kind}/login",
            json={"email": fake.email(), "password": "TestPass123!"},
        )
        assert response.status_code == 200
        return response.get_json()["token"]

    return _login


# -----------------------------------------------------------------------------
# Fake HTTP
# -----------------------------------------------------------------------------


class FakeResponse:
    """Just enough of ``requests.Response`` for the API client."""

    def __init__(self, status_code: int = 200, payload=None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = "" if payload is None else json.dumps(payload)
        self.text = text
        self.headers = {"Content-Type": "application/json"}

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """
    Replays queued responses and records every request.

    Queue a ``FakeResponse`` or an exception per expected call; when
    the queue is empty every call answers ``200 {}``.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            return FakeResponse(200, {})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        pass


@pytest.fixture
def fake_session():
    """Return a factory building a :class:`FakeSession` from queued responses."""
    return FakeSession


@pytest.fixture
def make_api(aggregator, run_events, token_store, fake_session):
    """
    Build a role API client backed by a fake session.

    Returns:
        ``make_api(kind, *responses) -> ApiClient``; the fake session
        is available as ``client.session``.
    """

    def _make(kind: ActorKind = ActorKind.CUSTOMER, *responses):
        return API_CLIENTS[kind](
            "http://api.test/api/v1",
            aggregator=aggregator,
            events=run_events,
            session=fake_session(*responses),
            tokens=token_store,
            actor_kind=kind,
            slot=0,
        )

    return _make


@pytest.fixture
def fake_response():
    """Return the :class:`FakeResponse` class for queuing replies."""
    return FakeResponse
