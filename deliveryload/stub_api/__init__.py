"""
Stub food-delivery API.

Provides the ``create_app`` factory for a small Flask application that
answers every endpoint the journeys call, from in-memory data.  It is
the target for local runs (``deliveryload stub-server``) and for the
integration tests, which serve it with ``gevent.pywsgi.WSGIServer``.

Key Concepts Demonstrated:
- Application factory pattern (create_app)
- Per-app state kept in ``app.extensions``
- Blueprint-based route registration
"""

from __future__ import annotations

import logging
import os
from typing import Any

from flask import Flask

from deliveryload.stub_api.store import StubStore

logger = logging.getLogger(__name__)

DEFAULT_URL_PREFIX = "/api/v1"


class StubConfig:
    """Defaults for the stub app; every key can be overridden per app."""

    STUB_JWT_SECRET: str = os.environ.get("DELIVERYLOAD_STUB_SECRET", "stub-signing-secret")
    STUB_TOKEN_TTL_SECONDS: int = int(os.environ.get("DELIVERYLOAD_STUB_TOKEN_TTL", "3600"))
    STUB_FAILURE_RATE: float = float(os.environ.get("DELIVERYLOAD_STUB_FAILURE_RATE", "0"))
    STUB_LATENCY_MS: float = float(os.environ.get("DELIVERYLOAD_STUB_LATENCY_MS", "0"))
    STUB_SEED_ORDERS: int = 10
    JSON_SORT_KEYS: bool = False


def create_app(overrides: dict[str, Any] | None = None, url_prefix: str = DEFAULT_URL_PREFIX) -> Flask:
    """
    Create the stub API application.

    Args:
        overrides: Config values applied on top of :class:`StubConfig`,
            e.g. ``{"TESTING": True, "STUB_FAILURE_RATE": 0.2}``.
        url_prefix: Mount point of every endpoint.

    Returns:
        A configured :class:`~flask.Flask` app with a fresh in-memory
        store.
    """
    app = Flask(__name__)
    app.config.from_object(StubConfig)
    if overrides:
        app.config.update(overrides)

    app.extensions["stub_store"] = StubStore(seed_orders=app.config["STUB_SEED_ORDERS"])

    # Import inside the factory so the routes module can reference this package.
    from .routes import api_bp

    app.register_blueprint(api_bp, url_prefix=url_prefix)
    logger.info(
        "Stub API created at prefix %s (failure rate %.2f, latency %.0fms)",
        url_prefix,
        app.config["STUB_FAILURE_RATE"],
        app.config["STUB_LATENCY_MS"],
    )
    return app
