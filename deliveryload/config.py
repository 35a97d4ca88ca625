"""
Harness configuration.

Defines environment-specific configuration classes for a load run.
Each class captures the target base URL and the knobs that shape how
virtual users behave (request timeout, token refresh probability,
think-time scaling, drain timeout).  The ``get_config`` factory picks
the right class based on the ``DELIVERYLOAD_ENV`` environment variable
(or an explicit key).

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides for 12-factor deployability
- A testing configuration with short timeouts and no think time
"""

from __future__ import annotations

import os


class Config:
    """
    Base (shared) configuration for a load run.

    All environment-specific classes inherit from ``Config`` so common
    defaults are stated once.  Individual settings can be overridden by
    environment variables.
    """

    # Root URL of the API under test; every endpoint path is appended to it.
    BASE_URL: str = os.environ.get("DELIVERYLOAD_BASE_URL", "http://localhost:8080/api/v1")

    # Path polled once before a run starts.  A non-200 answer aborts the run.
    HEALTH_PATH: str = os.environ.get("DELIVERYLOAD_HEALTH_PATH", "/health")

    # Seconds before a single request is abandoned as a transport failure.
    REQUEST_TIMEOUT: float = float(os.environ.get("DELIVERYLOAD_REQUEST_TIMEOUT", "30"))

    # Requests slower than this are flagged by the response-time check.
    SLOW_REQUEST_MS: float = float(os.environ.get("DELIVERYLOAD_SLOW_REQUEST_MS", "5000"))

    # Chance that a cached token is refreshed before an authenticated call.
    TOKEN_REFRESH_PROBABILITY: float = float(
        os.environ.get("DELIVERYLOAD_TOKEN_REFRESH_PROBABILITY", "0.1")
    )

    # "shared" keeps one token per actor kind; "per_vu" one per credential slot.
    TOKEN_MODE: str = os.environ.get("DELIVERYLOAD_TOKEN_MODE", "shared")

    # Multiplier applied to every think-time range.
    THINK_TIME_SCALE: float = float(os.environ.get("DELIVERYLOAD_THINK_TIME_SCALE", "1.0"))

    # Seconds the scheduler waits for in-flight journeys after the last stage.
    DRAIN_TIMEOUT: float = float(os.environ.get("DELIVERYLOAD_DRAIN_TIMEOUT", "30"))

    # Upper bound on how long the scheduler sleeps between admission passes.
    SCHEDULER_TICK: float = float(os.environ.get("DELIVERYLOAD_SCHEDULER_TICK", "0.1"))

    # Optional YAML file with customer/vendor/rider login accounts.
    TEST_DATA_FILE: str | None = os.environ.get("DELIVERYLOAD_TEST_DATA_FILE")

    LOG_LEVEL: str = os.environ.get("DELIVERYLOAD_LOG_LEVEL", "INFO")


class LocalConfig(Config):
    """
    Local development overrides.

    Points at the bundled stub API (``deliveryload stub-server``) and
    compresses think time so a smoke run finishes in a couple of
    minutes.
    """

    BASE_URL: str = os.environ.get("DELIVERYLOAD_BASE_URL", "http://127.0.0.1:8080/api/v1")
    THINK_TIME_SCALE: float = float(os.environ.get("DELIVERYLOAD_THINK_TIME_SCALE", "0.1"))
    DRAIN_TIMEOUT: float = float(os.environ.get("DELIVERYLOAD_DRAIN_TIMEOUT", "10"))


class UatConfig(Config):
    """
    UAT environment.

    All values are expected to come from environment variables set by
    the CI job; only the base URL default differs from ``Config``.
    """

    BASE_URL: str = os.environ.get("DELIVERYLOAD_BASE_URL", "https://uat.gabseats.example/api/v1")


class TestingConfig(Config):
    """
    Test-suite overrides.

    Uses a non-routable host so unit tests never leak real traffic,
    removes think time and shortens every timeout.
    """

    __test__ = False  # not a pytest test class

    BASE_URL: str = os.environ.get("DELIVERYLOAD_TEST_BASE_URL", "http://delivery-api.test")
    REQUEST_TIMEOUT: float = 2.0
    THINK_TIME_SCALE: float = 0.0
    DRAIN_TIMEOUT: float = 2.0
    SCHEDULER_TICK: float = 0.02
    TOKEN_REFRESH_PROBABILITY: float = 0.0


# Lookup table mapping environment names to their config classes.
config = {
    "local": LocalConfig,
    "uat": UatConfig,
    "testing": TestingConfig,
    "default": LocalConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"local"``, ``"uat"`` or ``"testing"``.  When
            *None*, the ``DELIVERYLOAD_ENV`` environment variable is
            consulted, falling back to ``"local"``.

    Returns:
        The ``Config`` subclass matching the requested environment, or
        ``LocalConfig`` if the key is unrecognised.
    """
    if env is None:
        env = os.environ.get("DELIVERYLOAD_ENV", "local")
    return config.get(env, config["default"])
