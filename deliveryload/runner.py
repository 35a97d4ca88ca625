"""
Load-run orchestration.

:class:`LoadTestRunner` wires one run together:

1. Build and validate the threshold specs against the metric catalogue
   (a typo fails the run before any load is generated).
2. Poll the health endpoint once (:func:`check_connectivity`).
3. Drive the plan's ramp profile with a :class:`LoadScheduler` whose
   iterations pick an actor kind and run one journey.
4. Finalize the metrics, evaluate thresholds and build the graded
   :class:`~deliveryload.report.RunSummary`.

:func:`check_connection` is the standalone "is the API reachable at
all" probe behind ``deliveryload check-connection``.

Key Concepts Demonstrated:
- Fail-fast validation before any traffic is sent
- One ``requests.Session`` per iteration, one token store per run
- Per-iteration checks on journey success and duration
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

import gevent
import requests

from deliveryload import kpis
from deliveryload.auth import TokenStore, create_token_store
from deliveryload.config import Config, get_config
from deliveryload.data import AccountPool, load_account_pool
from deliveryload.events import RunEvents
from deliveryload.exceptions import ConnectivityError
from deliveryload.http_client import DEFAULT_HEADERS
from deliveryload.journeys import run_journey
from deliveryload.metrics import MetricsAggregator, MetricsReport
from deliveryload.models import ActorKind, VirtualUserContext
from deliveryload.profiles import TestPlan
from deliveryload.report import RunSummary, build_summary
from deliveryload.scheduler import LoadScheduler, SchedulerStats
from deliveryload.thresholds import build_specs, check_thresholds, validate_specs

logger = logging.getLogger(__name__)

# Three-state exit codes so CI can tell "thresholds breached" from "harness broke".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2


# =====================================================================
# Connectivity
# =====================================================================


def check_connectivity(
    base_url: str,
    *,
    health_path: str = "/health",
    latency_limit_ms: float = 2000.0,
    timeout: float = 10.0,
    session: requests.Session | None = None,
) -> float:
    """
    Verify the API answers its health check quickly enough.

    Args:
        base_url: API root.
        health_path: Health endpoint path.
        latency_limit_ms: Slowest acceptable health response.
        timeout: Request timeout in seconds.
        session: Session to use; a plain ``requests`` call otherwise.

    Returns:
        The health check latency in milliseconds.

    Raises:
        ConnectivityError: If the request fails, the status is not 200
            or the response is slower than *latency_limit_ms*.
    """
    url = f"{base_url.rstrip('/')}{health_path}"
    http = session or requests
    started = time.perf_counter()
    try:
        response = http.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise ConnectivityError(f"Health check {url} failed: {exc}") from exc
    latency_ms = (time.perf_counter() - started) * 1000.0

    if response.status_code != 200:
        raise ConnectivityError(f"Health check {url} returned status {response.status_code}")
    if latency_ms >= latency_limit_ms:
        raise ConnectivityError(
            f"Health check {url} took {latency_ms:.0f}ms (limit {latency_limit_ms:.0f}ms)"
        )
    logger.info("API is accessible at %s (health %.0fms)", base_url, latency_ms)
    return latency_ms


@dataclass(frozen=True)
class EndpointProbe:
    """One endpoint checked by :func:`check_connection`."""

    name: str
    method: str
    path: str
    status: int
    duration_ms: float
    detail: str = ""

    @property
    def accessible(self) -> bool:
        # 401/422 from the login probe still proves the route exists.
        return 200 <= self.status < 500


# (name, method, path, body) probed in order.
CONNECTION_PROBES = (
    ("health", "GET", "/health", None),
    ("restaurants", "GET", "/restaurants/get-restaurants", None),
    ("login", "POST", "/auth/login", {"email": "test@example.com", "password": "testpass"}),
)


def check_connection(
    base_url: str,
    *,
    timeout: float = 10.0,
    session: requests.Session | None = None,
) -> list[EndpointProbe]:
    """
    Probe a handful of endpoints and report which ones are reachable.

    Transport errors become probes with status ``0``; nothing raises.
    """
    http = session or requests.Session()
    probes = []
    for name, method, path, body in CONNECTION_PROBES:
        url = f"{base_url.rstrip('/')}{path}"
        started = time.perf_counter()
        try:
            response = http.request(method, url, json=body, headers=DEFAULT_HEADERS, timeout=timeout)
        except requests.RequestException as exc:
            probes.append(EndpointProbe(name, method, path, 0, (time.perf_counter() - started) * 1000.0, str(exc)))
            continue
        duration_ms = (time.perf_counter() - started) * 1000.0
        detail = ""
        if name == "restaurants" and response.status_code == 200:
            try:
                restaurants = response.json().get("restaurants")
            except (ValueError, AttributeError):
                detail = "response is not JSON"
            else:
                detail = f"found {len(restaurants) if isinstance(restaurants, list) else 'unknown'} restaurants"
        elif response.status_code >= 400:
            detail = response.text[:200]
        probes.append(EndpointProbe(name, method, path, response.status_code, duration_ms, detail))
        logger.info("%s %s -> %d", method, path, response.status_code)
    return probes


# =====================================================================
# Load run
# =====================================================================


@dataclass(frozen=True)
class RunOutcome:
    """Everything a finished run produced."""

    summary: RunSummary
    report: MetricsReport
    scheduler_stats: SchedulerStats

    @property
    def passed(self) -> bool:
        return self.summary.passed

    @property
    def exit_code(self) -> int:
        return EXIT_PASS if self.passed else EXIT_THRESHOLD_BREACH


class LoadTestRunner:
    """
    Run one :class:`~deliveryload.profiles.TestPlan` against an API.

    Args:
        plan: Profile, thresholds, actor mix and limits to apply.
        config: Configuration class; ``get_config()`` when omitted.
        base_url: Overrides ``config.BASE_URL``.
        events: Run events; a fresh instance when omitted.
        aggregator: Metrics sink; a fresh catalogue aggregator when
            omitted.
        tokens: Token store; built from ``config.TOKEN_MODE`` when
            omitted.
        accounts: Account pool; loaded from ``config.TEST_DATA_FILE``
            when omitted.
        check_health: Run :func:`check_connectivity` before the load.
        sleep: Cooperative sleep used for think time.
        rng: Random source for actor selection and pauses.
    """

    def __init__(
        self,
        plan: TestPlan,
        config: type[Config] | None = None,
        *,
        base_url: str | None = None,
        events: RunEvents | None = None,
        aggregator: MetricsAggregator | None = None,
        tokens: TokenStore | None = None,
        accounts: AccountPool | None = None,
        check_health: bool = True,
        sleep: Callable[[float], Any] = gevent.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.plan = plan
        self.config = config or get_config()
        self.base_url = base_url or self.config.BASE_URL
        self.events = events or RunEvents()
        self.aggregator = aggregator or kpis.create_aggregator()
        self.rng = rng or random.Random()
        self.tokens = tokens or create_token_store(
            self.config.TOKEN_MODE, self.config.TOKEN_REFRESH_PROBABILITY, self.rng
        )
        self.accounts = accounts or load_account_pool(self.config.TEST_DATA_FILE)
        self.check_health = check_health
        self.sleep = sleep
        self.scheduler: LoadScheduler | None = None

    def run(self) -> RunOutcome:
        """
        Validate, check connectivity, generate the load and grade it.

        Raises:
            ConfigurationError: If a threshold names an unknown metric
                or an aggregation its series cannot produce.
            ConnectivityError: If the health check fails.
        """
        specs = build_specs(self.plan.thresholds)
        validate_specs(specs, self.aggregator)

        if self.check_health:
            check_connectivity(
                self.base_url,
                health_path=self.config.HEALTH_PATH,
                latency_limit_ms=self.plan.health_timeout_ms,
                timeout=self.config.REQUEST_TIMEOUT,
            )

        logger.info(
            "Starting %s test against %s: %d stages, peak %d VUs, %.0fs",
            self.plan.name,
            self.base_url,
            len(self.plan.profile.stages),
            self.plan.profile.peak_target,
            self.plan.profile.total_duration,
        )
        self.scheduler = LoadScheduler(
            self.plan.profile,
            self._iteration,
            events=self.events,
            drain_timeout=self.config.DRAIN_TIMEOUT,
            tick=self.config.SCHEDULER_TICK,
        )
        started = time.perf_counter()
        stats = self.scheduler.run()
        duration_s = time.perf_counter() - started

        report = self.aggregator.finalize(duration_s)
        results = check_thresholds(report, specs)
        summary = build_summary(
            report,
            test_type=self.plan.name,
            threshold_results=results,
            scheduler_stats=stats,
        )
        return RunOutcome(summary=summary, report=report, scheduler_stats=stats)

    def stop(self) -> None:
        """Stop admitting virtual users; the run drains and finishes normally."""
        if self.scheduler is not None:
            self.scheduler.stop()

    def _iteration(self, context: VirtualUserContext) -> None:
        kind = self.plan.mix.pick(context.slot, self.rng)
        context.actor_kind = kind
        try:
            with requests.Session() as session:
                result = run_journey(
                    kind,
                    self.base_url,
                    aggregator=self.aggregator,
                    events=self.events,
                    tokens=self.tokens,
                    accounts=self.accounts,
                    config=self.config,
                    session=session,
                    context=context,
                    sleep=self.sleep,
                    rng=self.rng,
                )
        except Exception:
            kpis.record_iteration_error(self.aggregator)
            raise

        self._check(kind, "journey completed successfully", result.success)
        self._check(
            kind,
            "journey duration is reasonable",
            result.duration_ms < self.plan.journey_duration_limit_ms,
        )

    def _check(self, kind: ActorKind, name: str, passed: bool) -> None:
        self.aggregator.record(kpis.CHECKS, passed)
        self.events.check.fire(name=name, passed=passed, actor_kind=kind)
