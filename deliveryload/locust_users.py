"""
Locust integration.

Runs the same journeys as the built-in scheduler, but under Locust's
runner, web UI and distributed mode:

- :class:`CustomerUser`, :class:`VendorUser` and :class:`RiderUser`
  each run one journey per task, weighted like the load mix.
- :class:`StagedLoadShape` follows the ramp profile of the test type
  named by ``DELIVERYLOAD_TEST_TYPE`` (default ``smoke``).
- An ``init`` listener creates one run state per environment
  (aggregator, events, token store, accounts) and bridges every API
  call into Locust's ``request`` event, so Locust's statistics show
  per-endpoint numbers named by path template.
- A ``quitting`` listener finalizes the metrics, evaluates the plan's
  thresholds, logs the summary and sets the process exit code.

Usage::

    locust -f locustfile.py --host http://127.0.0.1:8080/api/v1

Locust's shape ramps down by stopping users, unlike the built-in
scheduler which lets running journeys finish.

Key Concepts Demonstrated:
- Locust ``events.init`` / ``events.quitting`` hooks
- ``LoadTestShape`` driven by a shared ramp profile
- Abstract user base class with concrete per-actor subclasses
"""

from __future__ import annotations

import itertools
import logging
import os
import random
import time
from dataclasses import dataclass

import requests
from locust import LoadTestShape, User, constant, events, task

from deliveryload import kpis
from deliveryload.auth import TokenStore, create_token_store
from deliveryload.config import Config, get_config
from deliveryload.data import AccountPool, load_account_pool
from deliveryload.events import RunEvents
from deliveryload.exceptions import StepFailure
from deliveryload.journeys import run_journey
from deliveryload.metrics import MetricsAggregator
from deliveryload.models import ActorKind, VirtualUserContext
from deliveryload.profiles import TestPlan, get_plan
from deliveryload.report import build_summary, render_summary
from deliveryload.thresholds import build_specs, check_thresholds, validate_specs

logger = logging.getLogger(__name__)

TEST_TYPE_ENV = "DELIVERYLOAD_TEST_TYPE"


def current_plan() -> TestPlan:
    return get_plan(os.environ.get(TEST_TYPE_ENV, "smoke"))


@dataclass
class LocustRunState:
    """Per-environment objects shared by every Locust user."""

    plan: TestPlan
    config: type[Config]
    aggregator: MetricsAggregator
    events: RunEvents
    tokens: TokenStore
    accounts: AccountPool
    started: float


def bridge_requests(run_events: RunEvents, environment) -> None:
    """Forward every API call to Locust's ``request`` event."""

    def _on_request(method, name, status, duration_ms, success, exception, **_kwargs):
        if exception is None and not success:
            exception = StepFailure(f"{method} {name} returned {status}")
        environment.events.request.fire(
            request_type=method,
            name=name,
            response_time=duration_ms,
            response_length=0,
            exception=exception,
            context={},
        )

    run_events.request.add_listener(_on_request)


@events.init.add_listener
def _create_run_state(environment, **_kwargs):
    plan = current_plan()
    config = get_config()
    aggregator = kpis.create_aggregator()
    validate_specs(build_specs(plan.thresholds), aggregator)

    run_events = RunEvents()
    bridge_requests(run_events, environment)
    environment.deliveryload = LocustRunState(
        plan=plan,
        config=config,
        aggregator=aggregator,
        events=run_events,
        tokens=create_token_store(config.TOKEN_MODE, config.TOKEN_REFRESH_PROBABILITY),
        accounts=load_account_pool(config.TEST_DATA_FILE),
        started=time.perf_counter(),
    )
    logger.info("Locust run prepared for the %s plan", plan.name)


@events.quitting.add_listener
def _evaluate_thresholds(environment, **_kwargs):
    state: LocustRunState | None = getattr(environment, "deliveryload", None)
    if state is None:
        return
    report = state.aggregator.finalize(time.perf_counter() - state.started)
    results = check_thresholds(report, build_specs(state.plan.thresholds))
    summary = build_summary(report, test_type=state.plan.name, threshold_results=results)
    logger.info("\n%s", render_summary(summary))
    if not summary.passed:
        environment.process_exit_code = 1


_user_ids = itertools.count(1)


class JourneyUser(User):
    """
    Base user: every task runs one complete journey.

    Think time lives inside the journey, so the wait between tasks is
    zero.  ``abstract = True`` tells Locust not to spawn this class
    directly.
    """

    abstract = True
    actor_kind: ActorKind
    wait_time = constant(0)

    def on_start(self) -> None:
        user_id = next(_user_ids)
        self.state: LocustRunState = self.environment.deliveryload
        self.session = requests.Session()
        self.rng = random.Random()
        self.context = VirtualUserContext(id=user_id, slot=user_id, started_at=time.monotonic())

    def on_stop(self) -> None:
        self.session.close()

    @task
    def journey(self) -> None:
        result = run_journey(
            self.actor_kind,
            self.host or self.state.config.BASE_URL,
            aggregator=self.state.aggregator,
            events=self.state.events,
            tokens=self.state.tokens,
            accounts=self.state.accounts,
            config=self.state.config,
            session=self.session,
            context=self.context,
            rng=self.rng,
        )
        passed = result.duration_ms < self.state.plan.journey_duration_limit_ms
        self.state.aggregator.record(kpis.CHECKS, result.success)
        self.state.aggregator.record(kpis.CHECKS, passed)


class CustomerUser(JourneyUser):
    actor_kind = ActorKind.CUSTOMER
    weight = 1000


class VendorUser(JourneyUser):
    actor_kind = ActorKind.VENDOR
    weight = 200


class RiderUser(JourneyUser):
    actor_kind = ActorKind.RIDER
    weight = 300


class StagedLoadShape(LoadTestShape):
    """
    Follow the current plan's ramp profile.

    Each stage's target is reached at once (spawn rate equal to the
    target), matching the built-in scheduler's step targets.
    """

    def __init__(self) -> None:
        super().__init__()
        self.profile = current_plan().profile

    def tick(self):
        run_time = self.get_run_time()
        if run_time >= self.profile.total_duration:
            return None
        target = self.profile.target_at(run_time)
        return target, max(target, 1)
