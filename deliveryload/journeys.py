"""
Customer, vendor and rider journeys.

Each builder returns a fresh :class:`~deliveryload.journey.Journey`
whose steps are the scenario functions in
:mod:`deliveryload.scenarios`.  Think-time ranges (seconds) are the
pauses a real user takes after each step; they are scaled by
``Config.THINK_TIME_SCALE``.

:func:`run_journey` wires everything one journey needs (API client,
token store, login helper, session) and runs it once.  It is the entry
point the scheduler, the Locust users and the tests share.
"""

from __future__ import annotations

import random
from typing import Any, Callable

import gevent
import requests

from deliveryload import scenarios
from deliveryload.auth import AuthClient, TokenStore, create_token_store
from deliveryload.config import Config, get_config
from deliveryload.data import AccountPool, load_account_pool
from deliveryload.events import RunEvents
from deliveryload.http_client import API_CLIENTS
from deliveryload.journey import Journey, JourneySession, Step
from deliveryload.kpis import create_aggregator
from deliveryload.metrics import MetricsAggregator
from deliveryload.models import ActorKind, JourneyResult, VirtualUserContext
from deliveryload.scenarios import customer, rider, vendor


def customer_journey() -> Journey:
    """Login, browse, menu, cart, checkout and tracking."""
    return Journey(
        ActorKind.CUSTOMER,
        [
            Step("login", scenarios.login, think_time=(3, 8)),
            Step("browse_vendors", customer.browse_vendors, think_time=(2, 5)),
            Step("view_menu", customer.view_menu, think_time=(3, 8)),
            Step("build_cart", customer.build_cart, think_time=(2, 4)),
            Step("review_cart", customer.review_cart, think_time=(2, 5)),
            Step("place_order", customer.place_order, think_time=(3, 6)),
            Step("track_order", customer.track_order, think_time=(2, 4)),
            Step("tracking_experience", customer.tracking_experience, critical=False),
        ],
    )


def vendor_journey() -> Journey:
    """Login, pick an incoming order and process it."""
    return Journey(
        ActorKind.VENDOR,
        [
            Step("login", scenarios.login, think_time=(2, 5)),
            Step("view_pending_orders", vendor.view_pending_orders, think_time=(2, 4)),
            Step("order_details", vendor.order_details, think_time=(1, 2)),
            Step("process_order", vendor.process_order, think_time=(2, 4)),
            Step("view_updated_orders", vendor.view_updated_orders, critical=False),
        ],
    )


def rider_journey() -> Journey:
    """Login, pick an assignment and deliver it."""
    return Journey(
        ActorKind.RIDER,
        [
            Step("login", scenarios.login, think_time=(2, 5)),
            Step("view_available_assignments", rider.view_available_assignments, think_time=(2, 4)),
            Step("assignment_details", rider.assignment_details, think_time=(1, 2)),
            Step("deliver", rider.deliver, think_time=(2, 4)),
            Step("update_location", rider.update_location, critical=False),
        ],
    )


JOURNEY_BUILDERS: dict[ActorKind, Callable[[], Journey]] = {
    ActorKind.CUSTOMER: customer_journey,
    ActorKind.VENDOR: vendor_journey,
    ActorKind.RIDER: rider_journey,
}


def run_journey(
    actor_kind: ActorKind | str,
    base_url: str | None = None,
    *,
    aggregator: MetricsAggregator | None = None,
    events: RunEvents | None = None,
    tokens: TokenStore | None = None,
    accounts: AccountPool | None = None,
    config: type[Config] | None = None,
    session: requests.Session | None = None,
    context: VirtualUserContext | None = None,
    sleep: Callable[[float], Any] = gevent.sleep,
    rng: random.Random | None = None,
) -> JourneyResult:
    """
    Run one journey for *actor_kind* against *base_url*.

    Everything not supplied is created from *config* (``get_config()``
    when omitted), so ``run_journey("customer", url)`` works on its own.

    Args:
        actor_kind: ``ActorKind`` member or its string value.
        base_url: API root; defaults to ``config.BASE_URL``.
        aggregator: Metrics sink; a private one is created when omitted.
        events: Run events to fire.
        tokens: Token store shared across journeys.
        accounts: Login account pool.
        config: Configuration class.
        session: ``requests.Session`` to reuse.
        context: The virtual user running the journey; its slot keys
            per-VU credentials.
        sleep: Cooperative sleep used for think time.
        rng: Random source for choices and pauses.

    Returns:
        The journey's :class:`~deliveryload.models.JourneyResult`.
    """
    kind = ActorKind.parse(actor_kind)
    config = config or get_config()
    rng = rng or random.Random()
    if tokens is None:
        tokens = create_token_store(config.TOKEN_MODE, config.TOKEN_REFRESH_PROBABILITY, rng)
    if accounts is None:
        accounts = load_account_pool(config.TEST_DATA_FILE)
    if context is not None:
        context.actor_kind = kind

    api = API_CLIENTS[kind](
        base_url or config.BASE_URL,
        aggregator=aggregator if aggregator is not None else create_aggregator(),
        events=events,
        session=session,
        tokens=tokens,
        actor_kind=kind,
        slot=context.slot if context is not None else None,
        timeout=config.REQUEST_TIMEOUT,
        slow_request_ms=config.SLOW_REQUEST_MS,
    )
    journey_session = JourneySession(
        api,
        auth=AuthClient(api, accounts, rng),
        context=context,
        events=events,
        think_time_scale=config.THINK_TIME_SCALE,
        sleep=sleep,
        rng=rng,
    )
    return JOURNEY_BUILDERS[kind]().run(journey_session)
