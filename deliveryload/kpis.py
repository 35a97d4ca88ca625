"""
Business and HTTP metric catalogue plus recording helpers.

Every metric name the harness emits is declared in
:data:`METRIC_CATALOG`.  Scenario code never calls
``aggregator.record`` with a bare string; it goes through the small
helpers below so that one business event always updates the same
group of series together (an order placement updates the success
rate, the placement latency trend and the orders counter).
"""

from __future__ import annotations

from deliveryload.metrics import COUNTER, RATE, TREND, MetricsAggregator
from deliveryload.models import ActorKind, JourneyResult

# ---- HTTP -------------------------------------------------------------
HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"

# ---- Iterations -------------------------------------------------------
ITERATIONS = "iterations"
ITERATION_ERRORS = "iteration_errors"
JOURNEY_SUCCESS_RATE = "journey_success_rate"

# ---- Business rates ---------------------------------------------------
ORDER_SUCCESS_RATE = "order_success_rate"
LOGIN_SUCCESS_RATE = "login_success_rate"
DELIVERY_COMPLETION_RATE = "delivery_completion_rate"

# ---- Journey and API latency trends -----------------------------------
CUSTOMER_JOURNEY_TIME = "customer_journey_time"
VENDOR_JOURNEY_TIME = "vendor_journey_time"
RIDER_JOURNEY_TIME = "rider_journey_time"
AUTH_RESPONSE_TIME = "auth_response_time"
VENDOR_BROWSE_TIME = "vendor_browse_time"
MENU_LOAD_TIME = "menu_load_time"
ORDER_PLACEMENT_TIME = "order_placement_time"
ORDER_TRACKING_TIME = "order_tracking_time"

# ---- Business counters ------------------------------------------------
ORDERS_PLACED = "orders_placed"
ORDERS_ACCEPTED = "orders_accepted"
DELIVERIES_COMPLETED = "deliveries_completed"
MENU_VIEWS = "menu_views"
VENDOR_BROWSES = "vendor_browses"

JOURNEY_TIME_METRICS = {
    ActorKind.CUSTOMER: CUSTOMER_JOURNEY_TIME,
    ActorKind.VENDOR: VENDOR_JOURNEY_TIME,
    ActorKind.RIDER: RIDER_JOURNEY_TIME,
}

METRIC_CATALOG: dict[str, str] = {
    HTTP_REQS: COUNTER,
    HTTP_REQ_DURATION: TREND,
    HTTP_REQ_FAILED: RATE,
    CHECKS: RATE,
    ITERATIONS: COUNTER,
    ITERATION_ERRORS: COUNTER,
    JOURNEY_SUCCESS_RATE: RATE,
    ORDER_SUCCESS_RATE: RATE,
    LOGIN_SUCCESS_RATE: RATE,
    DELIVERY_COMPLETION_RATE: RATE,
    CUSTOMER_JOURNEY_TIME: TREND,
    VENDOR_JOURNEY_TIME: TREND,
    RIDER_JOURNEY_TIME: TREND,
    AUTH_RESPONSE_TIME: TREND,
    VENDOR_BROWSE_TIME: TREND,
    MENU_LOAD_TIME: TREND,
    ORDER_PLACEMENT_TIME: TREND,
    ORDER_TRACKING_TIME: TREND,
    ORDERS_PLACED: COUNTER,
    ORDERS_ACCEPTED: COUNTER,
    DELIVERIES_COMPLETED: COUNTER,
    MENU_VIEWS: COUNTER,
    VENDOR_BROWSES: COUNTER,
}


def create_aggregator() -> MetricsAggregator:
    """Return a fresh aggregator with the full catalogue registered."""
    return MetricsAggregator(METRIC_CATALOG)


def record_http(aggregator: MetricsAggregator, duration_ms: float, success: bool) -> None:
    aggregator.record(HTTP_REQS, 1)
    aggregator.record(HTTP_REQ_DURATION, duration_ms)
    aggregator.record(HTTP_REQ_FAILED, not success)


def record_auth(aggregator: MetricsAggregator, success: bool, duration_ms: float) -> None:
    """Record one login attempt."""
    aggregator.record(LOGIN_SUCCESS_RATE, success)
    aggregator.record(AUTH_RESPONSE_TIME, duration_ms)


def record_order(
    aggregator: MetricsAggregator,
    action: str,
    success: bool,
    duration_ms: float | None = None,
) -> None:
    """
    Record an order lifecycle event.

    Args:
        aggregator: The run's aggregator.
        action: ``"place"``, ``"accept"``, ``"track"`` or ``"deliver"``.
        success: Whether the underlying call succeeded.
        duration_ms: Latency of the call; required for ``place`` and
            ``track``.

    Raises:
        ValueError: If *action* is not one of the four known actions.
    """
    if action == "place":
        aggregator.record(ORDER_SUCCESS_RATE, success)
        if duration_ms is not None:
            aggregator.record(ORDER_PLACEMENT_TIME, duration_ms)
        if success:
            aggregator.record(ORDERS_PLACED, 1)
    elif action == "accept":
        if success:
            aggregator.record(ORDERS_ACCEPTED, 1)
    elif action == "track":
        if duration_ms is not None:
            aggregator.record(ORDER_TRACKING_TIME, duration_ms)
    elif action == "deliver":
        aggregator.record(DELIVERY_COMPLETION_RATE, success)
        if success:
            aggregator.record(DELIVERIES_COMPLETED, 1)
    else:
        raise ValueError(f"Unknown order action '{action}'")


def record_browsing(aggregator: MetricsAggregator, action: str, duration_ms: float) -> None:
    """Record a vendor listing (``"vendors"``) or menu view (``"menu"``)."""
    if action == "vendors":
        aggregator.record(VENDOR_BROWSE_TIME, duration_ms)
        aggregator.record(VENDOR_BROWSES, 1)
    elif action == "menu":
        aggregator.record(MENU_LOAD_TIME, duration_ms)
        aggregator.record(MENU_VIEWS, 1)
    else:
        raise ValueError(f"Unknown browsing action '{action}'")


def record_journey(aggregator: MetricsAggregator, result: JourneyResult) -> None:
    """Record a finished journey: iteration count, success and duration."""
    aggregator.record(ITERATIONS, 1)
    aggregator.record(JOURNEY_SUCCESS_RATE, result.success)
    aggregator.record(JOURNEY_TIME_METRICS[result.actor_kind], result.duration_ms)


def record_iteration_error(aggregator: MetricsAggregator) -> None:
    """Record an iteration that crashed past the journey boundary."""
    aggregator.record(ITERATIONS, 1)
    aggregator.record(ITERATION_ERRORS, 1)
    aggregator.record(JOURNEY_SUCCESS_RATE, False)
