"""
HTTP client adapter for the food-delivery API.

:class:`ApiClient` wraps a :class:`requests.Session` and turns every
call into an :class:`ApiResponse` plus a set of side effects:

- ``http_reqs`` / ``http_req_duration`` / ``http_req_failed`` samples
  in the run's aggregator,
- the standard response checks (status, response time, body) recorded
  in the ``checks`` rate,
- a ``request`` event for subscribers.

Transport errors (connection refused, timeouts) are recorded with
status ``0`` and raised as
:class:`~deliveryload.exceptions.TransportFailure` so the journey
treats them as a failure of the step that issued the request.

Authenticated calls ask the token store for a valid token first
(possibly refreshing it through :class:`~deliveryload.auth.AuthClient`)
and send it as ``Authorization: Bearer <token>``.

The role clients (:class:`CustomerApiClient`, :class:`VendorApiClient`,
:class:`RiderApiClient`) add one method per endpoint so scenarios never
assemble URLs themselves.

Key Concepts Demonstrated:
- Session reuse for connection pooling
- Safe JSON parsing (non-JSON error pages never raise)
- Request naming by path template so per-endpoint stats stay bounded
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import requests

from deliveryload import kpis
from deliveryload.auth import TokenStore
from deliveryload.events import RunEvents
from deliveryload.exceptions import AssertionFailure, TransportFailure
from deliveryload.metrics import MetricsAggregator
from deliveryload.models import ActorKind

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


def _safe_json(response: requests.Response) -> Any:
    """Return the parsed JSON body, or ``None`` if the body is not JSON."""
    try:
        return response.json()
    except ValueError:
        return None


@dataclass(frozen=True)
class ApiResponse:
    """
    What a scenario sees of one HTTP exchange.

    Attributes:
        method: HTTP verb.
        name: Request name (path template) used for stats.
        status: Status code.
        body: Raw response text.
        json: Parsed JSON body, or ``None``.
        headers: Response headers.
        duration_ms: Wall-clock time of the request.
    """

    method: str
    name: str
    status: int
    body: str
    json: Any
    headers: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def get(self, key: str, default: Any = None) -> Any:
        """Return ``json[key]`` when the body is a JSON object, else *default*."""
        if isinstance(self.json, dict):
            return self.json.get(key, default)
        return default


class ApiClient:
    """
    Instrumented HTTP client for one virtual user.

    Args:
        base_url: API root; request paths are appended to it.
        aggregator: Run-wide metrics aggregator.
        events: Run events; optional.
        session: Session to reuse; a new one is created when omitted.
        tokens: Token store for authenticated calls.
        actor_kind: Kind of actor this client acts as.
        slot: Credential slot of the virtual user.
        timeout: Per-request timeout in seconds.
        slow_request_ms: Limit for the response-time check.
    """

    def __init__(
        self,
        base_url: str,
        *,
        aggregator: MetricsAggregator,
        events: RunEvents | None = None,
        session: requests.Session | None = None,
        tokens: TokenStore | None = None,
        actor_kind: ActorKind | None = None,
        slot: int | None = None,
        timeout: float = 30.0,
        slow_request_ms: float = 5000.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.aggregator = aggregator
        self.events = events
        self.session = session or requests.Session()
        self.tokens = tokens
        self.actor_kind = actor_kind
        self.slot = slot
        self.timeout = timeout
        self.slow_request_ms = slow_request_ms
        # Set by AuthClient; called by the token store to renew credentials.
        self.refresher: Callable[[str | None], str | None] | None = None

    # -----------------------------------------------------------------
    # Core request
    # -----------------------------------------------------------------

    def _auth_headers(self, token: str | None, authenticated: bool) -> dict[str, str]:
        if token is None and authenticated and self.tokens is not None and self.actor_kind is not None:
            if self.refresher is not None:
                self.tokens.ensure_valid(self.actor_kind, self.refresher, self.slot)
            token = self.tokens.get_token(self.actor_kind, self.slot)
            if token is None:
                logger.debug("No %s token available for slot %s", self.actor_kind.value, self.slot)
        if token is None:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        name: str | None = None,
        authenticated: bool = True,
        token: str | None = None,
    ) -> ApiResponse:
        """
        Issue one request and record its metrics.

        Args:
            method: HTTP verb.
            path: Path relative to the base URL.
            json: JSON body, if any.
            params: Query-string parameters.
            name: Stats name; defaults to *path*.  Pass a template such
                as ``/vendor/orders/{id}`` for paths containing ids.
            authenticated: Attach the actor's bearer token.
            token: Use this bearer token instead of the stored one.

        Returns:
            The :class:`ApiResponse`, whatever its status.

        Raises:
            TransportFailure: If no response was received.
        """
        method = method.upper()
        name = name or path
        headers = {**DEFAULT_HEADERS, **self._auth_headers(token, authenticated)}
        url = f"{self.base_url}{path}"

        started = time.perf_counter()
        try:
            raw = self.session.request(
                method,
                url,
                json=json,
                params=params or None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            duration_ms = (time.perf_counter() - started) * 1000.0
            kpis.record_http(self.aggregator, duration_ms, False)
            self._fire_request(method, name, 0, duration_ms, False, exc)
            logger.debug("%s %s transport failure: %s", method, name, exc)
            raise TransportFailure(
                f"{method} {name} failed: {exc}", method=method, endpoint=name, duration_ms=duration_ms
            ) from exc
        duration_ms = (time.perf_counter() - started) * 1000.0

        response = ApiResponse(
            method=method,
            name=name,
            status=raw.status_code,
            body=raw.text,
            json=_safe_json(raw),
            headers=dict(raw.headers),
            duration_ms=duration_ms,
        )
        kpis.record_http(self.aggregator, duration_ms, response.ok)
        self._fire_request(method, name, response.status, duration_ms, response.ok, None)

        self.check(f"{method} {name} status check", response.ok)
        self.check(f"{method} {name} response time", duration_ms < self.slow_request_ms)
        self.check(f"{method} {name} has body", bool(response.body))

        if response.status >= 400:
            logger.debug("%s %s failed: %d %s", method, name, response.status, response.body[:200])
        return response

    def _fire_request(self, method, name, status, duration_ms, success, exception) -> None:
        if self.events is None:
            return
        self.events.request.fire(
            method=method,
            name=name,
            status=status,
            duration_ms=duration_ms,
            success=success,
            exception=exception,
            actor_kind=self.actor_kind,
        )

    def check(self, name: str, passed: bool, *, required: bool = False) -> bool:
        """
        Record one named check in the ``checks`` rate and return *passed*.

        Raises:
            AssertionFailure: If *required* is set and the check failed.
        """
        passed = bool(passed)
        self.aggregator.record(kpis.CHECKS, passed)
        if self.events is not None:
            self.events.check.fire(name=name, passed=passed, actor_kind=self.actor_kind)
        if required and not passed:
            raise AssertionFailure(name)
        return passed

    def get(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("DELETE", path, **kwargs)


# =====================================================================
# Role clients
# =====================================================================


class CustomerApiClient(ApiClient):
    """Customer endpoints: restaurants, cart, orders, tracking."""

    def browse_vendors(self, params: dict[str, Any] | None = None) -> ApiResponse:
        return self.get("/restaurants/get-restaurants", params=params)

    def view_menu(self, vendor_id: Any) -> ApiResponse:
        return self.get(f"/restaurants/details/{vendor_id}", name="/restaurants/details/{id}")

    def get_cart(self) -> ApiResponse:
        return self.get("/customer/cart/list")

    def add_to_cart(self, item: dict[str, Any]) -> ApiResponse:
        return self.post("/customer/cart/add", json=item)

    def place_order(self, order: dict[str, Any]) -> ApiResponse:
        return self.post("/customer/order/place", json=order)

    def get_orders(self, params: dict[str, Any] | None = None) -> ApiResponse:
        return self.get("/customer/order/list", params=params)

    def track_order(self, order_id: Any) -> ApiResponse:
        return self.get("/customer/order/track", params={"order_id": order_id})

    def order_status_history(self, order_id: Any) -> ApiResponse:
        return self.get(f"/orders/{order_id}/status-history", name="/orders/{id}/status-history")

    def order_location(self, order_id: Any) -> ApiResponse:
        return self.get(f"/orders/{order_id}/track/location", name="/orders/{id}/track/location")

    def delivery_notifications(self) -> ApiResponse:
        return self.get("/notifications/delivery")


class VendorApiClient(ApiClient):
    """Vendor endpoints: incoming orders and their status."""

    def get_orders(self, params: dict[str, Any] | None = None) -> ApiResponse:
        return self.get("/vendor/orders", params=params)

    def get_order(self, order_id: Any) -> ApiResponse:
        return self.get(f"/vendor/orders/{order_id}", name="/vendor/orders/{id}")

    def accept_order(self, order_id: Any) -> ApiResponse:
        return self.post(f"/vendor/orders/{order_id}/accept", name="/vendor/orders/{id}/accept")

    def update_order_status(self, order_id: Any, status: str) -> ApiResponse:
        return self.patch(
            f"/vendor/orders/{order_id}/status",
            json={"status": status},
            name="/vendor/orders/{id}/status",
        )


class RiderApiClient(ApiClient):
    """Rider endpoints: assignments, status updates, location."""

    def get_assignments(self, params: dict[str, Any] | None = None) -> ApiResponse:
        return self.get("/rider/assignments", params=params)

    def get_assignment(self, assignment_id: Any) -> ApiResponse:
        return self.get(f"/rider/assignments/{assignment_id}", name="/rider/assignments/{id}")

    def accept_assignment(self, order_id: Any) -> ApiResponse:
        return self.post(f"/rider/assignments/{order_id}/accept", name="/rider/assignments/{id}/accept")

    def update_order_status(self, order_id: Any, status: str) -> ApiResponse:
        return self.patch(
            f"/rider/orders/{order_id}/status",
            json={"status": status},
            name="/rider/orders/{id}/status",
        )

    def update_location(self, location: dict[str, float]) -> ApiResponse:
        return self.post("/rider/location", json=location)


API_CLIENTS: dict[ActorKind, type[ApiClient]] = {
    ActorKind.CUSTOMER: CustomerApiClient,
    ActorKind.VENDOR: VendorApiClient,
    ActorKind.RIDER: RiderApiClient,
}
