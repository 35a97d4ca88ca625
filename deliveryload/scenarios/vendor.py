"""
Vendor steps: incoming orders and order processing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deliveryload import kpis
from deliveryload.models import StepOutcome
from deliveryload.scenarios import all_have, listing

if TYPE_CHECKING:
    from deliveryload.http_client import VendorApiClient
    from deliveryload.journey import JourneySession

NO_ORDERS = "No orders to process"

# Status sequence a pending order is driven through.
PROCESSING_FLOW = ("preparing", "ready_for_pickup")


def _api(session: JourneySession) -> VendorApiClient:
    return session.api  # type: ignore[return-value]


def view_pending_orders(session: JourneySession) -> StepOutcome:
    """
    List pending orders, falling back to all orders.

    Ends the journey successfully when the vendor has no orders at all.
    """
    api = _api(session)
    response = api.get_orders({"status": "pending"})
    orders = listing(response, "orders")
    api.check("orders retrieved successfully", response.ok and isinstance(response.get("orders"), list))
    api.check(
        "all orders match status",
        all_have(orders, "status") and all(order["status"] == "pending" for order in orders),
    )
    api.check("orders response time < 3000ms", response.duration_ms < 3000)
    if not response.ok:
        return StepOutcome.failed(f"View pending orders failed (status {response.status})")

    if not orders:
        everything = api.get_orders()
        orders = listing(everything, "orders") if everything.ok else []
        if not orders:
            return StepOutcome.finished(NO_ORDERS)

    api.check("orders have required fields", all_have(orders, "id", "status"))
    return StepOutcome.ok(orders=orders, selected_order=session.rng.choice(orders))


def order_details(session: JourneySession) -> StepOutcome:
    api = _api(session)
    order_id = session.data["selected_order"]["id"]
    response = api.get_order(order_id)
    order = response.get("order")
    api.check("order details retrieved", response.ok and isinstance(order, dict))
    api.check(
        "order has complete details",
        isinstance(order, dict) and all_have([order], "id", "status", "items", "deliveryAddress"),
    )
    if not response.ok:
        return StepOutcome.failed(f"Get order details failed for order {order_id} (status {response.status})")
    return StepOutcome.ok(order_details=order)


def _accept(session: JourneySession, order_id) -> bool:
    api = _api(session)
    response = api.accept_order(order_id)
    order = response.get("order")
    kpis.record_order(api.aggregator, "accept", response.ok)
    api.check("order accepted successfully", response.ok and isinstance(order, dict))
    api.check("order status is accepted", isinstance(order, dict) and order.get("status") == "accepted")
    api.check("accept order response time < 3000ms", response.duration_ms < 3000)
    return response.ok


def process_order(session: JourneySession) -> StepOutcome:
    """Drive a pending order to ``ready_for_pickup``; other orders are only accepted."""
    api = _api(session)
    selected = session.data["selected_order"]
    order_id = selected["id"]

    if not _accept(session, order_id):
        return StepOutcome.failed(f"Order acceptance failed for order {order_id}")
    if selected.get("status") != "pending":
        return StepOutcome.ok(processed_status="accepted")

    for status in PROCESSING_FLOW:
        response = api.update_order_status(order_id, status)
        order = response.get("order")
        api.check("order status updated", response.ok and isinstance(order, dict))
        api.check("status matches request", isinstance(order, dict) and order.get("status") == status)
        if not response.ok:
            return StepOutcome.failed(f"Order {order_id} could not move to '{status}' (status {response.status})")
    return StepOutcome.ok(processed_status=PROCESSING_FLOW[-1])


def view_updated_orders(session: JourneySession) -> StepOutcome:
    api = _api(session)
    response = api.get_orders()
    api.check("orders retrieved successfully", response.ok)
    if not response.ok:
        return StepOutcome.failed(f"View updated orders failed (status {response.status})")
    return StepOutcome.ok(total_orders=response.get("totalCount", len(listing(response, "orders"))))
