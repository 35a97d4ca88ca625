"""
Customer steps: browse, menu, cart, checkout and tracking.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deliveryload import kpis
from deliveryload.data import generate_order_data, generate_search_params
from deliveryload.exceptions import TransportFailure
from deliveryload.models import StepOutcome
from deliveryload.scenarios import all_have, listing

if TYPE_CHECKING:
    from deliveryload.http_client import CustomerApiClient
    from deliveryload.journey import JourneySession

# Pause between two add-to-cart calls.
BETWEEN_CART_ITEMS = (2.0, 5.0)


def _api(session: JourneySession) -> CustomerApiClient:
    return session.api  # type: ignore[return-value]


def browse_vendors(session: JourneySession) -> StepOutcome:
    api = _api(session)
    response = api.browse_vendors(generate_search_params())
    kpis.record_browsing(api.aggregator, "vendors", response.duration_ms)

    vendors = listing(response, "vendors")
    api.check("vendors returned", response.ok and isinstance(response.get("vendors"), list))
    api.check("vendors have required fields", bool(vendors) and all_have(vendors, "id", "name", "cuisine"))
    api.check("vendor browse response time < 3000ms", response.duration_ms < 3000)

    if not response.ok or not vendors:
        return StepOutcome.failed(f"Vendor browsing failed (status {response.status}, {len(vendors)} vendors)")
    return StepOutcome.ok(vendor=session.rng.choice(vendors), vendor_count=len(vendors))


def view_menu(session: JourneySession) -> StepOutcome:
    api = _api(session)
    vendor = session.data["vendor"]
    response = api.view_menu(vendor["id"])
    kpis.record_browsing(api.aggregator, "menu", response.duration_ms)

    menu = listing(response, "menu")
    api.check("menu loaded successfully", response.ok and bool(menu))
    api.check("menu items have required fields", bool(menu) and all_have(menu, "id", "name", "price"))
    api.check("menu load response time < 2000ms", response.duration_ms < 2000)

    if not response.ok or not menu:
        return StepOutcome.failed(f"Menu viewing failed for vendor {vendor['id']} (status {response.status})")
    return StepOutcome.ok(menu=menu)


def build_cart(session: JourneySession) -> StepOutcome:
    """Add one to three random menu items; succeeds if at least one was added."""
    api = _api(session)
    menu = session.data["menu"]
    cart_items = []

    item_count = session.rng.randint(1, 3)
    for index in range(item_count):
        menu_item = session.rng.choice(menu)
        payload = {
            "menuItemId": menu_item["id"],
            "name": menu_item.get("name"),
            "price": menu_item.get("price"),
            "quantity": session.rng.randint(1, 2),
            "specialInstructions": "Extra cheese please" if session.rng.random() > 0.7 else None,
        }
        response = api.add_to_cart(payload)
        cart_item = response.get("cartItem")
        added = response.ok and isinstance(cart_item, dict)
        api.check("item added to cart", added)
        if added:
            cart_items.append(cart_item)
        if index < item_count - 1:
            session.pause(BETWEEN_CART_ITEMS)

    if not cart_items:
        return StepOutcome.failed("Cart building failed: no item could be added")
    return StepOutcome.ok(cart_items=cart_items)


def review_cart(session: JourneySession) -> StepOutcome:
    api = _api(session)
    response = api.get_cart()
    cart = response.get("cart")
    has_cart = isinstance(cart, dict)
    api.check("cart retrieved successfully", response.ok and has_cart, required=True)
    api.check("cart has items array", isinstance(cart.get("items"), list))
    api.check("cart has totals", "subtotal" in cart and "total" in cart)
    return StepOutcome.ok(cart=cart)


def place_order(session: JourneySession) -> StepOutcome:
    api = _api(session)
    vendor = session.data["vendor"]
    user = session.data.get("user") or {}
    try:
        response = api.place_order(generate_order_data(vendor["id"], user.get("id")))
    except TransportFailure as exc:
        kpis.record_order(api.aggregator, "place", False, exc.duration_ms)
        raise

    order = response.get("order")
    placed = response.ok and isinstance(order, dict) and order.get("id") is not None
    kpis.record_order(api.aggregator, "place", placed, response.duration_ms)
    api.check("order placed successfully", placed)
    api.check("order status is pending", placed and order.get("status") == "pending")
    api.check("order placement response time < 5000ms", response.duration_ms < 5000)

    if not placed:
        return StepOutcome.failed(f"Order placement failed (status {response.status})")
    return StepOutcome.ok(order=order)


def track_order(session: JourneySession) -> StepOutcome:
    api = _api(session)
    order_id = session.data["order"]["id"]
    response = api.track_order(order_id)
    kpis.record_order(api.aggregator, "track", response.ok, response.duration_ms)

    tracking = response.get("tracking")
    api.check("order tracking successful", response.ok and isinstance(tracking, dict))
    api.check(
        "tracking has required fields",
        isinstance(tracking, dict) and all_have([tracking], "orderId", "status", "estimatedDeliveryTime"),
    )
    api.check("order tracking response time < 2000ms", response.duration_ms < 2000)

    if not response.ok:
        return StepOutcome.failed(f"Order tracking failed for order {order_id} (status {response.status})")
    return StepOutcome.ok(tracking=tracking)


def tracking_experience(session: JourneySession) -> StepOutcome:
    """Status history, live location and delivery notifications for the placed order."""
    api = _api(session)
    order_id = session.data["order"]["id"]

    history = api.order_status_history(order_id)
    api.check("status history retrieved", history.ok and isinstance(history.get("statusHistory"), list))

    location = api.order_location(order_id)
    api.check("order location tracking successful", location.ok and isinstance(location.get("location"), dict))

    notifications = api.delivery_notifications()
    api.check("delivery notifications retrieved", notifications.ok and isinstance(notifications.get("notifications"), list))

    failed = [response.name for response in (history, location, notifications) if not response.ok]
    if failed:
        return StepOutcome.failed(f"Tracking experience calls failed: {', '.join(failed)}")
    return StepOutcome.ok(notification_count=len(listing(notifications, "notifications")))
