"""
In-memory state behind the stub API.

Holds users, vendors with menus, carts, orders and rider assignments.
Every mutation goes through :class:`StubStore` under one lock, so the
stub stays consistent when served by a gevent WSGI server with many
concurrent virtual users.

Order flow mirrors the real service closely enough for the journeys:
customers place ``pending`` orders, vendors accept and prepare them,
``ready_for_pickup`` creates an ``available`` assignment, riders accept
it (``active``) and drive the order to ``delivered`` (assignment
``completed``).
"""

from __future__ import annotations

import itertools
import random
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

from deliveryload.data import (
    CUISINES,
    DELIVERY_FEE,
    STATUS_FLOW,
    TAX_RATE,
    fake,
    generate_address,
    generate_location,
    generate_menu_item,
    generate_order_data,
)

STATUS_DESCRIPTIONS = {
    "pending": "Order received",
    "accepted": "Vendor accepted the order",
    "preparing": "Your food is being prepared",
    "ready_for_pickup": "Waiting for a rider",
    "picked_up": "Rider picked up the order",
    "in_transit": "On the way",
    "delivered": "Delivered",
    "cancelled": "Order cancelled",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StubStore:
    """
    Thread-safe in-memory data for one stub app.

    Args:
        vendors_per_cuisine: Vendors seeded for every cuisine.  The
            first vendor of each cuisine has a 5.0 rating and sits
            within 3 km, so every generated listing filter matches.
        seed_orders: Pending orders and available assignments seeded
            at start so vendors and riders have work immediately.
    """

    def __init__(self, vendors_per_cuisine: int = 3, seed_orders: int = 10) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.users: dict[tuple[str, str], dict[str, Any]] = {}
        self.vendors: dict[int, dict[str, Any]] = {}
        self.menus: dict[int, list[dict[str, Any]]] = {}
        self.carts: dict[int, list[dict[str, Any]]] = {}
        self.orders: dict[int, dict[str, Any]] = {}
        self.assignments: dict[int, dict[str, Any]] = {}
        self.locations: dict[int, dict[str, Any]] = {}

        for cuisine in CUISINES:
            for index in range(vendors_per_cuisine):
                self._add_vendor(cuisine, top_rated=index == 0)

        vendor_ids = list(self.vendors)
        for _ in range(seed_orders):
            self._create_order(generate_order_data(random.choice(vendor_ids)), customer_id=None)
            ready = self._create_order(generate_order_data(random.choice(vendor_ids)), customer_id=None)
            self._set_status(ready, "ready_for_pickup")
            self._ensure_assignment(ready)

    def _next_id(self) -> int:
        return next(self._ids)

    # -----------------------------------------------------------------
    # Seeding
    # -----------------------------------------------------------------

    def _add_vendor(self, cuisine: str, top_rated: bool) -> None:
        vendor_id = self._next_id()
        self.vendors[vendor_id] = {
            "id": vendor_id,
            "name": f"{fake.last_name()}'s {cuisine} Kitchen",
            "cuisine": cuisine,
            "rating": 5.0 if top_rated else round(random.uniform(3.0, 4.9), 1),
            "distance": 2.5 if top_rated else round(random.uniform(0.5, 14.0), 1),
            "address": generate_address(),
            "isOpen": True,
        }
        menu = []
        for _ in range(5):
            item = generate_menu_item(cuisine)
            menu.append({"id": self._next_id(), "vendorId": vendor_id, **item})
        self.menus[vendor_id] = menu

    # -----------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------

    def login(self, role: str, email: str) -> dict[str, Any]:
        with self._lock:
            key = (role, email.lower())
            user = self.users.get(key)
            if user is None:
                user = {"id": self._next_id(), "email": email, "role": role, "name": fake.name()}
                self.users[key] = user
            return dict(user)

    # -----------------------------------------------------------------
    # Vendors and menus
    # -----------------------------------------------------------------

    def list_vendors(
        self,
        cuisine: str | None = None,
        min_rating: float | None = None,
        max_distance: float | None = None,
    ) -> list[dict[str, Any]]:
        vendors = list(self.vendors.values())
        if cuisine:
            vendors = [vendor for vendor in vendors if vendor["cuisine"] == cuisine]
        if min_rating is not None:
            vendors = [vendor for vendor in vendors if vendor["rating"] >= min_rating]
        if max_distance is not None:
            vendors = [vendor for vendor in vendors if vendor["distance"] <= max_distance]
        return [dict(vendor) for vendor in vendors]

    def vendor(self, vendor_id: int) -> dict[str, Any] | None:
        vendor = self.vendors.get(vendor_id)
        return dict(vendor) if vendor else None

    def menu(self, vendor_id: int) -> list[dict[str, Any]]:
        return [dict(item) for item in self.menus.get(vendor_id, [])]

    # -----------------------------------------------------------------
    # Carts
    # -----------------------------------------------------------------

    def add_to_cart(self, user_id: int, item: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            cart_item = {
                "id": self._next_id(),
                "menuItemId": item.get("menuItemId"),
                "name": item.get("name"),
                "price": float(item.get("price") or 0.0),
                "quantity": int(item.get("quantity") or 1),
                "specialInstructions": item.get("specialInstructions"),
            }
            self.carts.setdefault(user_id, []).append(cart_item)
            return dict(cart_item)

    def cart(self, user_id: int) -> dict[str, Any]:
        with self._lock:
            items = [dict(item) for item in self.carts.get(user_id, [])]
        subtotal = round(sum(item["price"] * item["quantity"] for item in items), 2)
        tax = round(subtotal * TAX_RATE, 2)
        fee = DELIVERY_FEE if items else 0.0
        return {
            "items": items,
            "subtotal": subtotal,
            "tax": tax,
            "deliveryFee": fee,
            "total": round(subtotal + tax + fee, 2),
        }

    # -----------------------------------------------------------------
    # Orders
    # -----------------------------------------------------------------

    def _create_order(self, payload: dict[str, Any], customer_id: int | None) -> dict[str, Any]:
        order_id = self._next_id()
        order = {
            "id": order_id,
            "vendorId": payload.get("vendorId"),
            "customerId": customer_id,
            "items": list(payload.get("items") or []),
            "subtotal": payload.get("subtotal", 0.0),
            "tax": payload.get("tax", 0.0),
            "deliveryFee": payload.get("deliveryFee", 0.0),
            "total": payload.get("total", 0.0),
            "deliveryAddress": payload.get("deliveryAddress") or generate_address(),
            "paymentMethod": payload.get("paymentMethod", "credit_card"),
            "specialInstructions": payload.get("specialInstructions"),
            "status": "pending",
            "createdAt": _now(),
            "statusHistory": [],
        }
        self.orders[order_id] = order
        self._record_status(order, "pending")
        return order

    def _record_status(self, order: dict[str, Any], status: str) -> None:
        order["statusHistory"].append(
            {"status": status, "timestamp": _now(), "description": STATUS_DESCRIPTIONS.get(status, status)}
        )

    def _set_status(self, order: dict[str, Any], status: str) -> None:
        order["status"] = status
        self._record_status(order, status)

    def place_order(self, customer_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            order = self._create_order(payload, customer_id)
            self.carts.pop(customer_id, None)
            return self._public_order(order)

    @staticmethod
    def _public_order(order: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in order.items() if key != "statusHistory"}

    def list_orders(self, status: str | None = None, customer_id: int | None = None) -> list[dict[str, Any]]:
        with self._lock:
            orders = list(self.orders.values())
            if status:
                orders = [order for order in orders if order["status"] == status]
            if customer_id is not None:
                orders = [order for order in orders if order["customerId"] == customer_id]
            # Newest first, bounded like a paginated listing.
            return [self._public_order(order) for order in orders[::-1][:50]]

    def order(self, order_id: int) -> dict[str, Any] | None:
        with self._lock:
            order = self.orders.get(order_id)
            return self._public_order(order) if order else None

    def update_status(self, order_id: int, status: str) -> dict[str, Any] | None:
        """
        Move an order to *status*.

        Raises:
            ValueError: If *status* is not a known order status.
        """
        if status not in STATUS_FLOW:
            raise ValueError(f"Unknown status '{status}'")
        with self._lock:
            order = self.orders.get(order_id)
            if order is None:
                return None
            self._set_status(order, status)
            if status == "ready_for_pickup":
                self._ensure_assignment(order)
            elif status == "delivered":
                for assignment in self.assignments.values():
                    if assignment["orderId"] == order_id:
                        assignment["status"] = "completed"
            return self._public_order(order)

    def status_history(self, order_id: int) -> list[dict[str, Any]] | None:
        with self._lock:
            order = self.orders.get(order_id)
            return [dict(entry) for entry in order["statusHistory"]] if order else None

    def tracking(self, order_id: int) -> dict[str, Any] | None:
        with self._lock:
            order = self.orders.get(order_id)
            if order is None:
                return None
            eta = datetime.now(timezone.utc) + timedelta(minutes=random.randint(20, 45))
            return {
                "orderId": order_id,
                "status": order["status"],
                "estimatedDeliveryTime": eta.isoformat(),
                "updatedAt": order["statusHistory"][-1]["timestamp"],
            }

    def order_location(self, order_id: int) -> dict[str, Any] | None:
        with self._lock:
            if order_id not in self.orders:
                return None
            rider_id = next(
                (a["riderId"] for a in self.assignments.values() if a["orderId"] == order_id and a["riderId"]),
                None,
            )
            location = self.locations.get(rider_id) if rider_id is not None else None
            return dict(location) if location else {**generate_location(), "timestamp": _now()}

    # -----------------------------------------------------------------
    # Assignments and riders
    # -----------------------------------------------------------------

    def _ensure_assignment(self, order: dict[str, Any]) -> dict[str, Any]:
        for assignment in self.assignments.values():
            if assignment["orderId"] == order["id"]:
                return assignment
        vendor = self.vendors.get(order["vendorId"]) or {}
        assignment = {
            "id": self._next_id(),
            "orderId": order["id"],
            "status": "available",
            "riderId": None,
            "pickupLocation": vendor.get("address") or generate_address(),
            "deliveryLocation": order["deliveryAddress"],
            "createdAt": _now(),
        }
        self.assignments[assignment["id"]] = assignment
        return assignment

    def list_assignments(self, status: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            assignments = list(self.assignments.values())
            if status:
                assignments = [a for a in assignments if a["status"] == status]
            return [dict(a) for a in assignments[::-1][:50]]

    def assignment(self, assignment_id: int) -> dict[str, Any] | None:
        with self._lock:
            assignment = self.assignments.get(assignment_id)
            return dict(assignment) if assignment else None

    def accept_assignment(self, order_id: int, rider_id: int) -> dict[str, Any] | None:
        with self._lock:
            order = self.orders.get(order_id)
            if order is None:
                return None
            assignment = self._ensure_assignment(order)
            assignment["status"] = "active"
            assignment["riderId"] = rider_id
            return dict(assignment)

    def update_location(self, rider_id: int, location: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            stored = {
                "latitude": float(location["latitude"]),
                "longitude": float(location["longitude"]),
                "accuracy": float(location.get("accuracy") or 0.0),
                "timestamp": _now(),
            }
            self.locations[rider_id] = stored
            return dict(stored)

    def notifications(self, customer_id: int) -> list[dict[str, Any]]:
        with self._lock:
            notes = []
            for order in self.orders.values():
                if order["customerId"] != customer_id:
                    continue
                latest = order["statusHistory"][-1]
                notes.append({"orderId": order["id"], "status": latest["status"], "message": latest["description"]})
            return notes[-20:]
