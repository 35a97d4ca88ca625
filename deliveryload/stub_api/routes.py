"""
Stub food-delivery API endpoints.

Implements the endpoints the journeys call, backed by the in-memory
:class:`~deliveryload.stub_api.store.StubStore` attached to the app.
Mounted under ``/api/v1`` by the application factory.

Endpoints:
    GET   /health                              -- Liveness probe.
    POST  /auth/login                          -- Generic login (customer).
    POST  /auth/<kind>/login                   -- Role login; returns a JWT.
    POST  /auth/refresh                        -- Exchange a valid JWT for a new one.
    GET   /restaurants/get-restaurants         -- Vendor listing with filters.
    GET   /restaurants/details/<id>            -- Vendor and menu.
    GET   /customer/cart/list                  -- Current cart.
    POST  /customer/cart/add                   -- Add a cart item.
    POST  /customer/order/place                -- Place an order.
    GET   /customer/order/list                 -- The customer's orders.
    GET   /customer/order/track                -- Tracking for ``order_id``.
    GET   /orders/<id>/status-history          -- Status history.
    GET   /orders/<id>/track/location          -- Rider location for an order.
    GET   /notifications/delivery              -- Delivery notifications.
    GET   /vendor/orders                       -- Orders, optional ``status``.
    GET   /vendor/orders/<id>                  -- One order.
    POST  /vendor/orders/<id>/accept           -- Accept an order.
    PATCH /vendor/orders/<id>/status           -- Move an order on.
    GET   /rider/assignments                   -- Assignments, optional ``status``.
    GET   /rider/assignments/<id>              -- One assignment.
    POST  /rider/assignments/<order_id>/accept -- Take an order's assignment.
    PATCH /rider/orders/<id>/status            -- Move an order on.
    POST  /rider/location                      -- Report a GPS fix.

Two knobs make the stub useful as a load target: ``STUB_FAILURE_RATE``
answers that share of requests (health excluded) with ``503`` and
``STUB_LATENCY_MS`` delays every request.

Key Concepts Demonstrated:
- Blueprint-based route organisation
- Role-checked bearer tokens via a decorator
- Consistent JSON error responses
"""

from __future__ import annotations

import random
import time
from functools import wraps
from typing import Any, Callable

import jwt as pyjwt
from flask import Blueprint, Response, current_app, g, jsonify, request

from deliveryload.stub_api.store import StubStore
from deliveryload.stub_api.tokens import create_token, decode_token

api_bp = Blueprint("stub_api", __name__)

ROLES = ("customer", "vendor", "rider")


# =====================================================================
# Helper Functions
# =====================================================================


def _json_error(message: str, status_code: int) -> tuple[Response, int]:
    return jsonify({"error": message}), status_code


def _store() -> StubStore:
    return current_app.extensions["stub_store"]


def _extract_bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def _issue_token(user: dict[str, Any]) -> str:
    return create_token(
        user["id"],
        user["email"],
        user["role"],
        current_app.config["STUB_JWT_SECRET"],
        current_app.config["STUB_TOKEN_TTL_SECONDS"],
    )


def require_role(*roles: str) -> Callable:
    """
    Reject requests without a valid bearer token for one of *roles*.

    The decoded claims are available as ``g.claims`` inside the view.
    """

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapped(*args: Any, **kwargs: Any):
            token = _extract_bearer_token()
            if token is None:
                return _json_error("Missing bearer token", 401)
            try:
                claims = decode_token(token, current_app.config["STUB_JWT_SECRET"])
            except pyjwt.InvalidTokenError as exc:
                return _json_error(f"Invalid token: {exc}", 401)
            if roles and claims["role"] not in roles:
                return _json_error(f"Role '{claims['role']}' may not call this endpoint", 403)
            g.claims = claims
            return view(*args, **kwargs)

        return wrapped

    return decorator


def _float_arg(name: str) -> float | None:
    value = request.args.get(name)
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        return None


@api_bp.before_request
def _inject_faults() -> tuple[Response, int] | None:
    latency_ms = current_app.config.get("STUB_LATENCY_MS", 0)
    if latency_ms:
        time.sleep(latency_ms / 1000.0)
    if request.endpoint == "stub_api.health_check":
        return None
    failure_rate = current_app.config.get("STUB_FAILURE_RATE", 0.0)
    if failure_rate and random.random() < failure_rate:
        return _json_error("Injected failure", 503)
    return None


# =====================================================================
# Health and auth
# =====================================================================


@api_bp.route("/health", methods=["GET"])
def health_check() -> tuple[Response, int]:
    return jsonify({"status": "healthy", "service": "deliveryload-stub"}), 200


@api_bp.route("/auth/login", methods=["POST"])
def generic_login() -> tuple[Response, int]:
    return role_login("customer")


@api_bp.route("/auth/<kind>/login", methods=["POST"])
def role_login(kind: str) -> tuple[Response, int]:
    """
    Log in as *kind*.  Any non-blank email and password are accepted.

    Returns:
        200 with ``token`` and ``user``.
        400 for an unknown role, 401 for blank credentials.
    """
    if kind not in ROLES:
        return _json_error(f"Unknown role '{kind}'", 400)
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not email.strip() or not isinstance(password, str) or not password:
        return _json_error("Invalid email or password", 401)

    user = _store().login(kind, email.strip())
    return jsonify({"token": _issue_token(user), "user": user}), 200


@api_bp.route("/auth/refresh", methods=["POST"])
@require_role()
def refresh_token() -> tuple[Response, int]:
    claims = g.claims
    user = {"id": claims["user_id"], "email": claims["email"], "role": claims["role"]}
    return jsonify({"token": _issue_token(user)}), 200


# =====================================================================
# Customer
# =====================================================================


@api_bp.route("/restaurants/get-restaurants", methods=["GET"])
def list_restaurants() -> tuple[Response, int]:
    vendors = _store().list_vendors(
        cuisine=request.args.get("cuisine") or None,
        min_rating=_float_arg("minRating"),
        max_distance=_float_arg("maxDistance"),
    )
    return jsonify({"vendors": vendors, "restaurants": vendors, "totalCount": len(vendors)}), 200


@api_bp.route("/restaurants/details/<int:vendor_id>", methods=["GET"])
@require_role("customer")
def restaurant_details(vendor_id: int) -> tuple[Response, int]:
    vendor = _store().vendor(vendor_id)
    if vendor is None:
        return _json_error("Vendor not found", 404)
    return jsonify({"vendor": vendor, "menu": _store().menu(vendor_id)}), 200


@api_bp.route("/customer/cart/list", methods=["GET"])
@require_role("customer")
def cart_list() -> tuple[Response, int]:
    return jsonify({"cart": _store().cart(g.claims["user_id"])}), 200


@api_bp.route("/customer/cart/add", methods=["POST"])
@require_role("customer")
def cart_add() -> tuple[Response, int]:
    data = request.get_json(silent=True) or {}
    if data.get("menuItemId") in (None, ""):
        return _json_error("'menuItemId' is required", 400)
    return jsonify({"cartItem": _store().add_to_cart(g.claims["user_id"], data)}), 201


@api_bp.route("/customer/order/place", methods=["POST"])
@require_role("customer")
def place_order() -> tuple[Response, int]:
    data = request.get_json(silent=True) or {}
    if data.get("vendorId") is None or not data.get("items"):
        return _json_error("'vendorId' and 'items' are required", 400)
    return jsonify({"order": _store().place_order(g.claims["user_id"], data)}), 201


@api_bp.route("/customer/order/list", methods=["GET"])
@require_role("customer")
def customer_orders() -> tuple[Response, int]:
    orders = _store().list_orders(request.args.get("status") or None, customer_id=g.claims["user_id"])
    return jsonify({"orders": orders, "totalCount": len(orders)}), 200


@api_bp.route("/customer/order/track", methods=["GET"])
@require_role("customer")
def track_order() -> tuple[Response, int]:
    order_id = request.args.get("order_id", type=int)
    if order_id is None:
        return _json_error("'order_id' is required", 400)
    tracking = _store().tracking(order_id)
    if tracking is None:
        return _json_error("Order not found", 404)
    return jsonify({"tracking": tracking}), 200


@api_bp.route("/orders/<int:order_id>/status-history", methods=["GET"])
@require_role()
def order_status_history(order_id: int) -> tuple[Response, int]:
    history = _store().status_history(order_id)
    if history is None:
        return _json_error("Order not found", 404)
    return jsonify({"orderId": order_id, "statusHistory": history}), 200


@api_bp.route("/orders/<int:order_id>/track/location", methods=["GET"])
@require_role()
def order_location(order_id: int) -> tuple[Response, int]:
    location = _store().order_location(order_id)
    if location is None:
        return _json_error("Order not found", 404)
    return jsonify({"orderId": order_id, "location": location}), 200


@api_bp.route("/notifications/delivery", methods=["GET"])
@require_role("customer")
def delivery_notifications() -> tuple[Response, int]:
    return jsonify({"notifications": _store().notifications(g.claims["user_id"])}), 200


# =====================================================================
# Vendor
# =====================================================================


def _status_from_body() -> str | None:
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    return status if isinstance(status, str) and status else None


@api_bp.route("/vendor/orders", methods=["GET"])
@require_role("vendor")
def vendor_orders() -> tuple[Response, int]:
    orders = _store().list_orders(request.args.get("status") or None)
    return jsonify({"orders": orders, "totalCount": len(orders)}), 200


@api_bp.route("/vendor/orders/<int:order_id>", methods=["GET"])
@require_role("vendor")
def vendor_order(order_id: int) -> tuple[Response, int]:
    order = _store().order(order_id)
    if order is None:
        return _json_error("Order not found", 404)
    return jsonify({"order": order}), 200


@api_bp.route("/vendor/orders/<int:order_id>/accept", methods=["POST"])
@require_role("vendor")
def vendor_accept(order_id: int) -> tuple[Response, int]:
    order = _store().update_status(order_id, "accepted")
    if order is None:
        return _json_error("Order not found", 404)
    return jsonify({"order": order}), 200


@api_bp.route("/vendor/orders/<int:order_id>/status", methods=["PATCH"])
@require_role("vendor")
def vendor_update_status(order_id: int) -> tuple[Response, int]:
    return _update_status(order_id)


def _update_status(order_id: int) -> tuple[Response, int]:
    status = _status_from_body()
    if status is None:
        return _json_error("'status' is required", 400)
    try:
        order = _store().update_status(order_id, status)
    except ValueError as exc:
        return _json_error(str(exc), 400)
    if order is None:
        return _json_error("Order not found", 404)
    return jsonify({"order": order}), 200


# =====================================================================
# Rider
# =====================================================================


@api_bp.route("/rider/assignments", methods=["GET"])
@require_role("rider")
def rider_assignments() -> tuple[Response, int]:
    assignments = _store().list_assignments(request.args.get("status") or None)
    return jsonify({"assignments": assignments, "totalCount": len(assignments)}), 200


@api_bp.route("/rider/assignments/<int:assignment_id>", methods=["GET"])
@require_role("rider")
def rider_assignment(assignment_id: int) -> tuple[Response, int]:
    assignment = _store().assignment(assignment_id)
    if assignment is None:
        return _json_error("Assignment not found", 404)
    return jsonify({"assignment": assignment}), 200


@api_bp.route("/rider/assignments/<int:order_id>/accept", methods=["POST"])
@require_role("rider")
def rider_accept(order_id: int) -> tuple[Response, int]:
    assignment = _store().accept_assignment(order_id, g.claims["user_id"])
    if assignment is None:
        return _json_error("Order not found", 404)
    return jsonify({"assignment": assignment}), 200


@api_bp.route("/rider/orders/<int:order_id>/status", methods=["PATCH"])
@require_role("rider")
def rider_update_status(order_id: int) -> tuple[Response, int]:
    return _update_status(order_id)


@api_bp.route("/rider/location", methods=["POST"])
@require_role("rider")
def rider_location() -> tuple[Response, int]:
    data = request.get_json(silent=True) or {}
    try:
        location = _store().update_location(g.claims["user_id"], data)
    except (KeyError, TypeError, ValueError):
        return _json_error("'latitude' and 'longitude' are required numbers", 400)
    return jsonify({"location": location}), 200
