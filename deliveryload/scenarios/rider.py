"""
Rider steps: assignments, delivery status updates and location.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deliveryload import kpis
from deliveryload.data import generate_location
from deliveryload.exceptions import TransportFailure
from deliveryload.models import StepOutcome
from deliveryload.scenarios import all_have, listing

if TYPE_CHECKING:
    from deliveryload.http_client import RiderApiClient
    from deliveryload.journey import JourneySession

NO_ASSIGNMENTS = "No assignments to process"

# Status updates between pickup and hand-over, in order.
DELIVERY_FLOW = ("picked_up", "in_transit", "delivered")


def _api(session: JourneySession) -> RiderApiClient:
    return session.api  # type: ignore[return-value]


def view_available_assignments(session: JourneySession) -> StepOutcome:
    """
    List available assignments, falling back to all assignments.

    Ends the journey successfully when the rider has none at all.
    """
    api = _api(session)
    response = api.get_assignments({"status": "available"})
    assignments = listing(response, "assignments")
    api.check("assignments retrieved successfully", response.ok and isinstance(response.get("assignments"), list))
    api.check("assignments response time < 3000ms", response.duration_ms < 3000)
    if not response.ok:
        return StepOutcome.failed(f"View assignments failed (status {response.status})")

    if not assignments:
        everything = api.get_assignments()
        assignments = listing(everything, "assignments") if everything.ok else []
        if not assignments:
            return StepOutcome.finished(NO_ASSIGNMENTS)

    api.check("assignments have required fields", all_have(assignments, "id", "orderId", "status"))
    return StepOutcome.ok(assignments=assignments, selected_assignment=session.rng.choice(assignments))


def assignment_details(session: JourneySession) -> StepOutcome:
    api = _api(session)
    assignment_id = session.data["selected_assignment"]["id"]
    response = api.get_assignment(assignment_id)
    assignment = response.get("assignment")
    api.check("assignment details retrieved", response.ok and isinstance(assignment, dict))
    api.check(
        "assignment has complete details",
        isinstance(assignment, dict)
        and all_have([assignment], "id", "orderId", "status", "pickupLocation", "deliveryLocation"),
    )
    if not response.ok:
        return StepOutcome.failed(f"Get assignment details failed for {assignment_id} (status {response.status})")
    return StepOutcome.ok(assignment_details=assignment)


def _send_location(session: JourneySession) -> bool:
    api = _api(session)
    response = api.update_location(generate_location())
    location = response.get("location")
    api.check("location updated successfully", response.ok and isinstance(location, dict))
    return response.ok


def deliver(session: JourneySession) -> StepOutcome:
    """
    Accept the selected assignment and, if it was available, deliver it.

    The delivery flow is accept, location, picked_up, in_transit,
    location, delivered.  ``delivery_completion_rate`` gets one sample
    per attempted delivery (an assignment that was available when
    picked): success only when ``delivered`` was acknowledged, failure
    on a rejected call or a request that got no response.
    """
    api = _api(session)
    selected = session.data["selected_assignment"]
    attempted = selected.get("status") == "available"
    try:
        return _deliver(session, selected["orderId"], attempted)
    except TransportFailure:
        if attempted:
            kpis.record_order(api.aggregator, "deliver", False)
        raise


def _deliver(session: JourneySession, order_id, attempted: bool) -> StepOutcome:
    api = _api(session)
    response = api.accept_assignment(order_id)
    assignment = response.get("assignment")
    api.check("assignment accepted successfully", response.ok and isinstance(assignment, dict))
    api.check("assignment status is active", isinstance(assignment, dict) and assignment.get("status") == "active")
    if not response.ok:
        if attempted:
            kpis.record_order(api.aggregator, "deliver", False)
        return StepOutcome.failed(f"Assignment acceptance failed for order {order_id} (status {response.status})")
    if not attempted:
        return StepOutcome.ok(delivery_status="accepted")

    _send_location(session)
    for status in DELIVERY_FLOW:
        if status == "delivered":
            _send_location(session)
        update = api.update_order_status(order_id, status)
        order = update.get("order")
        api.check("order status updated successfully", update.ok and isinstance(order, dict))
        api.check("status update response time < 3000ms", update.duration_ms < 3000)
        if not update.ok:
            kpis.record_order(api.aggregator, "deliver", False)
            return StepOutcome.failed(f"Order {order_id} could not move to '{status}' (status {update.status})")

    kpis.record_order(api.aggregator, "deliver", True)
    return StepOutcome.ok(delivery_status="delivered")


def update_location(session: JourneySession) -> StepOutcome:
    if not _send_location(session):
        return StepOutcome.failed("Location update failed")
    return StepOutcome.ok()
