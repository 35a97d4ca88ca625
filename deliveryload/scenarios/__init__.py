"""
Scenario step functions.

One function per API step of a journey.  Every function takes the
running :class:`~deliveryload.journey.JourneySession`, talks to the API
through ``session.api``, records business metrics and returns a
:class:`~deliveryload.models.StepOutcome` whose ``data`` later steps
can read from ``session.data``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from deliveryload.models import StepOutcome

if TYPE_CHECKING:
    from deliveryload.http_client import ApiResponse
    from deliveryload.journey import JourneySession


def login(session: JourneySession) -> StepOutcome:
    """Log in as the session's actor kind; a rejected login raises ``StepFailure``."""
    user = session.auth.login()
    return StepOutcome.ok(user=user)


def listing(response: ApiResponse, key: str) -> list[Any]:
    """Return ``response.json[key]`` if it is a list, else an empty list."""
    items = response.get(key)
    return items if isinstance(items, list) else []


def all_have(items: list[Any], *fields: str) -> bool:
    """True when every item is a dict with a non-empty value for each field."""
    return all(isinstance(item, dict) and all(item.get(name) not in (None, "") for name in fields) for item in items)
