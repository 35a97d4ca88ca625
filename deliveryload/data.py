"""
Test accounts and randomised request payloads.

Login accounts come from an :class:`AccountPool`, loaded from a YAML
file (``customers``, ``vendors`` and ``riders`` lists of
``email``/``password`` pairs) or generated with Faker when no file is
configured.  Payload factories (addresses, orders, GPS fixes, search
filters, status transitions) randomise every request so the target
cannot serve the whole run from one cached code path.

Key Concepts Demonstrated:
- Faker for realistic names, addresses and e-mail addresses
- Randomised payloads to defeat server-side caching
- One place to change data-generation strategy for every journey
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from faker import Faker

from deliveryload.exceptions import ConfigurationError
from deliveryload.models import ActorKind

fake = Faker()

_POOL_KEYS = {
    ActorKind.CUSTOMER: "customers",
    ActorKind.VENDOR: "vendors",
    ActorKind.RIDER: "riders",
}

_DEFAULT_PASSWORDS = {
    ActorKind.CUSTOMER: "TestPass123!",
    ActorKind.VENDOR: "VendorPass123!",
    ActorKind.RIDER: "RiderPass123!",
}

CUISINES = ("Italian", "American", "Japanese", "Mexican", "Chinese", "Indian", "Thai", "Mediterranean")

MENU_ITEMS: dict[str, list[dict[str, Any]]] = {
    "Italian": [
        {"name": "Margherita Pizza", "description": "Classic tomato and mozzarella", "price": 15.99},
        {"name": "Spaghetti Carbonara", "description": "Pasta with eggs and bacon", "price": 18.99},
        {"name": "Lasagna", "description": "Layered pasta with meat sauce", "price": 22.99},
    ],
    "American": [
        {"name": "Classic Burger", "description": "Beef burger with lettuce and tomato", "price": 12.99},
        {"name": "Chicken Wings", "description": "Crispy wings with hot sauce", "price": 14.99},
        {"name": "BBQ Ribs", "description": "Slow-cooked ribs with BBQ sauce", "price": 24.99},
    ],
    "Japanese": [
        {"name": "California Roll", "description": "Crab, avocado, and cucumber", "price": 8.99},
        {"name": "Teriyaki Chicken", "description": "Grilled chicken with teriyaki sauce", "price": 16.99},
        {"name": "Miso Soup", "description": "Traditional Japanese soup", "price": 4.99},
    ],
    "Mexican": [
        {"name": "Tacos al Pastor", "description": "Pork tacos with pineapple", "price": 11.99},
        {"name": "Enchiladas", "description": "Corn tortillas with cheese and sauce", "price": 13.99},
        {"name": "Guacamole", "description": "Fresh avocado dip", "price": 6.99},
    ],
}

# Allowed next states for an order; terminal states map to an empty list.
STATUS_FLOW: dict[str, list[str]] = {
    "pending": ["accepted", "cancelled"],
    "accepted": ["preparing"],
    "preparing": ["ready_for_pickup"],
    "ready_for_pickup": ["picked_up"],
    "picked_up": ["in_transit"],
    "in_transit": ["delivered"],
    "delivered": [],
    "cancelled": [],
}

# City centre the generated GPS fixes scatter around.
BASE_LATITUDE = 40.7128
BASE_LONGITUDE = -74.0060

TAX_RATE = 0.08
DELIVERY_FEE = 3.99


@dataclass(frozen=True)
class Account:
    email: str
    password: str


class AccountPool:
    """
    Login accounts per actor kind.

    Args:
        accounts: Accounts keyed by actor kind.  Every kind needs at
            least one account.

    Raises:
        ConfigurationError: If a kind has no accounts.
    """

    def __init__(self, accounts: dict[ActorKind, list[Account]]) -> None:
        for kind in ActorKind:
            if not accounts.get(kind):
                raise ConfigurationError(f"Account pool has no {kind.value} accounts")
        self._accounts = {kind: list(items) for kind, items in accounts.items()}

    def pick(self, kind: ActorKind, rng: random.Random | None = None) -> Account:
        return (rng or random).choice(self._accounts[kind])

    def size(self, kind: ActorKind) -> int:
        return len(self._accounts[kind])

    @classmethod
    def generated(cls, per_kind: int = 10) -> AccountPool:
        """Build a pool of Faker identities with the default per-kind passwords."""
        accounts: dict[ActorKind, list[Account]] = {}
        for kind in ActorKind:
            accounts[kind] = [
                Account(f"{kind.value}.{index}.{fake.user_name()}@example.com", _DEFAULT_PASSWORDS[kind])
                for index in range(per_kind)
            ]
        return cls(accounts)

    @classmethod
    def from_yaml(cls, path: Path) -> AccountPool:
        """
        Load accounts from YAML::

            customers:
              - {email: customer1@example.com, password: TestPass123!}
            vendors: [...]
            riders: [...]

        Raises:
            ConfigurationError: If the file is unreadable or a list is
                missing or malformed.
        """
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not read test data file {path}: {exc}") from exc

        accounts: dict[ActorKind, list[Account]] = {}
        for kind, key in _POOL_KEYS.items():
            entries = data.get(key) if isinstance(data, dict) else None
            if not isinstance(entries, list):
                raise ConfigurationError(f"Test data file {path} needs a '{key}' list")
            try:
                accounts[kind] = [Account(str(item["email"]), str(item["password"])) for item in entries]
            except (KeyError, TypeError) as exc:
                raise ConfigurationError(f"Every entry in '{key}' needs email and password") from exc
        return cls(accounts)


def load_account_pool(path: str | Path | None) -> AccountPool:
    """Load the pool from *path*, or generate one when no path is configured."""
    if path is None:
        return AccountPool.generated()
    return AccountPool.from_yaml(Path(path))


# =====================================================================
# Payload factories
# =====================================================================


def generate_address() -> str:
    return fake.address().replace("\n", ", ")


def generate_menu_item(cuisine: str | None = None) -> dict[str, Any]:
    """Pick a menu item, optionally from one cuisine, with random prep time and availability."""
    category = cuisine if cuisine in MENU_ITEMS else random.choice(list(MENU_ITEMS))
    item = random.choice(MENU_ITEMS[category])
    return {
        **item,
        "category": category,
        "preparationTime": random.randint(10, 30),
        "available": random.random() > 0.1,
    }


def generate_order_data(vendor_id: Any, customer_id: Any = None) -> dict[str, Any]:
    """
    Build an order payload with one to three line items.

    Totals include :data:`TAX_RATE` tax and a flat :data:`DELIVERY_FEE`.
    """
    items = []
    for _ in range(random.randint(1, 3)):
        menu_item = generate_menu_item()
        items.append(
            {
                "menuItemId": f"item_{random.randint(0, 999)}",
                "name": menu_item["name"],
                "price": menu_item["price"],
                "quantity": random.randint(1, 3),
                "specialInstructions": "Extra cheese please" if random.random() > 0.7 else None,
            }
        )

    subtotal = sum(item["price"] * item["quantity"] for item in items)
    tax = subtotal * TAX_RATE
    return {
        "vendorId": vendor_id,
        "customerId": customer_id,
        "items": items,
        "subtotal": round(subtotal, 2),
        "tax": round(tax, 2),
        "deliveryFee": DELIVERY_FEE,
        "total": round(subtotal + tax + DELIVERY_FEE, 2),
        "deliveryAddress": generate_address(),
        "specialInstructions": "Please ring doorbell" if random.random() > 0.8 else None,
        "paymentMethod": "credit_card",
    }


def generate_location() -> dict[str, float]:
    """A GPS fix within about 5 km of the city centre, 5-15 m accuracy."""
    return {
        "latitude": BASE_LATITUDE + (random.random() - 0.5) * 0.1,
        "longitude": BASE_LONGITUDE + (random.random() - 0.5) * 0.1,
        "accuracy": random.random() * 10 + 5,
    }


def generate_search_params() -> dict[str, Any]:
    """Random vendor-listing filters; each filter is present half the time."""
    params: dict[str, Any] = {}
    if random.random() > 0.5:
        params["cuisine"] = random.choice(CUISINES[:6])
    if random.random() > 0.5:
        params["maxPrice"] = random.randint(10, 59)
    if random.random() > 0.5:
        params["minRating"] = random.randint(3, 5)
    if random.random() > 0.5:
        params["maxDistance"] = random.randint(5, 14)
    return params


def think_time(bounds: tuple[float, float], scale: float = 1.0, rng: random.Random | None = None) -> float:
    """
    Draw a pause in seconds uniformly from *bounds*, multiplied by *scale*.

    Raises:
        ConfigurationError: If the bounds are negative or reversed.
    """
    low, high = bounds
    if low < 0 or high < low:
        raise ConfigurationError(f"Invalid think-time range: {bounds!r}")
    return (rng or random).uniform(low, high) * scale
