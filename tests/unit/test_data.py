"""
Unit tests for account pools and payload factories.
"""

from __future__ import annotations

import random

import pytest

from deliveryload.data import (
    CUISINES,
    DELIVERY_FEE,
    TAX_RATE,
    Account,
    AccountPool,
    generate_location,
    generate_menu_item,
    generate_order_data,
    generate_search_params,
    load_account_pool,
    think_time,
)
from deliveryload.exceptions import ConfigurationError
from deliveryload.models import ActorKind

pytestmark = pytest.mark.unit


def test_generated_pool_has_accounts_for_every_kind():
    pool = AccountPool.generated(per_kind=4)

    for kind in ActorKind:
        assert pool.size(kind) == 4
        account = pool.pick(kind, random.Random(1))
        assert account.email.startswith(f"{kind.value}.")
        assert account.password


def test_pool_requires_every_kind():
    with pytest.raises(ConfigurationError, match="no rider accounts"):
        AccountPool(
            {
                ActorKind.CUSTOMER: [Account("c@example.com", "pw")],
                ActorKind.VENDOR: [Account("v@example.com", "pw")],
            }
        )


def test_pool_from_yaml(tmp_path):
    # Arrange
    path = tmp_path / "test-data.yml"
    path.write_text(
        "customers:\n"
        "  - {email: customer1@example.com, password: TestPass123!}\n"
        "  - {email: customer2@example.com, password: TestPass123!}\n"
        "vendors:\n"
        "  - {email: vendor1@example.com, password: VendorPass123!}\n"
        "riders:\n"
        "  - {email: rider1@example.com, password: RiderPass123!}\n",
        encoding="utf-8",
    )

    # Act
    pool = load_account_pool(path)

    # Assert
    assert pool.size(ActorKind.CUSTOMER) == 2
    assert pool.pick(ActorKind.VENDOR) == Account("vendor1@example.com", "VendorPass123!")


def test_pool_yaml_missing_list(tmp_path):
    path = tmp_path / "test-data.yml"
    path.write_text("customers: []\nvendors: []\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="'riders' list"):
        AccountPool.from_yaml(path)


def test_pool_yaml_entry_without_password(tmp_path):
    path = tmp_path / "test-data.yml"
    path.write_text(
        "customers: [{email: a@example.com}]\nvendors: []\nriders: []\n",
        encoding="utf-8",
    )

    with pytest.raises(ConfigurationError, match="needs email and password"):
        AccountPool.from_yaml(path)


def test_load_account_pool_without_file_generates():
    assert load_account_pool(None).size(ActorKind.CUSTOMER) == 10


def test_order_totals_add_up():
    order = generate_order_data(vendor_id=5, customer_id=9)

    subtotal = sum(item["price"] * item["quantity"] for item in order["items"])
    assert 1 <= len(order["items"]) <= 3
    assert order["vendorId"] == 5
    assert order["subtotal"] == pytest.approx(subtotal, abs=0.01)
    assert order["tax"] == pytest.approx(subtotal * TAX_RATE, abs=0.01)
    assert order["deliveryFee"] == DELIVERY_FEE
    assert order["total"] == pytest.approx(subtotal * (1 + TAX_RATE) + DELIVERY_FEE, abs=0.02)


def test_menu_item_for_cuisine():
    item = generate_menu_item("Japanese")

    assert item["category"] == "Japanese"
    assert 10 <= item["preparationTime"] <= 30


def test_location_stays_near_the_city_centre():
    for _ in range(50):
        location = generate_location()
        assert 40.66 <= location["latitude"] <= 40.77
        assert -74.06 <= location["longitude"] <= -73.95
        assert 5 <= location["accuracy"] <= 15


def test_search_params_use_known_filters():
    random.seed(5)
    for _ in range(50):
        params = generate_search_params()
        assert set(params) <= {"cuisine", "maxPrice", "minRating", "maxDistance"}
        if "cuisine" in params:
            assert params["cuisine"] in CUISINES


def test_think_time_is_scaled():
    rng = random.Random(9)

    seconds = think_time((2, 4), scale=0.5, rng=rng)

    assert 1.0 <= seconds <= 2.0
    assert think_time((3, 8), scale=0.0) == 0.0


@pytest.mark.parametrize("bounds", [(-1, 2), (5, 2)])
def test_think_time_rejects_bad_ranges(bounds):
    with pytest.raises(ConfigurationError):
        think_time(bounds)
