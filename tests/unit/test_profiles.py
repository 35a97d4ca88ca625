"""
Unit tests for ramp profiles, actor mixes and test plans.
"""

from __future__ import annotations

import random

import pytest

from deliveryload.exceptions import ConfigurationError
from deliveryload.models import ActorKind
from deliveryload.profiles import (
    ROUND_ROBIN_MIX,
    TEST_PLANS,
    WEIGHTED_MIX,
    ActorMix,
    RampProfile,
    Stage,
    get_plan,
    load_profile,
    parse_duration,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "value, seconds",
    [
        ("30s", 30.0),
        ("2m", 120.0),
        ("1m30s", 90.0),
        ("2h", 7200.0),
        ("500ms", 0.5),
        ("45", 45.0),
        (12, 12.0),
        (0.25, 0.25),
    ],
)
def test_parse_duration(value, seconds):
    assert parse_duration(value) == pytest.approx(seconds)


@pytest.mark.parametrize("value", ["", "ten seconds", "5x", "1m 30s", -1, True])
def test_parse_duration_rejects_invalid_values(value):
    with pytest.raises(ConfigurationError):
        parse_duration(value)


def test_target_snaps_at_stage_boundaries():
    # Arrange
    profile = RampProfile.of(("30s", 5), ("1m", 10), ("30s", 0))

    # Act / Assert
    assert profile.total_duration == 120.0
    assert profile.peak_target == 10
    assert profile.target_at(0) == 5
    assert profile.target_at(29.9) == 5
    assert profile.target_at(30) == 10
    assert profile.target_at(89.9) == 10
    assert profile.target_at(90) == 0
    assert profile.target_at(120) == 0
    assert profile.stage_index_at(120) is None


def test_zero_length_stage_is_skipped():
    profile = RampProfile((Stage(10, 3), Stage(0, 50), Stage(10, 6)))

    assert profile.stage_index_at(10) == 2
    assert profile.target_at(10) == 6
    assert 50 not in {profile.target_at(t / 10) for t in range(200)}


def test_next_boundary():
    profile = RampProfile.of((10, 1), (20, 2))

    assert profile.next_boundary(0) == 10
    assert profile.next_boundary(10) == 30
    assert profile.next_boundary(45) == 30


@pytest.mark.parametrize(
    "stages",
    [
        (),
        (Stage(0, 5),),
    ],
)
def test_profile_must_have_duration(stages):
    with pytest.raises(ConfigurationError):
        RampProfile(stages)


@pytest.mark.parametrize("duration, target", [(10, -1), (-5, 1), (10, 2.5), (10, True)])
def test_stage_validation(duration, target):
    with pytest.raises(ConfigurationError):
        Stage(duration, target)


def test_load_profile_from_yaml(tmp_path):
    # Arrange
    path = tmp_path / "profile.yml"
    path.write_text(
        "stages:\n"
        "  - {duration: 30s, target: 5}\n"
        "  - {duration: 1m, target: 10}\n"
        "  - {duration: 10, target: 0}\n",
        encoding="utf-8",
    )

    # Act
    profile = load_profile(path)

    # Assert
    assert profile.to_list() == [
        {"duration": 30.0, "target": 5},
        {"duration": 60.0, "target": 10},
        {"duration": 10.0, "target": 0},
    ]


def test_load_profile_rejects_stage_without_target(tmp_path):
    path = tmp_path / "profile.yml"
    path.write_text("- {duration: 30s}\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="needs 'duration' and 'target'"):
        load_profile(path)


# -----------------------------------------------------------------------------
# Actor mix
# -----------------------------------------------------------------------------


def test_round_robin_cycles_by_slot():
    picks = [ROUND_ROBIN_MIX.pick(slot) for slot in range(6)]

    assert picks == [
        ActorKind.CUSTOMER, ActorKind.VENDOR, ActorKind.RIDER,
        ActorKind.CUSTOMER, ActorKind.VENDOR, ActorKind.RIDER,
    ]


def test_weighted_mix_follows_weights():
    rng = random.Random(42)

    picks = [WEIGHTED_MIX.pick(0, rng) for _ in range(3000)]

    customers = picks.count(ActorKind.CUSTOMER) / len(picks)
    assert 0.6 < customers < 0.73
    assert picks.count(ActorKind.VENDOR) < picks.count(ActorKind.RIDER)


def test_only_restricts_the_mix():
    mix = WEIGHTED_MIX.only([ActorKind.RIDER])

    assert {mix.pick(0, random.Random(i)) for i in range(20)} == {ActorKind.RIDER}


def test_empty_mix_is_rejected():
    with pytest.raises(ConfigurationError):
        ActorMix({})
    with pytest.raises(ConfigurationError):
        WEIGHTED_MIX.only([])


# -----------------------------------------------------------------------------
# Plans
# -----------------------------------------------------------------------------


def test_every_test_type_has_a_plan():
    assert set(TEST_PLANS) == {"smoke", "load", "stress", "spike", "soak"}


def test_load_plan_peaks_at_1500():
    plan = get_plan("load")

    assert plan.profile.peak_target == 1500
    assert plan.profile.total_duration == 25 * 60
    assert plan.mix is WEIGHTED_MIX


def test_smoke_plan_is_round_robin():
    plan = get_plan("smoke")

    assert plan.mix.round_robin
    assert plan.profile.total_duration == 120.0


def test_unknown_plan():
    with pytest.raises(ConfigurationError, match="Unknown test type"):
        get_plan("chaos")


def test_with_overrides_merges_thresholds():
    plan = get_plan("load")
    profile = RampProfile.of((1, 2))

    custom = plan.with_overrides(profile=profile, thresholds={"http_req_duration": ["p(95)<500"]})

    assert custom.profile is profile
    assert custom.thresholds["http_req_duration"] == ["p(95)<500"]
    assert custom.thresholds["order_success_rate"] == plan.thresholds["order_success_rate"]
    assert plan.thresholds["http_req_duration"] == ["p(95)<2000", "p(99)<5000"]
