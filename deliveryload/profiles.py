"""
Ramp profiles, actor mixes and per-test-type plans.

A :class:`RampProfile` is an ordered list of :class:`Stage` objects.
The concurrency target ``C(t)`` is piecewise constant: during stage
``i`` (between its cumulative start and end) the scheduler aims for
that stage's ``target``.  Targets snap at stage boundaries; there is no
interpolation inside a stage.  Zero-length stages are accepted and
skipped.

Durations accept plain seconds or compact strings::

    parse_duration("30s")    -> 30.0
    parse_duration("2m")     -> 120.0
    parse_duration("1m30s")  -> 90.0
    parse_duration("2h")     -> 7200.0

Each test type (``smoke``, ``load``, ``stress``, ``spike``, ``soak``)
maps to a :class:`TestPlan` bundling its profile, its threshold table,
its actor mix and the journey-duration and health-check limits used by
the runner.

Key Concepts Demonstrated:
- Immutable value objects validated on construction
- Deterministic time-to-stage lookup with cumulative boundaries
- YAML-driven profile overrides
"""

from __future__ import annotations

import bisect
import random
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from deliveryload.exceptions import ConfigurationError
from deliveryload.models import ActorKind
from deliveryload.thresholds import thresholds_for

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | int | float) -> float:
    """
    Convert a duration to seconds.

    Args:
        value: Seconds as a number, or a string built from
            ``<number><unit>`` parts with units ``h``, ``m``, ``s`` or
            ``ms`` (``"1m30s"``).  A bare numeric string is seconds.

    Raises:
        ConfigurationError: If the value is negative or malformed.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(number + unit for number, unit in parts) != text:
                raise ConfigurationError(f"Invalid duration: '{value}'") from None
            seconds = sum(float(number) * _UNIT_SECONDS[unit] for number, unit in parts)
    if seconds < 0:
        raise ConfigurationError(f"Duration must not be negative: {value!r}")
    return seconds


@dataclass(frozen=True)
class Stage:
    """Hold *target* concurrent VUs for *duration* seconds."""

    duration: float
    target: int

    def __post_init__(self) -> None:
        if isinstance(self.target, bool) or not isinstance(self.target, int):
            raise ConfigurationError(f"Stage target must be an integer, got {self.target!r}")
        if self.target < 0:
            raise ConfigurationError(f"Stage target must not be negative, got {self.target}")
        if self.duration < 0:
            raise ConfigurationError(f"Stage duration must not be negative, got {self.duration}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Stage:
        try:
            return cls(parse_duration(data["duration"]), data["target"])
        except (KeyError, TypeError) as exc:
            raise ConfigurationError(f"Stage needs 'duration' and 'target': {data!r}") from exc


@dataclass(frozen=True)
class RampProfile:
    """
    Ordered, immutable sequence of stages.

    Raises:
        ConfigurationError: If there are no stages or the total
            duration is zero.
    """

    stages: tuple[Stage, ...]
    _ends: tuple[float, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        stages = tuple(self.stages)
        if not stages:
            raise ConfigurationError("Ramp profile needs at least one stage")
        ends = []
        total = 0.0
        for stage in stages:
            total += stage.duration
            ends.append(total)
        if total <= 0:
            raise ConfigurationError("Ramp profile must last longer than zero seconds")
        object.__setattr__(self, "stages", stages)
        object.__setattr__(self, "_ends", tuple(ends))

    @classmethod
    def of(cls, *pairs: tuple[str | float, int]) -> RampProfile:
        """Build from ``(duration, target)`` pairs: ``RampProfile.of(("30s", 5), ("1m", 10))``."""
        return cls(tuple(Stage(parse_duration(duration), target) for duration, target in pairs))

    @property
    def total_duration(self) -> float:
        return self._ends[-1]

    @property
    def peak_target(self) -> int:
        return max(stage.target for stage in self.stages)

    def stage_index_at(self, elapsed: float) -> int | None:
        """
        Return the index of the stage active at *elapsed* seconds.

        Boundaries belong to the *next* stage; zero-length stages are
        never returned.  Returns ``None`` once the profile has ended.
        """
        if elapsed >= self.total_duration:
            return None
        return bisect.bisect_right(self._ends, max(elapsed, 0.0))

    def target_at(self, elapsed: float) -> int:
        """``C(t)``: the concurrency target at *elapsed* seconds (0 after the end)."""
        index = self.stage_index_at(elapsed)
        return 0 if index is None else self.stages[index].target

    def stage_end(self, index: int) -> float:
        return self._ends[index]

    def next_boundary(self, elapsed: float) -> float:
        """Elapsed time of the next stage boundary after *elapsed*."""
        index = bisect.bisect_right(self._ends, elapsed)
        if index >= len(self._ends):
            return self.total_duration
        return self._ends[index]

    def to_list(self) -> list[dict[str, Any]]:
        return [{"duration": stage.duration, "target": stage.target} for stage in self.stages]


def load_profile(path: Path) -> RampProfile:
    """
    Read a ramp profile from YAML.

    Accepts either a bare list of stages or a mapping with a
    ``stages`` key::

        stages:
          - {duration: 30s, target: 5}
          - {duration: 1m, target: 10}

    Raises:
        ConfigurationError: On unreadable files or invalid stages.
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Could not read profile file {path}: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("stages")
    if not isinstance(data, list):
        raise ConfigurationError(f"Profile file {path} must define a list of stages")
    return RampProfile(tuple(Stage.from_dict(item) for item in data))


# =====================================================================
# Actor mix
# =====================================================================


@dataclass(frozen=True)
class ActorMix:
    """
    How each iteration chooses its actor kind.

    ``round_robin`` cycles customer, vendor, rider by credential slot
    (deterministic, used for smoke runs); ``weighted`` draws from
    :attr:`weights` with the caller's random generator.
    """

    weights: dict[ActorKind, int]
    round_robin: bool = False

    def __post_init__(self) -> None:
        if not self.weights or sum(self.weights.values()) <= 0:
            raise ConfigurationError("Actor mix needs at least one positive weight")
        if any(weight < 0 for weight in self.weights.values()):
            raise ConfigurationError("Actor mix weights must not be negative")

    def pick(self, slot: int, rng: random.Random | None = None) -> ActorKind:
        kinds = [kind for kind, weight in self.weights.items() if weight > 0]
        if self.round_robin:
            return kinds[slot % len(kinds)]
        rng = rng or random
        return rng.choices(kinds, weights=[self.weights[kind] for kind in kinds])[0]

    def only(self, kinds: list[ActorKind]) -> ActorMix:
        """Restrict the mix to *kinds*, keeping their relative weights."""
        weights = {kind: weight for kind, weight in self.weights.items() if kind in kinds}
        return ActorMix(weights, self.round_robin)


ROUND_ROBIN_MIX = ActorMix(
    {ActorKind.CUSTOMER: 1, ActorKind.VENDOR: 1, ActorKind.RIDER: 1},
    round_robin=True,
)

# Distribution at the 1500-VU target load.
WEIGHTED_MIX = ActorMix({ActorKind.CUSTOMER: 1000, ActorKind.VENDOR: 200, ActorKind.RIDER: 300})


# =====================================================================
# Test plans
# =====================================================================


@dataclass(frozen=True)
class TestPlan:
    """
    Everything a test type decides about a run.

    Attributes:
        name: Test type name.
        profile: Ramp profile.
        thresholds: ``{metric: [expression, ...]}`` table.
        mix: Actor-kind selection.
        journey_duration_limit_ms: A journey slower than this fails the
            ``journey duration is reasonable`` check.
        health_timeout_ms: Latency limit for the pre-run health check.
    """

    __test__ = False  # not a pytest test class

    name: str
    profile: RampProfile
    thresholds: dict[str, list[str]]
    mix: ActorMix
    journey_duration_limit_ms: float
    health_timeout_ms: float

    def with_overrides(
        self,
        *,
        profile: RampProfile | None = None,
        thresholds: dict[str, list[str]] | None = None,
        mix: ActorMix | None = None,
    ) -> TestPlan:
        """Return a copy with a replaced profile or mix and merged thresholds."""
        return TestPlan(
            name=self.name,
            profile=profile or self.profile,
            thresholds={**self.thresholds, **(thresholds or {})},
            mix=mix or self.mix,
            journey_duration_limit_ms=self.journey_duration_limit_ms,
            health_timeout_ms=self.health_timeout_ms,
        )


TEST_PLANS: dict[str, TestPlan] = {
    "smoke": TestPlan(
        name="smoke",
        profile=RampProfile.of(("30s", 5), ("1m", 10), ("30s", 0)),
        thresholds=thresholds_for("smoke"),
        mix=ROUND_ROBIN_MIX,
        journey_duration_limit_ms=60000,
        health_timeout_ms=1000,
    ),
    "load": TestPlan(
        name="load",
        profile=RampProfile.of(
            ("2m", 150), ("3m", 500), ("3m", 1000), ("2m", 1500),
            ("10m", 1500),
            ("2m", 1000), ("2m", 500), ("1m", 0),
        ),
        thresholds=thresholds_for("load"),
        mix=WEIGHTED_MIX,
        journey_duration_limit_ms=120000,
        health_timeout_ms=2000,
    ),
    "stress": TestPlan(
        name="stress",
        profile=RampProfile.of(
            ("2m", 1000), ("3m", 2000), ("3m", 3000), ("3m", 4000), ("2m", 5000),
            ("5m", 5000),
            ("3m", 2000), ("2m", 1000), ("1m", 0),
        ),
        thresholds=thresholds_for("stress"),
        mix=WEIGHTED_MIX,
        journey_duration_limit_ms=300000,
        health_timeout_ms=5000,
    ),
    "spike": TestPlan(
        name="spike",
        profile=RampProfile.of(
            ("1m", 500),
            ("30s", 2000), ("1m", 2000), ("30s", 500),
            ("1m", 500),
            ("30s", 3000), ("1m", 3000), ("30s", 500),
            ("1m", 500), ("30s", 0),
        ),
        thresholds=thresholds_for("spike"),
        mix=WEIGHTED_MIX,
        journey_duration_limit_ms=180000,
        health_timeout_ms=3000,
    ),
    "soak": TestPlan(
        name="soak",
        profile=RampProfile.of(("2h", 200)),
        thresholds=thresholds_for("soak"),
        mix=WEIGHTED_MIX,
        journey_duration_limit_ms=120000,
        health_timeout_ms=2000,
    ),
}


def get_plan(test_type: str) -> TestPlan:
    """
    Return the default plan for *test_type*.

    Raises:
        ConfigurationError: If the test type is unknown.
    """
    try:
        return TEST_PLANS[test_type]
    except KeyError:
        choices = ", ".join(TEST_PLANS)
        raise ConfigurationError(f"Unknown test type '{test_type}' (expected one of: {choices})") from None
