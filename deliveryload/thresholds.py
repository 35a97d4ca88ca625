"""
Threshold specifications and pass/fail evaluation.

A threshold pairs a metric name with one or more expressions such as
``p(95)<2000`` or ``rate>0.95``.  After a run finishes, every
expression is evaluated once against the finalized
:class:`~deliveryload.metrics.MetricsReport`; any failure makes the run
fail (exit code ``1`` from the CLI).

Expression grammar::

    <aggregation> <operator> <number>[ms|s]

    aggregation := rate | count | avg | min | max | med | p(N) | pN
    operator    := <  <=  >  >=  ==  !=

Durations are in milliseconds; an ``s`` suffix is converted.

Each test type starts from :data:`BASE_THRESHOLDS` and applies its own
overrides (smoke is stricter, stress and spike are more lenient).
YAML files can replace individual metrics on top of that.

Key Concepts Demonstrated:
- Parse once, fail early: bad expressions and unknown metrics raise
  :class:`~deliveryload.exceptions.ConfigurationError` before any
  virtual user starts
- Deterministic evaluation over immutable snapshots
- YAML-driven overrides without code changes
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml

from deliveryload.exceptions import ConfigurationError
from deliveryload.metrics import COUNTER, RATE, TREND, MetricsAggregator, MetricsReport

logger = logging.getLogger(__name__)

PASS = "pass"
FAIL = "fail"
NO_DATA = "no_data"

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_EXPRESSION_PATTERN = re.compile(
    r"""^\s*
    (?P<agg>rate|count|avg|min|max|med|p\(\s*\d+(?:\.\d+)?\s*\)|p\d+(?:\.\d+)?)
    \s*(?P<op><=|>=|==|!=|<|>)\s*
    (?P<limit>-?\d+(?:\.\d+)?)
    \s*(?P<unit>ms|s)?\s*$""",
    re.VERBOSE,
)

_PERCENTILE_AGGREGATION = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")

# Aggregations each series kind can answer.
_AGGREGATIONS_BY_KIND = {
    RATE: {"rate", "count"},
    TREND: {"avg", "min", "max", "med", "count"},
    COUNTER: {"count", "rate"},
}

BASE_THRESHOLDS: dict[str, list[str]] = {
    # HTTP response time and error budget
    "http_req_duration": ["p(95)<2000", "p(99)<5000"],
    "http_req_failed": ["rate<0.05"],
    # Business success rates
    "order_success_rate": ["rate>0.95"],
    "login_success_rate": ["rate>0.98"],
    "delivery_completion_rate": ["rate>0.90"],
    # Journey completion times
    "customer_journey_time": ["p(95)<30000"],
    "vendor_journey_time": ["p(95)<15000"],
    "rider_journey_time": ["p(95)<20000"],
    # Individual API response times
    "auth_response_time": ["p(95)<2000"],
    "vendor_browse_time": ["p(95)<3000"],
    "menu_load_time": ["p(95)<2000"],
    "order_placement_time": ["p(95)<5000"],
    "order_tracking_time": ["p(95)<2000"],
}

TEST_TYPE_OVERRIDES: dict[str, dict[str, list[str]]] = {
    "smoke": {
        "http_req_duration": ["p(95)<1000", "p(99)<2000"],
        "customer_journey_time": ["p(95)<15000"],
        "vendor_journey_time": ["p(95)<10000"],
        "rider_journey_time": ["p(95)<12000"],
    },
    "load": {},
    "stress": {
        "http_req_duration": ["p(95)<5000", "p(99)<10000"],
        # Up to 10 % errors and a lower order success rate are tolerated under stress.
        "http_req_failed": ["rate<0.10"],
        "order_success_rate": ["rate>0.85"],
        "customer_journey_time": ["p(95)<60000"],
        "vendor_journey_time": ["p(95)<30000"],
        "rider_journey_time": ["p(95)<40000"],
    },
    "spike": {
        "http_req_duration": ["p(95)<3000", "p(99)<8000"],
        "http_req_failed": ["rate<0.08"],
        "customer_journey_time": ["p(95)<45000"],
        "vendor_journey_time": ["p(95)<20000"],
        "rider_journey_time": ["p(95)<25000"],
    },
    "soak": {},
}


@dataclass(frozen=True)
class ThresholdExpression:
    """One parsed predicate, e.g. ``p(95) < 2000``."""

    aggregation: str
    op: str
    limit: float
    source: str

    def holds(self, actual: float) -> bool:
        return _OPERATORS[self.op](actual, self.limit)


@dataclass(frozen=True)
class ThresholdSpec:
    """A metric name with the expressions that must all hold."""

    metric: str
    expressions: tuple[ThresholdExpression, ...]

    @classmethod
    def from_strings(cls, metric: str, expressions: list[str] | tuple[str, ...] | str) -> ThresholdSpec:
        if isinstance(expressions, str):
            expressions = [expressions]
        if not expressions:
            raise ConfigurationError(f"Threshold for '{metric}' has no expressions")
        return cls(metric, tuple(parse_expression(text) for text in expressions))


@dataclass(frozen=True)
class ThresholdResult:
    """
    Outcome of one expression.

    Attributes:
        metric: Metric the expression applies to.
        expression: The expression's original text.
        actual: The finalized value, or ``None`` when the series had
            no samples.
        status: ``"pass"``, ``"fail"`` or ``"no_data"``.
    """

    metric: str
    expression: str
    actual: float | None
    status: str

    @property
    def passed(self) -> bool:
        # Series without samples cannot breach a limit; they are reported, not failed.
        return self.status != FAIL


def parse_expression(text: str) -> ThresholdExpression:
    """
    Parse a threshold expression string.

    Args:
        text: Expression such as ``"p(95)<2000"``, ``"rate > 0.95"`` or
            ``"p95 < 2s"``.

    Returns:
        The parsed :class:`ThresholdExpression`.

    Raises:
        ConfigurationError: If the text does not match the grammar or
            names a percentile above 100.
    """
    if not isinstance(text, str):
        raise ConfigurationError(f"Threshold expression must be a string, got {text!r}")

    match = _EXPRESSION_PATTERN.match(text)
    if match is None:
        raise ConfigurationError(f"Unparseable threshold expression: '{text}'")

    aggregation = match.group("agg").replace(" ", "")
    if aggregation.startswith("p") and not aggregation.startswith("p("):
        aggregation = f"p({aggregation[1:]})"

    percentile_match = _PERCENTILE_AGGREGATION.match(aggregation)
    if percentile_match and float(percentile_match.group(1)) > 100:
        raise ConfigurationError(f"Percentile above 100 in threshold expression: '{text}'")

    limit = float(match.group("limit"))
    if match.group("unit") == "s":
        limit *= 1000.0

    return ThresholdExpression(aggregation, match.group("op"), limit, text.strip())


def thresholds_for(test_type: str) -> dict[str, list[str]]:
    """
    Return the default threshold table for *test_type*.

    Raises:
        ConfigurationError: If *test_type* is unknown.
    """
    try:
        overrides = TEST_TYPE_OVERRIDES[test_type]
    except KeyError:
        choices = ", ".join(sorted(TEST_TYPE_OVERRIDES))
        raise ConfigurationError(f"Unknown test type '{test_type}' (expected one of: {choices})") from None
    return {**BASE_THRESHOLDS, **overrides}


def build_specs(table: dict[str, Any]) -> list[ThresholdSpec]:
    """Parse a ``{metric: [expression, ...]}`` table into specs."""
    if not isinstance(table, dict):
        raise ConfigurationError("Thresholds must be a mapping of metric name to expressions")
    return [ThresholdSpec.from_strings(str(metric), expressions) for metric, expressions in table.items()]


def load_thresholds(path: Path) -> dict[str, list[str]]:
    """
    Read a threshold table from a YAML file.

    The file may either be the table itself or hold it under a
    top-level ``thresholds`` key::

        thresholds:
          http_req_duration: ["p(95)<1500"]
          order_success_rate: "rate>0.97"

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a
            mapping.
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Could not read thresholds file {path}: {exc}") from exc

    if isinstance(data, dict) and "thresholds" in data:
        data = data["thresholds"]
    if not isinstance(data, dict):
        raise ConfigurationError(f"Thresholds file {path} must contain a mapping")

    table: dict[str, list[str]] = {}
    for metric, expressions in data.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        if not isinstance(expressions, list):
            raise ConfigurationError(f"Thresholds for '{metric}' must be a string or a list")
        table[str(metric)] = [str(item) for item in expressions]
    return table


def _aggregation_supported(kind: str, aggregation: str) -> bool:
    if kind == TREND and _PERCENTILE_AGGREGATION.match(aggregation):
        return True
    return aggregation in _AGGREGATIONS_BY_KIND.get(kind, set())


def validate_specs(specs: list[ThresholdSpec], aggregator: MetricsAggregator) -> None:
    """
    Check every spec against the series an aggregator will produce.

    Called before scheduling so a typo in a metric name or an
    aggregation that does not fit the series kind aborts the run up
    front instead of after an hour of load.

    Raises:
        ConfigurationError: On the first unknown metric or unsupported
            aggregation.
    """
    for spec in specs:
        if spec.metric not in aggregator:
            raise ConfigurationError(f"Threshold references unknown metric '{spec.metric}'")
        kind = aggregator.kind_of(spec.metric)
        for expression in spec.expressions:
            if not _aggregation_supported(kind, expression.aggregation):
                raise ConfigurationError(
                    f"Threshold '{expression.source}' is not valid for {kind} metric '{spec.metric}'"
                )


def check_thresholds(report: MetricsReport, specs: list[ThresholdSpec]) -> list[ThresholdResult]:
    """
    Evaluate every expression of every spec against *report*.

    Returns:
        One :class:`ThresholdResult` per expression, in spec order.

    Raises:
        ConfigurationError: If a spec names a metric missing from the
            report or an aggregation the series cannot answer.
    """
    results: list[ThresholdResult] = []
    for spec in specs:
        if spec.metric not in report:
            raise ConfigurationError(f"Threshold references metric '{spec.metric}' missing from report")
        snapshot = report[spec.metric]
        for expression in spec.expressions:
            actual = snapshot.get(expression.aggregation)
            if actual is None:
                logger.warning("Threshold %s '%s' has no data", spec.metric, expression.source)
                status = NO_DATA
            else:
                status = PASS if expression.holds(actual) else FAIL
            results.append(ThresholdResult(spec.metric, expression.source, actual, status))
    return results


def evaluate_thresholds(report: MetricsReport, specs: list[ThresholdSpec]) -> dict[str, bool]:
    """
    Return ``{metric: passed}`` for every spec.

    A metric passes when none of its expressions failed.  Evaluation
    is a pure function of *report* and *specs*.
    """
    outcome: dict[str, bool] = {spec.metric: True for spec in specs}
    for result in check_thresholds(report, specs):
        if not result.passed:
            outcome[result.metric] = False
    return outcome


def failed_thresholds(results: list[ThresholdResult]) -> list[ThresholdResult]:
    return [result for result in results if not result.passed]
