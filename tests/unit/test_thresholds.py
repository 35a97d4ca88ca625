"""
Unit tests for threshold parsing and evaluation.
"""

from __future__ import annotations

import pytest

from deliveryload import kpis
from deliveryload.exceptions import ConfigurationError
from deliveryload.metrics import RATE, TREND, MetricsAggregator
from deliveryload.thresholds import (
    BASE_THRESHOLDS,
    FAIL,
    NO_DATA,
    PASS,
    ThresholdSpec,
    build_specs,
    check_thresholds,
    evaluate_thresholds,
    failed_thresholds,
    load_thresholds,
    parse_expression,
    thresholds_for,
    validate_specs,
)

pytestmark = pytest.mark.unit


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text, aggregation, op, limit",
    [
        ("p(95)<2000", "p(95)", "<", 2000.0),
        ("rate > 0.95", "rate", ">", 0.95),
        ("p95 < 2s", "p(95)", "<", 2000.0),
        ("avg<=150ms", "avg", "<=", 150.0),
        ("p(99.9) < 5000", "p(99.9)", "<", 5000.0),
        ("count>=1", "count", ">=", 1.0),
    ],
)
def test_parse_expression(text, aggregation, op, limit):
    expression = parse_expression(text)

    assert expression.aggregation == aggregation
    assert expression.op == op
    assert expression.limit == pytest.approx(limit)
    assert expression.source == text.strip()


@pytest.mark.parametrize("text", ["", "p95", "fast<1", "rate ~ 0.5", "p(101)<10", "rate<abc"])
def test_parse_expression_rejects_malformed_text(text):
    with pytest.raises(ConfigurationError):
        parse_expression(text)


def test_parse_expression_rejects_non_string():
    with pytest.raises(ConfigurationError):
        parse_expression(2000)


def test_spec_requires_expressions():
    with pytest.raises(ConfigurationError, match="no expressions"):
        ThresholdSpec.from_strings("http_req_duration", [])


def test_build_specs_accepts_single_string():
    specs = build_specs({"http_req_failed": "rate<0.05"})

    assert specs[0].metric == "http_req_failed"
    assert specs[0].expressions[0].limit == 0.05


# -----------------------------------------------------------------------------
# Per-test-type defaults
# -----------------------------------------------------------------------------


def test_smoke_is_stricter_than_load():
    smoke = thresholds_for("smoke")
    load = thresholds_for("load")

    assert smoke["http_req_duration"] == ["p(95)<1000", "p(99)<2000"]
    assert load["http_req_duration"] == BASE_THRESHOLDS["http_req_duration"]


def test_stress_tolerates_more_errors():
    stress = thresholds_for("stress")

    assert stress["http_req_failed"] == ["rate<0.10"]
    assert stress["order_success_rate"] == ["rate>0.85"]
    # Untouched metrics keep the base expression
    assert stress["login_success_rate"] == BASE_THRESHOLDS["login_success_rate"]


def test_unknown_test_type_raises():
    with pytest.raises(ConfigurationError, match="Unknown test type"):
        thresholds_for("endurance")


def test_every_default_table_validates_against_the_catalog(aggregator):
    for test_type in ("smoke", "load", "stress", "spike", "soak"):
        validate_specs(build_specs(thresholds_for(test_type)), aggregator)


def test_validate_rejects_unknown_metric(aggregator):
    specs = build_specs({"order_sucess_rate": ["rate>0.95"]})

    with pytest.raises(ConfigurationError, match="unknown metric"):
        validate_specs(specs, aggregator)


def test_validate_rejects_percentile_on_rate(aggregator):
    specs = build_specs({kpis.HTTP_REQ_FAILED: ["p(95)<0.1"]})

    with pytest.raises(ConfigurationError, match="not valid"):
        validate_specs(specs, aggregator)


# -----------------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------------


def test_p95_breach_fails_and_rate_passes():
    # Arrange
    aggregator = MetricsAggregator({"http_req_duration": TREND, "order_success_rate": RATE})
    for value in range(100, 2600, 100):
        aggregator.record("http_req_duration", value)
    for _ in range(99):
        aggregator.record("order_success_rate", True)
    aggregator.record("order_success_rate", False)
    specs = build_specs(
        {"http_req_duration": ["p(95)<2000"], "order_success_rate": ["rate>0.95"]}
    )

    # Act
    results = check_thresholds(aggregator.finalize(10.0), specs)

    # Assert
    duration, orders = results
    assert duration.status == FAIL
    assert duration.actual == pytest.approx(2380.0)
    assert orders.status == PASS
    assert orders.actual == pytest.approx(0.99)
    assert failed_thresholds(results) == [duration]


def test_empty_series_is_no_data_not_failure():
    aggregator = MetricsAggregator({"delivery_completion_rate": RATE})
    specs = build_specs({"delivery_completion_rate": ["rate>0.90"]})

    [result] = check_thresholds(aggregator.finalize(1.0), specs)

    assert result.status == NO_DATA
    assert result.actual is None
    assert result.passed


def test_metric_missing_from_report_raises():
    aggregator = MetricsAggregator({"http_reqs": "counter"})
    specs = build_specs({"http_req_duration": ["p(95)<2000"]})

    with pytest.raises(ConfigurationError, match="missing from report"):
        check_thresholds(aggregator.finalize(1.0), specs)


def test_evaluate_thresholds_is_deterministic(aggregator):
    for value in (120, 340, 560, 780):
        aggregator.record(kpis.HTTP_REQ_DURATION, value)
    report = aggregator.finalize(5.0)
    specs = build_specs({kpis.HTTP_REQ_DURATION: ["p(95)<1000", "max<700"]})

    first = evaluate_thresholds(report, specs)
    second = evaluate_thresholds(report, specs)

    assert first == second == {kpis.HTTP_REQ_DURATION: False}


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------


def test_load_thresholds_from_yaml(tmp_path):
    # Arrange
    path = tmp_path / "thresholds.yml"
    path.write_text(
        "thresholds:\n"
        "  http_req_duration: [\"p(95)<1500\", \"p(99)<3000\"]\n"
        "  order_success_rate: \"rate>0.97\"\n",
        encoding="utf-8",
    )

    # Act
    table = load_thresholds(path)

    # Assert
    assert table == {
        "http_req_duration": ["p(95)<1500", "p(99)<3000"],
        "order_success_rate": ["rate>0.97"],
    }


def test_load_thresholds_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Could not read"):
        load_thresholds(tmp_path / "absent.yml")


def test_load_thresholds_rejects_non_mapping(tmp_path):
    path = tmp_path / "thresholds.yml"
    path.write_text("- p(95)<2000\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="must contain a mapping"):
        load_thresholds(path)
