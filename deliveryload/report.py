"""
End-of-run summary, performance grade and recommendations.

Once the aggregator is finalized, :func:`build_summary` reduces the
:class:`~deliveryload.metrics.MetricsReport` to the handful of numbers
people actually look at after a run (error rate, p95, business success
rates, journey times) and attaches:

- the threshold results (which decide the exit code),
- an A–F grade from a points-deduction table (informational only),
- plain-language recommendations.

The summary is printed as a fixed-width table for CI logs and can be
written to JSON for dashboards.

Key Concepts Demonstrated:
- Grading rules as data (:class:`GradingPolicy`) instead of nested ifs
- "No data" kept distinct from "zero": a run without orders is not
  penalised for a 0 % order success rate
- Human-readable summary table printed for CI logs
"""

from __future__ import annotations

import json
import logging
import operator
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Callable

from deliveryload import kpis
from deliveryload.metrics import MetricsReport
from deliveryload.thresholds import FAIL, NO_DATA, ThresholdResult

logger = logging.getLogger(__name__)

_COMPARISONS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
}


@dataclass(frozen=True)
class RunSummary:
    """
    Headline numbers of one run.

    Percentages are in ``0..100``.  Business rates and journey averages
    are ``None`` when the run produced no samples for them.
    """

    test_type: str
    duration_s: float
    total_requests: int
    total_errors: int
    error_rate_pct: float | None
    avg_response_ms: float | None
    p95_response_ms: float | None
    p99_response_ms: float | None
    requests_per_second: float
    order_success_pct: float | None
    login_success_pct: float | None
    delivery_completion_pct: float | None
    avg_customer_journey_ms: float | None
    avg_vendor_journey_ms: float | None
    avg_rider_journey_ms: float | None
    orders_placed: int
    orders_accepted: int
    deliveries_completed: int
    menu_views: int
    vendor_browses: int
    iterations: int
    iteration_errors: int
    peak_concurrency: int | None = None
    abandoned: int = 0
    threshold_results: tuple[ThresholdResult, ...] = ()
    score: int | None = None
    grade: str | None = None
    recommendations: tuple[str, ...] = ()
    generated_at: str = ""

    @property
    def passed(self) -> bool:
        return all(result.status != FAIL for result in self.threshold_results)

    @property
    def failed_thresholds(self) -> list[str]:
        """Metric names with at least one failed expression, in order, without duplicates."""
        names: list[str] = []
        for result in self.threshold_results:
            if result.status == FAIL and result.metric not in names:
                names.append(result.metric)
        return names

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["passed"] = self.passed
        data["failed_thresholds"] = self.failed_thresholds
        return data


# =====================================================================
# Grading
# =====================================================================


@dataclass(frozen=True)
class Deduction:
    """
    Points removed when a summary field crosses a limit.

    Tiers are checked in order and only the first match applies, so
    ``tiers=((5, 20), (2, 10))`` with ``op=">"`` reads "more than 5
    costs 20, otherwise more than 2 costs 10".

    Attributes:
        field: :class:`RunSummary` attribute to inspect.
        op: ``">"`` or ``"<"``.
        tiers: ``(limit, points)`` pairs, most severe first.
    """

    field: str
    op: str
    tiers: tuple[tuple[float, int], ...]

    def points_for(self, summary: RunSummary) -> int:
        value = getattr(summary, self.field)
        if value is None:
            return 0
        compare = _COMPARISONS[self.op]
        for limit, points in self.tiers:
            if compare(value, limit):
                return points
        return 0


@dataclass(frozen=True)
class GradingPolicy:
    """A deduction table plus the score bands that map to letters."""

    deductions: tuple[Deduction, ...]
    bands: tuple[tuple[int, str], ...] = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))
    floor_grade: str = "F"

    def score(self, summary: RunSummary) -> int:
        return 100 - sum(deduction.points_for(summary) for deduction in self.deductions)

    def grade_for(self, score: int) -> str:
        for minimum, letter in self.bands:
            if score >= minimum:
                return letter
        return self.floor_grade


DEFAULT_GRADING_POLICY = GradingPolicy(
    deductions=(
        Deduction("error_rate_pct", ">", ((5, 20), (2, 10))),
        Deduction("p95_response_ms", ">", ((5000, 20), (3000, 10))),
        Deduction("order_success_pct", "<", ((90, 15),)),
        Deduction("login_success_pct", "<", ((95, 10),)),
        Deduction("delivery_completion_pct", "<", ((85, 10),)),
        Deduction("avg_customer_journey_ms", ">", ((45000, 10),)),
        Deduction("avg_vendor_journey_ms", ">", ((20000, 5),)),
        Deduction("avg_rider_journey_ms", ">", ((25000, 5),)),
    )
)


def assess_grade(summary: RunSummary, policy: GradingPolicy = DEFAULT_GRADING_POLICY) -> tuple[int, str]:
    """
    Score a summary and map the score to a letter.

    Returns:
        ``(score, grade)``, e.g. ``(80, "B")``.
    """
    score = policy.score(summary)
    return score, policy.grade_for(score)


@dataclass(frozen=True)
class _Recommendation:
    field: str
    op: str
    limit: float
    text: str


_RECOMMENDATIONS = (
    _Recommendation(
        "error_rate_pct", ">", 5,
        "High error rate detected. Investigate server errors and API failures.",
    ),
    _Recommendation(
        "p95_response_ms", ">", 5000,
        "Slow response times detected. Consider database optimization and caching.",
    ),
    _Recommendation(
        "order_success_pct", "<", 90,
        "Low order success rate. Review order placement flow and payment processing.",
    ),
    _Recommendation(
        "login_success_pct", "<", 95,
        "Authentication issues detected. Review login flow and token management.",
    ),
    _Recommendation(
        "avg_customer_journey_ms", ">", 45000,
        "Customer journey is too slow. Optimize UI/UX and reduce API calls.",
    ),
)

ALL_CLEAR = "Performance is within acceptable limits. Continue monitoring."


def generate_recommendations(summary: RunSummary) -> list[str]:
    """Return one recommendation per problem area, or :data:`ALL_CLEAR`."""
    recommendations = []
    for rule in _RECOMMENDATIONS:
        value = getattr(summary, rule.field)
        if value is not None and _COMPARISONS[rule.op](value, rule.limit):
            recommendations.append(rule.text)
    return recommendations or [ALL_CLEAR]


# =====================================================================
# Summary construction
# =====================================================================


def _pct(report: MetricsReport, name: str) -> float | None:
    rate = report.value(name, "rate")
    return None if rate is None else rate * 100.0


def _count(report: MetricsReport, name: str) -> int:
    return int(report.value(name, "count", 0.0))


def build_summary(
    report: MetricsReport,
    *,
    test_type: str,
    threshold_results: list[ThresholdResult] | tuple[ThresholdResult, ...] = (),
    scheduler_stats: Any = None,
    policy: GradingPolicy = DEFAULT_GRADING_POLICY,
) -> RunSummary:
    """
    Reduce a finalized report to a graded :class:`RunSummary`.

    Args:
        report: The aggregator's finalized report.
        test_type: Name of the test plan that ran.
        threshold_results: Output of
            :func:`~deliveryload.thresholds.check_thresholds`.
        scheduler_stats: Optional
            :class:`~deliveryload.scheduler.SchedulerStats`; contributes
            peak concurrency and abandoned iterations.
        policy: Grading table to apply.
    """
    total_requests = _count(report, kpis.HTTP_REQS)
    failed_rate = report.value(kpis.HTTP_REQ_FAILED, "rate")
    total_errors = round(failed_rate * total_requests) if failed_rate is not None else 0

    summary = RunSummary(
        test_type=test_type,
        duration_s=report.duration_s,
        total_requests=total_requests,
        total_errors=total_errors,
        error_rate_pct=None if failed_rate is None else failed_rate * 100.0,
        avg_response_ms=report.value(kpis.HTTP_REQ_DURATION, "avg"),
        p95_response_ms=report.value(kpis.HTTP_REQ_DURATION, "p(95)"),
        p99_response_ms=report.value(kpis.HTTP_REQ_DURATION, "p(99)"),
        requests_per_second=report.value(kpis.HTTP_REQS, "rate", 0.0),
        order_success_pct=_pct(report, kpis.ORDER_SUCCESS_RATE),
        login_success_pct=_pct(report, kpis.LOGIN_SUCCESS_RATE),
        delivery_completion_pct=_pct(report, kpis.DELIVERY_COMPLETION_RATE),
        avg_customer_journey_ms=report.value(kpis.CUSTOMER_JOURNEY_TIME, "avg"),
        avg_vendor_journey_ms=report.value(kpis.VENDOR_JOURNEY_TIME, "avg"),
        avg_rider_journey_ms=report.value(kpis.RIDER_JOURNEY_TIME, "avg"),
        orders_placed=_count(report, kpis.ORDERS_PLACED),
        orders_accepted=_count(report, kpis.ORDERS_ACCEPTED),
        deliveries_completed=_count(report, kpis.DELIVERIES_COMPLETED),
        menu_views=_count(report, kpis.MENU_VIEWS),
        vendor_browses=_count(report, kpis.VENDOR_BROWSES),
        iterations=_count(report, kpis.ITERATIONS),
        iteration_errors=_count(report, kpis.ITERATION_ERRORS),
        peak_concurrency=getattr(scheduler_stats, "peak_concurrency", None),
        abandoned=getattr(scheduler_stats, "abandoned", 0),
        threshold_results=tuple(threshold_results),
        generated_at=report.generated_at.isoformat(),
    )

    score, grade = assess_grade(summary, policy)
    return replace(
        summary,
        score=score,
        grade=grade,
        recommendations=tuple(generate_recommendations(summary)),
    )


# =====================================================================
# Output
# =====================================================================


def _fmt(value: float | None, suffix: str = "", digits: int = 2) -> str:
    if value is None:
        return "n/a"
    return f"{value:.{digits}f}{suffix}"


def render_summary(summary: RunSummary) -> str:
    """Return a human-readable results table for CI logs."""
    lines = [
        f"Load Test Summary ({summary.test_type})",
        "-" * 72,
        f"{'Duration (s)':<34}{summary.duration_s:>14.1f}",
        f"{'Total requests':<34}{summary.total_requests:>14d}",
        f"{'Requests / second':<34}{summary.requests_per_second:>14.2f}",
        f"{'Error rate (%)':<34}{_fmt(summary.error_rate_pct):>14}",
        f"{'Avg response (ms)':<34}{_fmt(summary.avg_response_ms):>14}",
        f"{'P95 response (ms)':<34}{_fmt(summary.p95_response_ms):>14}",
        f"{'P99 response (ms)':<34}{_fmt(summary.p99_response_ms):>14}",
        f"{'Order success (%)':<34}{_fmt(summary.order_success_pct):>14}",
        f"{'Login success (%)':<34}{_fmt(summary.login_success_pct):>14}",
        f"{'Delivery completion (%)':<34}{_fmt(summary.delivery_completion_pct):>14}",
        f"{'Avg customer journey (ms)':<34}{_fmt(summary.avg_customer_journey_ms, digits=0):>14}",
        f"{'Avg vendor journey (ms)':<34}{_fmt(summary.avg_vendor_journey_ms, digits=0):>14}",
        f"{'Avg rider journey (ms)':<34}{_fmt(summary.avg_rider_journey_ms, digits=0):>14}",
        f"{'Orders placed / accepted':<34}{f'{summary.orders_placed} / {summary.orders_accepted}':>14}",
        f"{'Deliveries completed':<34}{summary.deliveries_completed:>14d}",
        f"{'Menu views / vendor browses':<34}{f'{summary.menu_views} / {summary.vendor_browses}':>14}",
        f"{'Iterations (errors)':<34}{f'{summary.iterations} ({summary.iteration_errors})':>14}",
    ]
    if summary.peak_concurrency is not None:
        lines.append(f"{'Peak VUs (abandoned)':<34}{f'{summary.peak_concurrency} ({summary.abandoned})':>14}")

    if summary.threshold_results:
        lines += [
            "-" * 72,
            f"{'Metric':<28}{'Threshold':<18}{'Actual':>14}{'Status':>12}",
            "-" * 72,
        ]
        for result in summary.threshold_results:
            status = {FAIL: "FAIL", NO_DATA: "NO DATA"}.get(result.status, "PASS")
            lines.append(
                f"{result.metric:<28}{result.expression:<18}{_fmt(result.actual, digits=3):>14}{status:>12}"
            )

    lines.append("-" * 72)
    lines.append(f"Grade: {summary.grade} (score {summary.score})")
    for recommendation in summary.recommendations:
        lines.append(f"  * {recommendation}")
    if summary.failed_thresholds:
        lines.append(f"Failed thresholds: {', '.join(summary.failed_thresholds)}")
    lines.append(f"Overall: {'PASS' if summary.passed else 'FAIL'}")
    return "\n".join(lines)


def write_summary_json(summary: RunSummary, path: Path, report: MetricsReport | None = None) -> None:
    """
    Write the summary (and optionally every finalized metric) as JSON.

    Parent directories are created as needed.
    """
    payload: dict[str, Any] = {"summary": summary.to_dict()}
    if report is not None:
        payload["metrics"] = report.to_dict()["metrics"]
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, default=str)
    logger.info("Summary written to %s", path)
