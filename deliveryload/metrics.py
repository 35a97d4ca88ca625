"""
Metric series and the run-wide metrics aggregator.

Three series kinds cover everything a load run measures:

- :class:`Rate`: fraction of boolean samples that were true
  (``order_success_rate``, ``http_req_failed``).
- :class:`Trend`: a distribution of numeric samples answering
  ``avg``/``min``/``max``/``med``/``p(N)`` (``http_req_duration``).
- :class:`Counter`: a monotonic total (``orders_placed``).

A :class:`MetricsAggregator` is created once per run and handed to
every virtual user.  ``record`` may be called from any number of
greenlets or threads at once; each series owns a lock, so concurrent
writers never lose a sample.  ``finalize`` freezes everything into a
:class:`MetricsReport` of immutable snapshots.

Percentiles use linear interpolation between closest ranks on the
sorted samples::

    rank = p / 100 * (n - 1)
    value = s[floor(rank)] + (s[ceil(rank)] - s[floor(rank)]) * frac(rank)

Key Concepts Demonstrated:
- Lock-per-series concurrency with no lost updates
- Deterministic percentile definition
- Immutable snapshots separating "collecting" from "reporting"
"""

from __future__ import annotations

import math
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from deliveryload.exceptions import ConfigurationError

RATE = "rate"
TREND = "trend"
COUNTER = "counter"

_PERCENTILE_PATTERN = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")


def percentile(sorted_samples: list[float] | tuple[float, ...], pct: float) -> float | None:
    """
    Return the *pct*-th percentile of already-sorted samples.

    Uses linear interpolation between the two closest ranks.  Returns
    ``None`` for an empty sample set.

    Args:
        sorted_samples: Samples in ascending order.
        pct: Percentile in ``[0, 100]``.

    Raises:
        ValueError: If *pct* is outside ``[0, 100]``.
    """
    if not 0 <= pct <= 100:
        raise ValueError(f"Percentile must be within [0, 100], got {pct}")
    n = len(sorted_samples)
    if n == 0:
        return None
    if n == 1:
        return float(sorted_samples[0])

    rank = pct / 100 * (n - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    low_value = sorted_samples[lower]
    if lower == upper:
        return float(low_value)
    return float(low_value + (sorted_samples[upper] - low_value) * (rank - lower))


# =====================================================================
# Snapshots
# =====================================================================


class SeriesSnapshot(ABC):
    """Frozen, finalized view of one metric series."""

    name: str
    kind: str

    @property
    @abstractmethod
    def has_data(self) -> bool:
        """Whether at least one sample was recorded."""

    @abstractmethod
    def get(self, aggregation: str) -> float | None:
        """
        Return the value of *aggregation* (``rate``, ``avg``, ``p(95)``, ...).

        Returns ``None`` when the series has no samples.

        Raises:
            ConfigurationError: If the aggregation does not apply to
                this series kind.
        """

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Return the snapshot's headline values as a JSON-ready dict."""

    def _unsupported(self, aggregation: str) -> ConfigurationError:
        return ConfigurationError(
            f"Aggregation '{aggregation}' is not available for {self.kind} metric '{self.name}'"
        )


@dataclass(frozen=True)
class RateSnapshot(SeriesSnapshot):
    name: str
    passes: int
    count: int
    kind: str = field(default=RATE, init=False)

    @property
    def has_data(self) -> bool:
        return self.count > 0

    @property
    def rate(self) -> float | None:
        if self.count == 0:
            return None
        return self.passes / self.count

    @property
    def fails(self) -> int:
        return self.count - self.passes

    def get(self, aggregation: str) -> float | None:
        if aggregation == "rate":
            return self.rate
        if aggregation == "count":
            return float(self.count)
        raise self._unsupported(aggregation)

    def to_dict(self) -> dict[str, Any]:
        return {"rate": self.rate, "passes": self.passes, "fails": self.fails}


@dataclass(frozen=True)
class TrendSnapshot(SeriesSnapshot):
    name: str
    samples: tuple[float, ...]
    kind: str = field(default=TREND, init=False)

    @property
    def has_data(self) -> bool:
        return bool(self.samples)

    @property
    def count(self) -> int:
        return len(self.samples)

    @property
    def avg(self) -> float | None:
        if not self.samples:
            return None
        return sum(self.samples) / len(self.samples)

    def percentile(self, pct: float) -> float | None:
        return percentile(self.samples, pct)

    def get(self, aggregation: str) -> float | None:
        if aggregation == "avg":
            return self.avg
        if aggregation == "count":
            return float(self.count)
        if aggregation == "min":
            return self.samples[0] if self.samples else None
        if aggregation == "max":
            return self.samples[-1] if self.samples else None
        if aggregation == "med":
            return self.percentile(50)
        match = _PERCENTILE_PATTERN.match(aggregation)
        if match:
            pct = float(match.group(1))
            if pct > 100:
                raise ConfigurationError(f"Percentile {aggregation} is above 100")
            return self.percentile(pct)
        raise self._unsupported(aggregation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.avg,
            "min": self.get("min"),
            "med": self.get("med"),
            "max": self.get("max"),
            "p(90)": self.percentile(90),
            "p(95)": self.percentile(95),
            "p(99)": self.percentile(99),
        }


@dataclass(frozen=True)
class CounterSnapshot(SeriesSnapshot):
    name: str
    total: float
    duration_s: float
    kind: str = field(default=COUNTER, init=False)

    @property
    def has_data(self) -> bool:
        # A counter that was never incremented still has a meaningful total of 0.
        return True

    @property
    def rate(self) -> float:
        """Increments per second over the run."""
        if self.duration_s <= 0:
            return 0.0
        return self.total / self.duration_s

    def get(self, aggregation: str) -> float | None:
        if aggregation == "count":
            return float(self.total)
        if aggregation == "rate":
            return self.rate
        raise self._unsupported(aggregation)

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.total, "rate": self.rate}


@dataclass(frozen=True)
class MetricsReport:
    """
    Finalized values for every series of a run.

    Attributes:
        series: Snapshot per metric name.
        duration_s: Run duration used for per-second rates.
        generated_at: UTC time at which ``finalize`` ran.
    """

    series: dict[str, SeriesSnapshot]
    duration_s: float
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __contains__(self, name: str) -> bool:
        return name in self.series

    def __getitem__(self, name: str) -> SeriesSnapshot:
        return self.series[name]

    def value(self, name: str, aggregation: str, default: float | None = None) -> float | None:
        """Return ``series[name].get(aggregation)``, or *default* if missing or empty."""
        snapshot = self.series.get(name)
        if snapshot is None:
            return default
        result = snapshot.get(aggregation)
        return default if result is None else result

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration_s": self.duration_s,
            "generated_at": self.generated_at.isoformat(),
            "metrics": {
                name: {"type": snapshot.kind, **snapshot.to_dict()}
                for name, snapshot in sorted(self.series.items())
            },
        }


# =====================================================================
# Live series
# =====================================================================


class MetricSeries(ABC):
    """A named, thread-safe series that accepts samples during a run."""

    kind: str

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    @abstractmethod
    def add(self, value: Any) -> None:
        """Record one sample."""

    @abstractmethod
    def snapshot(self, duration_s: float) -> SeriesSnapshot:
        """Freeze the current samples."""


class Rate(MetricSeries):
    """Fraction of truthy samples."""

    kind = RATE

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._passes = 0
        self._count = 0

    def add(self, value: Any) -> None:
        with self._lock:
            self._count += 1
            if value:
                self._passes += 1

    def snapshot(self, duration_s: float) -> RateSnapshot:
        with self._lock:
            return RateSnapshot(self.name, self._passes, self._count)


class Trend(MetricSeries):
    """Keeps every numeric sample so exact percentiles can be computed at the end."""

    kind = TREND

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._samples: list[float] = []

    def add(self, value: Any) -> None:
        sample = float(value)
        if math.isnan(sample):
            raise ValueError(f"Trend '{self.name}' rejects NaN samples")
        with self._lock:
            self._samples.append(sample)

    def snapshot(self, duration_s: float) -> TrendSnapshot:
        with self._lock:
            samples = tuple(sorted(self._samples))
        return TrendSnapshot(self.name, samples)


class Counter(MetricSeries):
    """Monotonic total."""

    kind = COUNTER

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._total = 0.0

    def add(self, value: Any = 1) -> None:
        amount = float(value)
        if amount < 0:
            raise ValueError(f"Counter '{self.name}' only increases (got {value})")
        with self._lock:
            self._total += amount

    def snapshot(self, duration_s: float) -> CounterSnapshot:
        with self._lock:
            total = self._total
        if total.is_integer():
            total = int(total)
        return CounterSnapshot(self.name, total, duration_s)


_SERIES_TYPES: dict[str, type[MetricSeries]] = {
    RATE: Rate,
    TREND: Trend,
    COUNTER: Counter,
}


class MetricsAggregator:
    """
    Registry of named series for one run.

    Series are declared up front (usually from
    :data:`deliveryload.kpis.METRIC_CATALOG`) so that a typo in a
    metric name fails loudly instead of silently creating a new series.

    Args:
        catalog: Optional mapping of metric name to kind (``"rate"``,
            ``"trend"`` or ``"counter"``) registered immediately.
    """

    def __init__(self, catalog: dict[str, str] | None = None) -> None:
        self._series: dict[str, MetricSeries] = {}
        self._registry_lock = threading.Lock()
        for name, kind in (catalog or {}).items():
            self.register(name, kind)

    def register(self, name: str, kind: str) -> MetricSeries:
        """
        Declare a series, returning the existing one if already declared.

        Raises:
            ConfigurationError: If *kind* is unknown or *name* was
                already declared with a different kind.
        """
        series_type = _SERIES_TYPES.get(kind)
        if series_type is None:
            raise ConfigurationError(f"Unknown metric kind '{kind}' for '{name}'")
        with self._registry_lock:
            existing = self._series.get(name)
            if existing is not None:
                if existing.kind != kind:
                    raise ConfigurationError(
                        f"Metric '{name}' already registered as {existing.kind}, not {kind}"
                    )
                return existing
            series = series_type(name)
            self._series[name] = series
            return series

    def __contains__(self, name: str) -> bool:
        return name in self._series

    @property
    def names(self) -> list[str]:
        return sorted(self._series)

    def kind_of(self, name: str) -> str:
        return self._get(name).kind

    def record(self, name: str, value: Any = 1) -> None:
        """
        Add one sample to series *name*.

        Safe to call concurrently from any number of virtual users.

        Raises:
            ConfigurationError: If *name* was never registered.
        """
        self._get(name).add(value)

    def _get(self, name: str) -> MetricSeries:
        try:
            return self._series[name]
        except KeyError:
            raise ConfigurationError(f"Unknown metric series '{name}'") from None

    def finalize(self, duration_s: float = 0.0) -> MetricsReport:
        """
        Freeze every series into a :class:`MetricsReport`.

        Args:
            duration_s: Run duration, used for counter per-second rates.
        """
        with self._registry_lock:
            series = list(self._series.values())
        return MetricsReport(
            series={item.name: item.snapshot(duration_s) for item in series},
            duration_s=duration_s,
        )
