"""
Metrics Aggregator
==================
Thread-safe accumulation of named observations and their summary statistics.

Three metric kinds are supported:

- RATE:    boolean observations, summarised as the fraction that were true
- TREND:   numeric samples (usually milliseconds) with percentile queries
- COUNTER: monotonically added values, summarised as count/sum/per-second rate

Percentiles use the nearest-rank rule: for ``n`` sorted samples the
``p``-th percentile is ``sorted[ceil(p / 100 * n) - 1]`` (rank clamped to at
least 1), so every reported percentile is a value that was actually observed.

TREND samples are kept in full, unsampled, so percentiles stay exact. Memory
grows by one float per sample (a 10,000 VU run at one request every 2s keeps
about 300,000 samples a minute). While new samples keep arriving, each TREND
snapshot copies the whole series under the lock and sorts the copy outside
it. With no new samples the cached sorted tuple is reused and nothing is
copied.
Long runs that cannot afford this should bound the series with a reservoir
sampler, trading exact percentiles for fixed memory.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .errors import MetricKindMismatch, NoSamples, UnknownMetric

logger = logging.getLogger(__name__)


class MetricKind(Enum):
    RATE = "rate"
    TREND = "trend"
    COUNTER = "counter"


# =============================================================================
# SUMMARIES
# =============================================================================

@dataclass(frozen=True)
class RateSummary:
    """Snapshot of a RATE metric."""
    name: str
    count: int
    passes: int

    kind = MetricKind.RATE

    @property
    def fails(self) -> int:
        return self.count - self.passes

    @property
    def rate(self) -> float:
        return self.passes / self.count

    def to_dict(self) -> Dict[str, Union[int, float]]:
        return {
            "count": self.count,
            "passes": self.passes,
            "fails": self.fails,
            "rate": round(self.rate, 6),
        }


@dataclass(frozen=True)
class TrendSummary:
    """Snapshot of a TREND metric. Keeps the sorted samples for percentile queries."""
    name: str
    count: int
    min: float
    max: float
    avg: float
    _sorted: Tuple[float, ...] = field(repr=False, compare=False)

    kind = MetricKind.TREND

    def percentile(self, p: float) -> float:
        return nearest_rank(self._sorted, p)

    @property
    def med(self) -> float:
        return self.percentile(50)

    @property
    def p50(self) -> float:
        return self.percentile(50)

    @property
    def p90(self) -> float:
        return self.percentile(90)

    @property
    def p95(self) -> float:
        return self.percentile(95)

    @property
    def p99(self) -> float:
        return self.percentile(99)

    def to_dict(self) -> Dict[str, Union[int, float]]:
        return {
            "count": self.count,
            "min": round(self.min, 3),
            "max": round(self.max, 3),
            "avg": round(self.avg, 3),
            "p50": round(self.p50, 3),
            "p90": round(self.p90, 3),
            "p95": round(self.p95, 3),
            "p99": round(self.p99, 3),
        }


@dataclass(frozen=True)
class CounterSummary:
    """Snapshot of a COUNTER metric."""
    name: str
    count: int
    total: float
    elapsed_s: float

    kind = MetricKind.COUNTER

    @property
    def rate(self) -> float:
        """Sum of values per elapsed second."""
        return self.total / self.elapsed_s if self.elapsed_s > 0 else 0.0

    def to_dict(self) -> Dict[str, Union[int, float]]:
        return {
            "count": self.count,
            "total": self.total,
            "rate_per_s": round(self.rate, 3),
        }


MetricSummary = Union[RateSummary, TrendSummary, CounterSummary]


def nearest_rank(sorted_samples, p: float) -> float:
    """Nearest-rank percentile over an already sorted, non-empty sequence."""
    if not sorted_samples:
        raise ValueError("percentile of an empty sample set")
    if not 0 <= p <= 100:
        raise ValueError(f"percentile must be within [0, 100], got {p}")
    # Tolerance keeps float noise (e.g. 0.07 * 100) from bumping the rank.
    rank = math.ceil(p * len(sorted_samples) / 100 - 1e-9)
    return sorted_samples[max(rank, 1) - 1]


# =============================================================================
# STORAGE
# =============================================================================

class _Series:
    """Raw observations for one metric. Only touched while holding the aggregator lock."""

    __slots__ = ("kind", "count", "passes", "total", "samples", "min", "max", "sorted_cache")

    def __init__(self, kind: MetricKind):
        self.kind = kind
        self.count = 0
        self.passes = 0
        self.total = 0.0
        self.samples: List[float] = []
        self.min = float("inf")
        self.max = float("-inf")
        self.sorted_cache: Tuple[float, ...] = ()

    def add(self, value) -> None:
        """Raises ValueError/TypeError for a non-numeric value, leaving the series untouched."""
        if self.kind is MetricKind.RATE:
            self.count += 1
            if value:
                self.passes += 1
            return

        value = float(value)
        if math.isnan(value):
            raise ValueError("metric value must be a number, got NaN")
        self.count += 1
        self.total += value
        if self.kind is MetricKind.TREND:
            self.samples.append(value)
            if value < self.min:
                self.min = value
            if value > self.max:
                self.max = value


class MetricsAggregator:
    """
    One instance per run, shared by every virtual user.

    ``record`` is the only mutation path and is serialised by a single lock,
    so concurrent callers (tasks or threads) never lose or double-count an
    observation. ``snapshot`` reads a consistent view of everything recorded
    before it acquired the lock.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._series: Dict[str, _Series] = {}
        self._started_at = clock()
        self._closed_at: Optional[float] = None
        self.dropped = 0

    # -------------------------------------------------------------------------
    # Registration and recording
    # -------------------------------------------------------------------------
    def declare(self, name: str, kind: MetricKind) -> None:
        """Register a metric up front so it reports even with zero samples."""
        with self._lock:
            self._get_or_create(name, kind)

    def record(self, name: str, kind: MetricKind, value) -> None:
        with self._lock:
            if self._closed_at is not None:
                self.dropped += 1
                return
            self._get_or_create(name, kind).add(value)

    def record_declared(self, name: str, value) -> None:
        """Record into a metric whose kind was fixed by ``declare``."""
        with self._lock:
            series = self._series.get(name)
            if series is None:
                raise UnknownMetric(name)
            if self._closed_at is not None:
                self.dropped += 1
                return
            series.add(value)

    def _get_or_create(self, name: str, kind: MetricKind) -> _Series:
        series = self._series.get(name)
        if series is None:
            series = self._series[name] = _Series(kind)
        elif series.kind is not kind:
            raise MetricKindMismatch(name, series.kind, kind)
        return series

    def restart_clock(self) -> None:
        with self._lock:
            self._started_at = self._clock()
            self._closed_at = None

    def close(self) -> None:
        """Freeze the aggregator. Later records are counted in ``dropped`` and ignored."""
        with self._lock:
            if self._closed_at is None:
                self._closed_at = self._clock()
        if self.dropped:
            logger.debug("%d observations arrived after close and were dropped", self.dropped)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------
    @property
    def elapsed(self) -> float:
        end = self._closed_at if self._closed_at is not None else self._clock()
        return max(end - self._started_at, 0.0)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._series)

    def count(self, name: str) -> int:
        with self._lock:
            series = self._series.get(name)
            if series is None:
                raise UnknownMetric(name)
            return series.count

    def snapshot(self, name: str) -> MetricSummary:
        """
        Summary of ``name``.

        Raises UnknownMetric when the metric does not exist and NoSamples
        when it exists but nothing has been recorded.
        """
        with self._lock:
            series = self._series.get(name)
            if series is None:
                raise UnknownMetric(name)
            if series.count == 0:
                raise NoSamples(name)
            if series.kind is MetricKind.RATE:
                return RateSummary(name=name, count=series.count, passes=series.passes)
            if series.kind is MetricKind.COUNTER:
                return CounterSummary(
                    name=name, count=series.count, total=series.total, elapsed_s=self.elapsed,
                )
            count, total, lo, hi = series.count, series.total, series.min, series.max
            cached = series.sorted_cache
            pending = None if len(cached) == count else list(series.samples[:count])

        # Sorting happens outside the lock so recorders are not held up.
        if pending is not None:
            pending.sort()
            cached = tuple(pending)
            with self._lock:
                if len(series.sorted_cache) < len(cached):
                    series.sorted_cache = cached

        return TrendSummary(
            name=name, count=count, min=lo, max=hi, avg=total / count, _sorted=cached,
        )

    def snapshot_all(self) -> Dict[str, Optional[MetricSummary]]:
        """Every metric keyed by name; metrics without samples map to None."""
        result: Dict[str, Optional[MetricSummary]] = {}
        for name in self.names():
            try:
                result[name] = self.snapshot(name)
            except NoSamples:
                result[name] = None
        return result
