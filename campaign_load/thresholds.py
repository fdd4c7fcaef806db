"""
Threshold Evaluator
===================
Pass/fail conditions over aggregated metrics, written the k6 way:

    Threshold("http_req_duration", "p(95)<1000")
    Threshold("errors", "rate<0.05", abort_on_fail=True)

A threshold whose metric has no samples yet is UNKNOWN. UNKNOWN never fails
a run on its own, but it is reported.
"""

import operator
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigError, NoSamples, UnknownMetric
from .metrics import MetricKind, MetricsAggregator, MetricSummary

OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

# Stats each metric kind can be compared on. "p" stands for p(N).
STATS_BY_KIND: Dict[MetricKind, Tuple[str, ...]] = {
    MetricKind.RATE: ("rate", "count"),
    MetricKind.TREND: ("avg", "min", "max", "med", "count", "p"),
    MetricKind.COUNTER: ("count", "rate"),
}

_EXPRESSION = re.compile(
    r"""^\s*
    (?P<stat>rate|count|avg|min|max|med|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))
    \s*(?P<op><=|>=|==|!=|<|>)\s*
    (?P<bound>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
    \s*$""",
    re.VERBOSE,
)


class ThresholdStatus(Enum):
    PASS = "pass"
    FAIL = "fail"
    UNKNOWN = "unknown"


class Verdict(Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class Expression:
    stat: str
    op: str
    bound: float
    percentile: Optional[float] = None

    @classmethod
    def parse(cls, text: str) -> "Expression":
        match = _EXPRESSION.match(text)
        if not match:
            raise ConfigError(f"invalid threshold expression {text!r}")
        pct = match.group("pct")
        percentile = float(pct) if pct is not None else None
        if percentile is not None and not 0 <= percentile <= 100:
            raise ConfigError(f"percentile out of range in {text!r}")
        stat = "p" if percentile is not None else match.group("stat")
        return cls(stat=stat, op=match.group("op"), bound=float(match.group("bound")), percentile=percentile)

    def observe(self, summary: MetricSummary) -> float:
        """Pull the compared statistic out of a metric summary."""
        if self.stat == "p":
            return summary.percentile(self.percentile)
        return float(getattr(summary, self.stat))

    def holds(self, value: float) -> bool:
        return OPERATORS[self.op](value, self.bound)

    def __str__(self) -> str:
        stat = f"p({self.percentile:g})" if self.stat == "p" else self.stat
        return f"{stat}{self.op}{self.bound:g}"


@dataclass(frozen=True)
class Threshold:
    metric: str
    expression: str
    abort_on_fail: bool = False
    parsed: Expression = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "parsed", Expression.parse(self.expression))

    def check_kind(self, kind: MetricKind) -> Optional[str]:
        """Problem description if the stat does not apply to ``kind``, else None."""
        if self.parsed.stat not in STATS_BY_KIND[kind]:
            return f"threshold {self.metric}:{self.expression} uses '{self.parsed.stat}' on a {kind.value} metric"
        return None

    @classmethod
    def from_spec(cls, spec: str, abort_on_fail: bool = False) -> "Threshold":
        """Parse ``METRIC:EXPR`` as used on the command line."""
        metric, sep, expression = spec.rpartition(":")
        if not sep or not metric.strip():
            raise ConfigError(f"threshold {spec!r} must look like METRIC:EXPRESSION")
        return cls(metric=metric.strip(), expression=expression.strip(), abort_on_fail=abort_on_fail)


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    status: ThresholdStatus
    observed: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            "metric": self.threshold.metric,
            "expression": self.threshold.expression,
            "status": self.status.value,
            "observed": self.observed,
            "abort_on_fail": self.threshold.abort_on_fail,
        }


@dataclass(frozen=True)
class ThresholdResults:
    results: Tuple[ThresholdResult, ...] = ()

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    @property
    def verdict(self) -> Verdict:
        if any(r.status is ThresholdStatus.FAIL for r in self.results):
            return Verdict.FAIL
        return Verdict.PASS

    @property
    def failed(self) -> List[ThresholdResult]:
        return [r for r in self.results if r.status is ThresholdStatus.FAIL]

    @property
    def unknown(self) -> List[ThresholdResult]:
        return [r for r in self.results if r.status is ThresholdStatus.UNKNOWN]

    @property
    def should_abort(self) -> bool:
        return any(r.threshold.abort_on_fail for r in self.failed)

    def to_list(self) -> List[Dict]:
        return [r.to_dict() for r in self.results]


def evaluate_one(threshold: Threshold, aggregator: MetricsAggregator) -> ThresholdResult:
    try:
        summary = aggregator.snapshot(threshold.metric)
    except (NoSamples, UnknownMetric):
        return ThresholdResult(threshold, ThresholdStatus.UNKNOWN)
    if threshold.check_kind(summary.kind):
        return ThresholdResult(threshold, ThresholdStatus.UNKNOWN)
    observed = threshold.parsed.observe(summary)
    status = ThresholdStatus.PASS if threshold.parsed.holds(observed) else ThresholdStatus.FAIL
    return ThresholdResult(threshold, status, observed)


def evaluate(thresholds: Sequence[Threshold], aggregator: MetricsAggregator) -> ThresholdResults:
    return ThresholdResults(tuple(evaluate_one(t, aggregator) for t in thresholds))
