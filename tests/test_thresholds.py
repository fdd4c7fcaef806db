"""Tests for threshold parsing and evaluation"""
import pytest

from campaign_load.errors import ConfigError
from campaign_load.metrics import MetricKind, MetricsAggregator
from campaign_load.thresholds import (
    Expression,
    Threshold,
    ThresholdStatus,
    Verdict,
    evaluate,
)


def rate_metric(name, failures, total):
    agg = MetricsAggregator()
    for i in range(total):
        agg.record(name, MetricKind.RATE, 1 if i < failures else 0)
    return agg


@pytest.mark.parametrize("text,stat,op,bound,pct", [
    ("rate<0.05", "rate", "<", 0.05, None),
    ("p(95)<1000", "p", "<", 1000, 95),
    ("p(99.9) <= 2500", "p", "<=", 2500, 99.9),
    ("avg>=10", "avg", ">=", 10, None),
    ("count>0", "count", ">", 0, None),
    ("med != 3", "med", "!=", 3, None),
    ("max==1e3", "max", "==", 1000, None),
])
def test_expression_parse(text, stat, op, bound, pct):
    expr = Expression.parse(text)

    assert expr.stat == stat
    assert expr.op == op
    assert expr.bound == bound
    assert expr.percentile == pct


@pytest.mark.parametrize("text", ["", "rate", "rate<", "p95<1", "p(101)<1", "rate=<1", "mean<3", "rate<abc"])
def test_invalid_expression_is_config_error(text):
    with pytest.raises(ConfigError):
        Threshold("errors", text)


def test_rate_threshold_passes_with_no_failures():
    agg = rate_metric("errors", failures=0, total=100)

    results = evaluate([Threshold("errors", "rate<0.05")], agg)

    assert results.results[0].status is ThresholdStatus.PASS
    assert results.results[0].observed == 0.0
    assert results.verdict is Verdict.PASS


def test_rate_threshold_fails_with_six_failures_in_a_hundred():
    agg = rate_metric("errors", failures=6, total=100)

    results = evaluate([Threshold("errors", "rate<0.05")], agg)

    assert results.results[0].status is ThresholdStatus.FAIL
    assert results.results[0].observed == pytest.approx(0.06)
    assert results.verdict is Verdict.FAIL


def test_threshold_on_empty_metric_is_unknown_and_does_not_fail():
    agg = MetricsAggregator()
    agg.declare("errors", MetricKind.RATE)

    results = evaluate([Threshold("errors", "rate<0.05"), Threshold("missing", "count>0")], agg)

    assert [r.status for r in results] == [ThresholdStatus.UNKNOWN, ThresholdStatus.UNKNOWN]
    assert results.verdict is Verdict.PASS
    assert len(results.unknown) == 2


def test_percentile_threshold_on_trend():
    agg = MetricsAggregator()
    for value in range(1, 101):
        agg.record("http_req_duration", MetricKind.TREND, value * 10)

    results = evaluate([
        Threshold("http_req_duration", "p(95)<1000"),
        Threshold("http_req_duration", "p(95)<900"),
        Threshold("http_req_duration", "avg<600"),
    ], agg)

    assert [r.status for r in results] == [ThresholdStatus.PASS, ThresholdStatus.FAIL, ThresholdStatus.PASS]
    assert results.results[0].observed == 950


def test_one_fail_fails_the_verdict():
    agg = rate_metric("errors", failures=50, total=100)
    agg.record("http_reqs", MetricKind.COUNTER, 1)

    results = evaluate([Threshold("http_reqs", "count>0"), Threshold("errors", "rate<0.1")], agg)

    assert results.verdict is Verdict.FAIL
    assert [r.threshold.metric for r in results.failed] == ["errors"]


def test_should_abort_only_for_abort_on_fail_thresholds():
    agg = rate_metric("errors", failures=50, total=100)

    plain = evaluate([Threshold("errors", "rate<0.1")], agg)
    aborting = evaluate([Threshold("errors", "rate<0.1", abort_on_fail=True)], agg)

    assert not plain.should_abort
    assert aborting.should_abort


def test_stat_not_applicable_to_kind():
    threshold = Threshold("http_req_duration", "rate<0.1")

    assert threshold.check_kind(MetricKind.TREND) is not None
    assert threshold.check_kind(MetricKind.RATE) is None


def test_from_spec():
    threshold = Threshold.from_spec("checks{click created successfully}:rate>0.99")

    assert threshold.metric == "checks{click created successfully}"
    assert threshold.expression == "rate>0.99"

    with pytest.raises(ConfigError):
        Threshold.from_spec("rate<0.05")
