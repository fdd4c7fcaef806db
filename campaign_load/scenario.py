"""
Scenario Executor
=================
Runs one scenario iteration with a fresh ScenarioContext and makes sure that
nothing raised inside the scenario ever reaches the virtual-user loop.
"""

import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .errors import NetworkError, ScenarioError
from .http import Body, HttpClient, Response
from .metrics import MetricKind, MetricsAggregator

logger = logging.getLogger(__name__)

Check = Callable[[Response], bool]
ScenarioFn = Callable[["ScenarioContext"], Awaitable[None]]

# =============================================================================
# BUILT-IN METRICS
# =============================================================================

HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
SCENARIO_ERRORS = "scenario_errors"

BUILTIN_METRICS: Dict[str, MetricKind] = {
    HTTP_REQS: MetricKind.COUNTER,
    HTTP_REQ_DURATION: MetricKind.TREND,
    HTTP_REQ_FAILED: MetricKind.RATE,
    CHECKS: MetricKind.RATE,
    ITERATIONS: MetricKind.COUNTER,
    ITERATION_DURATION: MetricKind.TREND,
    SCENARIO_ERRORS: MetricKind.RATE,
}


def check_metric_name(check_name: str) -> str:
    """Name of the per-check pass-rate metric, e.g. ``checks{status is 201}``."""
    return f"{CHECKS}{{{check_name}}}"


def is_check_metric(name: str) -> bool:
    return name.startswith(CHECKS + "{") and name.endswith("}") and len(name) > len(CHECKS) + 2


@dataclass(frozen=True)
class Scenario:
    """A named async function ``(context) -> None`` plus the custom metrics it records."""
    name: str
    fn: ScenarioFn
    metrics: Mapping[str, MetricKind] = field(default_factory=dict)
    description: str = ""

    def __call__(self, context: "ScenarioContext") -> Awaitable[None]:
        return self.fn(context)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.fn)


# =============================================================================
# PER-ITERATION CONTEXT
# =============================================================================

class ScenarioContext:
    """
    Scoped handle passed to a scenario for exactly one iteration.

    Exposes ``post`` (HTTP through the injected client), ``check`` and
    ``record``. Every observation goes straight into the shared aggregator.
    """

    def __init__(
        self,
        aggregator: MetricsAggregator,
        client: HttpClient,
        base_url: str,
        scenario: str = "",
        vu: int = 0,
        iteration: int = 0,
    ):
        self.aggregator = aggregator
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.scenario = scenario
        self.vu = vu
        self.iteration = iteration
        self.last_response: Optional[Response] = None
        self.checks_failed = 0
        self.log = logging.LoggerAdapter(
            logging.getLogger("campaign_load.scenario." + (scenario or "anonymous")),
            {"vu": vu, "iteration": iteration},
        )

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def post(self, url: str, body: Body = None, headers: Optional[Mapping[str, str]] = None) -> Response:
        """
        POST through the run's HTTP client and record the built-in request
        metrics. Network failures come back as a status-0 Response instead of
        raising, so checks on it simply fail.
        """
        target = self.url(url)
        try:
            response = await self.client.post(target, body, headers)
        except NetworkError as e:
            self.log.warning("request to %s failed: %s", target, e.reason)
            response = Response(status=0, duration_ms=e.duration_ms, error=e.reason)

        self.aggregator.record(HTTP_REQS, MetricKind.COUNTER, 1)
        self.aggregator.record(HTTP_REQ_DURATION, MetricKind.TREND, response.duration_ms)
        self.aggregator.record(HTTP_REQ_FAILED, MetricKind.RATE, not response.ok)
        self.last_response = response
        return response

    def check(self, name: str, predicate: Check, response: Optional[Response] = None) -> bool:
        """
        Evaluate ``predicate`` against ``response`` (default: the last response).

        A predicate that raises (bad JSON, missing key, wrong type) counts as a
        failed check rather than an error.
        """
        target = response if response is not None else self.last_response
        if target is None:
            passed = False
        else:
            try:
                passed = bool(predicate(target))
            except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
                self.log.debug("check %r could not evaluate response: %s", name, e)
                passed = False

        self.aggregator.record(CHECKS, MetricKind.RATE, passed)
        self.aggregator.record(check_metric_name(name), MetricKind.RATE, passed)
        if not passed:
            self.checks_failed += 1
        return passed

    def checks(self, response: Response, predicates: Mapping[str, Check]) -> bool:
        """Run several named checks against one response. True only if all pass."""
        results = [self.check(name, predicate, response) for name, predicate in predicates.items()]
        return all(results)

    def record(self, metric: str, value: Any) -> None:
        """Record into a metric declared by the scenario (or a built-in one)."""
        self.aggregator.record_declared(metric, value)


# =============================================================================
# EXECUTOR
# =============================================================================

@dataclass(frozen=True)
class IterationOutcome:
    scenario: str
    duration_ms: float
    checks_failed: int = 0
    error: Optional[ScenarioError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.checks_failed == 0


class ScenarioExecutor:
    """Creates per-iteration contexts and runs scenarios exactly once each."""

    def __init__(self, aggregator: MetricsAggregator, client: HttpClient, base_url: str):
        self.aggregator = aggregator
        self.client = client
        self.base_url = base_url

    def new_context(self, scenario: Scenario, vu: int = 0, iteration: int = 0) -> ScenarioContext:
        return ScenarioContext(
            self.aggregator,
            self.client,
            self.base_url,
            scenario=scenario.name,
            vu=vu,
            iteration=iteration,
        )

    async def run(self, scenario: Scenario, context: Optional[ScenarioContext] = None) -> IterationOutcome:
        """
        Invoke ``scenario`` once. Exceptions (other than task cancellation)
        are logged and recorded in ``scenario_errors``; they never propagate.
        """
        if context is None:
            context = self.new_context(scenario)

        error: Optional[ScenarioError] = None
        start = time.perf_counter()
        try:
            await scenario(context)
        except Exception as e:
            error = ScenarioError(scenario.name, e)
            context.log.error("iteration failed: %s", error)
        duration = (time.perf_counter() - start) * 1000

        self.aggregator.record(SCENARIO_ERRORS, MetricKind.RATE, error is not None)
        self.aggregator.record(ITERATIONS, MetricKind.COUNTER, 1)
        self.aggregator.record(ITERATION_DURATION, MetricKind.TREND, duration)
        return IterationOutcome(
            scenario=scenario.name,
            duration_ms=duration,
            checks_failed=context.checks_failed,
            error=error,
        )
