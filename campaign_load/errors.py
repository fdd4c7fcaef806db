"""
Error taxonomy for load runs.

Only ConfigError is allowed to escape a run. Everything else is caught at the
scenario boundary or the scheduler and turned into metrics or warnings.
"""


class LoadTestError(Exception):
    """Base class for every error raised by campaign_load."""


class ConfigError(LoadTestError):
    """RunConfig is structurally invalid. Raised before any virtual user starts."""

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ScenarioError(LoadTestError):
    """An exception escaped a scenario function."""

    def __init__(self, scenario: str, cause: BaseException):
        self.scenario = scenario
        self.cause = cause
        super().__init__(f"{scenario}: {type(cause).__name__}: {cause}")


class NetworkError(LoadTestError):
    """Request failed before a response arrived (timeout, refused, reset)."""

    def __init__(self, url: str, reason: str, duration_ms: float = 0.0):
        self.url = url
        self.reason = reason
        self.duration_ms = duration_ms
        super().__init__(f"{url}: {reason}")


class ResponseParseError(LoadTestError, ValueError):
    """Response body could not be decoded the way a check expected."""


class AggregationError(LoadTestError):
    """Metric query or record could not be served."""


class NoSamples(AggregationError):
    """Metric exists but has no observations yet."""

    def __init__(self, metric: str):
        self.metric = metric
        super().__init__(f"metric {metric!r} has no samples")


class UnknownMetric(AggregationError, KeyError):
    """Metric was never declared or recorded in this run."""

    def __init__(self, metric: str):
        self.metric = metric
        super().__init__(f"unknown metric {metric!r}")

    def __str__(self):
        return self.args[0]


class MetricKindMismatch(AggregationError):
    """Metric name is already registered with a different kind."""

    def __init__(self, metric: str, existing, requested):
        self.metric = metric
        self.existing = existing
        self.requested = requested
        super().__init__(
            f"metric {metric!r} is a {existing.value} metric, not {requested.value}"
        )


class ShutdownTimeoutError(LoadTestError):
    """Virtual users did not stop within the grace period and were cancelled."""

    def __init__(self, stuck: int, grace_period: float):
        self.stuck = stuck
        self.grace_period = grace_period
        super().__init__(
            f"{stuck} virtual user(s) still running after {grace_period:.1f}s grace period; cancelled"
        )
