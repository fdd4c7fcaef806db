"""
Virtual-user load testing for the campaign attribution API.

    from campaign_load import RunConfig, RunController, Threshold
    from campaign_load.scenarios import CLICK

    config = RunConfig.build(vus=10, scenarios=[CLICK], duration="30s",
                             thresholds=[Threshold("errors", "rate<0.05")])
    result = asyncio.run(RunController(config).run())
"""

from .config import RunConfig, ScenarioOptions, ScenarioSpec, parse_duration, resolve_base_url
from .controller import RunController, RunResult
from .errors import (
    AggregationError,
    ConfigError,
    LoadTestError,
    NetworkError,
    NoSamples,
    ScenarioError,
    ShutdownTimeoutError,
)
from .http import AiohttpClient, Response
from .metrics import MetricKind, MetricsAggregator
from .scenario import Scenario, ScenarioContext, ScenarioExecutor
from .scheduler import ExecutorPool
from .thresholds import Threshold, ThresholdStatus, Verdict, evaluate
from .worker import Pacing, VirtualUser, VUState

__version__ = "1.0.0"

__all__ = [
    "AggregationError",
    "AiohttpClient",
    "ConfigError",
    "ExecutorPool",
    "LoadTestError",
    "MetricKind",
    "MetricsAggregator",
    "NetworkError",
    "NoSamples",
    "Pacing",
    "Response",
    "RunConfig",
    "RunController",
    "RunResult",
    "Scenario",
    "ScenarioContext",
    "ScenarioError",
    "ScenarioExecutor",
    "ScenarioOptions",
    "ScenarioSpec",
    "ShutdownTimeoutError",
    "Threshold",
    "ThresholdStatus",
    "VUState",
    "Verdict",
    "VirtualUser",
    "evaluate",
    "parse_duration",
    "resolve_base_url",
]
