"""
Run Controller
==============
Drives one run from a validated RunConfig to an immutable RunResult:

    validate -> aggregator -> start pool -> poll thresholds -> stop pool -> result

Only ConfigError escapes ``run``. Everything that goes wrong after the first
virtual user starts ends up in the result as metrics or warnings.
"""

import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .config import RunConfig
from .http import AiohttpClient, HttpClient
from .metrics import MetricsAggregator, MetricSummary
from .scenario import ScenarioExecutor
from .scheduler import ExecutorPool, RunHandle
from .thresholds import ThresholdResults, Verdict, evaluate

logger = logging.getLogger(__name__)

TickCallback = Callable[[MetricsAggregator, RunHandle, ThresholdResults], None]


@dataclass(frozen=True)
class RunResult:
    metrics: Dict[str, Optional[MetricSummary]]
    thresholds: ThresholdResults
    iterations: int
    elapsed_s: float
    vus: int
    started_at: str
    aborted: bool = False
    warnings: Tuple[str, ...] = ()
    scenarios: Tuple[str, ...] = field(default=())

    @property
    def verdict(self) -> Verdict:
        return self.thresholds.verdict

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    def metric(self, name: str) -> Optional[MetricSummary]:
        return self.metrics.get(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "aborted": self.aborted,
            "started_at": self.started_at,
            "elapsed_seconds": round(self.elapsed_s, 3),
            "iterations": self.iterations,
            "vus": self.vus,
            "scenarios": list(self.scenarios),
            "thresholds": self.thresholds.to_list(),
            "metrics": {
                name: (summary.to_dict() if summary is not None else None)
                for name, summary in sorted(self.metrics.items())
            },
            "warnings": list(self.warnings),
        }


class RunController:
    """
    Owns the config and the run's single MetricsAggregator.

    ``client`` is optional: without one, an AiohttpClient is opened for the
    duration of the run. ``on_tick`` is called after every threshold poll
    (live displays hook in here).
    """

    def __init__(
        self,
        config: RunConfig,
        client: Optional[HttpClient] = None,
        on_tick: Optional[TickCallback] = None,
        seed: Optional[int] = None,
    ):
        self.config = config
        self.client = client
        self.on_tick = on_tick
        self.seed = seed
        self.aggregator: Optional[MetricsAggregator] = None
        self.handle: Optional[RunHandle] = None
        self._stop_requested = False
        self.aborted = False

    def stop(self) -> None:
        """Ask a running run to wind down (SIGINT handler, tests)."""
        self._stop_requested = True
        if self.handle is not None:
            self.handle.stop_event.set()

    async def run(self) -> RunResult:
        self.config.validate()

        aggregator = MetricsAggregator()
        for name, kind in self.config.metric_kinds().items():
            aggregator.declare(name, kind)
        self.aggregator = aggregator

        async with self._client() as client:
            executor = ScenarioExecutor(aggregator, client, self.config.base_url)
            pool = ExecutorPool(executor, seed=self.seed)
            started_at = datetime.now(timezone.utc).isoformat()
            aggregator.restart_clock()
            self.handle = handle = pool.start(self.config)
            if self._stop_requested:
                handle.stop_event.set()
            try:
                await self._monitor(pool, handle, aggregator)
            finally:
                await pool.stop(handle, self.config.grace_period)
                aggregator.close()

        final = evaluate(self.config.thresholds, aggregator)
        for result in final.unknown:
            logger.warning("threshold %s:%s has no data", result.threshold.metric, result.threshold.expression)

        return RunResult(
            metrics=aggregator.snapshot_all(),
            thresholds=final,
            iterations=handle.iterations,
            elapsed_s=handle.elapsed,
            vus=len(handle.vus),
            started_at=started_at,
            aborted=self.aborted,
            warnings=tuple(handle.warnings),
            scenarios=tuple(spec.name for spec in self.config.scenarios),
        )

    @contextlib.asynccontextmanager
    async def _client(self):
        if self.client is not None:
            yield self.client
            return
        async with AiohttpClient(
            timeout=self.config.request_timeout,
            limit=min(self.config.vus, self.config.max_connections),
        ) as client:
            yield client

    async def _monitor(self, pool: ExecutorPool, handle: RunHandle, aggregator: MetricsAggregator) -> None:
        """Poll thresholds every ``poll_interval`` until the virtual users finish."""
        while True:
            finished = await pool.wait(handle, timeout=self.config.poll_interval)
            results = evaluate(self.config.thresholds, aggregator)
            if self.on_tick is not None:
                self.on_tick(aggregator, handle, results)
            if finished:
                return
            if results.should_abort and not handle.stopping:
                for failed in results.failed:
                    logger.error(
                        "threshold %s:%s crossed (observed %s), aborting run",
                        failed.threshold.metric, failed.threshold.expression, failed.observed,
                    )
                self.aborted = True
                handle.stop_event.set()
            if handle.stopping:
                return
