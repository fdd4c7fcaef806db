"""
Run configuration.

A RunConfig is fully resolved before a run starts and never changes while it
runs. ``validate`` collects every structural problem and raises a single
ConfigError, so nothing is started for a config that cannot work.
"""

import math
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ConfigError
from .metrics import MetricKind
from .scenario import BUILTIN_METRICS, Scenario, is_check_metric
from .thresholds import Threshold

DEFAULT_BASE_URL = "http://localhost:8080"
BASE_URL_ENV = "BASE_URL"

TimeSpan = Union[int, float, str]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Optional[TimeSpan]) -> Optional[float]:
    """
    Seconds from a number or a span like ``"500ms"``, ``"30s"``, ``"1m"``,
    ``"1h30m"``. A bare number string means seconds.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip().lower()
    try:
        return float(text)
    except ValueError:
        pass
    total, pos = 0.0, 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or not text:
        raise ConfigError(f"invalid duration {value!r}")
    return total


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def resolve_base_url(explicit: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    """Flag beats BASE_URL env var beats the default."""
    if explicit:
        return explicit.rstrip("/")
    env = os.environ if environ is None else environ
    return (env.get(BASE_URL_ENV) or DEFAULT_BASE_URL).rstrip("/")


@dataclass(frozen=True)
class ScenarioOptions:
    """Per-scenario pacing (think time) in seconds, and share of the VUs."""
    min_sleep: float = 1.0
    max_sleep: float = 3.0
    weight: float = 1.0


@dataclass(frozen=True)
class ScenarioSpec:
    scenario: Scenario
    options: ScenarioOptions = field(default_factory=ScenarioOptions)

    @property
    def name(self) -> str:
        return self.scenario.name


@dataclass(frozen=True)
class RunConfig:
    """
    Everything a run needs. Exactly one of ``duration`` and ``iterations``
    must be set; iteration-budget runs are still bounded by ``max_duration``.
    """
    vus: int
    scenarios: Tuple[ScenarioSpec, ...]
    duration: Optional[float] = None
    iterations: Optional[int] = None
    thresholds: Tuple[Threshold, ...] = ()
    base_url: str = DEFAULT_BASE_URL
    grace_period: float = 30.0
    poll_interval: float = 1.0
    request_timeout: float = 60.0
    max_connections: int = 1000
    max_duration: float = 600.0

    def __post_init__(self):
        for name in ("duration", "grace_period", "poll_interval", "request_timeout", "max_duration"):
            value = getattr(self, name)
            if isinstance(value, str):
                object.__setattr__(self, name, parse_duration(value))

    @classmethod
    def build(
        cls,
        vus: int,
        scenarios: Sequence[Union[Scenario, ScenarioSpec, Tuple[Scenario, ScenarioOptions]]],
        duration: Optional[TimeSpan] = None,
        iterations: Optional[int] = None,
        thresholds: Sequence[Threshold] = (),
        **kwargs,
    ) -> "RunConfig":
        """Convenience constructor accepting loose scenario/duration forms."""
        specs = []
        for item in scenarios:
            if isinstance(item, ScenarioSpec):
                specs.append(item)
            elif isinstance(item, Scenario):
                specs.append(ScenarioSpec(item))
            else:
                scenario, options = item
                specs.append(ScenarioSpec(scenario, options))
        for key in ("grace_period", "poll_interval", "request_timeout", "max_duration"):
            if key in kwargs:
                kwargs[key] = parse_duration(kwargs[key])
        return cls(
            vus=vus,
            scenarios=tuple(specs),
            duration=parse_duration(duration),
            iterations=iterations,
            thresholds=tuple(thresholds),
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------
    @property
    def deadline(self) -> float:
        """Wall-clock bound in seconds for the whole run."""
        return self.duration if self.duration is not None else self.max_duration

    def metric_kinds(self) -> Dict[str, MetricKind]:
        """Built-in metrics plus every custom metric declared by the scenarios."""
        kinds = dict(BUILTIN_METRICS)
        for spec in self.scenarios:
            kinds.update(spec.scenario.metrics)
        return kinds

    def allocate_vus(self) -> List[int]:
        """Split ``vus`` across scenarios by weight using the largest remainder."""
        weights = [spec.options.weight for spec in self.scenarios]
        total = sum(weights)
        exact = [self.vus * w / total for w in weights]
        counts = [math.floor(x) for x in exact]
        leftover = self.vus - sum(counts)
        by_remainder = sorted(range(len(exact)), key=lambda i: (counts[i] - exact[i], i))
        for i in by_remainder[:leftover]:
            counts[i] += 1
        return counts

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------
    def validate(self) -> "RunConfig":
        problems: List[str] = []

        if isinstance(self.vus, bool) or not isinstance(self.vus, int) or self.vus <= 0:
            problems.append(f"virtual users must be a positive integer, got {self.vus!r}")

        if (self.duration is None) == (self.iterations is None):
            problems.append("exactly one of duration and iterations must be set")
        if self.duration is not None and not _is_number(self.duration):
            problems.append(f"duration must be a number of seconds, got {self.duration!r}")
        elif self.duration is not None and self.duration <= 0:
            problems.append(f"duration must be positive, got {self.duration}")
        if self.iterations is not None and (
            isinstance(self.iterations, bool) or not isinstance(self.iterations, int) or self.iterations <= 0
        ):
            problems.append(f"iterations must be a positive integer, got {self.iterations!r}")

        for name in ("grace_period", "poll_interval", "request_timeout", "max_duration"):
            value = getattr(self, name)
            if not _is_number(value) or value <= 0:
                problems.append(f"{name} must be a positive number, got {value!r}")
        if not _is_number(self.max_connections) or self.max_connections <= 0:
            problems.append(f"max_connections must be positive, got {self.max_connections!r}")
        if not isinstance(self.base_url, str) or not self.base_url.startswith(("http://", "https://")):
            problems.append(f"base URL must be http(s), got {self.base_url!r}")

        problems.extend(self._scenario_problems())
        if not problems:
            problems.extend(self._metric_problems())

        if problems:
            raise ConfigError(problems)
        return self

    def _scenario_problems(self) -> List[str]:
        problems = []
        if not self.scenarios:
            return ["at least one scenario is required"]
        seen = set()
        for spec in self.scenarios:
            if spec.name in seen:
                problems.append(f"duplicate scenario name {spec.name!r}")
            seen.add(spec.name)
            if not spec.scenario.is_async:
                problems.append(f"scenario {spec.name!r} must be an async function")
            opts = spec.options
            if opts.min_sleep < 0 or opts.max_sleep < opts.min_sleep:
                problems.append(
                    f"scenario {spec.name!r}: need 0 <= min_sleep <= max_sleep, "
                    f"got {opts.min_sleep}..{opts.max_sleep}"
                )
            if opts.weight <= 0:
                problems.append(f"scenario {spec.name!r}: weight must be positive")
        if isinstance(self.vus, int) and 0 < self.vus < len(self.scenarios):
            problems.append(f"{self.vus} virtual user(s) cannot cover {len(self.scenarios)} scenarios")
        return problems

    def _metric_problems(self) -> List[str]:
        problems = []
        kinds: Dict[str, MetricKind] = dict(BUILTIN_METRICS)
        owners: Dict[str, str] = {name: "built-in" for name in BUILTIN_METRICS}
        for spec in self.scenarios:
            for name, kind in spec.scenario.metrics.items():
                if is_check_metric(name):
                    problems.append(f"scenario {spec.name!r} declares reserved metric name {name!r}")
                elif name in BUILTIN_METRICS:
                    problems.append(f"duplicate metric {name!r}: scenario {spec.name!r} shadows a built-in metric")
                elif name in kinds and kinds[name] is not kind:
                    problems.append(
                        f"duplicate metric {name!r}: {kind.value} in {spec.name!r}, "
                        f"already {kinds[name].value} ({owners[name]})"
                    )
                else:
                    kinds[name] = kind
                    owners.setdefault(name, spec.name)

        for threshold in self.thresholds:
            if is_check_metric(threshold.metric):
                kind = MetricKind.RATE
            elif threshold.metric in kinds:
                kind = kinds[threshold.metric]
            else:
                problems.append(f"threshold references unknown metric {threshold.metric!r}")
                continue
            problem = threshold.check_kind(kind)
            if problem:
                problems.append(problem)
        return problems
