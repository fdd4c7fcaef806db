"""
🎯 Preset load profiles for the campaign attribution API.
"""

from typing import Dict, List, Optional

from .config import RunConfig, ScenarioOptions, ScenarioSpec
from .errors import ConfigError
from .scenarios import SCENARIOS
from .thresholds import Threshold

# =============================================================================
# PRESET CONFIGURATIONS
# =============================================================================

DEFAULT_THRESHOLDS = {
    "http_req_duration": ["p(95)<1000"],
    "http_req_failed": ["rate<0.05"],
    "errors": ["rate<0.05"],
}

PRESETS = {
    "click": {
        "name": "🖱️ Click Flood",
        "description": "10,000 VUs posting click events for 1 minute",
        "scenarios": ["click"],
        "params": {
            "vus": 10_000,
            "duration": "1m",
        },
        "thresholds": DEFAULT_THRESHOLDS,
    },
    "conversion": {
        "name": "💰 Conversion Stream",
        "description": "15 VUs posting conversion events for 5 minutes",
        "scenarios": ["conversion"],
        "params": {
            "vus": 15,
            "duration": "5m",
        },
        "thresholds": DEFAULT_THRESHOLDS,
    },
    "mixed": {
        "name": "🔀 Clicks + Conversions",
        "description": "100 VUs, 9 clicking for every converting, for 2 minutes",
        "scenarios": ["click", "conversion"],
        "weights": {"click": 9, "conversion": 1},
        "params": {
            "vus": 100,
            "duration": "2m",
        },
        "thresholds": DEFAULT_THRESHOLDS,
    },
    "smoke": {
        "name": "🌱 Smoke",
        "description": "2 VUs sharing 20 iterations of click and conversion posts",
        "scenarios": ["click", "conversion"],
        "params": {
            "vus": 2,
            "iterations": 20,
        },
        "thresholds": {"errors": ["rate==0"]},
    },
}


def thresholds_from_mapping(mapping: Dict[str, List[str]]) -> List[Threshold]:
    return [Threshold(metric, expression) for metric, expressions in mapping.items() for expression in expressions]


def scenario_specs(
    names: List[str],
    min_sleep: float = 1.0,
    max_sleep: float = 3.0,
    weights: Optional[Dict[str, float]] = None,
) -> List[ScenarioSpec]:
    specs = []
    for name in names:
        if name not in SCENARIOS:
            raise ConfigError(f"unknown scenario {name!r} (known: {', '.join(sorted(SCENARIOS))})")
        weight = (weights or {}).get(name, 1.0)
        specs.append(ScenarioSpec(SCENARIOS[name], ScenarioOptions(min_sleep, max_sleep, weight)))
    return specs


def preset_config(name: str, base_url: str, **overrides) -> RunConfig:
    """
    RunConfig for a preset. ``overrides`` replace preset params (vus,
    duration, iterations, min_sleep, max_sleep and any RunConfig field).
    A duration override clears a preset iteration count and vice versa.
    """
    if name not in PRESETS:
        raise ConfigError(f"unknown preset {name!r} (known: {', '.join(PRESETS)})")
    preset = PRESETS[name]
    params = dict(preset["params"])
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if "duration" in overrides:
        params.pop("iterations", None)
    if "iterations" in overrides:
        params.pop("duration", None)
    params.update(overrides)

    specs = scenario_specs(
        preset["scenarios"],
        min_sleep=params.pop("min_sleep", 1.0),
        max_sleep=params.pop("max_sleep", 3.0),
        weights=preset.get("weights"),
    )
    thresholds = params.pop("thresholds", None)
    if thresholds is None:
        thresholds = thresholds_from_mapping(preset["thresholds"])
    return RunConfig.build(scenarios=specs, thresholds=thresholds, base_url=base_url, **params)
