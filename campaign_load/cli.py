"""
🖱️ Campaign Load Test CLI
==========================
Virtual-user load tests against the campaign attribution API.

Usage:
    campaign-load --preset click
    campaign-load --preset conversion --base-url http://staging:8080
    campaign-load --scenario click --vus 50 --duration 30s --threshold "errors:rate<0.01"
    campaign-load --preset smoke --report json --output smoke.json
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from rich.logging import RichHandler
from rich.panel import Panel

from .config import RunConfig, resolve_base_url
from .controller import RunController, RunResult
from .errors import ConfigError
from .presets import PRESETS, preset_config, scenario_specs, thresholds_from_mapping, DEFAULT_THRESHOLDS
from .report import LiveDisplay, ReportFormat, console, generate_report, print_summary
from .thresholds import Threshold

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_CONFIG = 2


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # Per-iteration scenario logs are noisy at 10k VUs; warnings and up only.
    if not verbose:
        logging.getLogger("campaign_load.scenario").setLevel(logging.WARNING)


def print_presets() -> None:
    console.print("\n[bold]Available Presets:[/bold]\n")
    for name, preset in PRESETS.items():
        console.print(f"  {name:<12} {preset['name']:<26} - {preset['description']}")
    console.print("")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="campaign-load",
        description="🖱️ Virtual-user load test for click and conversion events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 10,000 VUs clicking for one minute
  campaign-load --preset click

  # Custom run with an aborting threshold
  campaign-load --scenario conversion --vus 20 --duration 2m --threshold "errors:rate<0.05" --abort-on-fail

  # Fixed number of iterations, JSON report
  campaign-load --scenario click --vus 5 --iterations 100 --report json --output report.json
        """,
    )
    parser.add_argument("--preset", "-p", help="Use a preset configuration")
    parser.add_argument("--scenario", "-s", action="append", help="Scenario to run (repeatable): click, conversion")
    parser.add_argument("--vus", "-u", type=int, help="Number of virtual users")
    parser.add_argument("--duration", "-d", help="Run duration, e.g. 30s, 1m, 1h30m")
    parser.add_argument("--iterations", "-i", type=int, help="Total iterations shared by all VUs")
    parser.add_argument("--base-url", help="API base URL (default: $BASE_URL or http://localhost:8080)")
    parser.add_argument("--threshold", "-t", action="append", default=[], help="METRIC:EXPRESSION, repeatable")
    parser.add_argument("--abort-on-fail", action="store_true", help="Stop early when a --threshold fails")
    parser.add_argument("--min-sleep", type=float, help="Minimum think time between iterations (s)")
    parser.add_argument("--max-sleep", type=float, help="Maximum think time between iterations (s)")
    parser.add_argument("--grace-period", help="How long to wait for in-flight iterations on stop")
    parser.add_argument("--request-timeout", help="Per-request timeout")
    parser.add_argument(
        "--report", "-r",
        choices=[f.value for f in ReportFormat],
        default=ReportFormat.CONSOLE.value,
        help="Report format",
    )
    parser.add_argument("--output", "-o", help="Write the JSON/Markdown report to this file")
    parser.add_argument("--quiet", "-q", action="store_true", help="No live progress table")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--list-presets", action="store_true", help="List available presets")
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    base_url = resolve_base_url(args.base_url)
    thresholds: List[Threshold] = [Threshold.from_spec(t, abort_on_fail=args.abort_on_fail) for t in args.threshold]
    tunables = {
        "grace_period": args.grace_period,
        "request_timeout": args.request_timeout,
    }
    tunables = {k: v for k, v in tunables.items() if v is not None}

    if args.preset:
        return preset_config(
            args.preset,
            base_url,
            vus=args.vus,
            duration=args.duration,
            iterations=args.iterations,
            min_sleep=args.min_sleep,
            max_sleep=args.max_sleep,
            thresholds=thresholds or None,
            **tunables,
        )

    if not args.scenario:
        raise ConfigError("specify --preset or at least one --scenario")
    specs = scenario_specs(
        args.scenario,
        min_sleep=1.0 if args.min_sleep is None else args.min_sleep,
        max_sleep=3.0 if args.max_sleep is None else args.max_sleep,
    )
    return RunConfig.build(
        vus=args.vus if args.vus is not None else 1,
        scenarios=specs,
        duration=args.duration,
        iterations=args.iterations,
        thresholds=thresholds or thresholds_from_mapping(DEFAULT_THRESHOLDS),
        base_url=base_url,
        **tunables,
    )


async def execute(config: RunConfig, quiet: bool = False, title: str = "") -> RunResult:
    """Run ``config`` with a live table and SIGINT/SIGTERM wired to a graceful stop."""
    controller = RunController(config)
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.stop)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            pass  # no signal handlers on this platform or thread
    try:
        if quiet:
            return await controller.run()
        with LiveDisplay(title) as live:
            controller.on_tick = live.update
            return await controller.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.list_presets:
        print_presets()
        return EXIT_PASS

    try:
        config = config_from_args(args).validate()
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        return EXIT_CONFIG

    scenario_names = ", ".join(spec.name for spec in config.scenarios)
    stop_rule = f"{config.duration:g}s" if config.duration is not None else f"{config.iterations:,} iterations"
    console.print(Panel(
        f"[bold blue]{scenario_names}[/bold blue]\n"
        f"VUs: {config.vus:,} | Stop after: {stop_rule} | Target: {config.base_url}",
        title="🚀 Starting Test",
    ))

    result = asyncio.run(execute(config, quiet=args.quiet, title=args.preset or scenario_names))

    fmt = ReportFormat(args.report)
    if fmt is ReportFormat.CONSOLE:
        print_summary(result)
        if args.output:
            generate_report(result, ReportFormat.JSON, args.output)
    else:
        text = generate_report(result, fmt, args.output)
        if not args.output:
            console.print(text, markup=False, highlight=False)

    return EXIT_PASS if result.passed else EXIT_FAIL


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
