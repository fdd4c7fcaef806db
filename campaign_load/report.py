"""
Console, JSON and Markdown rendering of run results, plus the live table
shown while a run is in progress.
"""

import json
from enum import Enum
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .controller import RunResult
from .metrics import CounterSummary, MetricsAggregator, RateSummary, TrendSummary
from .scenario import CHECKS, HTTP_REQ_DURATION, HTTP_REQ_FAILED, HTTP_REQS
from .scheduler import RunHandle
from .thresholds import ThresholdResults, ThresholdStatus

console = Console()

STATUS_STYLE = {
    ThresholdStatus.PASS: "green",
    ThresholdStatus.FAIL: "red",
    ThresholdStatus.UNKNOWN: "yellow",
}


class ReportFormat(Enum):
    CONSOLE = "console"
    JSON = "json"
    MARKDOWN = "markdown"


def describe(summary) -> str:
    """One-line rendering of a metric summary."""
    if summary is None:
        return "no samples"
    if isinstance(summary, RateSummary):
        return f"{summary.rate * 100:.2f}%  ✓ {summary.passes:,}  ✗ {summary.fails:,}"
    if isinstance(summary, TrendSummary):
        return (
            f"avg={summary.avg:.2f} min={summary.min:.2f} med={summary.med:.2f} "
            f"p(90)={summary.p90:.2f} p(95)={summary.p95:.2f} p(99)={summary.p99:.2f} max={summary.max:.2f}"
        )
    if isinstance(summary, CounterSummary):
        return f"{summary.total:,.0f}  {summary.rate:,.2f}/s"
    return repr(summary)


# =============================================================================
# LIVE DISPLAY
# =============================================================================

class LiveDisplay:
    """
    Rich live table refreshed from the controller's tick callback:

        with LiveDisplay("click") as live:
            await RunController(config, on_tick=live.update).run()
    """

    def __init__(self, title: str = "", out: Optional[Console] = None):
        self.title = title
        self.console = out or console
        self._live: Optional[Live] = None

    def __enter__(self) -> "LiveDisplay":
        self._live = Live(Table(title=self.title), console=self.console, refresh_per_second=4)
        self._live.__enter__()
        return self

    def __exit__(self, *exc_info) -> None:
        if self._live is not None:
            self._live.__exit__(*exc_info)
            self._live = None

    def update(self, aggregator: MetricsAggregator, handle: RunHandle, results: ThresholdResults) -> None:
        if self._live is not None:
            self._live.update(self.build_table(aggregator, handle, results))

    def build_table(self, aggregator: MetricsAggregator, handle: RunHandle, results: ThresholdResults) -> Table:
        table = Table(title=f"📊 Live Load Test {self.title}".rstrip(), expand=True)
        table.add_column("Metric", style="cyan", width=22)
        table.add_column("Value", style="green")

        snapshot = aggregator.snapshot_all()
        reqs = snapshot.get(HTTP_REQS)
        failed = snapshot.get(HTTP_REQ_FAILED)
        duration = snapshot.get(HTTP_REQ_DURATION)
        checks = snapshot.get(CHECKS)

        table.add_row("Elapsed", f"{handle.elapsed:.1f}s")
        table.add_row("Active VUs", f"{handle.active:,} / {len(handle.vus):,}")
        table.add_row("Iterations", f"{handle.iterations:,}")
        table.add_row("Requests", describe(reqs))
        table.add_row("Failed Requests", describe(failed))
        table.add_row("Checks", describe(checks))
        if duration is not None:
            table.add_row("P95 Latency", f"{duration.p95:.2f}ms")
            table.add_row("P99 Latency", f"{duration.p99:.2f}ms")
        for result in results:
            style = STATUS_STYLE[result.status]
            table.add_row(
                f"{result.threshold.metric}",
                f"[{style}]{result.threshold.expression} {result.status.value}[/{style}]",
            )
        return table


# =============================================================================
# FINAL REPORTS
# =============================================================================

def print_summary(result: RunResult, out: Optional[Console] = None) -> None:
    """Print the final summary panel."""
    out = out or console

    metrics = Table(show_header=True, header_style="bold", expand=True)
    metrics.add_column("Metric", style="cyan")
    metrics.add_column("Value")
    for name, summary in sorted(result.metrics.items()):
        metrics.add_row(name, describe(summary))

    thresholds = Table(show_header=True, header_style="bold", expand=True)
    thresholds.add_column("Threshold", style="cyan")
    thresholds.add_column("Observed")
    thresholds.add_column("Status")
    for r in result.thresholds:
        style = STATUS_STYLE[r.status]
        observed = "-" if r.observed is None else f"{r.observed:.4g}"
        thresholds.add_row(
            f"{r.threshold.metric}: {r.threshold.expression}",
            observed,
            f"[{style}]{r.status.value.upper()}[/{style}]",
        )

    verdict_style = "green" if result.passed else "red"
    header = (
        f"[bold]Verdict:[/bold] [{verdict_style}]{result.verdict.value.upper()}[/{verdict_style}]"
        f"{'  [red](aborted)[/red]' if result.aborted else ''}\n"
        f"[cyan]Scenarios:[/cyan]  {', '.join(result.scenarios)}\n"
        f"[cyan]VUs:[/cyan]        {result.vus:,}\n"
        f"[cyan]Iterations:[/cyan] {result.iterations:,}\n"
        f"[cyan]Elapsed:[/cyan]    {result.elapsed_s:.2f}s"
    )

    out.print("\n")
    out.print(Panel(header, title="📊 Final Results", border_style=verdict_style))
    out.print(metrics)
    if len(result.thresholds):
        out.print(thresholds)
    for warning in result.warnings:
        out.print(f"[yellow]⚠ {warning}[/yellow]")


def to_markdown(result: RunResult) -> str:
    lines: List[str] = [
        "# Load Test Report",
        "",
        f"- **Verdict:** {result.verdict.value.upper()}" + (" (aborted)" if result.aborted else ""),
        f"- **Started:** {result.started_at}",
        f"- **Elapsed:** {result.elapsed_s:.2f}s",
        f"- **VUs:** {result.vus}",
        f"- **Iterations:** {result.iterations}",
        "",
        "## Thresholds",
        "",
        "| Metric | Expression | Observed | Status |",
        "|---|---|---|---|",
    ]
    for r in result.thresholds:
        observed = "-" if r.observed is None else f"{r.observed:.4g}"
        lines.append(f"| {r.threshold.metric} | `{r.threshold.expression}` | {observed} | {r.status.value} |")
    lines += ["", "## Metrics", "", "| Metric | Summary |", "|---|---|"]
    for name, summary in sorted(result.metrics.items()):
        lines.append(f"| {name} | {describe(summary)} |")
    if result.warnings:
        lines += ["", "## Warnings", ""]
        lines += [f"- {w}" for w in result.warnings]
    return "\n".join(lines) + "\n"


def generate_report(
    result: RunResult,
    fmt: ReportFormat = ReportFormat.JSON,
    output_path: Optional[str] = None,
) -> str:
    """Render ``result`` as JSON or Markdown, optionally writing it to ``output_path``."""
    if fmt is ReportFormat.MARKDOWN:
        text = to_markdown(result)
    else:
        text = json.dumps(result.to_dict(), indent=2)

    if output_path:
        Path(output_path).write_text(text)
        console.print(f"[green]Report saved to: {output_path}[/green]")
    return text
