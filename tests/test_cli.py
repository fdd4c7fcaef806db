"""Tests for presets, the command line and report rendering"""
import json

import pytest
import pytest_asyncio
from rich.console import Console

from campaign_load import cli
from campaign_load.config import RunConfig, ScenarioOptions, ScenarioSpec
from campaign_load.controller import RunController
from campaign_load.errors import ConfigError
from campaign_load.presets import PRESETS, preset_config
from campaign_load.report import LiveDisplay, ReportFormat, generate_report, print_summary, to_markdown
from campaign_load.scenarios import CLICK
from campaign_load.thresholds import Threshold
from tests.conftest import FakeHttpClient, created_echo


def parse(*argv):
    return cli.build_parser().parse_args(list(argv))


@pytest_asyncio.fixture
async def finished_result():
    config = RunConfig.build(
        vus=2,
        scenarios=[ScenarioSpec(CLICK, ScenarioOptions(0, 0))],
        iterations=6,
        thresholds=[Threshold("errors", "rate<0.05"), Threshold("http_req_duration", "p(95)<1000")],
    )
    return await RunController(config, client=FakeHttpClient(created_echo)).run()


# ============================================================================
# Presets
# ============================================================================

def test_click_preset_profile():
    config = preset_config("click", "http://api.test").validate()

    assert config.vus == 10_000
    assert config.duration == 60.0
    assert config.iterations is None
    assert [s.name for s in config.scenarios] == ["click"]
    assert {(t.metric, t.expression) for t in config.thresholds} == {
        ("http_req_duration", "p(95)<1000"),
        ("http_req_failed", "rate<0.05"),
        ("errors", "rate<0.05"),
    }


def test_conversion_preset():
    config = preset_config("conversion", "http://api.test").validate()

    assert config.vus == 15
    assert config.duration == 300.0


def test_preset_overrides():
    config = preset_config("smoke", "http://api.test", duration="10s", vus=4, min_sleep=0.1, max_sleep=0.2)

    assert config.iterations is None
    assert config.duration == 10.0
    assert config.vus == 4
    assert config.scenarios[0].options.max_sleep == 0.2


def test_every_preset_is_valid():
    for name in PRESETS:
        preset_config(name, "http://api.test").validate()


def test_unknown_preset():
    with pytest.raises(ConfigError):
        preset_config("nuclear", "http://api.test")


# ============================================================================
# Argument handling
# ============================================================================

def test_config_from_scenario_args(monkeypatch):
    monkeypatch.setenv("BASE_URL", "http://from-env:8080")
    args = parse("--scenario", "click", "--vus", "3", "--duration", "30s", "-t", "errors:rate<0.01",
                 "--abort-on-fail", "--min-sleep", "0.5", "--max-sleep", "0.5")

    config = cli.config_from_args(args).validate()

    assert config.base_url == "http://from-env:8080"
    assert config.vus == 3
    assert config.duration == 30.0
    assert config.thresholds == (Threshold("errors", "rate<0.01", abort_on_fail=True),)
    assert config.scenarios[0].options == ScenarioOptions(0.5, 0.5)


def test_scenario_args_default_to_standard_thresholds():
    config = cli.config_from_args(parse("-s", "conversion", "-i", "5", "--base-url", "http://x:1"))

    assert config.iterations == 5
    assert {t.metric for t in config.thresholds} == {"http_req_duration", "http_req_failed", "errors"}


def test_config_from_args_requires_scenario_or_preset():
    with pytest.raises(ConfigError):
        cli.config_from_args(parse("--vus", "1"))


def test_main_rejects_invalid_config_before_running(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("run must not start")

    monkeypatch.setattr(cli, "execute", fail)

    assert cli.main(["--scenario", "click", "--vus", "0", "--duration", "5s"]) == cli.EXIT_CONFIG
    assert cli.main(["--scenario", "clack", "--duration", "5s"]) == cli.EXIT_CONFIG


def test_main_lists_presets():
    assert cli.main(["--list-presets"]) == cli.EXIT_PASS


def test_main_exit_code_follows_verdict(monkeypatch, tmp_path):
    async def fake_execute(config, quiet=False, title=""):
        return await RunController(config, client=FakeHttpClient(created_echo)).run()

    monkeypatch.setattr(cli, "execute", fake_execute)
    output = tmp_path / "report.json"

    code = cli.main(["--preset", "smoke", "--min-sleep", "0", "--max-sleep", "0",
                     "--report", "json", "--output", str(output), "--quiet"])

    assert code == cli.EXIT_PASS
    report = json.loads(output.read_text())
    assert report["verdict"] == "pass"
    assert report["iterations"] == 20


# ============================================================================
# Reports
# ============================================================================

@pytest.mark.asyncio
async def test_json_report(finished_result, tmp_path):
    result = finished_result
    path = tmp_path / "out.json"

    text = generate_report(result, ReportFormat.JSON, str(path))

    data = json.loads(text)
    assert path.read_text() == text
    assert data["verdict"] == "pass"
    assert data["iterations"] == 6
    assert data["metrics"]["errors"]["rate"] == 0
    assert data["metrics"]["http_req_duration"]["p95"] == 1.5
    assert {t["status"] for t in data["thresholds"]} == {"pass"}


@pytest.mark.asyncio
async def test_markdown_and_console_reports(finished_result):
    result = finished_result
    out = Console(record=True, width=140)

    markdown = to_markdown(result)
    print_summary(result, out=out)
    rendered = out.export_text()

    assert "# Load Test Report" in markdown
    assert "| errors | `rate<0.05` |" in markdown
    assert "PASS" in rendered
    assert "http_req_duration" in rendered


@pytest.mark.asyncio
async def test_live_display_builds_table():
    controller = RunController(
        RunConfig.build(vus=1, scenarios=[ScenarioSpec(CLICK, ScenarioOptions(0, 0))], iterations=2),
        client=FakeHttpClient(created_echo),
    )
    tables = []
    display = LiveDisplay("click", out=Console(record=True, width=120))
    controller.on_tick = lambda agg, handle, results: tables.append(display.build_table(agg, handle, results))

    await controller.run()

    assert tables
    assert tables[-1].row_count >= 6
