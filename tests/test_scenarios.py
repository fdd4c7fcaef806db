"""Tests for the click and conversion scenarios"""
import uuid
from datetime import datetime

import pytest

from campaign_load.http import Response
from campaign_load.metrics import MetricKind
from campaign_load.scenario import SCENARIO_ERRORS, ScenarioExecutor, check_metric_name
from campaign_load.scenarios import (
    CAMPAIGN_IDS,
    CLICK,
    CONVERSION,
    CONVERSION_TYPES,
    SOURCES,
    click_payload,
    conversion_payload,
    has_json_field,
    status_is,
)
from tests.conftest import FakeHttpClient, created_echo, refused, server_error


def declare_scenario_metrics(aggregator, scenario):
    for name, kind in scenario.metrics.items():
        aggregator.declare(name, kind)


def test_click_payload_shape():
    payload = click_payload()

    assert set(payload) == {"campaign_id", "user_id", "click_date", "source"}
    assert payload["campaign_id"] in CAMPAIGN_IDS
    assert payload["source"] in SOURCES
    uuid.UUID(payload["user_id"])
    assert payload["click_date"].endswith("Z")
    datetime.fromisoformat(payload["click_date"].replace("Z", "+00:00"))


def test_conversion_payload_shape():
    for _ in range(200):
        payload = conversion_payload()
        assert 50 <= payload["value"] < 250
        assert payload["type"] in CONVERSION_TYPES
        assert payload["campaign_id"] in CAMPAIGN_IDS
        assert payload["source"] in SOURCES
        assert payload["conversion_id"] != payload["user_id"]


def test_predicates():
    created = Response(status=201, body=b'{"click_id": "abc"}')

    assert status_is(201)(created)
    assert not status_is(201)(Response(status=500))
    assert has_json_field("click_id")(created)
    assert not has_json_field("conversion_id")(created)
    assert not has_json_field("click_id")(Response(status=201, body=b'["click_id"]'))


@pytest.mark.asyncio
@pytest.mark.parametrize("scenario,path,success_metric,id_check", [
    (CLICK, "/api/clicks", "successful_clicks", "click response has click_id"),
    (CONVERSION, "/api/conversions", "successful_conversions", "conversion response has conversion_id"),
])
async def test_scenario_success(aggregator, scenario, path, success_metric, id_check):
    declare_scenario_metrics(aggregator, scenario)
    client = FakeHttpClient(created_echo)

    outcome = await ScenarioExecutor(aggregator, client, "http://api.test").run(scenario)

    assert outcome.ok
    assert client.calls[0][0] == "http://api.test" + path
    assert client.calls[0][2]["Content-Type"] == "application/json"
    assert aggregator.snapshot(success_metric).rate == 1
    assert aggregator.snapshot("errors").rate == 0
    assert aggregator.snapshot(check_metric_name(id_check)).rate == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("responder", [server_error, refused])
async def test_click_failure_records_error_and_logs(aggregator, responder, caplog):
    declare_scenario_metrics(aggregator, CLICK)

    with caplog.at_level("ERROR", logger="campaign_load.scenario.click"):
        outcome = await ScenarioExecutor(aggregator, FakeHttpClient(responder), "http://api.test").run(CLICK)

    assert outcome.error is None
    assert outcome.checks_failed == 2
    assert aggregator.snapshot("errors").rate == 1
    assert aggregator.snapshot("successful_clicks").rate == 0
    assert aggregator.snapshot(SCENARIO_ERRORS).rate == 0
    assert "CLICK ERROR" in caplog.text


@pytest.mark.asyncio
async def test_created_without_id_is_an_error(aggregator):
    declare_scenario_metrics(aggregator, CONVERSION)
    client = FakeHttpClient(lambda url, payload: (201, {"message": "ok"}))

    outcome = await ScenarioExecutor(aggregator, client, "http://api.test").run(CONVERSION)

    assert outcome.checks_failed == 1
    assert aggregator.snapshot("errors").rate == 1
    assert aggregator.snapshot(check_metric_name("conversion created successfully")).rate == 1


def test_scenarios_declare_their_metrics():
    assert CLICK.metrics == {"errors": MetricKind.RATE, "successful_clicks": MetricKind.RATE}
    assert CONVERSION.metrics == {"errors": MetricKind.RATE, "successful_conversions": MetricKind.RATE}
    assert CLICK.is_async and CONVERSION.is_async
