"""
Campaign attribution scenarios: click and conversion event posts.

Each iteration builds a random event for one of the known campaigns, posts it,
checks that the API created it and returned its id, and records the outcome
in the scenario's own success/error rates.
"""

import random
import uuid
from datetime import datetime, timezone
from typing import Dict, Sequence

from .http import Response
from .metrics import MetricKind
from .scenario import Check, Scenario, ScenarioContext

CAMPAIGN_IDS = (
    "550e8400-e29b-41d4-a716-446655440000",
    "6ba7b810-9dad-11d1-80b4-00c04fd430c8",
    "6ba7b811-9dad-11d1-80b4-00c04fd430c8",
)
SOURCES = ("google", "facebook", "twitter", "instagram")
CONVERSION_TYPES = ("purchase", "signup", "download", "subscription")

CLICK_PATH = "/api/clicks"
CONVERSION_PATH = "/api/conversions"

JSON_HEADERS = {"Content-Type": "application/json"}

ERRORS = "errors"
SUCCESSFUL_CLICKS = "successful_clicks"
SUCCESSFUL_CONVERSIONS = "successful_conversions"


def random_item(items: Sequence[str]) -> str:
    return random.choice(items)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def status_is(expected: int) -> Check:
    def predicate(response: Response) -> bool:
        return response.status == expected
    return predicate


def has_json_field(name: str) -> Check:
    """True when the body is a JSON object carrying ``name``. Unparseable bodies fail the check."""
    def predicate(response: Response) -> bool:
        payload = response.json()
        return isinstance(payload, dict) and name in payload
    return predicate


def click_payload() -> Dict[str, str]:
    return {
        "campaign_id": random_item(CAMPAIGN_IDS),
        "user_id": str(uuid.uuid4()),
        "click_date": utc_now(),
        "source": random_item(SOURCES),
    }


def conversion_payload() -> Dict[str, object]:
    return {
        "conversion_id": str(uuid.uuid4()),
        "user_id": str(uuid.uuid4()),
        "campaign_id": random_item(CAMPAIGN_IDS),
        "conversion_date": utc_now(),
        "value": random.random() * 200 + 50,
        "type": random_item(CONVERSION_TYPES),
        "source": random_item(SOURCES),
    }


# =============================================================================
# SCENARIO: Click
# =============================================================================

async def click_flow(ctx: ScenarioContext) -> None:
    payload = click_payload()
    response = await ctx.post(CLICK_PATH, payload, JSON_HEADERS)

    success = ctx.checks(response, {
        "click created successfully": status_is(201),
        "click response has click_id": has_json_field("click_id"),
    })

    ctx.record(SUCCESSFUL_CLICKS, success)
    ctx.record(ERRORS, not success)
    if not success:
        ctx.log.error(
            "CLICK ERROR - Status: %s, Body: %s, Campaign: %s, User: %s",
            response.status, response.error or response.text, payload["campaign_id"], payload["user_id"],
        )


# =============================================================================
# SCENARIO: Conversion
# =============================================================================

async def conversion_flow(ctx: ScenarioContext) -> None:
    payload = conversion_payload()
    response = await ctx.post(CONVERSION_PATH, payload, JSON_HEADERS)

    success = ctx.checks(response, {
        "conversion created successfully": status_is(201),
        "conversion response has conversion_id": has_json_field("conversion_id"),
    })

    ctx.record(SUCCESSFUL_CONVERSIONS, success)
    ctx.record(ERRORS, not success)
    if not success:
        ctx.log.error(
            "CONVERSION ERROR - Status: %s, Body: %s, Campaign: %s, User: %s, Value: %.2f",
            response.status, response.error or response.text,
            payload["campaign_id"], payload["user_id"], payload["value"],
        )


CLICK = Scenario(
    name="click",
    fn=click_flow,
    metrics={ERRORS: MetricKind.RATE, SUCCESSFUL_CLICKS: MetricKind.RATE},
    description="POST a random click event to /api/clicks",
)

CONVERSION = Scenario(
    name="conversion",
    fn=conversion_flow,
    metrics={ERRORS: MetricKind.RATE, SUCCESSFUL_CONVERSIONS: MetricKind.RATE},
    description="POST a random conversion event to /api/conversions",
)

SCENARIOS = {s.name: s for s in (CLICK, CONVERSION)}
