import asyncio
import os
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

# Predictable config for tests.
os.environ["ALERT_CLIENT_ID"] = "test-client"
os.environ["ALERT_CLIENT_SECRET"] = "test-secret"
os.environ["ALERT_API_URL"] = "https://api.example.test"
os.environ["ALERT_LIST_IDS"] = ""
os.environ["POLL_INTERVAL_SECONDS"] = "999999"
os.environ["LOG_LEVEL"] = "WARNING"

from alert_monitor.models import Alert, ServiceOptions  # noqa: E402
from alert_monitor.rate_limit import RateLimiter  # noqa: E402
from alert_monitor.service import AlertService  # noqa: E402

BASE_URL = "https://api.example.test"
BASE_TIME = datetime(2025, 11, 3, 14, 0, tzinfo=timezone.utc)


def epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def raw_alert(
    alert_id: str,
    minutes: float = 0,
    alert_type: str = "Alert",
    lists: list[str] | None = None,
    headline: str = "",
) -> dict:
    """Alert as the API sends it, ``minutes`` after BASE_TIME."""
    return {
        "alertId": alert_id,
        "alertTimestamp": epoch_ms(BASE_TIME + timedelta(minutes=minutes)),
        "alertType": {"name": alert_type},
        "headline": headline or f"Headline for {alert_id}",
        "listsMatched": [{"id": list_id, "name": f"List {list_id}"} for list_id in lists or []],
    }


def make_alert(alert_id: str, minutes: float = 0, alert_type: str = "alert", lists=None, **payload) -> Alert:
    return Alert(
        alert_id=alert_id,
        alert_timestamp=BASE_TIME + timedelta(minutes=minutes),
        type=alert_type,
        list_memberships=frozenset(lists or []),
        payload={"alertId": alert_id, **payload},
    )


def json_response(status: int = 200, body=None, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=body if body is not None else {}, headers=headers or {})


def token_response(value: str = "tok-1", ttl_seconds: float = 3600) -> httpx.Response:
    return json_response(200, {"dmaToken": value, "expire": int((time.time() + ttl_seconds) * 1000)})


class FakeClock:
    """Manually advanced clock whose sleep records durations instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_http():
    client = AsyncMock(spec=httpx.AsyncClient)
    client.post = AsyncMock(return_value=token_response())
    client.request = AsyncMock(return_value=json_response(200, {"alerts": []}))
    return client


@pytest.fixture
def options():
    return ServiceOptions(
        base_url=BASE_URL,
        route_prefix="pulse",
        client_id="test-client",
        client_secret="test-secret",
        page_size=40,
        cache_max_alerts=100,
        poll_interval_seconds=60,
        max_concurrent_requests=3,
        request_delay_ms=100,
        max_retries=3,
    )


@pytest.fixture
def service(options, mock_http, clock):
    return AlertService(
        options,
        http=mock_http,
        limiter=RateLimiter(limit=1000, clock=clock, sleep=clock.sleep),
        sleep=clock.sleep,
    )
