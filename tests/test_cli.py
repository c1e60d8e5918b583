"""Tests for the operator commands."""

from unittest.mock import patch

import pytest

from alert_monitor import cli
from tests.conftest import json_response, make_alert, raw_alert


@pytest.mark.asyncio
async def test_recent_prints_cached_alerts(service, capsys):
    service.cache.add([make_alert("a1", minutes=1, alert_type="flash", headline="Explosion reported")])

    with patch("alert_monitor.cli.AlertService", return_value=service):
        code = await cli._run("recent", ["1"])

    out = capsys.readouterr().out
    assert code == 0
    assert "1 most recent alerts" in out
    assert "a1" in out
    assert "Explosion reported" in out


@pytest.mark.asyncio
async def test_alert_not_found(service, mock_http, capsys):
    mock_http.request.return_value = json_response(404)

    with patch("alert_monitor.cli.AlertService", return_value=service):
        code = await cli._run("alert", ["missing"])

    assert code == 0
    assert "Alert missing not found" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_search_prints_per_entity(service, mock_http, capsys):
    mock_http.request.return_value = json_response(200, {"alerts": [raw_alert("hit", 2)]})

    with patch("alert_monitor.cli.AlertService", return_value=service):
        code = await cli._run("search", ["evil.example.com"])

    out = capsys.readouterr().out
    assert code == 0
    assert "evil.example.com: 1 alert(s)" in out


@pytest.mark.asyncio
async def test_api_failure_returns_non_zero(service, mock_http, capsys):
    mock_http.post.return_value = json_response(401, {"message": "bad secret"})

    with patch("alert_monitor.cli.AlertService", return_value=service):
        code = await cli._run("token", [])

    assert code == 1
    assert "Request failed" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_unknown_command(service, capsys):
    with patch("alert_monitor.cli.AlertService", return_value=service):
        assert await cli._run("bogus", []) == 1
