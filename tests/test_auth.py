"""Tests for token issuance and caching."""

import asyncio
import time

import pytest

from alert_monitor.auth import TokenManager
from alert_monitor.errors import AuthError
from tests.conftest import BASE_URL, json_response, token_response


def _manager(mock_http, clock=time.time):
    return TokenManager(mock_http, BASE_URL, "test-client", "test-secret", clock=clock)


@pytest.mark.asyncio
async def test_issues_token_with_form_body(mock_http):
    manager = _manager(mock_http)
    token = await manager.get_token()

    assert token.value == "tok-1"
    args, kwargs = mock_http.post.call_args
    assert args[0] == f"{BASE_URL}/auth/v1/token"
    assert kwargs["data"] == {
        "grant_type": "api_key",
        "client_id": "test-client",
        "client_secret": "test-secret",
    }
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"


@pytest.mark.asyncio
async def test_reuses_cached_token(mock_http):
    manager = _manager(mock_http)
    first = await manager.get_token()
    second = await manager.get_token()
    assert first == second
    assert mock_http.post.call_count == 1


@pytest.mark.asyncio
async def test_expired_token_is_reissued(mock_http):
    now = [time.time()]
    manager = _manager(mock_http, clock=lambda: now[0])
    mock_http.post.side_effect = [token_response("tok-1", ttl_seconds=60), token_response("tok-2")]

    assert (await manager.get_token()).value == "tok-1"
    now[0] += 120
    assert (await manager.get_token()).value == "tok-2"
    assert mock_http.post.call_count == 2


@pytest.mark.asyncio
async def test_force_refresh_evicts_cache(mock_http):
    manager = _manager(mock_http)
    mock_http.post.side_effect = [token_response("tok-1"), token_response("tok-2")]

    await manager.get_token()
    refreshed = await manager.get_token(force_refresh=True)
    assert refreshed.value == "tok-2"
    assert mock_http.post.call_count == 2


@pytest.mark.asyncio
async def test_refresh_with_stale_token_reuses_newer_one(mock_http):
    manager = _manager(mock_http)
    mock_http.post.side_effect = [token_response("tok-1"), token_response("tok-2")]

    stale = await manager.get_token()
    fresh = await manager.get_token(force_refresh=True, stale=stale)
    again = await manager.get_token(force_refresh=True, stale=stale)
    assert fresh.value == again.value == "tok-2"
    assert mock_http.post.call_count == 2


@pytest.mark.asyncio
async def test_rejected_credentials_raise_auth_error(mock_http):
    mock_http.post.return_value = json_response(401, {"message": "bad client secret"})
    manager = _manager(mock_http)

    with pytest.raises(AuthError) as exc_info:
        await manager.get_token()
    assert exc_info.value.status == 401
    assert "invalid clientId / clientSecret" in exc_info.value.message
    assert "bad client secret" in exc_info.value.message


@pytest.mark.asyncio
async def test_malformed_token_response_raises_auth_error(mock_http):
    mock_http.post.return_value = json_response(200, {"unexpected": True})
    with pytest.raises(AuthError):
        await _manager(mock_http).get_token()


@pytest.mark.asyncio
async def test_concurrent_issuers_share_one_request(mock_http):
    async def slow_issue(*args, **kwargs):
        await asyncio.sleep(0.01)
        return token_response("tok-shared")

    mock_http.post.side_effect = slow_issue
    manager = _manager(mock_http)

    tokens = await asyncio.gather(*(manager.get_token() for _ in range(5)))
    assert {t.value for t in tokens} == {"tok-shared"}
    assert mock_http.post.call_count == 1


@pytest.mark.asyncio
async def test_clear_drops_cached_token(mock_http):
    manager = _manager(mock_http)
    await manager.get_token()
    manager.clear()
    await manager.get_token()
    assert mock_http.post.call_count == 2
