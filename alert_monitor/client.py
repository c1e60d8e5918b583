"""Authenticated, rate-limited access to the alerts API."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from alert_monitor import config
from alert_monitor.auth import TokenManager
from alert_monitor.errors import (
    ApiError,
    AuthError,
    NotFoundError,
    RateLimitError,
    TransportError,
    response_detail,
)
from alert_monitor.logger import logger
from alert_monitor.models import Token
from alert_monitor.rate_limit import RateLimiter
from alert_monitor.retry import RetryDecision, build_retrying, classify


class APIClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        tokens: TokenManager,
        limiter: RateLimiter,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        max_retries: int = config.MAX_RETRIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        owns_http: bool = False,
    ):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._tokens = tokens
        self._limiter = limiter
        self._timeout = timeout
        self._max_retries = max_retries
        self._sleep = sleep
        self._owns_http = owns_http

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    async def call(
        self,
        route: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """Send one request, retrying rate limits and transport failures.

        Raises AuthError, RateLimitError, NotFoundError, TransportError or
        ApiError once the retry budget is spent.
        """
        retries = self._max_retries if max_retries is None else max_retries
        state = {"token": None, "refreshed": False}

        def _log_retry(retry_state) -> None:
            exc = retry_state.outcome.exception()
            logger.warning(
                f"[client] {exc} on {route} — retry {retry_state.attempt_number}/{retries} "
                f"in {retry_state.upcoming_sleep:.1f}s"
            )

        retrying = build_retrying(retries, sleep=self._sleep, before_sleep=_log_retry)
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(route, method, params, data, state)
        except (RateLimitError, TransportError):
            logger.error(f"[client] Max retries ({retries}) exceeded for {route}")
            raise

    async def _attempt(
        self,
        route: str,
        method: str,
        params: dict[str, Any] | None,
        data: dict[str, Any] | None,
        state: dict,
    ) -> httpx.Response:
        if state["token"] is None:
            state["token"] = await self._tokens.get_token()

        try:
            return await self._send(route, method, params, data, state["token"])
        except AuthError as e:
            if classify(e) is not RetryDecision.REFRESH_AND_RETRY or state["refreshed"]:
                raise
            logger.warning(f"[client] 401 on {route}, refreshing token")
            state["refreshed"] = True
            try:
                state["token"] = await self._tokens.get_token(
                    force_refresh=True, stale=state["token"]
                )
            except AuthError:
                logger.error(f"[client] Token refresh failed for {route}, credentials may be invalid")
                raise
            return await self._send(route, method, params, data, state["token"])

    async def _send(
        self,
        route: str,
        method: str,
        params: dict[str, Any] | None,
        data: dict[str, Any] | None,
        token: Token,
    ) -> httpx.Response:
        await self._limiter.await_quota()

        url = f"{self._base_url}/{route.lstrip('/')}"
        try:
            resp = await self._http.request(
                method,
                url,
                params=params,
                data=data,
                headers={
                    "X-Application-Name": config.APPLICATION_NAME,
                    "Authorization": f"Bearer {token.value}",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {route} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Request to {route} failed: {e}") from e

        self._limiter.observe(resp.headers)

        status = resp.status_code
        if 200 <= status < 300:
            return resp
        detail = response_detail(resp)
        if status == 401:
            raise AuthError(detail, status)
        if status == 429:
            raise RateLimitError(
                detail, status, retry_after=self._limiter.reset_delay(resp.headers)
            )
        if status == 404:
            raise NotFoundError(detail, status)
        raise ApiError(detail, status)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
