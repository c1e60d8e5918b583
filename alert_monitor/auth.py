"""Bearer token issuance and caching for the alerts API.

Tokens come from an ``api_key`` grant against ``/auth/v1/token`` and are cached
until the expiry the server reported. Callers that find the token missing or
rejected at the same time share one in-flight issuance request.
"""

import asyncio
import time
from collections.abc import Callable

import httpx

from alert_monitor import config
from alert_monitor.errors import AuthError, response_detail
from alert_monitor.logger import logger
from alert_monitor.models import Token

_AUTH_FAILURE = "Failed to retrieve auth token - invalid clientId / clientSecret: "


class TokenManager:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._clock = clock
        self._tokens: dict[tuple[str, str], Token] = {}
        self._inflight: dict[tuple[str, str], asyncio.Task] = {}

    @property
    def _key(self) -> tuple[str, str]:
        return (self._client_id, self._client_secret)

    async def get_token(
        self, force_refresh: bool = False, stale: Token | None = None
    ) -> Token:
        """Return a valid token, issuing a new one when needed.

        ``force_refresh`` drops the cached token first. If ``stale`` names the
        token that was just rejected and the cache already holds a different
        one, a concurrent caller has refreshed and that token is returned.
        """
        key = self._key
        cached = self._tokens.get(key)
        if cached is not None and cached.is_expired(self._clock()):
            self._tokens.pop(key, None)
            cached = None

        if force_refresh:
            if cached is not None and stale is not None and cached.value != stale.value:
                return cached
            self._tokens.pop(key, None)
        elif cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._issue(key))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _issue(self, key: tuple[str, str]) -> Token:
        url = f"{self._base_url}/auth/v1/token"
        logger.debug(f"[auth] Requesting token from {url}")
        try:
            resp = await self._http.post(
                url,
                data={
                    "grant_type": "api_key",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
                headers={
                    "X-Application-Name": config.APPLICATION_NAME,
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise AuthError(f"{_AUTH_FAILURE}{e}") from e

        if resp.status_code != 200:
            raise AuthError(f"{_AUTH_FAILURE}{response_detail(resp)}", resp.status_code)

        try:
            body = resp.json()
            token = Token(value=body["dmaToken"], expires_at=int(body["expire"]) / 1000)
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError(f"{_AUTH_FAILURE}malformed token response ({e})", resp.status_code) from e

        ttl = token.expires_at - self._clock()
        if ttl <= 0:
            raise AuthError(f"{_AUTH_FAILURE}token already expired", resp.status_code)

        self._tokens[key] = token
        logger.info(f"[auth] Token issued, valid for {ttl:.0f}s")
        return token

    def clear(self) -> None:
        self._tokens.pop(self._key, None)
