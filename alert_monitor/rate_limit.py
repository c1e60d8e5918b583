"""Client-side accounting of the alerts API quota.

The API reports its rate-limit window on every response through
``x-ratelimit-limit``, ``x-ratelimit-remaining`` and ``x-ratelimit-reset``
(milliseconds until the window resets). Between responses the limiter
decrements its own copy optimistically, so callers don't need a round-trip
to learn whether they may send. Whatever the server says next always wins.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping

from alert_monitor import config
from alert_monitor.logger import logger
from alert_monitor.models import QuotaState

LIMIT_HEADER = "x-ratelimit-limit"
REMAINING_HEADER = "x-ratelimit-remaining"
RESET_HEADER = "x-ratelimit-reset"


def _header_int(headers: Mapping[str, str], name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.debug(f"[rate-limit] Ignoring unparseable {name} header: {value!r}")
        return None


class RateLimiter:
    def __init__(
        self,
        limit: int = config.DEFAULT_RATE_LIMIT,
        window_seconds: float = config.DEFAULT_RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._state = QuotaState(limit=limit, remaining=limit)
        self._window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._observed = 0

    @property
    def state(self) -> QuotaState:
        return self._state.model_copy()

    async def await_quota(self) -> None:
        """Claim one request slot, sleeping until the window resets if none is left."""
        async with self._lock:
            state = self._state
            now = self._clock()

            if state.reset_at is not None and now >= state.reset_at:
                logger.debug("[rate-limit] Window has reset")
                state.remaining = state.limit
                state.reset_at = None

            if state.remaining > 0:
                state.remaining -= 1
                return

            if state.reset_at is not None:
                wait = state.reset_at - now
                logger.warning(
                    f"[rate-limit] Quota exhausted — waiting {wait:.1f}s for reset",
                    extra={"extra_data": {"limit": state.limit, "wait_seconds": round(wait, 3)}},
                )
            else:
                wait = self._window_seconds
                logger.warning(
                    f"[rate-limit] Quota exhausted with no reset time — "
                    f"waiting default window of {wait:.0f}s",
                    extra={"extra_data": {"limit": state.limit}},
                )
            observed = self._observed
            await self._sleep(wait)

            # Headers seen during the wait already describe the new window.
            if self._observed == observed:
                state.remaining = state.limit
                state.reset_at = None

    def observe(self, headers: Mapping[str, str]) -> None:
        """Overwrite the local quota with what the server reported."""
        limit = _header_int(headers, LIMIT_HEADER)
        remaining = _header_int(headers, REMAINING_HEADER)
        reset_ms = _header_int(headers, RESET_HEADER)

        if limit is not None:
            self._state.limit = limit
        if remaining is not None:
            self._state.remaining = max(remaining, 0)
        if reset_ms is not None:
            self._state.reset_at = self._clock() + reset_ms / 1000

        if limit is not None or remaining is not None or reset_ms is not None:
            self._observed += 1
            logger.debug(
                "[rate-limit] Updated quota from response headers",
                extra={"extra_data": self._state.model_dump()},
            )

    @staticmethod
    def reset_delay(headers: Mapping[str, str]) -> float | None:
        """Seconds until the server's window resets, if the response said."""
        reset_ms = _header_int(headers, RESET_HEADER)
        if reset_ms is None:
            return None
        return max(reset_ms / 1000, 0.0)
