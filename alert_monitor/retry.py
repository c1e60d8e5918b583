"""Retry policy for alerts API calls.

Errors are classified once, and the classification drives both the tenacity
retry condition and the wait strategy:

- 401 responses: refresh the token and resend (handled inside one attempt,
  so it never consumes a retry slot)
- 429 responses: wait for the server's reset delay, or back off exponentially
- transport failures and timeouts: back off exponentially
- everything else: fail
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from alert_monitor import config
from alert_monitor.errors import AuthError, RateLimitError, TransportError


class RetryDecision(str, Enum):
    RETRY_WITH_DELAY = "retry_with_delay"
    REFRESH_AND_RETRY = "refresh_and_retry"
    FAIL = "fail"


def classify(exception: BaseException) -> RetryDecision:
    if isinstance(exception, AuthError) and exception.status == 401:
        return RetryDecision.REFRESH_AND_RETRY
    if isinstance(exception, (RateLimitError, TransportError)):
        return RetryDecision.RETRY_WITH_DELAY
    return RetryDecision.FAIL


def should_retry(exception: BaseException) -> bool:
    return classify(exception) is RetryDecision.RETRY_WITH_DELAY


def backoff_seconds(attempt: int, cap: float = config.MAX_BACKOFF_SECONDS) -> float:
    """Exponential backoff for the zero-based ``attempt``: 1s, 2s, 4s ... capped."""
    return float(min(2 ** attempt, cap))


def wait_rate_limit_with_backoff(retry_state) -> float:
    """Honor the server reset delay on 429s, otherwise back off exponentially."""
    exception = retry_state.outcome.exception()
    attempt = retry_state.attempt_number - 1
    if isinstance(exception, RateLimitError) and exception.retry_after is not None:
        return exception.retry_after
    return backoff_seconds(attempt)


def build_retrying(
    max_retries: int = config.MAX_RETRIES,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    before_sleep: Callable | None = None,
) -> AsyncRetrying:
    """Retry controller allowing ``max_retries`` retries after the first attempt."""
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        retry=retry_if_exception(should_retry),
        wait=wait_rate_limit_with_backoff,
        sleep=sleep,
        before_sleep=before_sleep,
        reraise=True,
    )
