"""Fan-out of independent API requests in fixed-size batches.

Each batch runs concurrently; batches are separated by a fixed delay so a
burst of lookups doesn't drain the quota in one go.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from alert_monitor.logger import logger
from alert_monitor.models import BatchOutcome

RequestFactory = Callable[[], Awaitable[Any]]


def _is_empty(result: Any) -> bool:
    return result is None or (hasattr(result, "__len__") and len(result) == 0)


async def run_batched(
    requests: Sequence[tuple[str, RequestFactory]],
    max_concurrent: int,
    delay_ms: int,
    best_effort: bool = False,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[BatchOutcome]:
    """Run ``(result_id, factory)`` requests ``max_concurrent`` at a time.

    Failures are collected per request so siblings in the same batch still
    complete. Unless ``best_effort`` is set, the first failure is raised once
    its batch has finished and no further batches start. In best-effort mode
    failed and empty results are dropped instead.
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    batches = [
        requests[i : i + max_concurrent] for i in range(0, len(requests), max_concurrent)
    ]
    outcomes: list[BatchOutcome] = []

    for index, batch in enumerate(batches):
        if index > 0 and delay_ms > 0:
            await sleep(delay_ms / 1000)

        results = await asyncio.gather(
            *(factory() for _, factory in batch), return_exceptions=True
        )

        first_error: BaseException | None = None
        for (result_id, _), result in zip(batch, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"[batch] Request {result_id} failed: {result}")
                first_error = first_error or result
                outcomes.append(BatchOutcome(result_id=result_id, error=str(result)))
            else:
                outcomes.append(BatchOutcome(result_id=result_id, result=result))

        logger.debug(
            f"[batch] Batch {index + 1}/{len(batches)} done ({len(batch)} requests)"
        )

        if first_error is not None and not best_effort:
            raise first_error

    if best_effort:
        return [o for o in outcomes if o.error is None and not _is_empty(o.result)]
    return outcomes
