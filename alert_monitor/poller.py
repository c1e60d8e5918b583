"""Background poller — keeps the alert cache current.

The first cycle bootstraps the cache with the few most recent alerts. Every
later cycle walks the listing newest → oldest from the top, keeping alerts
newer than the watermark, and stops at the first page with nothing new:
alerts are listed newest-first, so no later page can hold newer ones.

Cycles never raise. A failed cycle is logged and reported, and the
watermark stays where it was so the next cycle catches up.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum

from alert_monitor import config
from alert_monitor.cache import AlertCache
from alert_monitor.fetcher import PaginatedFetcher
from alert_monitor.logger import log_event, logger
from alert_monitor.models import Alert, PollResult, PollWatermark


class BootstrapDeferred(Exception):
    """The bootstrap fetch came back rate limited."""


class PollState(str, Enum):
    UNINITIALIZED = "uninitialized"
    BOOTSTRAPPING = "bootstrapping"
    STEADY = "steady"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollScheduler:
    def __init__(
        self,
        fetcher: PaginatedFetcher,
        cache: AlertCache,
        interval_seconds: float = config.POLL_INTERVAL_SECONDS,
        bootstrap_count: int = config.BOOTSTRAP_ALERT_COUNT,
        max_pages: int = config.MAX_POLL_PAGES,
        now: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._fetcher = fetcher
        self._cache = cache
        self._interval = self._clamp_interval(interval_seconds)
        self._bootstrap_count = bootstrap_count
        self._max_pages = max_pages
        self._now = now
        self._sleep = sleep
        self._cycle_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.state = PollState.UNINITIALIZED
        self.watermark = PollWatermark()

    @staticmethod
    def _clamp_interval(seconds: float) -> float:
        if seconds < config.MIN_POLL_INTERVAL_SECONDS:
            logger.warning(
                f"[poller] Poll interval {seconds}s is below the "
                f"{config.MIN_POLL_INTERVAL_SECONDS}s minimum — using the minimum"
            )
            return float(config.MIN_POLL_INTERVAL_SECONDS)
        return float(seconds)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, has_credentials: bool, interval_seconds: float | None = None) -> bool:
        """Start the poll loop. Returns False when polling cannot start."""
        if self.running:
            return True
        if not has_credentials:
            logger.warning("[poller] Client ID or secret not configured — polling will not start")
            return False

        if interval_seconds is not None:
            self._interval = self._clamp_interval(interval_seconds)
        self.state = self._resume_state()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"[poller] Started — polling every {self._interval:.0f}s")
        return True

    def _resume_state(self) -> PollState:
        # The watermark survives stop/start; only a scheduler that never polled bootstraps.
        if self.watermark.last_poll_time is None:
            return PollState.BOOTSTRAPPING
        return PollState.STEADY

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.state = PollState.UNINITIALIZED
        logger.info("[poller] Stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"[poller] Unexpected error: {e}")
            await self._sleep(self._interval)

    # ------------------------------------------------------------------
    # Poll cycles
    # ------------------------------------------------------------------

    async def poll_once(self) -> PollResult:
        """Run one cycle unless another is in progress."""
        if self._cycle_lock.locked():
            logger.debug("[poller] Cycle already running — skipping")
            return PollResult(success=True, skipped=True)

        async with self._cycle_lock:
            started = self._now()
            if self.state is PollState.UNINITIALIZED:
                self.state = self._resume_state()
            try:
                if self.watermark.last_poll_time is None:
                    processed, has_more = await self._bootstrap()
                else:
                    processed, has_more = await self._catch_up(self.watermark.last_poll_time)
            except Exception as e:
                logger.error(f"[poller] Polling the alerts API failed: {e}")
                return PollResult(success=False, error=str(e))

            self._advance(started, processed)
            self.state = PollState.STEADY
            logger.debug(
                f"[poller] Cycle complete: {processed} alerts",
                extra={"extra_data": {
                    "total_processed": self.watermark.total_alerts_processed,
                    "has_more": has_more,
                }},
            )
            return PollResult(success=True, alerts_processed=processed, has_more=has_more)

    async def _bootstrap(self) -> tuple[int, bool]:
        logger.debug(f"[poller] First poll: fetching {self._bootstrap_count} alerts")
        page = await self._fetcher.fetch_page(count=self._bootstrap_count)
        if page.rate_limited:
            raise BootstrapDeferred("Rate limited during bootstrap — will retry next cycle")
        self._fold(page.alerts)
        return len(page.alerts), bool(page.next_page)

    async def _catch_up(self, since: datetime) -> tuple[int, bool]:
        logger.debug(f"[poller] Fetching alerts since {since.isoformat()}")
        processed = 0
        pages = 0
        cursor: str | None = None
        continue_paging = True

        while continue_paging and pages < self._max_pages:
            pages += 1
            page = await self._fetcher.fetch_page(from_cursor=cursor, since=since)
            if page.rate_limited:
                logger.warning(f"[poller] Rate limited on page {pages} — ending cycle early")
                return processed, True

            self._fold(page.alerts)
            processed += len(page.alerts)

            cursor = page.next_cursor
            continue_paging = cursor is not None and len(page.alerts) > 0
            logger.debug(
                f"[poller] Page {pages}: {len(page.alerts)} new alerts",
                extra={"extra_data": {"has_next_page": cursor is not None}},
            )

        if continue_paging:
            logger.warning(
                f"[poller] Reached the {self._max_pages}-page limit after "
                f"{processed} alerts — there may be more"
            )
        return processed, continue_paging

    def _fold(self, alerts: list[Alert]) -> None:
        if not alerts:
            return
        new_ids = {a.alert_id for a in alerts if a.alert_id not in self._cache}
        self._cache.add(alerts)
        for alert in alerts:
            if alert.alert_id in new_ids:
                log_event(
                    source="poller",
                    alert_id=alert.alert_id,
                    alert_type=alert.type,
                    headline=alert.headline,
                    lists=sorted(alert.list_memberships),
                    timestamp=alert.alert_timestamp.isoformat(),
                )

    def _advance(self, started: datetime, processed: int) -> None:
        last = self.watermark.last_poll_time
        self.watermark = PollWatermark(
            last_poll_time=started if last is None else max(last, started),
            total_alerts_processed=self.watermark.total_alerts_processed + processed,
        )
