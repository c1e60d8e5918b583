"""Alert service — the one object that owns the client stack, cache and poller.

Construct it once per process, call ``start_polling()`` when the event loop is
running and ``aclose()`` on shutdown.
"""

import asyncio
import ipaddress
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone

import httpx

from alert_monitor.auth import TokenManager
from alert_monitor.batch import run_batched
from alert_monitor.cache import AlertCache
from alert_monitor.client import APIClient
from alert_monitor.errors import ApiError
from alert_monitor.fetcher import PaginatedFetcher, parse_alerts
from alert_monitor.logger import logger
from alert_monitor.models import Alert, AlertsResult, BatchOutcome, ServiceOptions
from alert_monitor.poller import PollScheduler
from alert_monitor.rate_limit import RateLimiter


def is_searchable(entity: str) -> bool:
    """Private, loopback and link-local addresses are never sent to the API."""
    try:
        ip = ipaddress.ip_address(entity.strip())
    except ValueError:
        return bool(entity.strip())
    return not (ip.is_private or ip.is_loopback or ip.is_link_local)


class AlertService:
    def __init__(
        self,
        options: ServiceOptions,
        http: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.options = options
        owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=options.request_timeout_seconds)
        self._sleep = sleep

        self.cache = AlertCache(max_size=options.cache_max_alerts)
        self.limiter = limiter or RateLimiter(sleep=sleep)
        self.tokens = TokenManager(
            self._http,
            options.base_url,
            options.client_id,
            options.client_secret,
            timeout=options.request_timeout_seconds,
        )
        self.client = APIClient(
            self._http,
            options.base_url,
            self.tokens,
            self.limiter,
            timeout=options.request_timeout_seconds,
            max_retries=options.max_retries,
            sleep=sleep,
            owns_http=owns_http,
        )
        self.fetcher = PaginatedFetcher(
            self.client,
            self.cache,
            route_prefix=options.route_prefix,
            list_ids=options.list_ids,
            page_size=options.page_size,
        )
        self.poller = PollScheduler(
            self.fetcher,
            self.cache,
            interval_seconds=options.poll_interval_seconds,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_polling(self, interval_seconds: float | None = None) -> bool:
        return self.poller.start(self.options.has_credentials, interval_seconds)

    async def stop_polling(self) -> None:
        await self.poller.stop()

    async def aclose(self) -> None:
        await self.stop_polling()
        self.tokens.clear()
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_alerts_since(
        self,
        since: datetime | None = None,
        count: int | None = None,
        list_ids: Iterable[str] | None = None,
    ) -> AlertsResult:
        """Cache-first read of recent alerts.

        With ``count``, returns the ``count`` newest alerts, asking the API when
        the cache holds fewer. Without it, returns alerts newer than ``since``
        (default: now). A rate-limited API answer falls back to the cache.
        """
        list_ids = list(list_ids) if list_ids else None
        from_cache = True

        if count is not None and count < 1:
            raise ValueError("count must be at least 1")

        if count is not None:
            cached = self.cache.query(list_ids=list_ids)
            if len(cached) >= count:
                alerts = cached[:count]
            else:
                logger.debug(
                    f"[service] Cache holds {len(cached)} alerts, {count} requested — querying API"
                )
                page = await self.fetcher.fetch_page(count=count, list_ids=list_ids)
                if page.rate_limited:
                    logger.warning("[service] API rate limited, answering from cache")
                    alerts = cached[:count]
                else:
                    self.cache.add(page.alerts)
                    alerts = page.alerts
                    if list_ids:
                        wanted = set(list_ids)
                        alerts = [a for a in alerts if wanted & a.list_memberships]
                    from_cache = False
        else:
            if since is None:
                since = datetime.now(timezone.utc)
            alerts = self.cache.query(list_ids=list_ids, since=since)

        last_poll = self.poller.watermark.last_poll_time
        return AlertsResult(
            alerts=alerts,
            count=len(alerts),
            last_query_timestamp=last_poll or datetime.now(timezone.utc),
            from_cache=from_cache,
        )

    async def get_alert_by_id(self, alert_id: str) -> Alert | None:
        return await self.fetcher.fetch_by_id(alert_id)

    async def search_by_entity(
        self,
        entities: Iterable[str],
        max_concurrent: int | None = None,
        delay_ms: int | None = None,
        best_effort: bool = True,
    ) -> list[BatchOutcome]:
        """One listing query per entity, fanned out in batches."""
        searchable = [e.strip() for e in entities if is_searchable(e)]
        route = self.fetcher.alerts_route

        def _request(entity: str):
            async def _run() -> list[Alert]:
                resp = await self.client.call(
                    route, params={"query": entity, "pageSize": self.options.page_size}
                )
                try:
                    body = resp.json() or {}
                except ValueError as e:
                    raise ApiError(f"Invalid JSON in search response: {e}", resp.status_code) from e
                if not isinstance(body, dict):
                    raise ApiError("Unexpected search response structure", resp.status_code)
                return parse_alerts(body.get("alerts") or [])

            return _run

        return await run_batched(
            [(entity, _request(entity)) for entity in searchable],
            max_concurrent=max_concurrent or self.options.max_concurrent_requests,
            delay_ms=self.options.request_delay_ms if delay_ms is None else delay_ms,
            best_effort=best_effort,
            sleep=self._sleep,
        )

    async def search(
        self,
        entities: Iterable[str],
        max_concurrent: int | None = None,
        delay_ms: int | None = None,
        best_effort: bool = True,
    ) -> list[Alert]:
        """Alerts matching any of ``entities``, deduplicated, newest-first."""
        outcomes = await self.search_by_entity(entities, max_concurrent, delay_ms, best_effort)
        seen: dict[str, Alert] = {}
        for outcome in outcomes:
            for alert in outcome.result or []:
                seen.setdefault(alert.alert_id, alert)
        return sorted(seen.values(), key=lambda a: a.alert_timestamp, reverse=True)
