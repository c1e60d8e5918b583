"""Cursor-paginated alert listing and single-alert lookup.

The listing endpoint returns alerts newest-first together with ``nextPage``
and ``previousPage`` URLs. The cursors are the ``from`` / ``to`` query
parameters of those URLs and are handed back to the API verbatim.
"""

from datetime import datetime
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from alert_monitor import config
from alert_monitor.cache import AlertCache
from alert_monitor.client import APIClient
from alert_monitor.errors import (
    AlertApiError,
    ApiError,
    NotFoundError,
    RateLimitError,
    UnexpectedShapeError,
)
from alert_monitor.logger import logger
from alert_monitor.models import Alert, AlertPage, parse_alert_response, parse_timestamp


def parse_cursor(page_url: str | None, param: str) -> str | None:
    """Pull a pagination cursor out of a next/previous page URL."""
    if not page_url:
        return None
    try:
        value = httpx.URL(page_url).params.get(param)
    except httpx.InvalidURL:
        logger.warning(f"[fetcher] Failed to parse page URL for cursor: {page_url}")
        return None
    return value or None


def parse_alerts(raw_alerts: list) -> list[Alert]:
    alerts = []
    for raw in raw_alerts:
        try:
            alerts.append(Alert.from_api(raw))
        except (KeyError, TypeError, AttributeError, ValidationError, ValueError) as e:
            logger.warning(f"[fetcher] Skipping malformed alert: {e}")
    return alerts


class PaginatedFetcher:
    def __init__(
        self,
        client: APIClient,
        cache: AlertCache,
        route_prefix: str = config.ROUTE_PREFIX,
        list_ids: list[str] | None = None,
        page_size: int = config.PAGE_SIZE,
    ):
        self._client = client
        self._cache = cache
        self._route_prefix = route_prefix.strip("/")
        self._list_ids = list(list_ids or [])
        self._page_size = page_size

    @property
    def alerts_route(self) -> str:
        return f"{self._route_prefix}/v1/alerts"

    def _list_param(self, list_ids: list[str] | None = None) -> dict[str, str]:
        list_ids = list_ids or self._list_ids
        return {"lists": ",".join(list_ids)} if list_ids else {}

    async def fetch_page(
        self,
        to_cursor: str | None = None,
        from_cursor: str | None = None,
        count: int | None = None,
        since: datetime | None = None,
        list_ids: list[str] | None = None,
    ) -> AlertPage:
        """Fetch one page of alerts, newest-first.

        ``count`` asks for the ``count`` most recent alerts and ignores cursors.
        ``since`` drops alerts at or before that instant from the page.
        ``list_ids`` replaces the configured lists for this request.
        A rate limit that outlasts the retry budget yields an empty page.
        """
        page_size = max(count, self._page_size) if count else self._page_size
        params: dict[str, str | int] = {"pageSize": page_size}
        if not count:
            if to_cursor:
                params["to"] = to_cursor
            if from_cursor:
                params["from"] = from_cursor
        params.update(self._list_param(list_ids))

        logger.debug(
            f"[fetcher] Fetching alerts from {self.alerts_route}",
            extra={"extra_data": {"params": params, "count": count}},
        )

        try:
            resp = await self._client.call(self.alerts_route, params=params)
        except RateLimitError:
            logger.warning("[fetcher] Rate limit exceeded while fetching alerts, returning empty page")
            return AlertPage(rate_limited=True)
        except AlertApiError as e:
            logger.error(f"[fetcher] Getting alerts failed: {e}")
            raise

        try:
            body = resp.json() or {}
        except ValueError as e:
            raise ApiError(f"Invalid JSON in alerts response: {e}", resp.status_code) from e
        if not isinstance(body, dict):
            raise ApiError("Unexpected alerts listing structure", resp.status_code)

        alerts = parse_alerts(body.get("alerts") or [])
        if count:
            alerts = alerts[:count]
        if since is not None:
            since = parse_timestamp(since)
            alerts = [a for a in alerts if a.alert_timestamp > since]

        next_page = body.get("nextPage") or None
        previous_page = body.get("previousPage") or None

        logger.debug(
            f"[fetcher] Received {len(alerts)} alerts",
            extra={"extra_data": {"has_next_page": bool(next_page)}},
        )

        return AlertPage(
            alerts=alerts,
            next_page=next_page,
            previous_page=previous_page,
            next_cursor=parse_cursor(next_page, "from"),
            previous_cursor=parse_cursor(previous_page, "to"),
        )

    async def fetch_by_id(self, alert_id: str) -> Alert | None:
        """Return one alert, from the cache when possible. ``None`` if absent."""
        if not alert_id:
            raise ValueError("Alert ID is required")

        cached = self._cache.get_by_id(alert_id)
        if cached is not None:
            logger.debug(f"[fetcher] Alert {alert_id} found in cache")
            return cached

        route = f"{self.alerts_route}/{quote(alert_id, safe='')}"
        try:
            resp = await self._client.call(route, params=self._list_param() or None)
        except NotFoundError:
            logger.warning(f"[fetcher] Alert {alert_id} not found (404)")
            return None
        except AlertApiError as e:
            logger.error(f"[fetcher] Getting alert {alert_id} failed: {e}")
            raise

        try:
            alert = parse_alert_response(resp.json())
        except (UnexpectedShapeError, ValueError) as e:
            logger.warning(f"[fetcher] Unexpected response for alert {alert_id}: {e}")
            return None

        if alert is None:
            logger.warning(f"[fetcher] Alert response for {alert_id} contained no alerts")
            return None

        self._cache.add([alert])
        return alert
