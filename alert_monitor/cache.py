"""Bounded in-memory alert cache.

Holds the most recently ingested alerts, keyed by alert id. The size bound is
the only retention policy: once full, the oldest-inserted alerts are evicted.
Both the background poller and on-demand lookups write here, so duplicate ids
overwrite instead of piling up.
"""

from collections import OrderedDict
from collections.abc import Iterable
from datetime import datetime

from alert_monitor.models import Alert, parse_timestamp


class AlertCache:
    def __init__(self, max_size: int = 1000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._store: OrderedDict[str, Alert] = OrderedDict()  # insertion order
        self._max_size = max_size

    def _evict(self) -> None:
        while len(self._store) > self._max_size:
            self._store.popitem(last=False)

    def add(self, alerts: Iterable[Alert]) -> int:
        """Upsert alerts and enforce the bound. Returns how many ids were new.

        Runs without awaiting, so a whole page lands in one step from the
        point of view of other coroutines.
        """
        added = 0
        for alert in alerts:
            if alert.alert_id in self._store:
                self._store.move_to_end(alert.alert_id)
            else:
                added += 1
            self._store[alert.alert_id] = alert
        self._evict()
        return added

    def get_by_id(self, alert_id: str) -> Alert | None:
        return self._store.get(alert_id)

    def query(
        self,
        list_ids: Iterable[str] | None = None,
        since: datetime | None = None,
    ) -> list[Alert]:
        """Return cached alerts newest-first, filtered by list membership and recency."""
        if since is not None:
            since = parse_timestamp(since)
        wanted = set(list_ids) if list_ids else None
        results = []
        for alert in self._newest_first():
            if since is not None and alert.alert_timestamp <= since:
                continue
            if wanted is not None and not (wanted & alert.list_memberships):
                continue
            results.append(alert)
        return results

    def _newest_first(self) -> list[Alert]:
        # Ties on timestamp resolve to the most recently inserted alert first.
        ordered = list(reversed(self._store.values()))
        return sorted(ordered, key=lambda a: a.alert_timestamp, reverse=True)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, alert_id: str) -> bool:
        return alert_id in self._store

    def __len__(self) -> int:
        return len(self._store)

    @property
    def size(self) -> int:
        return len(self._store)

    @property
    def max_size(self) -> int:
        return self._max_size
