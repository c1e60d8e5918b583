from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from alert_monitor import config
from alert_monitor.errors import UnexpectedShapeError


def parse_timestamp(value: Any) -> datetime:
    """Normalize epoch milliseconds or ISO-8601 into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"unsupported timestamp: {value!r}")


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    alert_id: str
    alert_timestamp: datetime
    type: str = ""
    list_memberships: frozenset[str] = frozenset()
    payload: dict[str, Any] = {}

    @field_validator("alert_timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "Alert":
        alert_type = raw.get("alertType", raw.get("type", ""))
        if isinstance(alert_type, dict):
            alert_type = alert_type.get("name", "")

        lists: set[str] = set()
        for entry in raw.get("listsMatched") or []:
            list_id = entry.get("id") if isinstance(entry, dict) else entry
            if list_id is not None:
                lists.add(str(list_id))

        return cls(
            alert_id=raw["alertId"],
            alert_timestamp=raw["alertTimestamp"],
            type=str(alert_type or "").lower(),
            list_memberships=frozenset(lists),
            payload=raw,
        )

    @property
    def headline(self) -> str:
        return self.payload.get("headline", "")


def parse_alert_response(body: Any) -> Alert | None:
    """Resolve a single-alert response into one Alert.

    The lookup endpoint answers either ``{"alerts": [alert]}`` or a bare alert
    object. An empty ``alerts`` array means not found.
    """
    try:
        if isinstance(body, dict):
            wrapped = body.get("alerts")
            if isinstance(wrapped, list):
                return Alert.from_api(wrapped[0]) if wrapped else None
            if body.get("alertId"):
                return Alert.from_api(body)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise UnexpectedShapeError(f"Malformed alert in response: {e}") from e
    raise UnexpectedShapeError("Unexpected response structure from the alerts API")


class Token(BaseModel):
    value: str
    expires_at: float  # epoch seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class QuotaState(BaseModel):
    limit: int = config.DEFAULT_RATE_LIMIT
    remaining: int = config.DEFAULT_RATE_LIMIT
    reset_at: float | None = None  # clock seconds


class PollWatermark(BaseModel):
    last_poll_time: datetime | None = None
    total_alerts_processed: int = 0


class AlertPage(BaseModel):
    alerts: list[Alert] = []
    next_page: str | None = None
    previous_page: str | None = None
    next_cursor: str | None = None
    previous_cursor: str | None = None
    rate_limited: bool = False


class PollResult(BaseModel):
    success: bool
    alerts_processed: int = 0
    has_more: bool = False
    skipped: bool = False
    error: str | None = None


class BatchOutcome(BaseModel):
    result_id: str
    result: Any = None
    error: str | None = None


class AlertsResult(BaseModel):
    alerts: list[Alert]
    count: int
    last_query_timestamp: datetime
    from_cache: bool = True


class ServiceOptions(BaseModel):
    base_url: str = config.API_URL
    route_prefix: str = config.ROUTE_PREFIX
    client_id: str = ""
    client_secret: str = ""
    list_ids: list[str] = []
    page_size: int = config.PAGE_SIZE
    cache_max_alerts: int = config.CACHE_MAX_ALERTS
    poll_interval_seconds: float = config.POLL_INTERVAL_SECONDS
    max_concurrent_requests: int = config.MAX_CONCURRENT_REQUESTS
    request_delay_ms: int = config.REQUEST_DELAY_MS
    request_timeout_seconds: float = config.REQUEST_TIMEOUT_SECONDS
    max_retries: int = config.MAX_RETRIES

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_config(cls) -> "ServiceOptions":
        return cls(
            client_id=config.CLIENT_ID,
            client_secret=config.CLIENT_SECRET,
            list_ids=list(config.LIST_IDS),
        )
