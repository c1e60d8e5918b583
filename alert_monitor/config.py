import os

from dotenv import load_dotenv

load_dotenv()


def _list_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


API_URL = os.getenv("ALERT_API_URL", "https://api.dataminr.com").rstrip("/")

# Route prefix of the alerts product ("pulse" or "firstalert").
ROUTE_PREFIX = os.getenv("ALERT_ROUTE_PREFIX", "pulse")

CLIENT_ID = os.getenv("ALERT_CLIENT_ID", "")
CLIENT_SECRET = os.getenv("ALERT_CLIENT_SECRET", "")

# Optional list ids; when set, listings and lookups are restricted to them.
LIST_IDS = _list_env("ALERT_LIST_IDS")

# Polling interval for the background poller (seconds).
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "60"))
MIN_POLL_INTERVAL_SECONDS = 30

# Upper bound on alerts held in memory. The bound is the retention policy.
CACHE_MAX_ALERTS = int(os.getenv("CACHE_MAX_ALERTS", "1000"))

PAGE_SIZE = int(os.getenv("PAGE_SIZE", "40"))
BOOTSTRAP_ALERT_COUNT = 10
MAX_POLL_PAGES = 1000

# Fan-out search settings.
MAX_CONCURRENT_REQUESTS = int(os.getenv("MAX_CONCURRENT_REQUESTS", "5"))
REQUEST_DELAY_MS = int(os.getenv("REQUEST_DELAY_MS", "1000"))

REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
MAX_BACKOFF_SECONDS = 60

# Quota assumed before the API has sent any rate-limit headers.
DEFAULT_RATE_LIMIT = 6
DEFAULT_RATE_WINDOW_SECONDS = 30.0

APPLICATION_NAME = os.getenv("ALERT_APPLICATION_NAME", "alert-monitor")

# Logging format: "pretty" for colorized console, "json" for structured JSON.
LOG_FORMAT = os.getenv("LOG_FORMAT", "pretty")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
