"""Errors raised while talking to the alerts API.

Every error carries the HTTP status (when there was a response) and a
readable message, so callers can tell "try again later" (rate limit) from
"fix configuration" (auth) from "genuinely absent" (not found).
"""


class AlertApiError(Exception):
    """Base class for alerts API failures."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"[{self.status}] {self.message}"


class ApiError(AlertApiError):
    """Non-2xx response that no more specific error covers."""


class AuthError(AlertApiError):
    """Credentials were rejected or a token could not be issued."""


class RateLimitError(AlertApiError):
    """The API answered 429; ``retry_after`` is the server reset delay in seconds."""

    def __init__(
        self, message: str, status: int | None = 429, retry_after: float | None = None
    ):
        super().__init__(message, status)
        self.retry_after = retry_after


class NotFoundError(AlertApiError):
    """The API answered 404."""


class TransportError(AlertApiError):
    """Network failure or timeout before a response arrived."""


class UnexpectedShapeError(AlertApiError):
    """Response JSON matches none of the known alert shapes."""


def response_detail(response) -> str:
    """Readable detail for a failed response: the body's message when present."""
    reason = response.reason_phrase or "Request failed"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("errorMessage") or body.get("error")
        if message:
            return f"{reason} | {message}"
    return reason
