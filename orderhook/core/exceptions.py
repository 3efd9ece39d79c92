from enum import Enum
from typing import Optional


class RejectionReason(str, Enum):
    """Why an inbound webhook was refused. Terminal per request."""

    RATE_LIMITED = "RATE_LIMITED"
    BAD_REQUEST = "BAD_REQUEST"
    STALE = "STALE"
    UNAUTHORIZED = "UNAUTHORIZED"

    @property
    def status_code(self) -> int:
        return _REJECTION_STATUS[self]


_REJECTION_STATUS = {
    RejectionReason.RATE_LIMITED: 429,
    RejectionReason.BAD_REQUEST: 400,
    RejectionReason.STALE: 400,
    RejectionReason.UNAUTHORIZED: 401,
}


class WebhookRejected(Exception):
    """Raised by the ingestion path; mapped straight to an HTTP response."""

    def __init__(self, reason: RejectionReason, detail: str, remaining: Optional[int] = None):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail
        self.remaining = remaining


class EventNotFoundError(Exception):
    """Replay requested for an event_id with no dedup record."""

    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class TransportFailure(Exception):
    """Notification send failed. Always retryable."""


class StoreUnavailableError(Exception):
    """Redis could not be reached or timed out."""
