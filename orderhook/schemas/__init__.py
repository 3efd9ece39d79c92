from .common import BaseResponse, ErrorResponse
from .event import (
    Event, EventStatus, DeadLetterRecord,
    WebhookEventPayload, WebhookResponse,
    ReplayRequest, ReplayResponse, MetricsSnapshot
)

__all__ = [
    # Common
    "BaseResponse", "ErrorResponse",

    # Events
    "Event", "EventStatus", "DeadLetterRecord",
    "WebhookEventPayload", "WebhookResponse",
    "ReplayRequest", "ReplayResponse", "MetricsSnapshot",
]
