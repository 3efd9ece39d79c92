from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .common import BaseResponse


class EventStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class Event(BaseModel):
    """An order event as stored in dedup records, the stream and the DLQ."""

    event_id: str = Field(..., description="Caller-supplied idempotency key")
    event_type: str = Field(..., description="Event classifier, e.g. order.created")
    payload: Dict[str, Any] = Field(..., description="Order data (order_id, userId, amount)")
    received_at: int = Field(..., description="Unix seconds from the X-Timestamp header")
    status: EventStatus = EventStatus.QUEUED
    retry_count: int = Field(default=0, ge=0)
    # Stream entry id; assigned on append and never written into the entry itself
    delivery_handle: Optional[str] = Field(default=None, exclude=True)

    @property
    def user_id(self) -> Optional[str]:
        user_id = self.payload.get("userId")
        return str(user_id) if user_id is not None else None

    @property
    def order_id(self) -> Optional[str]:
        order_id = self.payload.get("order_id")
        return str(order_id) if order_id is not None else None

    def to_message(self) -> str:
        """JSON stored in the stream / dedup record / retry zset."""
        return self.model_dump_json()

    @classmethod
    def from_message(cls, data: str, delivery_handle: Optional[str] = None) -> "Event":
        event = cls.model_validate_json(data)
        event.delivery_handle = delivery_handle
        return event

    def for_retry(self, retry_count: int) -> "Event":
        return self.model_copy(update={
            "retry_count": retry_count,
            "status": EventStatus.QUEUED,
            "delivery_handle": None,
        })


class DeadLetterRecord(Event):
    """Terminal copy of an event that exhausted its delivery attempts."""

    status: EventStatus = EventStatus.FAILED
    failed_at: int = Field(default_factory=lambda: int(datetime.now(timezone.utc).timestamp()))
    last_error: Optional[str] = None


class WebhookEventPayload(BaseModel):
    """Inbound webhook body. Accepts ``type``/``event_type`` and ``data``/``payload``."""

    model_config = ConfigDict(extra="ignore")

    event_id: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1, validation_alias=AliasChoices("type", "event_type"))
    payload: Dict[str, Any] = Field(..., validation_alias=AliasChoices("data", "payload"))

    @field_validator("payload")
    @classmethod
    def payload_not_empty(cls, v):
        if not v:
            raise ValueError("payload must not be empty")
        return v


class WebhookResponse(BaseResponse):
    event_id: str
    duplicate: bool
    processing_time_ms: int


class ReplayRequest(BaseModel):
    event_id: str = Field(..., min_length=1)


class ReplayResponse(BaseResponse):
    message: str


class MetricsSnapshot(BaseModel):
    received: int = 0
    deduped: int = 0
    sent: int = 0
    failed: int = 0
    dlq: int = 0
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
