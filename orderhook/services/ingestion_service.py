import json
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Union

from pydantic import ValidationError

from orderhook.core.config import settings
from orderhook.core.exceptions import RejectionReason, WebhookRejected
from orderhook.core.rate_limiter import RateLimiter
from orderhook.core.redis_client import RedisClient
from orderhook.core.webhook_security import verify_freshness, verify_signature
from orderhook.schemas.event import Event, EventStatus, WebhookEventPayload
from .base_service import BaseService
from .event_queue import EventQueue

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-timestamp"


@dataclass
class IngestionResult:
    event_id: str
    duplicate: bool
    accepted: bool = True


class IngestionService(BaseService):
    """Accepts or rejects one inbound order webhook."""

    def __init__(
        self,
        store: RedisClient,
        queue: Optional[EventQueue] = None,
        rate_limiter: Optional[RateLimiter] = None,
        secret: Optional[Union[str, bytes]] = None,
        max_age_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(store)
        self.queue = queue or EventQueue(store)
        self.rate_limiter = rate_limiter or RateLimiter(store)
        self.secret = secret if secret is not None else settings.WEBHOOK_SECRET
        self.max_age_seconds = (
            settings.WEBHOOK_TOLERANCE_SECONDS if max_age_seconds is None else max_age_seconds
        )
        self.clock = clock

    async def ingest(self, raw_body: bytes, headers: Mapping[str, str], client_key: str) -> IngestionResult:
        """
        Run the ingestion checks in order and admit the event.

        Order: rate limit, required headers, freshness, signature, JSON,
        required fields, dedup admit. The first failing check raises
        ``WebhookRejected``; a duplicate is a normal result, not an error.
        """
        limit = await self.rate_limiter.check(client_key)
        if not limit.allowed:
            raise WebhookRejected(RejectionReason.RATE_LIMITED, "Rate limit exceeded", remaining=limit.remaining)

        headers = {key.lower(): value for key, value in headers.items()}
        signature = headers.get(SIGNATURE_HEADER)
        timestamp = headers.get(TIMESTAMP_HEADER)
        if not signature or not timestamp:
            raise WebhookRejected(RejectionReason.BAD_REQUEST, "Missing required headers")

        try:
            received_at = int(timestamp)
        except ValueError:
            raise WebhookRejected(RejectionReason.BAD_REQUEST, "Invalid timestamp format")

        if not verify_freshness(timestamp, int(self.clock()), self.max_age_seconds):
            raise WebhookRejected(RejectionReason.STALE, "Request too old")

        if not verify_signature(raw_body, signature, self.secret):
            raise WebhookRejected(RejectionReason.UNAUTHORIZED, "Invalid signature")

        try:
            body = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise WebhookRejected(RejectionReason.BAD_REQUEST, "Invalid JSON")
        if not isinstance(body, dict):
            raise WebhookRejected(RejectionReason.BAD_REQUEST, "Invalid JSON")

        try:
            payload = WebhookEventPayload.model_validate(body)
        except ValidationError:
            raise WebhookRejected(RejectionReason.BAD_REQUEST, "Missing required fields")

        event = Event(
            event_id=payload.event_id,
            event_type=payload.event_type,
            payload=payload.payload,
            received_at=received_at,
            status=EventStatus.QUEUED,
            retry_count=0,
        )
        admitted = await self.queue.admit(event)

        self.logger.info("Webhook ingested",
                         event_id=event.event_id,
                         event_type=event.event_type,
                         duplicate=not admitted)
        return IngestionResult(event_id=event.event_id, duplicate=not admitted)
