import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from orderhook.core.config import settings
from orderhook.core.redis_client import RedisClient
from orderhook.schemas.event import DeadLetterRecord, Event
from .base_service import BaseService
from .metrics_service import MetricsService


class EventQueue(BaseService):
    """
    Dedup store, ordered event stream and dead-letter list on Redis.

    Layout:
        event:{event_id}        dedup record (last admitted snapshot), TTL = retention window
        {stream}                Redis Stream, one ``data`` field per entry, consumed by one group
        {stream}:retry          zset of scheduled retries scored by due time
        {dlq}                   list of dead-letter records, newest first

    Every mutation is a single Redis command or script, so concurrent API
    handlers and workers need no local locking.
    """

    dedup_prefix = "event:"

    def __init__(
        self,
        store: RedisClient,
        metrics: Optional[MetricsService] = None,
        stream_name: Optional[str] = None,
        dlq_name: Optional[str] = None,
        consumer_group: Optional[str] = None,
        consumer_name: Optional[str] = None,
        dedup_ttl_seconds: Optional[int] = None,
        visibility_timeout_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(store)
        self.metrics = metrics or MetricsService(store)
        self.stream_name = stream_name or settings.QUEUE_STREAM_NAME
        self.dlq_name = dlq_name or settings.QUEUE_DLQ_NAME
        self.consumer_group = consumer_group or settings.QUEUE_CONSUMER_GROUP
        self.consumer_name = consumer_name or settings.QUEUE_CONSUMER_NAME
        self.dedup_ttl_seconds = settings.DEDUP_TTL_SECONDS if dedup_ttl_seconds is None else dedup_ttl_seconds
        self.visibility_timeout_seconds = (
            settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS
            if visibility_timeout_seconds is None else visibility_timeout_seconds
        )
        self.clock = clock

    @property
    def retry_key(self) -> str:
        return f"{self.stream_name}:retry"

    def _dedup_key(self, event_id: str) -> str:
        return f"{self.dedup_prefix}{event_id}"

    async def init(self):
        """Create the consumer group if it does not exist yet."""
        await self.store.ensure_group(self.stream_name, self.consumer_group)

    # Dedup store

    async def admit(self, event: Event) -> bool:
        """
        Admit an event once per retention window.

        The dedup record is written with SET NX, so concurrent submissions of
        the same event_id produce exactly one admission.

        Returns:
            True if newly admitted and appended, False if duplicate
        """
        added = await self.store.set_if_absent(
            self._dedup_key(event.event_id),
            event.to_message(),
            self.dedup_ttl_seconds,
        )
        if not added:
            await self.metrics.increment("deduped")
            self.logger.info("Duplicate event rejected", event_id=event.event_id)
            return False

        await self.append(event)
        await self.metrics.increment("received")
        return True

    async def lookup(self, event_id: str) -> Optional[Event]:
        data = await self.store.get(self._dedup_key(event_id))
        if data is None:
            return None
        return Event.from_message(data)

    # Stream

    async def append(self, event: Event) -> str:
        """Add to the stream tail and return the delivery handle."""
        handle = await self.store.stream_add(self.stream_name, {"data": event.to_message()})
        event.delivery_handle = handle
        self.logger.debug("Event appended",
                          event_id=event.event_id,
                          delivery_handle=handle,
                          retry_count=event.retry_count)
        return handle

    async def checkout(self, max_items: int = 1, block_timeout_ms: Optional[int] = None) -> List[Event]:
        """
        Claim up to ``max_items`` entries for this consumer.

        Entries another consumer left unacknowledged for longer than the
        visibility timeout are reclaimed first; otherwise new entries are read,
        blocking up to ``block_timeout_ms`` when the stream is empty.
        """
        entries = await self.reclaim_stale(max_items)
        if not entries:
            entries = await self.store.stream_read_group(
                self.stream_name,
                self.consumer_group,
                self.consumer_name,
                count=max_items,
                block_ms=block_timeout_ms,
            )

        events = []
        for message_id, fields in entries:
            event = await self._parse_entry(message_id, fields)
            if event is not None:
                events.append(event)
        return events

    async def reclaim_stale(self, max_items: int = 1) -> List[Tuple[str, Dict[str, str]]]:
        """Take over entries left pending longer than the visibility timeout."""
        entries = await self.store.stream_autoclaim(
            self.stream_name,
            self.consumer_group,
            self.consumer_name,
            min_idle_ms=self.visibility_timeout_seconds * 1000,
            count=max_items,
        )
        if entries:
            self.logger.warning("Reclaimed stale pending entries", count=len(entries))
        return entries

    async def _parse_entry(self, message_id: str, fields: Dict[str, str]) -> Optional[Event]:
        try:
            return Event.from_message(fields["data"], delivery_handle=message_id)
        except (KeyError, ValidationError) as e:
            # Unreadable entries would otherwise be reclaimed forever
            self.logger.error("Dropping malformed queue entry", delivery_handle=message_id, error=str(e))
            await self.ack(message_id)
            return None

    async def ack(self, delivery_handle: str):
        """Remove the entry from the group's pending list."""
        await self.store.stream_ack(self.stream_name, self.consumer_group, delivery_handle)

    # Retries and dead letters

    async def schedule_retry(
        self,
        event: Event,
        delay_seconds: float,
        source_handle: Optional[str] = None,
    ) -> float:
        """
        Durably schedule a copy of ``event`` to re-enter the stream later.

        ``source_handle`` is the delivery handle of the failed entry. One
        retry is kept per failed entry, so scheduling again for the same
        entry (after a crash before its ack) does not add a second copy.
        """
        due_at = self.clock() + delay_seconds
        tag = source_handle or uuid.uuid4().hex
        await self.store.queue_delayed(self.retry_key, event.to_message(), due_at, tag)
        self.logger.info("Retry scheduled",
                         event_id=event.event_id,
                         retry_count=event.retry_count,
                         delay=delay_seconds)
        return due_at

    async def promote_due_retries(self, now: Optional[float] = None) -> int:
        """Append every scheduled retry whose due time has passed."""
        moved = await self.store.promote_delayed(
            self.retry_key,
            self.stream_name,
            now if now is not None else self.clock(),
        )
        if moved:
            self.logger.info("Promoted scheduled retries", count=moved)
        return moved

    async def move_to_dead_letter(self, event: Event, error: Optional[str] = None) -> DeadLetterRecord:
        """Record a terminal failure. The caller still has to ack the entry."""
        record = DeadLetterRecord(
            **event.model_dump(exclude={"status"}),
            failed_at=int(self.clock()),
            last_error=error,
        )
        await self.store.list_push(self.dlq_name, record.to_message())
        await self.metrics.increment("dlq")
        self.logger.warning("Event moved to dead-letter queue",
                            event_id=event.event_id,
                            retry_count=event.retry_count,
                            error=error)
        return record

    async def dead_letters(self, limit: int = 20) -> List[DeadLetterRecord]:
        items = await self.store.list_range(self.dlq_name, 0, limit - 1)
        return [DeadLetterRecord.model_validate_json(item) for item in items]

    # Read side

    async def recent(self, limit: int = 20) -> List[Event]:
        """
        Newest stream entries merged with newest dead-letter records,
        most recent first, at most ``limit`` items.
        """
        merged: List[Tuple[float, Event]] = []

        for message_id, fields in await self.store.stream_rev_range(self.stream_name, limit):
            try:
                event = Event.from_message(fields["data"], delivery_handle=message_id)
            except (KeyError, ValidationError):
                self.logger.warning("Skipping malformed stream entry", delivery_handle=message_id)
                continue
            # Stream ids start with the append time in milliseconds
            merged.append((int(message_id.split("-")[0]) / 1000, event))

        for item in await self.store.list_range(self.dlq_name, 0, limit - 1):
            try:
                record = DeadLetterRecord.model_validate_json(item)
            except ValidationError:
                self.logger.warning("Skipping malformed dead-letter record")
                continue
            merged.append((record.failed_at, record))

        merged.sort(key=lambda pair: pair[0], reverse=True)
        return [event for _, event in merged[:limit]]

    async def replay(self, event_id: str) -> bool:
        """
        Re-append the last admitted snapshot of ``event_id`` as a fresh entry
        with ``status=queued`` and ``retry_count=0``. Bypasses dedup.

        Returns:
            False if no dedup record exists
        """
        event = await self.lookup(event_id)
        if event is None:
            self.logger.info("Replay requested for unknown event", event_id=event_id)
            return False

        handle = await self.append(event.for_retry(0))
        self.logger.info("Event replayed", event_id=event_id, delivery_handle=handle)
        return True

    async def stats(self) -> Dict[str, Any]:
        return {
            "stream_length": await self.store.stream_length(self.stream_name),
            "pending": await self.store.stream_pending_count(self.stream_name, self.consumer_group),
            "scheduled_retries": await self.store.delayed_count(self.retry_key),
            "dead_letters": await self.store.list_length(self.dlq_name),
        }
