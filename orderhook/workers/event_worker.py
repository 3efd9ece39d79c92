import asyncio
import signal
from typing import Optional

import httpx

from orderhook.core.config import settings
from orderhook.core.exceptions import StoreUnavailableError, TransportFailure
from orderhook.core.logging import get_logger, setup_logging
from orderhook.core.queue_policies import DEFAULT_POLICY, RetryPolicy
from orderhook.core.redis_client import RedisClient
from orderhook.schemas.event import Event
from orderhook.services.event_queue import EventQueue
from orderhook.services.metrics_service import MetricsService
from orderhook.services.notification_client import (
    NotificationTarget,
    NotificationTransport,
    PushNotificationClient,
    TokenStore,
)

logger = get_logger(__name__)

NOTIFICATION_TITLE = "New Order"


class EventWorker:
    """
    Drains the order stream and sends one push notification per event.

    Per event:
        success                      -> ack, sent += 1
        failure, attempts left       -> schedule retry after backoff, failed += 1, ack
        failure, attempts exhausted  -> dead-letter (dlq += 1), ack

    The retry is written to the store before the original entry is acked,
    so a crash in between yields a duplicate attempt rather than a lost one.
    """

    def __init__(
        self,
        queue: EventQueue,
        notifier: NotificationTransport,
        token_store: TokenStore,
        policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsService] = None,
        batch_size: Optional[int] = None,
        block_timeout_ms: Optional[int] = None,
        error_pause_seconds: Optional[float] = None,
        shutdown_grace_seconds: Optional[float] = None,
        default_topic: Optional[str] = None,
    ):
        self.queue = queue
        self.notifier = notifier
        self.token_store = token_store
        self.policy = policy or DEFAULT_POLICY
        self.metrics = metrics or queue.metrics
        self.batch_size = settings.WORKER_BATCH_SIZE if batch_size is None else batch_size
        self.block_timeout_ms = settings.WORKER_BLOCK_TIMEOUT_MS if block_timeout_ms is None else block_timeout_ms
        self.error_pause_seconds = (
            settings.WORKER_ERROR_PAUSE_SECONDS if error_pause_seconds is None else error_pause_seconds
        )
        self.shutdown_grace_seconds = (
            settings.WORKER_SHUTDOWN_GRACE_SECONDS if shutdown_grace_seconds is None else shutdown_grace_seconds
        )
        self.default_topic = default_topic or settings.NOTIFICATION_DEFAULT_TOPIC
        self.logger = get_logger(self.__class__.__name__)
        self.is_running = False
        self._initialized = False
        self._force_exit_handle: Optional[asyncio.TimerHandle] = None

    async def run(self):
        """Main worker loop. Returns only after ``stop()``."""
        self.logger.info("Starting event worker",
                         stream=self.queue.stream_name,
                         group=self.queue.consumer_group,
                         consumer=self.queue.consumer_name)
        self.is_running = True

        while self.is_running:
            try:
                if not self._initialized:
                    await self.queue.init()
                    self._initialized = True
                await self.process_events()
            except Exception as e:
                self.logger.error(f"Error in worker loop: {e}", error_type=type(e).__name__)
                await asyncio.sleep(self.error_pause_seconds)

        self.logger.info("Event worker stopped")

    async def process_events(self) -> int:
        """One iteration: promote due retries, check out a batch, process it."""
        await self.queue.promote_due_retries()
        events = await self.queue.checkout(self.batch_size, self.block_timeout_ms)
        for event in events:
            await self.process_event(event)
        return len(events)

    async def process_event(self, event: Event) -> bool:
        log = self.logger.with_context(event_id=event.event_id, retry_count=event.retry_count)
        log.info("Processing event")

        try:
            await self.deliver(event)
        except StoreUnavailableError:
            # Not the event's fault; leave it pending and pause the loop
            raise
        except Exception as e:
            log.warning("Event delivery failed", error=str(e))
            await self.handle_failure(event, e)
            return False

        await self.queue.ack(event.delivery_handle)
        await self.metrics.increment("sent")
        log.info("Event processed successfully")
        return True

    async def deliver(self, event: Event):
        """Send the order notification to the recipient's device, or to the shared topic."""
        token = await self.token_store.get_token(event.user_id) if event.user_id else None
        if token:
            target = NotificationTarget(token=token)
        else:
            target = NotificationTarget(topic=self.default_topic)

        body = f"Order {event.order_id} placed by {event.user_id}"
        if not await self.notifier.send(target, NOTIFICATION_TITLE, body):
            raise TransportFailure("Failed to send push notification")

    async def handle_failure(self, event: Event, error: Exception):
        retry_count = event.retry_count + 1

        if self.policy.is_exhausted(retry_count):
            await self.queue.move_to_dead_letter(
                event.model_copy(update={"retry_count": retry_count}),
                error=str(error),
            )
            await self.queue.ack(event.delivery_handle)
            self.logger.error("Event dead-lettered",
                              event_id=event.event_id,
                              retry_count=retry_count)
            return

        delay = self.policy.backoff_for(retry_count)
        # Count only once the retry is stored; a store outage here leaves the entry pending
        await self.queue.schedule_retry(event.for_retry(retry_count), delay, source_handle=event.delivery_handle)
        await self.metrics.increment("failed")
        await self.queue.ack(event.delivery_handle)
        self.logger.warning("Event queued for retry",
                            event_id=event.event_id,
                            retry_count=retry_count,
                            max_retries=self.policy.max_retries,
                            delay=delay)

    def stop(self):
        self.logger.info("Stopping worker...")
        self.is_running = False

    def install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                pass  # add_signal_handler not available on Windows

    def request_shutdown(self, sig: signal.Signals = signal.SIGTERM):
        """Stop after the current iteration; force exit once the grace period ends."""
        self.logger.info("Received signal, shutting down gracefully", signal=sig.name)
        self.stop()
        if self._force_exit_handle is None:
            loop = asyncio.get_running_loop()
            self._force_exit_handle = loop.call_later(self.shutdown_grace_seconds, self._force_exit)

    def _force_exit(self):
        self.logger.warning("Shutdown grace period elapsed, exiting",
                            grace_seconds=self.shutdown_grace_seconds)
        raise SystemExit(0)


async def run_worker():
    store = RedisClient()
    try:
        await store.connect()
    except StoreUnavailableError as e:
        logger.warning("Redis unavailable at startup, worker loop will keep retrying", error=str(e))

    try:
        async with httpx.AsyncClient(timeout=settings.PUSH_TIMEOUT_SECONDS) as http_client:
            metrics = MetricsService(store)
            worker = EventWorker(
                queue=EventQueue(store, metrics=metrics),
                notifier=PushNotificationClient(http_client=http_client),
                token_store=TokenStore(store),
                metrics=metrics,
            )
            worker.install_signal_handlers()
            await worker.run()
    finally:
        await store.disconnect()


def main():
    setup_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
